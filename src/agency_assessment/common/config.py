"""Environment-driven settings shared by the server and the client."""
from __future__ import annotations
import os

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01")

HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "60"))
STREAM_MAX_SECONDS = float(os.getenv("STREAM_MAX_SECONDS", "300"))

RATE_LIMIT_WINDOW_S = float(os.getenv("RATE_LIMIT_WINDOW_S", "3600"))
RATE_LIMIT_NORMAL = int(os.getenv("RATE_LIMIT_NORMAL", "10"))
RATE_LIMIT_DEMO = int(os.getenv("RATE_LIMIT_DEMO", "50"))
RATE_LIMIT_SWEEP_S = float(os.getenv("RATE_LIMIT_SWEEP_S", "600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Generation parameters per endpoint
EVALUATE_MAX_TOKENS = 2048
SCORE_MAX_TOKENS = 1024
ROADMAP_MAX_TOKENS = 4096
ASSESS_MAX_TOKENS = 4096
