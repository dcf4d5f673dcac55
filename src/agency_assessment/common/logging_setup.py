"""Logging configuration shared by the API server and the CLI."""
from __future__ import annotations
import logging
import sys
from typing import TextIO

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

# Client libraries that log one INFO line per HTTP request.
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: int | str = logging.INFO, stream: TextIO | None = None) -> None:
    """
    Install a single handler on the root logger.

    Args:
        level: Numeric level or a level name in any case ("debug", "INFO").
        stream: Destination; defaults to stdout. The CLI passes stderr so
            streamed model text on stdout stays clean.
    """
    if isinstance(level, str):
        level = level.upper()
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
