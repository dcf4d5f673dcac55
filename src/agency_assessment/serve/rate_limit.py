"""In-process fixed-window rate limiting keyed by client identity and mode.

Each (identity, mode) pair owns an independent counter, so demo traffic
cannot spend a normal-mode budget and vice versa. A window starts with the
first request from a key and resets wholesale once it has expired.

Known limitations:
- Identity comes from X-Forwarded-For. Requests without it share the single
  "unknown" bucket.
- Counters live in this process only. Expired entries are removed by
  `sweep()`; nothing is shared between instances.
"""
from __future__ import annotations
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal

from agency_assessment.common import config

LOGGER = logging.getLogger("agency_assessment.ratelimit")

Mode = Literal["normal", "demo"]
UNKNOWN_IDENTITY = "unknown"


@dataclass(slots=True)
class RateLimitEntry:
    count: int
    reset_time: float


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float


def client_identity(forwarded_for: str | None) -> str:
    """First address of an X-Forwarded-For header, or "unknown"."""
    if not forwarded_for:
        return UNKNOWN_IDENTITY
    first = forwarded_for.split(",")[0].strip()
    return first or UNKNOWN_IDENTITY


class RateLimiter:
    def __init__(
        self,
        *,
        normal_limit: int = config.RATE_LIMIT_NORMAL,
        demo_limit: int = config.RATE_LIMIT_DEMO,
        window_seconds: float = config.RATE_LIMIT_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits: dict[str, int] = {"normal": normal_limit, "demo": demo_limit}
        self._window = window_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], RateLimitEntry] = {}
        self._lock = threading.Lock()

    def limit_for(self, mode: Mode) -> int:
        return self._limits[mode]

    def check(self, identity: str, mode: Mode = "normal") -> RateLimitDecision:
        """Count one request for (identity, mode) and decide whether it may proceed."""
        limit = self._limits[mode]
        key = (identity, mode)
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                entry = RateLimitEntry(count=1, reset_time=now + self._window)
                self._entries[key] = entry
                return RateLimitDecision(True, limit, limit - 1, entry.reset_time)
            if entry.count >= limit:
                return RateLimitDecision(False, limit, 0, entry.reset_time)
            entry.count += 1
            return RateLimitDecision(True, limit, limit - entry.count, entry.reset_time)

    def retry_after(self, decision: RateLimitDecision) -> int:
        """Whole seconds until the decision's window resets (at least 1)."""
        return max(1, math.ceil(decision.reset_time - self._clock()))

    def sweep(self) -> int:
        """Drop entries whose window has expired. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.reset_time]
            for key in expired:
                del self._entries[key]
        if expired:
            LOGGER.debug("Swept %d expired rate-limit entries", len(expired))
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
