"""Per-user fixed-window rate limiter.

Each user gets ``max_requests`` requests per ``window_seconds``. The window
opens on the user's first request and resets once it expires. State is
in-memory and process-local.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of ``RateLimiter.check_and_record``.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the current window.
        retry_after: Seconds until the window resets (0 when allowed).
    """

    allowed: bool
    remaining: int
    retry_after: int = 0


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_in: int


class RateLimiter:
    """Counts requests per user inside a fixed window.

    The check and the record happen in one critical section, so two
    threads cannot both observe the last free slot.

    Args:
        max_requests: Requests allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check_and_record(self, user_id: str) -> RateLimitDecision:
        """Record one request for *user_id* and decide whether it is allowed."""
        with self._lock:
            now = self._clock()
            window = self._windows.get(user_id)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[user_id] = window
            window.count += 1

            if window.count > self.max_requests:
                wait = max(1, math.ceil(window.reset_at - now))
                logger.warning(
                    f"Rate limit exceeded for {user_id}: "
                    f"{window.count}/{self.max_requests}, retry in {wait}s"
                )
                return RateLimitDecision(allowed=False, remaining=0, retry_after=wait)

            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests - window.count,
            )

    def status(self, user_id: str) -> RateLimitStatus | None:
        """Current window for *user_id*, or None if there is no live window."""
        with self._lock:
            window = self._windows.get(user_id)
            now = self._clock()
            if window is None or now > window.reset_at:
                return None
            return RateLimitStatus(
                remaining=max(0, self.max_requests - window.count),
                reset_in=math.ceil(window.reset_at - now),
            )

    def reset(self, user_id: str) -> None:
        with self._lock:
            self._windows.pop(user_id, None)

    def cleanup_expired(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [uid for uid, w in self._windows.items() if now > w.reset_at]
            for uid in expired:
                del self._windows[uid]
        return len(expired)
