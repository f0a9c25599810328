"""
In-memory fixed-window rate limiter for the HTTP API.

State lives in the process only: counts reset on restart and are not
shared between workers.
"""

import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_in_seconds: int


class FixedWindowRateLimiter:
    """
    Per-key request counter with fixed time windows.

    The first request for a key opens a window of ``window_seconds``; up to
    ``limit`` requests are allowed inside it. Windows that have reset are
    pruned at most once per ``cleanup_interval`` seconds, on the next check.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL_SECONDS
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.cleanup_interval = cleanup_interval
        self._windows: Dict[str, Dict[str, float]] = {}
        self._next_cleanup: Optional[float] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _prune(self, now: float) -> int:
        expired = [key for key, entry in self._windows.items() if entry["reset_at"] <= now]
        for key in expired:
            del self._windows[key]
        self._next_cleanup = now + self.cleanup_interval
        return len(expired)

    def check(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        """Record a request for ``key`` and report whether it is allowed."""
        now = time.time() if now is None else now

        with self._lock:
            if self._next_cleanup is None:
                self._next_cleanup = now + self.cleanup_interval
            elif now >= self._next_cleanup:
                self._prune(now)

            entry = self._windows.get(key)

            if entry is None or entry["reset_at"] <= now:
                self._windows[key] = {"count": 1, "reset_at": now + self.window_seconds}
                return RateLimitResult(
                    allowed=True,
                    limit=self.limit,
                    remaining=self.limit - 1,
                    reset_in_seconds=self.window_seconds,
                )

            reset_in = max(0, int(round(entry["reset_at"] - now)))

            if entry["count"] >= self.limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_in_seconds=reset_in,
                )

            entry["count"] += 1
            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - int(entry["count"]),
                reset_in_seconds=reset_in,
            )

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop windows that have already reset."""
        now = time.time() if now is None else now
        with self._lock:
            return self._prune(now)

    def reset(self, key: Optional[str] = None) -> None:
        """
        Reset rate limiter state.

        Args:
            key: Specific key to reset, or None to reset all
        """
        with self._lock:
            if key:
                self._windows.pop(key, None)
            else:
                self._windows.clear()
