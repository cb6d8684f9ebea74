#!/usr/bin/env python3
"""
vortex_authz/limits.py - Sliding-window rate limiting for write-heavy actions.

Counts events per key (e.g. "message_post:<user_id>") within a trailing
window and refuses new events once the window is full. Denials carry a
reset time so callers can send a Retry-After hint.

Features:
- Per-key sliding window, not fixed buckets
- Atomic read-evict-compare-append under one lock
- Interval-gated sweep of idle keys to bound memory
- Constructor-injected instances; no module-level singleton

State is process-local and is lost on restart. A multi-instance deployment
needs a shared counter store in front of this.
"""

import math
import time
import threading
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

from vortex_authz.errors import InvalidInputError, RateLimitedError
from vortex_authz.metrics import record_rate_limit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Named limiter parameters for one kind of action."""
    name: str
    limit: int
    window_ms: int

    def __post_init__(self):
        if not self.name:
            raise ValueError("name cannot be empty")
        _validate_parameters(self.limit, self.window_ms)

    def key_for(self, subject: str) -> str:
        """Build the limiter key for a subject (usually a user id)."""
        return f"{self.name}:{subject}"


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one limiter check."""
    allowed: bool
    remaining: int
    reset_at: float           # epoch seconds
    limit: int

    def retry_after(self, now: Optional[float] = None) -> int:
        """Whole seconds until the window frees a slot, never negative."""
        if now is None:
            now = time.time()
        return max(0, math.ceil(self.reset_at - now))

    def raise_for_limit(self, now: Optional[float] = None) -> None:
        """Raise RateLimitedError when this check was refused."""
        if not self.allowed:
            retry_after = self.retry_after(now)
            raise RateLimitedError(
                f"Rate limit exceeded ({self.limit} events per window). "
                f"Retry in {retry_after}s.",
                retry_after=retry_after,
                reset_at=self.reset_at,
            )


class RateLimiter:
    """
    Sliding-window counter keyed by an arbitrary string.

    Args:
        clock: Callable returning the current time in epoch seconds
        cleanup_interval_seconds: Minimum time between idle-key sweeps
        stale_after_seconds: Keys whose newest event is older than this are swept
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        cleanup_interval_seconds: float = 300.0,
        stale_after_seconds: float = 60.0,
    ):
        self._clock = clock or time.time
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[float]] = {}
        self._last_cleanup = self._clock()

    def now(self) -> float:
        return self._clock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """
        Record an event for a key if the window has room.

        Args:
            key: Limiter key
            limit: Maximum events admitted within the window
            window_ms: Trailing window length in milliseconds

        Returns:
            RateLimitResult with allowed, remaining and reset_at

        Raises:
            InvalidInputError: If limit or window_ms is not positive
        """
        _validate_parameters(limit, window_ms)
        window = window_ms / 1000.0

        with self._lock:
            now = self._clock()
            self._cleanup_stale_keys(now)

            timestamps = self._windows.get(key)
            if timestamps is None:
                timestamps = deque()
                self._windows[key] = timestamps

            # Evict events that have left the trailing window
            cutoff = now - window
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            reset_at = timestamps[0] + window if timestamps else now + window

            if len(timestamps) >= limit:
                logger.debug(f"Rate limit hit: key={key} count={len(timestamps)} limit={limit}")
                return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at, limit=limit)

            timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=limit - len(timestamps),
                reset_at=reset_at,
                limit=limit,
            )

    def check_policy(self, policy: RateLimitPolicy, subject: str) -> RateLimitResult:
        """Check a named policy for a subject and record the outcome."""
        result = self.check(policy.key_for(subject), policy.limit, policy.window_ms)
        record_rate_limit(policy.name, result.allowed)
        return result

    def _cleanup_stale_keys(self, now: float, force: bool = False) -> int:
        """Drop keys with no recent events. Caller holds the lock."""
        if not force and now - self._last_cleanup < self.cleanup_interval_seconds:
            return 0

        cutoff = now - self.stale_after_seconds
        stale_keys = [
            key for key, timestamps in self._windows.items()
            if not timestamps or timestamps[-1] < cutoff
        ]
        for key in stale_keys:
            del self._windows[key]

        self._last_cleanup = now
        if stale_keys:
            logger.debug(f"Swept {len(stale_keys)} idle rate-limit keys")
        return len(stale_keys)

    def cleanup(self, force: bool = True) -> int:
        """
        Sweep idle keys now.

        Returns:
            Number of keys removed
        """
        with self._lock:
            return self._cleanup_stale_keys(self._clock(), force=force)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get current limiter statistics.

        Returns:
            Dict with tracked key count and per-key event counts
        """
        with self._lock:
            return {
                "total_keys": len(self._windows),
                "keys": {key: len(timestamps) for key, timestamps in self._windows.items()},
                "last_cleanup": self._last_cleanup,
                "config": {
                    "cleanup_interval_seconds": self.cleanup_interval_seconds,
                    "stale_after_seconds": self.stale_after_seconds,
                },
            }

    def reset(self):
        """Reset all windows (for testing)."""
        with self._lock:
            self._windows.clear()
            self._last_cleanup = self._clock()


def _validate_parameters(limit: int, window_ms: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError(f"limit must be a positive integer, got {limit!r}")
    if isinstance(window_ms, bool) or not isinstance(window_ms, (int, float)) or window_ms <= 0:
        raise InvalidInputError(f"window_ms must be positive, got {window_ms!r}")


def create_429_response(result: RateLimitResult, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Create standardized 429 response body.

    Args:
        result: Refused RateLimitResult

    Returns:
        Dict suitable for JSONResponse with status_code=429
    """
    return {
        "error": "too_many_requests",
        "message": "You are sending requests too fast. Slow down.",
        "retry_after": result.retry_after(now),
        "status": 429
    }
