"""Sliding-window rate limiter — per-backend admission control.

Each backend keeps an ordered list of minute buckets. Every admission check
prunes buckets whose most recent admission is older than the window, sums
what is left and compares it with the backend's requests_per_window.

This is a bucketed approximation of a sliding window, not a token bucket:
granularity is per bucket, and callers must not expect smooth pacing
inside a minute. A bucket only ages out once its latest admission has,
so the count inside any trailing window never exceeds the limit.

Backends without a policy are never throttled. The limiter is only touched
from the event loop thread, so check-and-record is atomic as long as no
await happens between the two (see try_admit).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from imagegen.gateway.types import Backend, RateLimitPolicy, RateLimitStatus

logger = logging.getLogger(__name__)

BUCKET_SECONDS = 60.0


@dataclass
class _Bucket:
    """Admissions recorded within one bucket period."""

    start: float  # Bucket start, clock seconds
    last: float  # Latest admission in this bucket
    count: int = 0


@dataclass
class _BackendWindow:
    """Rolling window for a single backend."""

    policy: RateLimitPolicy
    buckets: list[_Bucket] = field(default_factory=list)

    @property
    def window_seconds(self) -> float:
        return self.policy.window_ms / 1000.0

    @property
    def bucket_seconds(self) -> float:
        # Windows shorter than a minute get buckets as wide as the window
        return min(BUCKET_SECONDS, self.window_seconds)

    def prune(self, now: float) -> None:
        """Drop buckets whose latest admission fell out of the window."""
        cutoff = now - self.window_seconds
        self.buckets = [b for b in self.buckets if b.last > cutoff]

    @property
    def usage(self) -> int:
        return sum(b.count for b in self.buckets)

    def record(self, now: float) -> None:
        width = self.bucket_seconds
        start = (now // width) * width
        if self.buckets and self.buckets[-1].start == start:
            bucket = self.buckets[-1]
            bucket.count += 1
            bucket.last = now
        else:
            self.buckets.append(_Bucket(start=start, last=now, count=1))

    def remaining_seconds(self, now: float) -> float:
        """Time until the oldest bucket ages out (0 when nothing is recorded)."""
        if not self.buckets:
            return 0.0
        return max(self.buckets[0].last + self.window_seconds - now, 0.0)


class SlidingWindowRateLimiter:
    """Per-backend admission counter.

    Usage:
        limiter = SlidingWindowRateLimiter({Backend.OPENAI: RateLimitPolicy(5, 60_000)})

        if limiter.can_admit(Backend.OPENAI):
            limiter.record_admission(Backend.OPENAI)
            ...

        # Or in one step:
        if limiter.try_admit(Backend.OPENAI):
            ...
    """

    def __init__(
        self,
        policies: dict[Backend, RateLimitPolicy] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._windows: dict[Backend, _BackendWindow] = {
            backend: _BackendWindow(policy=policy) for backend, policy in (policies or {}).items()
        }

    def set_policy(self, backend: Backend, policy: RateLimitPolicy | None) -> None:
        """Install, replace or (with None) remove a backend's policy. Recorded usage is kept."""
        if policy is None:
            self._windows.pop(backend, None)
            return
        window = self._windows.get(backend)
        if window is None:
            self._windows[backend] = _BackendWindow(policy=policy)
        else:
            window.policy = policy

    def policy(self, backend: Backend) -> RateLimitPolicy | None:
        window = self._windows.get(backend)
        return window.policy if window else None

    def can_admit(self, backend: Backend) -> bool:
        """Can *backend* take one more request right now?"""
        window = self._windows.get(backend)
        if window is None:
            return True
        window.prune(self._clock())
        return window.usage < window.policy.requests_per_window

    def record_admission(self, backend: Backend) -> None:
        """Count one admission in the current bucket."""
        window = self._windows.get(backend)
        if window is None:
            return
        window.record(self._clock())

    def try_admit(self, backend: Backend) -> bool:
        """Check and record in one synchronous step."""
        if not self.can_admit(backend):
            return False
        self.record_admission(backend)
        return True

    def get_status(self, backend: Backend) -> RateLimitStatus | None:
        """Current usage snapshot, or None when the backend is not limited."""
        window = self._windows.get(backend)
        if window is None:
            return None
        now = self._clock()
        window.prune(now)
        return RateLimitStatus(
            current_usage=window.usage,
            limit=window.policy.requests_per_window,
            remaining_time_ms=int(window.remaining_seconds(now) * 1000),
        )

    def get_stats(self, backend: Backend) -> dict:
        """Status as a plain dict for logging and status endpoints."""
        status = self.get_status(backend)
        if status is None:
            return {"backend": backend.value, "limited": False}
        return {
            "backend": backend.value,
            "limited": True,
            "current_usage": status.current_usage,
            "limit": status.limit,
            "remaining_time_ms": status.remaining_time_ms,
        }

    def get_all_stats(self) -> list[dict]:
        """Stats for all backends with a policy."""
        return [self.get_stats(b) for b in self._windows]
