"""In-memory sliding-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each key's bucket has its own lock; the registry lock is only
  held to look up, create or remove a bucket.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from formroute.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class _Bucket:
    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Set by the sweeper once the bucket is unlinked from the registry.
    retired: bool = False


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting attempts per key within a moving time window.

    Each key keeps the timestamps of its allowed attempts. A call first drops
    timestamps that fell out of the window, then either records ``now`` (when
    fewer than ``limit`` remain) or reports how long until the oldest one
    expires.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of attempts per window.
            window_seconds: Length of the sliding window in seconds.
            retention_seconds: Idle horizon after which the sweeper drops a key.
                Defaults to the window length; never shorter than it.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit, window_seconds or retention_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if retention_seconds is not None and retention_seconds < window_seconds:
            raise ValueError("retention_seconds must be >= window_seconds")

        self._limit = limit
        self._window_seconds = window_seconds
        self._retention_seconds = retention_seconds or window_seconds
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        return len(self._buckets)

    def _get_bucket(self, key: str) -> _Bucket:
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket()
                self._buckets[key] = bucket
            return bucket

    def _check_sync(self, key: str) -> RateLimitResult:
        while True:
            bucket = self._get_bucket(key)
            with bucket.lock:
                if bucket.retired:
                    # Lost a race with the sweeper; fetch the replacement bucket.
                    continue

                now = self._clock()
                window_start = now - self._window_seconds
                timestamps = bucket.timestamps
                while timestamps and timestamps[0] <= window_start:
                    timestamps.popleft()

                if len(timestamps) >= self._limit:
                    retry_after = math.ceil(timestamps[0] + self._window_seconds - now)
                    return RateLimitResult(
                        allowed=False,
                        limit=self._limit,
                        remaining=0,
                        retry_after_seconds=max(1, retry_after),
                    )

                timestamps.append(now)
                return RateLimitResult(
                    allowed=True,
                    limit=self._limit,
                    remaining=self._limit - len(timestamps),
                )

    async def check(self, key: str) -> RateLimitResult:
        """Check and record one attempt for ``key``.

        Args:
            key: Client identity.

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        # No awaits while the bucket lock is held.
        return self._check_sync(key)

    def sweep(self) -> int:
        """Remove keys whose newest attempt is older than the retention horizon.

        Buckets are visited one at a time; only that bucket's lock is held
        while it is inspected.
        """
        removed = 0
        with self._registry_lock:
            snapshot = list(self._buckets.items())

        for key, bucket in snapshot:
            with bucket.lock:
                horizon = self._clock() - self._retention_seconds
                timestamps = bucket.timestamps
                while timestamps and timestamps[0] <= horizon:
                    timestamps.popleft()
                if timestamps:
                    continue
                bucket.retired = True

            with self._registry_lock:
                if self._buckets.get(key) is bucket:
                    del self._buckets[key]
                    removed += 1

        return removed
