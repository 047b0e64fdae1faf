"""Rate limiter interfaces.

The pipeline depends on this abstraction (not the concrete implementation)
so the in-memory store can be swapped for a shared one (e.g., Redis) later.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max attempts per window.
        remaining: Remaining attempts in the window after this call (0 when blocked).
        retry_after_seconds: Seconds until a slot frees up when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None = None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def check(self, key: str) -> RateLimitResult:
        """Check the budget for ``key`` and record the attempt when allowed.

        Check-and-record is a single atomic step for callers sharing a key.

        Args:
            key: Client identity (e.g., IP address).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> int:
        """Drop state for keys that have been idle past the retention horizon.

        Returns:
            Number of keys removed.
        """
        raise NotImplementedError
