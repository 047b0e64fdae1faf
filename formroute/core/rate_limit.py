"""Rate limiting wiring for the HTTP layer.

This module builds the limiter from settings, derives the client identity used
as the limiter key, and runs the periodic sweep that bounds memory growth.

Rate limiting strategy:
- Sliding window per client identity (IP-derived), shared across all forms.
- Identity is the first X-Forwarded-For hop, then X-Real-IP, then the peer.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging

from fastapi import Request

from formroute.adapters.rate_limit.base import AbstractRateLimiter
from formroute.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from formroute.core.config import AppSettings

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "127.0.0.1"


def build_rate_limiter(app_settings: AppSettings) -> AbstractRateLimiter:
    """Create the process-wide limiter from configuration."""

    return InMemorySlidingWindowRateLimiter(
        limit=app_settings.rate_limit_requests,
        window_seconds=app_settings.rate_limit_window_seconds,
        retention_seconds=max(
            app_settings.rate_limit_retention_seconds,
            app_settings.rate_limit_window_seconds,
        ),
    )


def get_client_ip(request: Request) -> str:
    """Derive the client identity for a request.

    Args:
        request: FastAPI request.

    Returns:
        str: First forwarded-for address, the real-IP header, the transport
            peer address, or ``127.0.0.1`` when none is available.
    """

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return DEFAULT_CLIENT_IP


def hash_client_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def run_rate_limit_sweeper(limiter: AbstractRateLimiter, interval_seconds: float) -> None:
    """Periodically drop idle rate-limit buckets until cancelled.

    Args:
        limiter: Limiter whose idle keys are swept.
        interval_seconds: Delay between sweeps.
    """

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = limiter.sweep()
        except Exception:
            logger.exception("rate_limit.sweep_failed")
            continue
        if removed:
            logger.info("rate_limit.swept", extra={"removed_keys": removed})
