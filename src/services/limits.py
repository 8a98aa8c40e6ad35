"""Per-organization request rate limiting."""
from __future__ import annotations

import logging
import time

import redis.asyncio as redis
from fastapi import HTTPException, status

from src.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


async def _get_client() -> redis.Redis:
    """Return a cached Redis client instance."""

    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            str(settings.REDIS_URI), decode_responses=True
        )
    return _redis_client


async def check_rate_limit(org_id: str, scope: str = "api") -> None:
    """Enforce a fixed one-minute window per organization and scope."""

    client = await _get_client()
    minute_window = int(time.time() // 60)
    key = f"rl:{scope}:{org_id}:{minute_window}"
    current = await client.incr(key)
    if current == 1:
        await client.expire(key, 60)
    if current > settings.RATE_LIMIT_RPM:
        logger.warning(f"Rate limit exceeded for org {org_id} ({scope})")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
        )


async def close_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
