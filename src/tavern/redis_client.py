"""Redis connection pool and pub/sub publishing helper."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()

_pool: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_optional_redis() -> redis.Redis | None:
    """Get the Redis client, or None when Redis is not configured (FastAPI dependency)."""
    return _pool


async def publish_event(client: Any, channel: str, payload: dict[str, Any]) -> None:  # noqa: ANN401
    """Publish a JSON event on a pub/sub channel. Failures are logged, never raised."""
    if client is None:
        return
    try:
        await client.publish(channel, json.dumps(payload))
    except Exception:
        logger.warning("event_publish_failed", channel=channel, exc_info=True)
