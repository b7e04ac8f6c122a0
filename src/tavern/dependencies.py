"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from tavern.database import get_session as _get_session
from tavern.redis_client import get_optional_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client, or None when Redis is not initialized, as a FastAPI dependency."""
    yield get_optional_redis()
