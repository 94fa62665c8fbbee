"""Application-level dependencies.

Holds the process-wide Redis connection pool and DevGraph engine, and
exposes them as FastAPI dependencies for injection into route handlers.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from app.config import StorageBackend, get_settings
from app.logging_config import get_logger
from services.engine import DevGraphEngine, build_engine

logger = get_logger(__name__)

# Global Redis connection pool (redis storage backend only)
_redis_pool: Optional[aioredis.Redis] = None

# Global engine
_engine: Optional[DevGraphEngine] = None


async def init_redis() -> None:
    """Initialize Redis connection pool."""
    global _redis_pool
    settings = get_settings()
    _redis_pool = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    # Test connection
    await _redis_pool.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


async def init_engine() -> DevGraphEngine:
    """Build the engine and start its analysis workers."""
    global _engine
    settings = get_settings()
    if settings.storage_backend == StorageBackend.REDIS:
        await init_redis()
        logger.info("redis_connected")
    _engine = await build_engine(settings, redis=_redis_pool)
    _engine.start()
    return _engine


async def close_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None
    await close_redis()


def get_engine() -> DevGraphEngine:
    """Get the engine as a FastAPI dependency."""
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine() first.")
    return _engine
