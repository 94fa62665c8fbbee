"""Single-flight guard for similarity graph builds.

At most one build runs at a time. A build starts by taking the mutex
(non-blocking; a held mutex means the caller is rejected), computes its
edges without holding any other lock, then either commits a complete
snapshot or aborts. Both paths release the mutex.

Two mutexes are provided:

- LocalBuildMutex for a single process (one event loop).
- RedisBuildMutex for several API/worker processes sharing one Redis.
  It uses SET NX PX with a random owner token; release deletes the key
  only while it still holds that token.
"""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from app.exceptions import GraphBuildError
from app.logging_config import get_logger
from services.schemas import GraphSnapshot, SimilarityEdge, utcnow
from services.store import PatternStore

logger = get_logger(__name__)


class BuildMutex(ABC):
    """Non-blocking mutual exclusion with owner tokens."""

    @abstractmethod
    async def try_acquire(self) -> str | None:
        """Return an owner token, or None if the mutex is held."""

    @abstractmethod
    async def release(self, token: str) -> None:
        """Release if `token` still owns the mutex; otherwise do nothing."""

    @abstractmethod
    async def owns(self, token: str) -> bool: ...


class LocalBuildMutex(BuildMutex):
    def __init__(self) -> None:
        self._owner: str | None = None

    async def try_acquire(self) -> str | None:
        if self._owner is not None:
            return None
        self._owner = secrets.token_hex(16)
        return self._owner

    async def release(self, token: str) -> None:
        if self._owner == token:
            self._owner = None

    async def owns(self, token: str) -> bool:
        return self._owner == token

    @property
    def locked(self) -> bool:
        return self._owner is not None


class RedisBuildMutex(BuildMutex):
    def __init__(self, redis: aioredis.Redis, key: str, ttl_seconds: int = 120) -> None:
        self.redis = redis
        self.key = key
        self.ttl_ms = ttl_seconds * 1000

    async def try_acquire(self) -> str | None:
        token = secrets.token_hex(16)
        acquired = await self.redis.set(self.key, token, nx=True, px=self.ttl_ms)
        return token if acquired else None

    async def release(self, token: str) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.key)
                holder = await pipe.get(self.key)
                if holder is None or _text(holder) != token:
                    await pipe.unwatch()
                    return
                pipe.multi()
                pipe.delete(self.key)
                await pipe.execute()
            except WatchError:
                # Key changed between GET and EXEC: expired and re-acquired elsewhere.
                logger.warning("build_lock_release_raced", key=self.key)

    async def owns(self, token: str) -> bool:
        holder = await self.redis.get(self.key)
        return holder is not None and _text(holder) == token


def _text(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value


@dataclass(frozen=True)
class BuildTicket:
    """Proof that the caller holds the build mutex."""

    token: str
    generation: int
    started_at: datetime = field(default_factory=utcnow)


class BuildGate:
    """try_begin_build / commit / abort over a BuildMutex and a store."""

    def __init__(self, store: PatternStore, mutex: BuildMutex) -> None:
        self.store = store
        self.mutex = mutex

    async def try_begin_build(self) -> BuildTicket | None:
        token = await self.mutex.try_acquire()
        if token is None:
            return None
        try:
            current = await self.store.current_generation()
        except Exception:
            await self.mutex.release(token)
            raise
        return BuildTicket(token=token, generation=current + 1)

    async def commit(
        self,
        ticket: BuildTicket,
        edges: Iterable[SimilarityEdge],
        user_count: int = 0,
    ) -> GraphSnapshot:
        """Publish a complete snapshot, then release the mutex."""
        try:
            if not await self.mutex.owns(ticket.token):
                raise GraphBuildError("Build lock expired before commit", reason="lock_lost")
            snapshot = GraphSnapshot(
                generation=ticket.generation,
                edges=tuple(edges),
                user_count=user_count,
            )
            await self.store.publish_snapshot(snapshot)
            return snapshot
        finally:
            await self.mutex.release(ticket.token)

    async def abort(self, ticket: BuildTicket) -> None:
        await self.mutex.release(ticket.token)
