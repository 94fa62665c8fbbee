"""Per-user pattern profile aggregation.

A profile counts, per pattern, how many of a user's analyses contain it.
Incremental updates and full rebuilds produce identical weights for any
order of analyses, because both are a sum over the same multiset.

Writes are read-modify-write against the store with compare-and-set on the
profile version. Within one process an asyncio.Lock per user serializes
updates, and callers that must keep other store writes atomic with a
profile write hold the same lock through `user_lock`. Across processes the
version check catches lost races, which are retried with bounded
exponential backoff.
"""

from __future__ import annotations

import asyncio
import random
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager

from app.exceptions import ProfileUpdateError, StoreContentionError
from app.logging_config import get_logger
from app.metrics import PROFILE_UPDATE_RETRIES
from services.schemas import Analysis, UserPatternProfile, utcnow
from services.store import PatternStore

logger = get_logger(__name__)


def fold_weights(analyses: Iterable[Analysis]) -> dict[str, int]:
    counts: Counter[str] = Counter()
    for analysis in analyses:
        counts.update(analysis.patterns)
    return dict(counts)


def rebuild_profile(user_id: str, analyses: Iterable[Analysis]) -> UserPatternProfile:
    """Pure fold of a user's analyses into a fresh, unversioned profile."""
    return UserPatternProfile(user_id=user_id, weights=fold_weights(analyses))


class ProfileAggregator:
    """Maintains UserPatternProfile records in a PatternStore."""

    def __init__(
        self,
        store: PatternStore,
        max_attempts: int = 5,
        backoff_base: float = 0.05,
        backoff_max: float = 1.0,
    ) -> None:
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: Counter[str] = Counter()

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the per-user write lock. Not reentrant.

        Locks are dropped once no task holds or waits on them.
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_holders[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                del self._locks[user_id]

    async def update_profile(self, user_id: str, analysis: Analysis) -> UserPatternProfile:
        """Add one analysis to a user's profile."""
        async with self.user_lock(user_id):
            return await self.update_profile_locked(user_id, analysis)

    async def update_profile_locked(
        self, user_id: str, analysis: Analysis
    ) -> UserPatternProfile:
        """update_profile for a caller already holding user_lock(user_id)."""

        async def apply(current: UserPatternProfile | None) -> UserPatternProfile:
            weights = dict(current.weights) if current else {}
            for pattern in analysis.patterns:
                weights[pattern] = weights.get(pattern, 0) + 1
            return UserPatternProfile(user_id=user_id, weights=weights, updated_at=utcnow())

        return await self._write(user_id, apply)

    async def refresh_profile(self, user_id: str) -> UserPatternProfile:
        """Recompute a profile from every stored analysis of the user."""
        async with self.user_lock(user_id):
            return await self.refresh_profile_locked(user_id)

    async def refresh_profile_locked(self, user_id: str) -> UserPatternProfile:
        """refresh_profile for a caller already holding user_lock(user_id)."""

        async def rebuild(_current: UserPatternProfile | None) -> UserPatternProfile:
            analyses = await self.store.list_analyses_for_user(user_id)
            return rebuild_profile(user_id, analyses)

        return await self._write(user_id, rebuild)

    async def _write(
        self,
        user_id: str,
        build: Callable[[UserPatternProfile | None], Awaitable[UserPatternProfile]],
    ) -> UserPatternProfile:
        for attempt in range(self.max_attempts):
            current = await self.store.get_profile(user_id)
            expected = current.version if current else 0
            try:
                stored = await self.store.save_profile(await build(current), expected)
            except StoreContentionError:
                if attempt + 1 >= self.max_attempts:
                    break
                PROFILE_UPDATE_RETRIES.inc()
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "profile_update_retry",
                    user_id=user_id,
                    attempt=attempt + 1,
                    wait_seconds=wait,
                )
                await asyncio.sleep(wait)
                continue

            logger.debug("profile_updated", user_id=user_id, version=stored.version)
            return stored

        logger.error("profile_update_failed", user_id=user_id, attempts=self.max_attempts)
        raise ProfileUpdateError(attempts=self.max_attempts)

    def _backoff_delay(self, attempt: int) -> float:
        """min(base * 2^attempt + jitter, max)"""
        delay = self.backoff_base * (2**attempt)
        jitter = random.uniform(0, delay * 0.1)
        return min(delay + jitter, self.backoff_max)
