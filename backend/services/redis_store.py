"""Redis-backed pattern store.

Key layout (all under the configured prefix):

    {p}:submission:{id}            Submission JSON
    {p}:user:{uid}:submissions     list of submission ids, newest first
    {p}:state:{id}                 SubmissionState JSON
    {p}:analysis:{id}              Analysis JSON
    {p}:profile:{uid}              UserPatternProfile JSON
    {p}:profiles                   set of user ids with a profile
    {p}:graph:{gen}:meta           snapshot metadata JSON
    {p}:graph:{gen}:edges          JSON list of every edge
    {p}:graph:{gen}:by_user        hash uid -> JSON list of that user's edges
    {p}:graph:current              current generation number
    {p}:graph:generations          list of published generations, oldest first

Generations are immutable once written. A generation's keys and the
`current` pointer are written in one MULTI/EXEC, and readers fetch a
generation's meta together with the data they need in one MULTI/EXEC.
Old generations are pruned only after the pointer has moved past them, so
a reader that finds meta missing re-resolves `current` and reads again.
"""

from __future__ import annotations

import json
from datetime import datetime
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis
from redis.asyncio.client import Pipeline
from redis.exceptions import WatchError

from app.exceptions import StoreContentionError
from app.logging_config import get_logger
from services.schemas import (
    Analysis,
    GraphSnapshot,
    SimilarityEdge,
    Submission,
    SubmissionState,
    UserPatternProfile,
)
from services.store import PatternStore

logger = get_logger(__name__)

SNAPSHOT_READ_ATTEMPTS = 5


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _edges_json(edges: list[SimilarityEdge] | tuple[SimilarityEdge, ...]) -> str:
    return json.dumps([edge.model_dump(mode="json") for edge in edges])


def _edges_from_json(raw: Any) -> list[SimilarityEdge]:
    if not raw:
        return []
    return [SimilarityEdge.model_validate(item) for item in json.loads(raw)]


class RedisPatternStore(PatternStore):
    """PatternStore over a shared Redis instance."""

    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: str = "devgraph",
        retained_generations: int = 3,
    ) -> None:
        self.redis = redis
        self.prefix = prefix
        self.retained_generations = max(1, retained_generations)

    def _key(self, *parts: str | int) -> str:
        return ":".join([self.prefix, *(str(p) for p in parts)])

    # Submissions

    async def add_submission(self, submission: Submission) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self._key("submission", submission.id), submission.model_dump_json())
        pipe.lpush(self._key("user", submission.user_id, "submissions"), submission.id)
        await pipe.execute()

    async def get_submission(self, submission_id: str) -> Submission | None:
        raw = await self.redis.get(self._key("submission", submission_id))
        return Submission.model_validate_json(raw) if raw else None

    async def _submission_ids(self, user_id: str) -> list[str]:
        ids = await self.redis.lrange(self._key("user", user_id, "submissions"), 0, -1)
        return [_text(i) for i in ids]

    async def list_submissions(self, user_id: str) -> list[Submission]:
        ids = await self._submission_ids(user_id)
        if not ids:
            return []
        raws = await self.redis.mget([self._key("submission", i) for i in ids])
        subs = [Submission.model_validate_json(r) for r in raws if r]
        return sorted(subs, key=lambda s: s.created_at, reverse=True)

    async def set_state(self, submission_id: str, state: SubmissionState) -> None:
        await self.redis.set(self._key("state", submission_id), state.model_dump_json())

    async def get_state(self, submission_id: str) -> SubmissionState | None:
        raw = await self.redis.get(self._key("state", submission_id))
        return SubmissionState.model_validate_json(raw) if raw else None

    # Analyses

    async def save_analysis(self, analysis: Analysis) -> None:
        await self.redis.set(
            self._key("analysis", analysis.submission_id), analysis.model_dump_json()
        )

    async def get_analysis(self, submission_id: str) -> Analysis | None:
        raw = await self.redis.get(self._key("analysis", submission_id))
        return Analysis.model_validate_json(raw) if raw else None

    async def list_analyses_for_user(self, user_id: str) -> list[Analysis]:
        ids = await self._submission_ids(user_id)
        if not ids:
            return []
        raws = await self.redis.mget([self._key("analysis", i) for i in ids])
        return [Analysis.model_validate_json(r) for r in raws if r]

    # Profiles

    async def get_profile(self, user_id: str) -> UserPatternProfile | None:
        raw = await self.redis.get(self._key("profile", user_id))
        return UserPatternProfile.model_validate_json(raw) if raw else None

    async def save_profile(
        self, profile: UserPatternProfile, expected_version: int
    ) -> UserPatternProfile:
        key = self._key("profile", profile.user_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                current_version = json.loads(raw)["version"] if raw else 0
                if current_version != expected_version:
                    await pipe.unwatch()
                    raise StoreContentionError(key)
                stored = profile.model_copy(update={"version": expected_version + 1})
                pipe.multi()
                pipe.set(key, stored.model_dump_json())
                pipe.sadd(self._key("profiles"), profile.user_id)
                await pipe.execute()
            except WatchError as e:
                raise StoreContentionError(key) from e
        return stored

    async def list_profiles(self) -> list[UserPatternProfile]:
        members = await self.redis.smembers(self._key("profiles"))
        user_ids = sorted(_text(m) for m in members)
        if not user_ids:
            return []
        raws = await self.redis.mget([self._key("profile", uid) for uid in user_ids])
        return [UserPatternProfile.model_validate_json(r) for r in raws if r]

    # Similarity graph

    async def publish_snapshot(self, snapshot: GraphSnapshot) -> None:
        gen = snapshot.generation
        by_user: dict[str, list[SimilarityEdge]] = {}
        for edge in snapshot.edges:
            by_user.setdefault(edge.user_a, []).append(edge)
            by_user.setdefault(edge.user_b, []).append(edge)
        meta = {
            "generation": gen,
            "built_at": snapshot.built_at.isoformat(),
            "user_count": snapshot.user_count,
            "edge_count": len(snapshot.edges),
        }

        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self._key("graph", gen, "edges"), _edges_json(snapshot.edges))
        if by_user:
            pipe.hset(
                self._key("graph", gen, "by_user"),
                mapping={uid: _edges_json(edges) for uid, edges in by_user.items()},
            )
        pipe.set(self._key("graph", gen, "meta"), json.dumps(meta))
        pipe.set(self._key("graph", "current"), gen)
        pipe.rpush(self._key("graph", "generations"), gen)
        await pipe.execute()

        await self._prune_generations()

    async def _prune_generations(self) -> None:
        key = self._key("graph", "generations")
        generations = [int(_text(g)) for g in await self.redis.lrange(key, 0, -1)]
        stale = generations[: -self.retained_generations]
        if not stale:
            return
        pipe = self.redis.pipeline(transaction=True)
        for gen in stale:
            pipe.delete(
                self._key("graph", gen, "edges"),
                self._key("graph", gen, "by_user"),
                self._key("graph", gen, "meta"),
            )
        pipe.ltrim(key, len(stale), -1)
        await pipe.execute()
        logger.debug("graph_generations_pruned", pruned=stale)

    async def _current_generation(self) -> int | None:
        raw = await self.redis.get(self._key("graph", "current"))
        return int(_text(raw)) if raw is not None else None

    async def current_generation(self) -> int:
        return await self._current_generation() or 0

    async def _read_current(
        self, queue_reads: Callable[[Pipeline, int], Any]
    ) -> tuple[dict[str, Any], list[Any]] | None:
        """Resolve `current` and read that generation in one transaction.

        Returns (meta, results of the queued reads), or None before the first
        publish.

        Raises:
            StoreContentionError: if every attempt raced a prune.
        """
        for _ in range(SNAPSHOT_READ_ATTEMPTS):
            gen = await self._current_generation()
            if gen is None:
                return None
            pipe = self.redis.pipeline(transaction=True)
            pipe.get(self._key("graph", gen, "meta"))
            queue_reads(pipe, gen)
            meta_raw, *results = await pipe.execute()
            if meta_raw:
                return json.loads(meta_raw), results
            logger.debug("graph_generation_pruned_during_read", generation=gen)
        raise StoreContentionError(self._key("graph", "current"))

    async def current_snapshot(self) -> GraphSnapshot | None:
        read = await self._read_current(
            lambda pipe, gen: pipe.get(self._key("graph", gen, "edges"))
        )
        if read is None:
            return None
        meta, (edges_raw,) = read
        return GraphSnapshot(
            generation=meta["generation"],
            edges=tuple(_edges_from_json(edges_raw)),
            built_at=datetime.fromisoformat(meta["built_at"]),
            user_count=meta["user_count"],
        )

    async def edges_for_user(self, user_id: str) -> list[SimilarityEdge]:
        read = await self._read_current(
            lambda pipe, gen: pipe.hget(self._key("graph", gen, "by_user"), user_id)
        )
        if read is None:
            return []
        _meta, (raw,) = read
        return _edges_from_json(raw)

    # Lifecycle

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            logger.warning("redis_ping_failed")
            return False
