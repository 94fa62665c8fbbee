"""Tests for the pattern stores (in-memory and Redis)."""

from datetime import UTC, datetime, timedelta

import pytest

from app.exceptions import StoreContentionError
from conftest import make_analysis, make_profile
from services.redis_store import RedisPatternStore
from services.schemas import (
    GraphSnapshot,
    ProcessingStatus,
    SimilarityEdge,
    Submission,
    SubmissionState,
)
from services.store import InMemoryPatternStore


@pytest.fixture(params=["memory", "redis"])
async def store(request, fake_redis):
    if request.param == "memory":
        return InMemoryPatternStore()
    return RedisPatternStore(fake_redis, prefix="test", retained_generations=2)


def _edge(a: str, b: str, similarity: float) -> SimilarityEdge:
    return SimilarityEdge(
        user_a=a,
        user_b=b,
        similarity=similarity,
        shared_patterns=frozenset({"sorting"}),
        total_patterns=1,
        user_a_patterns=frozenset({"sorting"}),
        user_b_patterns=frozenset({"sorting", "greedy"}),
    )


class TestSubmissions:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        sub = Submission(user_id="alice", language="python", source_text="x = 1")
        await store.add_submission(sub)
        loaded = await store.get_submission(sub.id)
        assert loaded == sub
        assert await store.get_submission("missing") is None

    @pytest.mark.asyncio
    async def test_list_newest_first(self, store):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        subs = [
            Submission(
                user_id="alice",
                language="python",
                source_text="pass",
                created_at=base + timedelta(minutes=i),
            )
            for i in range(3)
        ]
        for sub in subs:
            await store.add_submission(sub)
        await store.add_submission(Submission(user_id="bob", language="go", source_text="x"))

        listed = await store.list_submissions("alice")
        assert [s.id for s in listed] == [s.id for s in reversed(subs)]
        assert await store.list_submissions("nobody") == []

    @pytest.mark.asyncio
    async def test_state(self, store):
        await store.set_state("s1", SubmissionState(status=ProcessingStatus.FAILED, error="X"))
        state = await store.get_state("s1")
        assert state.status == ProcessingStatus.FAILED
        assert state.error == "X"
        assert await store.get_state("s2") is None


class TestAnalyses:
    @pytest.mark.asyncio
    async def test_list_for_user(self, store):
        sub = Submission(user_id="alice", language="python", source_text="pass")
        await store.add_submission(sub)
        await store.save_analysis(make_analysis(sub.id, "sorting", "greedy"))

        analyses = await store.list_analyses_for_user("alice")
        assert len(analyses) == 1
        assert analyses[0].patterns == frozenset({"sorting", "greedy"})
        assert await store.list_analyses_for_user("bob") == []

    @pytest.mark.asyncio
    async def test_save_replaces(self, store):
        await store.save_analysis(make_analysis("s1", "sorting"))
        await store.save_analysis(make_analysis("s1", "recursion"))
        assert (await store.get_analysis("s1")).patterns == frozenset({"recursion"})


class TestProfiles:
    @pytest.mark.asyncio
    async def test_compare_and_set(self, store):
        stored = await store.save_profile(make_profile("alice", sorting=1), expected_version=0)
        assert stored.version == 1

        with pytest.raises(StoreContentionError):
            await store.save_profile(make_profile("alice", sorting=5), expected_version=0)

        updated = await store.save_profile(make_profile("alice", sorting=2), expected_version=1)
        assert updated.version == 2
        assert (await store.get_profile("alice")).weights == {"sorting": 2}

    @pytest.mark.asyncio
    async def test_list_profiles(self, store):
        await store.save_profile(make_profile("bob", recursion=1), expected_version=0)
        await store.save_profile(make_profile("alice", sorting=1), expected_version=0)
        assert sorted(p.user_id for p in await store.list_profiles()) == ["alice", "bob"]


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_empty_before_first_publish(self, store):
        assert await store.current_snapshot() is None
        assert await store.current_generation() == 0
        assert await store.edges_for_user("alice") == []

    @pytest.mark.asyncio
    async def test_publish_replaces_whole_generation(self, store):
        first = GraphSnapshot(generation=1, edges=(_edge("alice", "bob", 0.5),), user_count=2)
        await store.publish_snapshot(first)
        assert await store.current_generation() == 1
        assert [e.user_b for e in await store.edges_for_user("alice")] == ["bob"]

        second = GraphSnapshot(generation=2, edges=(_edge("alice", "carol", 0.9),), user_count=3)
        await store.publish_snapshot(second)
        assert await store.current_generation() == 2
        assert [e.user_b for e in await store.edges_for_user("alice")] == ["carol"]
        assert await store.edges_for_user("bob") == []

        current = await store.current_snapshot()
        assert current.generation == 2
        assert current.user_count == 3
        assert current.edges[0].user_b_patterns == frozenset({"sorting", "greedy"})

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestRedisGenerationRetention:
    @pytest.mark.asyncio
    async def test_old_generations_are_pruned(self, fake_redis):
        store = RedisPatternStore(fake_redis, prefix="test", retained_generations=2)
        for gen in range(1, 5):
            await store.publish_snapshot(
                GraphSnapshot(generation=gen, edges=(_edge("alice", "bob", 0.5),))
            )

        assert await fake_redis.lrange("test:graph:generations", 0, -1) == ["3", "4"]
        assert await fake_redis.exists("test:graph:1:edges") == 0
        assert await fake_redis.exists("test:graph:2:meta") == 0
        assert await fake_redis.exists("test:graph:4:edges") == 1
        assert await store.current_generation() == 4

    @pytest.mark.asyncio
    async def test_reader_skips_generation_pruned_mid_read(self, fake_redis, monkeypatch):
        store = RedisPatternStore(fake_redis, prefix="test", retained_generations=1)
        await store.publish_snapshot(
            GraphSnapshot(generation=1, edges=(_edge("alice", "bob", 0.5),), user_count=2)
        )
        resolved = await store._current_generation()
        await store.publish_snapshot(
            GraphSnapshot(generation=2, edges=(_edge("alice", "carol", 0.9),), user_count=3)
        )
        assert await fake_redis.exists("test:graph:1:meta") == 0

        real_resolve = store._current_generation
        stale: list[int] = []

        async def resolve_stale_once():
            return stale.pop() if stale else await real_resolve()

        monkeypatch.setattr(store, "_current_generation", resolve_stale_once)

        stale.append(resolved)
        assert [e.user_b for e in await store.edges_for_user("alice")] == ["carol"]

        stale.append(resolved)
        snapshot = await store.current_snapshot()
        assert snapshot.generation == 2
        assert snapshot.user_count == 3

    @pytest.mark.asyncio
    async def test_reader_gives_up_if_pointer_stays_stale(self, fake_redis, monkeypatch):
        store = RedisPatternStore(fake_redis, prefix="test", retained_generations=1)
        for gen in (1, 2):
            await store.publish_snapshot(
                GraphSnapshot(generation=gen, edges=(_edge("alice", "bob", 0.5),))
            )

        async def always_stale():
            return 1

        monkeypatch.setattr(store, "_current_generation", always_stale)
        with pytest.raises(StoreContentionError):
            await store.edges_for_user("alice")
