"""Tests for the build mutexes and the single-flight build gate."""

import pytest

from app.exceptions import GraphBuildError
from services.build_gate import BuildGate, LocalBuildMutex, RedisBuildMutex
from services.schemas import GraphSnapshot, SimilarityEdge


@pytest.fixture(params=["local", "redis"])
async def mutex(request, fake_redis):
    if request.param == "local":
        return LocalBuildMutex()
    return RedisBuildMutex(fake_redis, key="test:graph:build_lock", ttl_seconds=30)


class TestBuildMutex:
    @pytest.mark.asyncio
    async def test_only_one_holder(self, mutex):
        token = await mutex.try_acquire()
        assert token is not None
        assert await mutex.try_acquire() is None
        assert await mutex.owns(token)

    @pytest.mark.asyncio
    async def test_release_frees(self, mutex):
        token = await mutex.try_acquire()
        await mutex.release(token)
        assert not await mutex.owns(token)
        assert await mutex.try_acquire() is not None

    @pytest.mark.asyncio
    async def test_release_with_foreign_token_is_ignored(self, mutex):
        token = await mutex.try_acquire()
        await mutex.release("not-the-owner")
        assert await mutex.owns(token)
        assert await mutex.try_acquire() is None

    @pytest.mark.asyncio
    async def test_redis_lock_expires(self, fake_redis):
        mutex = RedisBuildMutex(fake_redis, key="test:graph:build_lock", ttl_seconds=30)
        await mutex.try_acquire()
        ttl = await fake_redis.pttl("test:graph:build_lock")
        assert 0 < ttl <= 30_000


class TestBuildGate:
    @pytest.mark.asyncio
    async def test_generation_follows_current(self, memory_store):
        await memory_store.publish_snapshot(GraphSnapshot(generation=4, edges=()))
        gate = BuildGate(memory_store, LocalBuildMutex())
        ticket = await gate.try_begin_build()
        assert ticket.generation == 5

    @pytest.mark.asyncio
    async def test_second_build_is_rejected(self, memory_store):
        gate = BuildGate(memory_store, LocalBuildMutex())
        assert await gate.try_begin_build() is not None
        assert await gate.try_begin_build() is None

    @pytest.mark.asyncio
    async def test_commit_publishes_and_releases(self, memory_store):
        mutex = LocalBuildMutex()
        gate = BuildGate(memory_store, mutex)
        ticket = await gate.try_begin_build()
        edge = SimilarityEdge(user_a="alice", user_b="bob", similarity=0.5)

        snapshot = await gate.commit(ticket, [edge], user_count=2)

        assert snapshot.generation == 1
        assert snapshot.edges == (edge,)
        assert await memory_store.current_generation() == 1
        assert not mutex.locked

    @pytest.mark.asyncio
    async def test_abort_releases_without_publishing(self, memory_store):
        mutex = LocalBuildMutex()
        gate = BuildGate(memory_store, mutex)
        ticket = await gate.try_begin_build()
        await gate.abort(ticket)
        assert not mutex.locked
        assert await memory_store.current_snapshot() is None

    @pytest.mark.asyncio
    async def test_commit_after_lock_loss_fails(self, memory_store, fake_redis):
        mutex = RedisBuildMutex(fake_redis, key="test:graph:build_lock")
        gate = BuildGate(memory_store, mutex)
        ticket = await gate.try_begin_build()
        # Simulate expiry and takeover by another process
        await fake_redis.set("test:graph:build_lock", "someone-else")

        with pytest.raises(GraphBuildError) as exc_info:
            await gate.commit(ticket, [])

        assert exc_info.value.reason == "lock_lost"
        assert await memory_store.current_snapshot() is None
        assert await fake_redis.get("test:graph:build_lock") == "someone-else"
