"""Tests for per-user profile aggregation."""

import asyncio

import pytest

from app.exceptions import ProfileUpdateError, StoreContentionError
from conftest import make_analysis
from services.profile_aggregator import ProfileAggregator, fold_weights, rebuild_profile
from services.schemas import Submission
from services.store import InMemoryPatternStore


class FlakyStore(InMemoryPatternStore):
    """Loses the first `failures` compare-and-set writes."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def save_profile(self, profile, expected_version):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise StoreContentionError(f"profile:{profile.user_id}")
        return await super().save_profile(profile, expected_version)


@pytest.fixture
def aggregator(memory_store):
    return ProfileAggregator(memory_store, max_attempts=3, backoff_base=0.001, backoff_max=0.01)


class TestFolding:
    def test_fold_counts_analyses_per_pattern(self):
        analyses = [
            make_analysis("s1", "sorting", "greedy"),
            make_analysis("s2", "sorting"),
            make_analysis("s3"),
        ]
        assert fold_weights(analyses) == {"sorting": 2, "greedy": 1}

    def test_rebuild_is_order_independent(self):
        analyses = [
            make_analysis("s1", "sorting", "greedy"),
            make_analysis("s2", "recursion"),
            make_analysis("s3", "sorting"),
        ]
        forward = rebuild_profile("alice", analyses)
        backward = rebuild_profile("alice", list(reversed(analyses)))
        assert forward.weights == backward.weights


class TestProfileAggregator:
    @pytest.mark.asyncio
    async def test_first_update_creates_profile(self, aggregator, memory_store):
        profile = await aggregator.update_profile("alice", make_analysis("s1", "sorting"))
        assert profile.weights == {"sorting": 1}
        assert profile.version == 1
        assert (await memory_store.get_profile("alice")).weights == {"sorting": 1}

    @pytest.mark.asyncio
    async def test_updates_accumulate(self, aggregator):
        await aggregator.update_profile("alice", make_analysis("s1", "sorting", "greedy"))
        profile = await aggregator.update_profile("alice", make_analysis("s2", "sorting"))
        assert profile.weights == {"sorting": 2, "greedy": 1}
        assert profile.version == 2

    @pytest.mark.asyncio
    async def test_empty_analysis_keeps_profile_empty(self, aggregator):
        profile = await aggregator.update_profile("alice", make_analysis("s1"))
        assert profile.is_empty

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(self, aggregator):
        analyses = [make_analysis(f"s{i}", "sorting") for i in range(25)]
        await asyncio.gather(*(aggregator.update_profile("alice", a) for a in analyses))
        profile = await aggregator.store.get_profile("alice")
        assert profile.weights == {"sorting": 25}
        assert profile.version == 25

    @pytest.mark.asyncio
    async def test_different_users_are_independent(self, aggregator):
        await asyncio.gather(
            aggregator.update_profile("alice", make_analysis("s1", "sorting")),
            aggregator.update_profile("bob", make_analysis("s2", "recursion")),
        )
        assert (await aggregator.store.get_profile("alice")).weights == {"sorting": 1}
        assert (await aggregator.store.get_profile("bob")).weights == {"recursion": 1}

    @pytest.mark.asyncio
    async def test_contention_is_retried(self):
        store = FlakyStore(failures=2)
        aggregator = ProfileAggregator(store, max_attempts=3, backoff_base=0.001)
        profile = await aggregator.update_profile("alice", make_analysis("s1", "sorting"))
        assert profile.weights == {"sorting": 1}
        assert store.attempts == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        store = FlakyStore(failures=10)
        aggregator = ProfileAggregator(store, max_attempts=3, backoff_base=0.001)
        with pytest.raises(ProfileUpdateError) as exc_info:
            await aggregator.update_profile("alice", make_analysis("s1", "sorting"))
        assert exc_info.value.details == {"attempts": 3}
        assert store.attempts == 3
        assert await store.get_profile("alice") is None

    @pytest.mark.asyncio
    async def test_refresh_matches_incremental_updates(self, aggregator, memory_store):
        for patterns in [("sorting",), ("sorting", "greedy"), ("recursion",)]:
            sub = Submission(user_id="alice", language="python", source_text="pass")
            await memory_store.add_submission(sub)
            analysis = make_analysis(sub.id, *patterns)
            await memory_store.save_analysis(analysis)
            await aggregator.update_profile("alice", analysis)

        incremental = await memory_store.get_profile("alice")
        refreshed = await aggregator.refresh_profile("alice")
        assert refreshed.weights == incremental.weights
        assert refreshed.version == incremental.version + 1

    @pytest.mark.asyncio
    async def test_user_locks_are_dropped_when_idle(self, aggregator):
        updates = [
            aggregator.update_profile(f"user{i % 4}", make_analysis(f"s{i}", "sorting"))
            for i in range(20)
        ]
        await asyncio.gather(*updates)
        assert aggregator._locks == {}
        assert not aggregator._lock_holders

    @pytest.mark.asyncio
    async def test_user_lock_holds_off_profile_writes(self, aggregator, memory_store):
        async with aggregator.user_lock("alice"):
            pending = asyncio.create_task(
                aggregator.update_profile("alice", make_analysis("s1", "sorting"))
            )
            await asyncio.sleep(0.01)
            assert not pending.done()
            assert await memory_store.get_profile("alice") is None
        await pending
        assert (await memory_store.get_profile("alice")).weights == {"sorting": 1}
        assert aggregator._locks == {}

    def test_backoff_is_capped(self, aggregator):
        assert aggregator._backoff_delay(0) <= 0.0011
        assert aggregator._backoff_delay(20) == aggregator.backoff_max
