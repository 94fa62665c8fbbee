"""Tests for the submission service."""

import asyncio
import threading
import time

import pytest

from app.exceptions import AnalysisNotReadyError, SubmissionNotFoundError, ValidationError
from services.analysis_worker import AnalysisWorkerPool
from services.complexity import Complexity
from services.pattern_detector import PatternDetector
from services.profile_aggregator import ProfileAggregator
from services.schemas import ProcessingStatus
from services.submissions import SubmissionService

BINARY_SEARCH = """
def search(nums, target):
    lo, hi = 0, len(nums) - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        if nums[mid] == target:
            return mid
        if nums[mid] < target:
            lo = mid + 1
        else:
            hi = mid - 1
    return -1
"""



class SlowFirstCallDetector(PatternDetector):
    """Blocks its first analyze call for `delay` seconds."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self._first = threading.Lock()
        self._slowed = False

    def analyze(self, source_text, language, submission_id=""):
        with self._first:
            slow, self._slowed = not self._slowed, True
        if slow:
            time.sleep(self.delay)
        return super().analyze(source_text, language, submission_id)

async def _wait_for_analysis(service, submission_id):
    for _ in range(200):
        try:
            return await service.get_analysis(submission_id)
        except AnalysisNotReadyError:
            await asyncio.sleep(0.01)
    raise AssertionError("analysis did not complete")


class TestSubmissionService:
    @pytest.mark.asyncio
    async def test_submit_then_analysis(self, engine):
        service = engine.submissions
        sub = await service.submit("alice", "python", BINARY_SEARCH)
        assert sub.user_id == "alice"

        analysis = await _wait_for_analysis(service, sub.id)
        assert analysis.submission_id == sub.id
        assert "binary-search" in analysis.patterns
        assert analysis.time_complexity == Complexity.LOGARITHMIC

        profile = await engine.store.get_profile("alice")
        assert profile.weights["binary-search"] == 1

    @pytest.mark.asyncio
    async def test_empty_source_is_accepted(self, engine):
        sub = await engine.submissions.submit("alice", "python", "")
        analysis = await _wait_for_analysis(engine.submissions, sub.id)
        assert analysis.patterns == frozenset()
        assert analysis.time_complexity == Complexity.NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_unsupported_language_is_accepted(self, engine):
        sub = await engine.submissions.submit("alice", "brainfuck", "+++[>+<-]")
        analysis = await _wait_for_analysis(engine.submissions, sub.id)
        assert analysis.time_complexity == Complexity.NOT_APPLICABLE
        assert analysis.issues == "Unsupported language: brainfuck"

    @pytest.mark.asyncio
    async def test_oversized_source_is_rejected(self, engine):
        service = engine.submissions
        too_big = "x" * (service.max_source_bytes + 1)
        with pytest.raises(ValidationError) as exc_info:
            await service.submit("alice", "python", too_big)
        assert exc_info.value.status_code == 422
        assert await engine.store.list_submissions("alice") == []

    @pytest.mark.asyncio
    async def test_unknown_submission(self, engine):
        with pytest.raises(SubmissionNotFoundError):
            await engine.submissions.get_analysis("nope")

    @pytest.mark.asyncio
    async def test_pending_analysis_is_not_ready(self, test_settings):
        from services.engine import build_engine

        # Workers are not started, so the submission stays pending.
        engine = await build_engine(test_settings)
        try:
            sub = await engine.submissions.submit("alice", "python", BINARY_SEARCH)
            with pytest.raises(AnalysisNotReadyError) as exc_info:
                await engine.submissions.get_analysis(sub.id)
            assert exc_info.value.status_code == 202
            assert exc_info.value.details["status"] == ProcessingStatus.PENDING.value
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_list_submissions(self, engine):
        first = await engine.submissions.submit("alice", "python", "x = 1")
        second = await engine.submissions.submit("alice", "go", "package main")
        await engine.submissions.submit("bob", "python", "y = 2")

        listed = await engine.submissions.list_submissions("alice")
        assert {s.id for s in listed} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_reanalyze_rebuilds_profile(self, engine):
        service = engine.submissions
        for _ in range(2):
            sub = await service.submit("alice", "python", BINARY_SEARCH)
            await _wait_for_analysis(service, sub.id)

        count = await service.reanalyze_user("alice")

        assert count == 2
        profile = await engine.store.get_profile("alice")
        assert profile.weights["binary-search"] == 2

    @pytest.mark.asyncio
    async def test_reanalyze_during_worker_run_counts_once(self, memory_store):
        detector = SlowFirstCallDetector(delay=0.2)
        aggregator = ProfileAggregator(memory_store, backoff_base=0.001)
        pool = AnalysisWorkerPool(memory_store, detector, aggregator, workers=1)
        service = SubmissionService(memory_store, pool, detector, aggregator)

        sub = await service.submit("alice", "python", "xs.sort()")
        pool.start()
        try:
            # Let the worker enter its slow detection first.
            await asyncio.sleep(0.05)
            assert await service.reanalyze_user("alice") == 1
            await asyncio.wait_for(pool.join(), timeout=5)
        finally:
            await pool.stop()

        assert len(await memory_store.list_analyses_for_user("alice")) == 1
        profile = await memory_store.get_profile("alice")
        assert profile.weights["sorting"] == 1
        assert (await memory_store.get_state(sub.id)).status == ProcessingStatus.COMPLETED
