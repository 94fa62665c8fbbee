"""Background analysis of submitted code.

A fixed number of asyncio workers drain a bounded queue of submission
ids. Each job runs the detector in a thread, stores the analysis, folds
it into the submitter's profile and marks the submission completed.
The last three steps run under the submitter's profile lock so a
concurrent re-analysis cannot count the same submission twice.
If the profile update fails the submission is marked failed and its
analysis is reported as not ready.
"""

from __future__ import annotations

import asyncio

from app.exceptions import ProfileUpdateError
from app.logging_config import get_logger
from app.metrics import QUEUE_DEPTH
from services.pattern_detector import PatternDetector
from services.profile_aggregator import ProfileAggregator
from services.schemas import ProcessingStatus, SubmissionState
from services.store import PatternStore

logger = get_logger(__name__)


class AnalysisWorkerPool:
    def __init__(
        self,
        store: PatternStore,
        detector: PatternDetector,
        aggregator: ProfileAggregator,
        workers: int = 4,
        queue_size: int = 1000,
    ) -> None:
        self.store = store
        self.detector = detector
        self.aggregator = aggregator
        self.workers = max(1, workers)
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(i), name=f"analysis-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("analysis_workers_started", workers=self.workers)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("analysis_workers_stopped", pending=self._queue.qsize())

    async def enqueue(self, submission_id: str) -> None:
        """Queue a submission. Waits while the queue is full."""
        await self._queue.put(submission_id)
        QUEUE_DEPTH.set(self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued submission has been processed."""
        await self._queue.join()

    async def _run(self, index: int) -> None:
        while True:
            submission_id = await self._queue.get()
            QUEUE_DEPTH.set(self._queue.qsize())
            try:
                await self.process(submission_id)
            except Exception:
                logger.exception(
                    "analysis_job_failed", submission_id=submission_id, worker=index
                )
                await self.store.set_state(
                    submission_id,
                    SubmissionState(status=ProcessingStatus.FAILED, error="INTERNAL_ERROR"),
                )
            finally:
                self._queue.task_done()

    async def process(self, submission_id: str) -> None:
        """Analyze one submission and fold it into its owner's profile."""
        submission = await self.store.get_submission(submission_id)
        if submission is None:
            logger.warning("analysis_submission_missing", submission_id=submission_id)
            return

        state = await self.store.get_state(submission_id)
        if state is not None and state.status == ProcessingStatus.COMPLETED:
            logger.debug("analysis_already_completed", submission_id=submission_id)
            return

        analysis = await asyncio.to_thread(
            self.detector.analyze, submission.source_text, submission.language, submission.id
        )
        async with self.aggregator.user_lock(submission.user_id):
            # A re-analysis may have completed this submission while it ran.
            state = await self.store.get_state(submission_id)
            if state is not None and state.status == ProcessingStatus.COMPLETED:
                logger.debug("analysis_already_completed", submission_id=submission_id)
                return

            await self.store.save_analysis(analysis)
            try:
                await self.aggregator.update_profile_locked(submission.user_id, analysis)
            except ProfileUpdateError as e:
                await self.store.set_state(
                    submission_id,
                    SubmissionState(status=ProcessingStatus.FAILED, error=e.code),
                )
                return

            await self.store.set_state(
                submission_id, SubmissionState(status=ProcessingStatus.COMPLETED)
            )
        logger.info(
            "submission_analyzed",
            submission_id=submission_id,
            user_id=submission.user_id,
            patterns=len(analysis.patterns),
        )
