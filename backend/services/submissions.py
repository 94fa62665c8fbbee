"""Submission intake and analysis lookup.

PRIVACY: Source text is stored for re-analysis but never logged or
returned by listing endpoints.
"""

from __future__ import annotations

import asyncio

from app.exceptions import AnalysisNotReadyError, SubmissionNotFoundError, ValidationError
from app.logging_config import get_logger
from app.metrics import SUBMISSIONS_TOTAL
from services.analysis_worker import AnalysisWorkerPool
from services.code_features import normalize_language
from services.pattern_detector import PatternDetector
from services.profile_aggregator import ProfileAggregator
from services.schemas import (
    Analysis,
    ProcessingStatus,
    Submission,
    SubmissionState,
)
from services.store import PatternStore

logger = get_logger(__name__)


class SubmissionService:
    def __init__(
        self,
        store: PatternStore,
        pool: AnalysisWorkerPool,
        detector: PatternDetector,
        aggregator: ProfileAggregator,
        max_source_bytes: int = 100_000,
    ) -> None:
        self.store = store
        self.pool = pool
        self.detector = detector
        self.aggregator = aggregator
        self.max_source_bytes = max_source_bytes

    async def submit(self, user_id: str, language: str, source_code: str) -> Submission:
        """Store a submission and queue it for analysis.

        Unsupported languages are accepted; their analysis reports N/A.

        Raises:
            ValidationError: if the source is larger than max_source_bytes.
        """
        size = len(source_code.encode("utf-8"))
        if size > self.max_source_bytes:
            raise ValidationError(
                "Source code is too large",
                details={"max_bytes": self.max_source_bytes, "size_bytes": size},
            )

        submission = Submission(user_id=user_id, language=language, source_text=source_code)
        await self.store.add_submission(submission)
        await self.store.set_state(submission.id, SubmissionState())
        await self.pool.enqueue(submission.id)

        SUBMISSIONS_TOTAL.labels(language=normalize_language(language) or "other").inc()
        logger.info(
            "submission_received",
            submission_id=submission.id,
            user_id=user_id,
            language=language,
            size_bytes=size,
        )
        return submission

    async def list_submissions(self, user_id: str) -> list[Submission]:
        return await self.store.list_submissions(user_id)

    async def get_analysis(self, submission_id: str) -> Analysis:
        """Analysis for a submission.

        Raises:
            SubmissionNotFoundError: unknown submission id.
            AnalysisNotReadyError: still pending, or processing failed.
        """
        submission = await self.store.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)

        state = await self.store.get_state(submission_id) or SubmissionState()
        if state.status != ProcessingStatus.COMPLETED:
            raise AnalysisNotReadyError(submission_id, state.status.value, state.error)

        analysis = await self.store.get_analysis(submission_id)
        if analysis is None:
            raise AnalysisNotReadyError(submission_id, ProcessingStatus.PENDING.value)
        return analysis

    async def reanalyze_user(self, user_id: str) -> int:
        """Re-run detection on every submission of a user and rebuild the profile.

        Returns the number of submissions re-analyzed.
        """
        submissions = await self.store.list_submissions(user_id)
        analyses = [
            await asyncio.to_thread(
                self.detector.analyze,
                submission.source_text,
                submission.language,
                submission.id,
            )
            for submission in submissions
        ]

        async with self.aggregator.user_lock(user_id):
            for analysis in analyses:
                await self.store.save_analysis(analysis)
            await self.aggregator.refresh_profile_locked(user_id)
            for submission in submissions:
                await self.store.set_state(
                    submission.id, SubmissionState(status=ProcessingStatus.COMPLETED)
                )

        logger.info("user_reanalyzed", user_id=user_id, submissions=len(submissions))
        return len(submissions)
