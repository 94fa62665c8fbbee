"""Submission and analysis endpoints.

POST /api/v1/submit                   - Submit code for analysis
GET  /api/v1/submissions              - List the caller's submissions
GET  /api/v1/analysis/{submission_id} - Get the analysis of a submission
POST /api/v1/submissions/reanalyze    - Re-run detection on the caller's submissions
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from api.deps import get_current_user_id, get_submission_service
from app.logging_config import get_logger
from services.submissions import SubmissionService

logger = get_logger(__name__)
router = APIRouter()


class SubmitRequest(BaseModel):
    """Code submission."""

    language: str = Field(..., min_length=1, max_length=32, examples=["python"])
    source_code: str = Field(..., description="Source text to analyze")


class SubmitResponse(BaseModel):
    submission_id: str
    message: str


class SubmissionSummary(BaseModel):
    id: str
    language: str
    created_at: datetime


class AnalysisResponse(BaseModel):
    submission_id: str
    patterns: list[str]
    time_complexity: str
    space_complexity: str
    issues: str
    created_at: datetime


class ReanalyzeResponse(BaseModel):
    reanalyzed: int


@router.post("/submit", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_code(
    body: SubmitRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service),
) -> SubmitResponse:
    """Store a submission and queue it for analysis."""
    submission = await service.submit(user_id, body.language, body.source_code)
    return SubmitResponse(
        submission_id=submission.id,
        message="Submission received and queued for analysis",
    )


@router.get("/submissions", response_model=list[SubmissionSummary])
async def list_submissions(
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service),
) -> list[SubmissionSummary]:
    """The caller's submissions, newest first. Source text is not returned."""
    submissions = await service.list_submissions(user_id)
    return [
        SubmissionSummary(id=s.id, language=s.language, created_at=s.created_at)
        for s in submissions
    ]


@router.get("/analysis/{submission_id}", response_model=AnalysisResponse)
async def get_analysis(
    submission_id: str,
    _user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service),
) -> AnalysisResponse:
    """Analysis of one submission.

    Answers 202 while the analysis is pending or if processing failed,
    and 404 for unknown ids.
    """
    analysis = await service.get_analysis(submission_id)
    return AnalysisResponse(
        submission_id=analysis.submission_id,
        patterns=sorted(analysis.patterns),
        time_complexity=analysis.time_complexity.value,
        space_complexity=analysis.space_complexity.value,
        issues=analysis.issues,
        created_at=analysis.created_at,
    )


@router.post("/submissions/reanalyze", response_model=ReanalyzeResponse)
async def reanalyze_submissions(
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service),
) -> ReanalyzeResponse:
    """Re-run detection on every submission of the caller and rebuild their profile."""
    count = await service.reanalyze_user(user_id)
    return ReanalyzeResponse(reanalyzed=count)
