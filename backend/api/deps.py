"""Shared API dependencies.

Provides caller identity and engine components as injectable
FastAPI dependencies.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from app.dependencies import get_engine
from app.exceptions import UnauthorizedError
from services.engine import DevGraphEngine
from services.graph_builder import SimilarityGraphBuilder
from services.recommendations import RecommendationReader
from services.submissions import SubmissionService


def get_current_user_id(
    x_user_id: Optional[str] = Header(None),
) -> str:
    """Caller identity from the X-User-ID header.

    Authentication happens upstream; this service trusts the gateway
    to set the header.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthorizedError()
    return user_id


def get_submission_service(
    engine: DevGraphEngine = Depends(get_engine),
) -> SubmissionService:
    return engine.submissions


def get_graph_builder(
    engine: DevGraphEngine = Depends(get_engine),
) -> SimilarityGraphBuilder:
    return engine.builder


def get_recommendation_reader(
    engine: DevGraphEngine = Depends(get_engine),
) -> RecommendationReader:
    return engine.reader
