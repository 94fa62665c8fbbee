"""Similarity graph endpoints.

POST /api/v1/build-graph     - Rebuild the similarity graph
GET  /api/v1/recommendations - Most similar users for the caller
GET  /api/v1/graph/status    - Current generation and last build outcome
GET  /api/v1/graph/history   - Recent builds (when build history is enabled)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user_id, get_graph_builder, get_recommendation_reader
from app.dependencies import get_engine
from app.logging_config import get_logger
from db.session import get_session_factory
from services.build_history import recent_runs
from services.engine import DevGraphEngine
from services.graph_builder import SimilarityGraphBuilder
from services.recommendations import RecommendationReader

logger = get_logger(__name__)
router = APIRouter()


class BuildGraphResponse(BaseModel):
    message: str
    generation: int
    user_count: int
    edge_count: int
    built_at: datetime


class RecommendationResponse(BaseModel):
    user_a: str
    user_b: str
    matched_user_id: str
    similarity: float
    shared_patterns: list[str]
    total_patterns: int
    user_a_patterns: list[str]
    user_b_patterns: list[str]
    created_at: datetime


class GraphStatusResponse(BaseModel):
    current_generation: int
    status: dict[str, Any]


@router.post("/build-graph", response_model=BuildGraphResponse)
async def build_graph(
    builder: SimilarityGraphBuilder = Depends(get_graph_builder),
) -> BuildGraphResponse:
    """Rebuild the similarity graph from all current profiles.

    Answers 409 if a build is already running, 504 if the build timed
    out and 500 on any other failure. The previous graph stays current
    whenever a build does not complete.
    """
    snapshot = await builder.build_graph()
    return BuildGraphResponse(
        message="Similarity graph rebuilt",
        generation=snapshot.generation,
        user_count=snapshot.user_count,
        edge_count=len(snapshot.edges),
        built_at=snapshot.built_at,
    )


@router.get("/recommendations", response_model=list[RecommendationResponse])
async def get_recommendations(
    limit: Optional[int] = Query(None, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    reader: RecommendationReader = Depends(get_recommendation_reader),
) -> list[RecommendationResponse]:
    """Users most similar to the caller. Empty until the first build."""
    edges = await reader.get_recommendations(user_id, limit=limit)
    return [
        RecommendationResponse(
            user_a=e.user_a,
            user_b=e.user_b,
            matched_user_id=e.other_user(user_id),
            similarity=e.similarity,
            shared_patterns=sorted(e.shared_patterns),
            total_patterns=e.total_patterns,
            user_a_patterns=sorted(e.user_a_patterns),
            user_b_patterns=sorted(e.user_b_patterns),
            created_at=e.created_at,
        )
        for e in edges
    ]


@router.get("/graph/status", response_model=GraphStatusResponse)
async def graph_status(
    engine: DevGraphEngine = Depends(get_engine),
) -> GraphStatusResponse:
    """Current generation plus what this process knows about builds."""
    return GraphStatusResponse(
        current_generation=await engine.store.current_generation(),
        status=engine.builder.status.to_dict(),
    )


@router.get("/graph/history")
async def graph_history(
    limit: int = Query(20, ge=1, le=200),
    engine: DevGraphEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Recent builds, newest first. Empty when build history is disabled."""
    factory = get_session_factory()
    if not engine.history_enabled or factory is None:
        return []
    session: AsyncSession
    async with factory() as session:
        return await recent_runs(session, limit=limit)
