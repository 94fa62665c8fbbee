"""Recommendation reader over the current similarity graph snapshot.

Reads never block on a running build: they resolve the current
generation once and read only from it.
"""

from __future__ import annotations

from app.logging_config import get_logger
from services.schemas import SimilarityEdge
from services.store import PatternStore

logger = get_logger(__name__)


def rank_edges(user_id: str, edges: list[SimilarityEdge]) -> list[SimilarityEdge]:
    """Similarity desc, then created_at desc, then the other user's id asc."""
    ordered = sorted(edges, key=lambda e: e.other_user(user_id))
    ordered.sort(key=lambda e: e.created_at, reverse=True)
    ordered.sort(key=lambda e: e.similarity, reverse=True)
    return ordered


class RecommendationReader:
    def __init__(self, store: PatternStore, default_limit: int | None = None) -> None:
        self.store = store
        self.default_limit = default_limit

    async def get_recommendations(
        self, user_id: str, limit: int | None = None
    ) -> list[SimilarityEdge]:
        """Edges touching `user_id`, most similar first. Empty before any build."""
        edges = [e for e in await self.store.edges_for_user(user_id) if e.touches(user_id)]
        ranked = rank_edges(user_id, edges)
        limit = limit if limit is not None else self.default_limit
        if limit is not None:
            ranked = ranked[: max(limit, 0)]
        logger.debug("recommendations_served", user_id=user_id, count=len(ranked))
        return ranked
