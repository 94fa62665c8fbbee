"""Weighted Jaccard similarity between pattern profiles.

    similarity(a, b) = sum(min(a[p], b[p])) / sum(max(a[p], b[p]))

over the union of patterns with positive weight in either profile. The
measure is symmetric and bounded to [0, 1]; identical non-empty profiles
score 1.0 and profiles with nothing in common score 0.0.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from datetime import datetime

from app.exceptions import BuildCancelledError
from services.schemas import SimilarityEdge, UserPatternProfile, utcnow


def weighted_jaccard(a: Mapping[str, int], b: Mapping[str, int]) -> float | None:
    """Similarity of two weight maps, or None when both are empty."""
    union = {p for p, w in a.items() if w > 0} | {p for p, w in b.items() if w > 0}
    if not union:
        return None
    numerator = 0
    denominator = 0
    for pattern in union:
        wa = max(a.get(pattern, 0), 0)
        wb = max(b.get(pattern, 0), 0)
        numerator += min(wa, wb)
        denominator += max(wa, wb)
    return numerator / denominator


def similarity_edge(
    a: UserPatternProfile,
    b: UserPatternProfile,
    created_at: datetime | None = None,
) -> SimilarityEdge | None:
    """Canonical edge between two profiles, or None if neither has patterns."""
    if a.user_id == b.user_id:
        return None
    if b.user_id < a.user_id:
        a, b = b, a
    score = weighted_jaccard(a.weights, b.weights)
    if score is None:
        return None
    a_patterns = a.positive_patterns()
    b_patterns = b.positive_patterns()
    shared = a_patterns & b_patterns
    return SimilarityEdge(
        user_a=a.user_id,
        user_b=b.user_id,
        similarity=score,
        shared_patterns=shared,
        total_patterns=len(shared),
        user_a_patterns=a_patterns,
        user_b_patterns=b_patterns,
        created_at=created_at or utcnow(),
    )


def compute_edges(
    profiles: Sequence[UserPatternProfile],
    min_similarity: float = 0.0,
    cancelled: threading.Event | None = None,
    created_at: datetime | None = None,
) -> list[SimilarityEdge]:
    """All pairwise edges between non-empty profiles.

    Profiles are ordered by user id so the output is deterministic. The
    cancel flag is checked once per row.

    Raises:
        BuildCancelledError: if `cancelled` is set mid-computation.
    """
    created_at = created_at or utcnow()
    ordered = sorted((p for p in profiles if not p.is_empty), key=lambda p: p.user_id)
    edges: list[SimilarityEdge] = []
    for i, a in enumerate(ordered):
        if cancelled is not None and cancelled.is_set():
            raise BuildCancelledError()
        for b in ordered[i + 1 :]:
            edge = similarity_edge(a, b, created_at)
            if edge is not None and edge.similarity >= min_similarity:
                edges.append(edge)
    return edges
