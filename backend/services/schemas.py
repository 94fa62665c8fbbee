"""Domain records shared by the analysis pipeline and the similarity graph.

Submissions, analyses and edges are immutable once created. A profile is
replaced wholesale on every write and carries a version for
compare-and-set.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from services.complexity import Complexity


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_submission_id() -> str:
    return str(uuid.uuid4())


class ProcessingStatus(str, Enum):
    """Where a submission is in the analysis pipeline."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Submission(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_submission_id)
    user_id: str
    language: str
    source_text: str = Field(repr=False)
    created_at: datetime = Field(default_factory=utcnow)


class SubmissionState(BaseModel):
    """Mutable processing status kept beside an immutable submission."""

    model_config = ConfigDict(frozen=True)

    status: ProcessingStatus = ProcessingStatus.PENDING
    error: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class Analysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    submission_id: str
    patterns: frozenset[str] = frozenset()
    time_complexity: Complexity = Complexity.NOT_APPLICABLE
    space_complexity: Complexity = Complexity.NOT_APPLICABLE
    issues: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    @field_serializer("patterns")
    def _sorted_patterns(self, patterns: frozenset[str]) -> list[str]:
        return sorted(patterns)


class UserPatternProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    weights: dict[str, int] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_empty(self) -> bool:
        return not any(w > 0 for w in self.weights.values())

    def positive_patterns(self) -> frozenset[str]:
        return frozenset(p for p, w in self.weights.items() if w > 0)


class SimilarityEdge(BaseModel):
    """Undirected edge between two users, stored with user_a < user_b."""

    model_config = ConfigDict(frozen=True)

    user_a: str
    user_b: str
    similarity: float = Field(ge=0.0, le=1.0)
    shared_patterns: frozenset[str] = frozenset()
    total_patterns: int = 0
    user_a_patterns: frozenset[str] = frozenset()
    user_b_patterns: frozenset[str] = frozenset()
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _canonical_order(self) -> SimilarityEdge:
        if not self.user_a < self.user_b:
            raise ValueError("user_a must sort strictly before user_b")
        return self

    @field_serializer("shared_patterns", "user_a_patterns", "user_b_patterns")
    def _sorted_patterns(self, patterns: frozenset[str]) -> list[str]:
        return sorted(patterns)

    def touches(self, user_id: str) -> bool:
        return user_id in (self.user_a, self.user_b)

    def other_user(self, user_id: str) -> str:
        return self.user_b if user_id == self.user_a else self.user_a


@dataclass(frozen=True)
class GraphSnapshot:
    """One complete, immutable generation of the similarity graph."""

    generation: int
    edges: tuple[SimilarityEdge, ...]
    built_at: datetime = field(default_factory=utcnow)
    user_count: int = 0
    _by_user: dict[str, tuple[SimilarityEdge, ...]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[str, list[SimilarityEdge]] = {}
        for edge in self.edges:
            index.setdefault(edge.user_a, []).append(edge)
            index.setdefault(edge.user_b, []).append(edge)
        object.__setattr__(self, "_by_user", {k: tuple(v) for k, v in index.items()})

    def edges_for(self, user_id: str) -> tuple[SimilarityEdge, ...]:
        return self._by_user.get(user_id, ())
