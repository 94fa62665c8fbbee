"""Pattern store: submissions, analyses, profiles and graph snapshots.

PatternStore is the seam between the engine and its storage. The
in-memory implementation serves single-process deployments and tests;
RedisPatternStore (services/redis_store.py) serves multi-process ones.

Snapshot publication is atomic in every implementation: readers see
either the previous generation or the new one, never a mix.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from app.exceptions import StoreContentionError
from services.schemas import (
    Analysis,
    GraphSnapshot,
    SimilarityEdge,
    Submission,
    SubmissionState,
    UserPatternProfile,
)


class PatternStore(ABC):
    """Abstract storage for the analysis pipeline and the similarity graph."""

    # Submissions

    @abstractmethod
    async def add_submission(self, submission: Submission) -> None: ...

    @abstractmethod
    async def get_submission(self, submission_id: str) -> Submission | None: ...

    @abstractmethod
    async def list_submissions(self, user_id: str) -> list[Submission]:
        """Submissions for a user, newest first."""

    @abstractmethod
    async def set_state(self, submission_id: str, state: SubmissionState) -> None: ...

    @abstractmethod
    async def get_state(self, submission_id: str) -> SubmissionState | None: ...

    # Analyses

    @abstractmethod
    async def save_analysis(self, analysis: Analysis) -> None:
        """Store an analysis, replacing any previous one for the submission."""

    @abstractmethod
    async def get_analysis(self, submission_id: str) -> Analysis | None: ...

    @abstractmethod
    async def list_analyses_for_user(self, user_id: str) -> list[Analysis]: ...

    # Profiles

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserPatternProfile | None: ...

    @abstractmethod
    async def save_profile(
        self, profile: UserPatternProfile, expected_version: int
    ) -> UserPatternProfile:
        """Compare-and-set write.

        Succeeds only if the stored version (0 when absent) equals
        expected_version. Returns the stored profile with its new version.

        Raises:
            StoreContentionError: if another writer got there first.
        """

    @abstractmethod
    async def list_profiles(self) -> list[UserPatternProfile]: ...

    # Similarity graph

    @abstractmethod
    async def publish_snapshot(self, snapshot: GraphSnapshot) -> None:
        """Make a snapshot current in one atomic step."""

    @abstractmethod
    async def current_snapshot(self) -> GraphSnapshot | None: ...

    async def current_generation(self) -> int:
        """Generation number of the current snapshot, 0 before the first build."""
        snapshot = await self.current_snapshot()
        return snapshot.generation if snapshot else 0

    @abstractmethod
    async def edges_for_user(self, user_id: str) -> list[SimilarityEdge]:
        """Edges touching a user in the current snapshot."""

    # Lifecycle

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


class InMemoryPatternStore(PatternStore):
    """Dict-backed store for a single event loop."""

    def __init__(self) -> None:
        self._submissions: dict[str, Submission] = {}
        self._by_user: dict[str, list[str]] = {}
        self._states: dict[str, SubmissionState] = {}
        self._analyses: dict[str, Analysis] = {}
        self._profiles: dict[str, UserPatternProfile] = {}
        self._snapshot: GraphSnapshot | None = None

    async def add_submission(self, submission: Submission) -> None:
        self._submissions[submission.id] = submission
        self._by_user.setdefault(submission.user_id, []).append(submission.id)

    async def get_submission(self, submission_id: str) -> Submission | None:
        return self._submissions.get(submission_id)

    async def list_submissions(self, user_id: str) -> list[Submission]:
        subs = [self._submissions[sid] for sid in self._by_user.get(user_id, [])]
        # Stable sort keeps insertion order among equal timestamps, reversed.
        return sorted(reversed(subs), key=lambda s: s.created_at, reverse=True)

    async def set_state(self, submission_id: str, state: SubmissionState) -> None:
        self._states[submission_id] = state

    async def get_state(self, submission_id: str) -> SubmissionState | None:
        return self._states.get(submission_id)

    async def save_analysis(self, analysis: Analysis) -> None:
        self._analyses[analysis.submission_id] = analysis

    async def get_analysis(self, submission_id: str) -> Analysis | None:
        return self._analyses.get(submission_id)

    async def list_analyses_for_user(self, user_id: str) -> list[Analysis]:
        return [
            self._analyses[sid] for sid in self._by_user.get(user_id, []) if sid in self._analyses
        ]

    async def get_profile(self, user_id: str) -> UserPatternProfile | None:
        return self._profiles.get(user_id)

    async def save_profile(
        self, profile: UserPatternProfile, expected_version: int
    ) -> UserPatternProfile:
        current = self._profiles.get(profile.user_id)
        current_version = current.version if current else 0
        if current_version != expected_version:
            raise StoreContentionError(f"profile:{profile.user_id}")
        stored = profile.model_copy(update={"version": expected_version + 1})
        self._profiles[profile.user_id] = stored
        return stored

    async def list_profiles(self) -> list[UserPatternProfile]:
        return list(self._profiles.values())

    async def publish_snapshot(self, snapshot: GraphSnapshot) -> None:
        self._snapshot = snapshot

    async def current_snapshot(self) -> GraphSnapshot | None:
        return self._snapshot

    async def edges_for_user(self, user_id: str) -> list[SimilarityEdge]:
        snapshot = self._snapshot
        if snapshot is None:
            return []
        return list(snapshot.edges_for(user_id))

    async def ping(self) -> bool:
        return True
