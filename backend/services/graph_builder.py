"""Similarity graph builder.

Recomputes the whole user-to-user similarity graph from the current
profiles and publishes it as a new immutable generation.

Only one build runs at a time (see services/build_gate.py); overlapping
requests are rejected with BuildInProgressError rather than queued. The
pairwise computation is CPU-bound and runs in a worker thread under a
timeout. On timeout or error nothing is published, the build lock is
released and the previous generation stays current.

Cost is O(U^2 * P) for U users with at most P patterns each.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.exceptions import BuildCancelledError, BuildInProgressError, GraphBuildError
from app.logging_config import get_logger
from app.metrics import GRAPH_BUILD_DURATION, GRAPH_BUILDS_TOTAL, GRAPH_EDGES, GRAPH_GENERATION
from services.build_gate import BuildGate
from services.build_history import BuildHistoryRecorder
from services.schemas import GraphSnapshot, utcnow
from services.similarity import compute_edges
from services.store import PatternStore

logger = get_logger(__name__)


@dataclass
class BuildStatus:
    """What this process knows about builds. Served by GET /graph/status."""

    building: bool = False
    last_status: str | None = None
    last_generation: int | None = None
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_duration_ms: int | None = None
    last_user_count: int | None = None
    last_edge_count: int | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "building": self.building,
            "last_status": self.last_status,
            "last_generation": self.last_generation,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": (
                self.last_finished_at.isoformat() if self.last_finished_at else None
            ),
            "last_duration_ms": self.last_duration_ms,
            "last_user_count": self.last_user_count,
            "last_edge_count": self.last_edge_count,
            "last_error": self.last_error,
        }


class SimilarityGraphBuilder:
    """Builds and publishes similarity graph generations."""

    def __init__(
        self,
        store: PatternStore,
        gate: BuildGate,
        timeout_seconds: float = 60.0,
        min_similarity: float = 0.0,
        history: BuildHistoryRecorder | None = None,
    ) -> None:
        self.store = store
        self.gate = gate
        self.timeout_seconds = timeout_seconds
        self.min_similarity = min_similarity
        self.history = history
        self.status = BuildStatus()

    async def build_graph(self) -> GraphSnapshot:
        """Build and publish a new generation.

        Raises:
            BuildInProgressError: another build holds the lock.
            GraphBuildError: the build failed or timed out; reason is in
                `.reason` ("timeout", "lock_lost" or "error").
        """
        ticket = await self.gate.try_begin_build()
        if ticket is None:
            GRAPH_BUILDS_TOTAL.labels(status="rejected").inc()
            logger.info("graph_build_rejected")
            raise BuildInProgressError()

        self.status.building = True
        start = time.monotonic()
        cancelled = threading.Event()
        outcome = "error"
        user_count = 0
        edge_count = 0

        try:
            profiles = await self.store.list_profiles()
            user_count = sum(1 for p in profiles if not p.is_empty)
            logger.info(
                "graph_build_started",
                generation=ticket.generation,
                users=user_count,
                pairs=user_count * (user_count - 1) // 2,
            )

            edges = await asyncio.wait_for(
                asyncio.to_thread(compute_edges, profiles, self.min_similarity, cancelled),
                timeout=self.timeout_seconds,
            )
            edge_count = len(edges)
            snapshot = await self.gate.commit(ticket, edges, user_count=user_count)
            outcome = "completed"
            return snapshot

        except TimeoutError as e:
            outcome = "timeout"
            raise GraphBuildError("Graph build timed out", reason="timeout") from e
        except GraphBuildError as e:
            outcome = e.reason
            raise
        except BuildCancelledError as e:
            outcome = "cancelled"
            raise GraphBuildError("Graph build was cancelled", reason="cancelled") from e
        except Exception as e:
            logger.exception("graph_build_error", generation=ticket.generation)
            raise GraphBuildError() from e

        finally:
            if outcome != "completed":
                cancelled.set()
                await self.gate.abort(ticket)
            duration = time.monotonic() - start
            self.status.building = False
            await self._finish(
                ticket.generation,
                ticket.started_at,
                outcome,
                duration,
                user_count,
                edge_count,
            )

    async def _finish(
        self,
        generation: int,
        started_at: datetime,
        outcome: str,
        duration: float,
        user_count: int,
        edge_count: int,
    ) -> None:
        duration_ms = int(duration * 1000)
        status = outcome if outcome in ("completed", "timeout") else "failed"
        error = None if outcome == "completed" else outcome

        GRAPH_BUILDS_TOTAL.labels(status=status).inc()
        GRAPH_BUILD_DURATION.observe(duration)
        if status == "completed":
            GRAPH_EDGES.set(edge_count)
            GRAPH_GENERATION.set(generation)
            logger.info(
                "graph_build_completed",
                generation=generation,
                users=user_count,
                edges=edge_count,
                duration_ms=duration_ms,
            )
        else:
            logger.warning(
                "graph_build_failed",
                generation=generation,
                reason=error,
                duration_ms=duration_ms,
            )

        self.status.last_status = status
        self.status.last_generation = generation
        self.status.last_started_at = started_at
        self.status.last_finished_at = utcnow()
        self.status.last_duration_ms = duration_ms
        self.status.last_user_count = user_count
        self.status.last_edge_count = edge_count if status == "completed" else 0
        self.status.last_error = error

        if self.history is not None:
            await self.history.record(
                generation=generation,
                status=status,
                started_at=started_at,
                duration_ms=duration_ms,
                user_count=user_count,
                edge_count=edge_count if status == "completed" else 0,
                error_code=error,
            )
