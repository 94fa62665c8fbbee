"""Graph build history persisted to PostgreSQL.

Each finished build (completed, failed or timed out) becomes one
GraphBuildRun row. Recording is best effort: failures are logged and
never affect the build that triggered them.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from db.models import GraphBuildRun

logger = get_logger(__name__)


class BuildHistoryRecorder:
    """Writes GraphBuildRun rows through an async session factory."""

    def __init__(self, session_factory: Callable[[], Any]) -> None:
        self.session_factory = session_factory

    async def record(
        self,
        generation: int,
        status: str,
        started_at: datetime,
        duration_ms: int,
        user_count: int = 0,
        edge_count: int = 0,
        error_code: str | None = None,
    ) -> None:
        """Record one finished build.

        Args:
            generation: Generation published, or the one that was attempted
            status: completed, failed or timeout
            started_at: When the build took the lock
            duration_ms: Wall time from lock to outcome
            user_count: Users with a non-empty profile
            edge_count: Edges in the published snapshot
            error_code: Failure reason, if any
        """
        try:
            async with self.session_factory() as session:
                session.add(
                    GraphBuildRun(
                        generation=generation,
                        status=status,
                        started_at=started_at,
                        duration_ms=duration_ms,
                        user_count=user_count,
                        edge_count=edge_count,
                        error_code=error_code,
                    )
                )
                await session.commit()

            logger.info("build_history_recorded", generation=generation, status=status)

        except Exception:
            logger.exception("build_history_recording_failed", generation=generation)
            # History failures must never break the build


async def recent_runs(session: AsyncSession, limit: int = 20) -> list[dict[str, Any]]:
    """Newest build runs first."""
    result = await session.execute(
        select(GraphBuildRun).order_by(GraphBuildRun.started_at.desc()).limit(limit)
    )
    return [
        {
            "generation": run.generation,
            "status": run.status,
            "started_at": run.started_at.isoformat(),
            "duration_ms": run.duration_ms,
            "user_count": run.user_count,
            "edge_count": run.edge_count,
            "error_code": run.error_code,
        }
        for run in result.scalars().all()
    ]
