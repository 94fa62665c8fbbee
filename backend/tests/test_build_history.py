"""Tests for graph build history recording."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from db.models import GraphBuildRun
from services.build_history import BuildHistoryRecorder, recent_runs


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class TestBuildHistoryRecorder:
    @pytest.mark.asyncio
    async def test_record_adds_run(self, session_factory, mock_session):
        recorder = BuildHistoryRecorder(session_factory)
        started = datetime(2026, 1, 1, tzinfo=UTC)

        await recorder.record(
            generation=3,
            status="completed",
            started_at=started,
            duration_ms=120,
            user_count=10,
            edge_count=45,
        )

        run = mock_session.add.call_args[0][0]
        assert isinstance(run, GraphBuildRun)
        assert run.generation == 3
        assert run.status == "completed"
        assert run.edge_count == 45
        assert run.error_code is None
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_failure_is_swallowed(self, session_factory, mock_session):
        mock_session.commit.side_effect = RuntimeError("database down")
        recorder = BuildHistoryRecorder(session_factory)

        await recorder.record(
            generation=1,
            status="failed",
            started_at=datetime.now(UTC),
            duration_ms=5,
            error_code="error",
        )

        mock_session.add.assert_called_once()


class TestRecentRuns:
    @pytest.mark.asyncio
    async def test_serializes_rows(self, mock_session):
        run = GraphBuildRun(
            generation=2,
            status="timeout",
            started_at=datetime(2026, 1, 1, tzinfo=UTC),
            duration_ms=60_000,
            user_count=100,
            edge_count=0,
            error_code="timeout",
        )
        result = MagicMock()
        result.scalars.return_value.all.return_value = [run]
        mock_session.execute.return_value = result

        rows = await recent_runs(mock_session, limit=5)

        assert rows == [
            {
                "generation": 2,
                "status": "timeout",
                "started_at": "2026-01-01T00:00:00+00:00",
                "duration_ms": 60_000,
                "user_count": 100,
                "edge_count": 0,
                "error_code": "timeout",
            }
        ]
