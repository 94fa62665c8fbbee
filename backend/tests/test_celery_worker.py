"""Tests for the Celery graph rebuild task."""

import pytest

import app.celery_worker as celery_worker
from app.config import Settings, StorageBackend
from app.exceptions import BuildInProgressError, GraphBuildError


@pytest.fixture
def redis_settings(monkeypatch):
    settings = Settings(storage_backend=StorageBackend.REDIS)
    monkeypatch.setattr(celery_worker, "get_settings", lambda: settings)
    return settings


class TestRebuildSimilarityGraph:
    def test_task_is_registered(self):
        assert "app.celery_worker.rebuild_similarity_graph" in celery_worker.celery_app.tasks

    def test_memory_backend_is_skipped(self, monkeypatch):
        settings = Settings(storage_backend=StorageBackend.MEMORY)
        monkeypatch.setattr(celery_worker, "get_settings", lambda: settings)
        result = celery_worker.rebuild_similarity_graph()
        assert result["status"] == "skipped"

    def test_completed_build(self, redis_settings, monkeypatch):
        async def fake_build():
            return {"status": "completed", "generation": 7, "edge_count": 3, "user_count": 3}

        monkeypatch.setattr(celery_worker, "_run_build", fake_build)
        result = celery_worker.rebuild_similarity_graph()
        assert result == {"status": "completed", "generation": 7, "edge_count": 3, "user_count": 3}

    def test_already_building(self, redis_settings, monkeypatch):
        async def busy_build():
            raise BuildInProgressError()

        monkeypatch.setattr(celery_worker, "_run_build", busy_build)
        assert celery_worker.rebuild_similarity_graph() == {"status": "already_building"}

    def test_timeout_is_not_retried(self, redis_settings, monkeypatch):
        async def slow_build():
            raise GraphBuildError("Graph build timed out", reason="timeout")

        monkeypatch.setattr(celery_worker, "_run_build", slow_build)
        assert celery_worker.rebuild_similarity_graph() == {
            "status": "failed",
            "reason": "timeout",
        }

    def test_other_failures_are_retried(self, redis_settings, monkeypatch):
        async def broken_build():
            raise GraphBuildError()

        monkeypatch.setattr(celery_worker, "_run_build", broken_build)
        # Called directly, Celery's retry re-raises the original exception.
        with pytest.raises(GraphBuildError):
            celery_worker.rebuild_similarity_graph()
