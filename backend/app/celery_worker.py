"""Celery worker for background graph rebuilds.

Runs similarity graph builds outside the API process. With
DEVGRAPH_GRAPH_REBUILD_INTERVAL_SECONDS set, celery beat schedules a
rebuild on that interval. Builds share the Redis build lock with the
API, so a scheduled rebuild never overlaps a manual one.

Docker Compose command: celery -A app.celery_worker worker --loglevel=info --concurrency=1
Beat: celery -A app.celery_worker beat --loglevel=info
"""

from __future__ import annotations

import asyncio
from typing import Any

from celery import Celery

from app.config import StorageBackend, get_settings
from app.exceptions import BuildInProgressError, GraphBuildError
from app.logging_config import get_logger

logger = get_logger(__name__)

settings = get_settings()

# Celery app instance
celery_app = Celery(
    "devgraph",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=int(settings.graph_build_timeout_seconds) + 60,
    task_soft_time_limit=int(settings.graph_build_timeout_seconds) + 30,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="graph",
    task_routes={
        "app.celery_worker.rebuild_similarity_graph": {"queue": "graph"},
    },
)

if settings.graph_rebuild_interval_seconds > 0:
    celery_app.conf.beat_schedule = {
        "rebuild-similarity-graph": {
            "task": "app.celery_worker.rebuild_similarity_graph",
            "schedule": float(settings.graph_rebuild_interval_seconds),
        },
    }


@celery_app.task(
    bind=True,
    name="app.celery_worker.rebuild_similarity_graph",
    max_retries=2,
    default_retry_delay=30,
)
def rebuild_similarity_graph(self) -> dict[str, Any]:
    """Rebuild the similarity graph from the shared store.

    Returns:
        Dict with the build outcome: completed (with generation and
        edge count), already_building, skipped or failed
    """
    current = get_settings()
    if current.storage_backend != StorageBackend.REDIS:
        # An in-memory store is private to each process; there is nothing to build from here.
        logger.warning("graph_rebuild_skipped", storage_backend=current.storage_backend.value)
        return {"status": "skipped", "reason": "storage backend is not shared"}

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_run_build())
    except BuildInProgressError:
        logger.info("graph_rebuild_already_building")
        return {"status": "already_building"}
    except GraphBuildError as exc:
        if exc.reason != "timeout" and self.request.retries < self.max_retries:
            raise self.retry(exc=exc)
        return {"status": "failed", "reason": exc.reason}
    finally:
        loop.close()


async def _run_build() -> dict[str, Any]:
    """Build an engine for this task, run one graph build and tear it down."""
    from services.engine import build_engine

    engine = await build_engine(get_settings())
    try:
        snapshot = await engine.builder.build_graph()
    finally:
        await engine.close()
    return {
        "status": "completed",
        "generation": snapshot.generation,
        "edge_count": len(snapshot.edges),
        "user_count": snapshot.user_count,
    }
