"""DevGraph engine wiring.

Builds the object graph for one process from Settings: the store and
build mutex for the configured backend, the detector, the profile
aggregator, the analysis worker pool, the graph builder and the
recommendation reader.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis

from app.config import Settings, StorageBackend
from app.logging_config import get_logger
from services.analysis_worker import AnalysisWorkerPool
from services.build_gate import BuildGate, BuildMutex, LocalBuildMutex, RedisBuildMutex
from services.build_history import BuildHistoryRecorder
from services.graph_builder import SimilarityGraphBuilder
from services.pattern_detector import PatternDetector
from services.profile_aggregator import ProfileAggregator
from services.recommendations import RecommendationReader
from services.redis_store import RedisPatternStore
from services.store import InMemoryPatternStore, PatternStore
from services.submissions import SubmissionService

logger = get_logger(__name__)


@dataclass
class DevGraphEngine:
    settings: Settings
    store: PatternStore
    detector: PatternDetector
    aggregator: ProfileAggregator
    pool: AnalysisWorkerPool
    submissions: SubmissionService
    builder: SimilarityGraphBuilder
    reader: RecommendationReader
    redis: aioredis.Redis | None = None
    owns_redis: bool = False
    history_enabled: bool = False

    def start(self) -> None:
        self.pool.start()

    async def close(self) -> None:
        await self.pool.stop()
        await self.store.close()
        if self.redis is not None and self.owns_redis:
            await self.redis.aclose()
        if self.history_enabled:
            from db.session import close_db

            await close_db()
        logger.info("engine_closed")


async def build_engine(
    settings: Settings,
    redis: aioredis.Redis | None = None,
) -> DevGraphEngine:
    """Assemble an engine for the configured storage backend.

    Args:
        settings: Application settings
        redis: Existing client to reuse; one is created from redis_url otherwise
    """
    owns_redis = False
    mutex: BuildMutex
    store: PatternStore

    if settings.storage_backend == StorageBackend.REDIS:
        if redis is None:
            redis = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
            )
            owns_redis = True
        store = RedisPatternStore(
            redis,
            prefix=settings.redis_key_prefix,
            retained_generations=settings.graph_retained_generations,
        )
        mutex = RedisBuildMutex(
            redis,
            key=f"{settings.redis_key_prefix}:graph:build_lock",
            ttl_seconds=settings.graph_lock_ttl_seconds,
        )
    else:
        store = InMemoryPatternStore()
        mutex = LocalBuildMutex()

    history: BuildHistoryRecorder | None = None
    if settings.build_history_enabled:
        from db.session import get_session_factory, init_db

        await init_db()
        history = BuildHistoryRecorder(get_session_factory())

    detector = PatternDetector()
    aggregator = ProfileAggregator(
        store,
        max_attempts=settings.profile_update_max_attempts,
        backoff_base=settings.profile_update_backoff_base,
        backoff_max=settings.profile_update_backoff_max,
    )
    pool = AnalysisWorkerPool(
        store,
        detector,
        aggregator,
        workers=settings.analysis_workers,
        queue_size=settings.analysis_queue_size,
    )
    engine = DevGraphEngine(
        settings=settings,
        store=store,
        detector=detector,
        aggregator=aggregator,
        pool=pool,
        submissions=SubmissionService(
            store,
            pool,
            detector,
            aggregator,
            max_source_bytes=settings.max_source_bytes,
        ),
        builder=SimilarityGraphBuilder(
            store,
            BuildGate(store, mutex),
            timeout_seconds=settings.graph_build_timeout_seconds,
            min_similarity=settings.graph_min_similarity,
            history=history,
        ),
        reader=RecommendationReader(store, default_limit=settings.recommendation_limit),
        redis=redis,
        owns_redis=owns_redis,
        history_enabled=history is not None,
    )
    logger.info(
        "engine_built",
        storage_backend=settings.storage_backend.value,
        build_history=engine.history_enabled,
    )
    return engine
