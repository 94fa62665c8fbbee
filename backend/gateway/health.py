"""Health monitoring.

Provides detailed health checks for the engine's dependencies:
the pattern store, the analysis workers and, when build history is
enabled, PostgreSQL.
"""

from __future__ import annotations

from typing import Any

from app.logging_config import get_logger
from services.engine import DevGraphEngine

logger = get_logger(__name__)


class HealthMonitor:
    """Monitors health of all engine components."""

    def __init__(self, engine: DevGraphEngine) -> None:
        self.engine = engine

    async def check_all(self) -> dict[str, Any]:
        """Run all health checks and return status."""
        store_ok = await self._check_store()
        workers_ok = self.engine.pool.running
        checks: dict[str, Any] = {
            "store": {
                "status": "ok" if store_ok else "error",
                "backend": self.engine.settings.storage_backend.value,
            },
            "workers": {"status": "ok" if workers_ok else "error"},
        }
        all_healthy = store_ok and workers_ok

        if self.engine.history_enabled:
            db_ok = await self._check_database()
            checks["database"] = {"status": "ok" if db_ok else "error"}
            all_healthy = all_healthy and db_ok

        return {
            "status": "healthy" if all_healthy else "degraded",
            "checks": checks,
        }

    async def _check_store(self) -> bool:
        try:
            return await self.engine.store.ping()
        except Exception:
            logger.error("health_check_store_failed")
            return False

    async def _check_database(self) -> bool:
        """Check PostgreSQL connectivity."""
        from db.session import ping_db

        ok = await ping_db()
        if not ok:
            logger.error("health_check_database_failed")
        return ok
