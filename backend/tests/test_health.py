"""Tests for the health monitor."""

from unittest.mock import AsyncMock

import pytest

import db.session
from gateway.health import HealthMonitor


class TestHealthMonitor:
    @pytest.mark.asyncio
    async def test_all_healthy(self, engine):
        report = await HealthMonitor(engine).check_all()
        assert report["status"] == "healthy"
        assert report["checks"]["store"] == {"status": "ok", "backend": "memory"}

    @pytest.mark.asyncio
    async def test_store_failure_degrades(self, engine, monkeypatch):
        monkeypatch.setattr(engine.store, "ping", AsyncMock(side_effect=ConnectionError()))
        report = await HealthMonitor(engine).check_all()
        assert report["status"] == "degraded"
        assert report["checks"]["store"]["status"] == "error"

    @pytest.mark.asyncio
    async def test_stopped_workers_degrade(self, engine):
        await engine.pool.stop()
        report = await HealthMonitor(engine).check_all()
        assert report["status"] == "degraded"
        assert report["checks"]["workers"]["status"] == "error"

    @pytest.mark.asyncio
    async def test_database_checked_when_history_enabled(self, engine, monkeypatch):
        monkeypatch.setattr(engine, "history_enabled", True)
        monkeypatch.setattr(db.session, "ping_db", AsyncMock(return_value=False))
        report = await HealthMonitor(engine).check_all()
        assert report["status"] == "degraded"
        assert report["checks"]["database"]["status"] == "error"
