"""Tests for settings loading and logging setup."""

import structlog

import app.logging_config as logging_config
from app.config import Environment, Settings, StorageBackend


class TestSettings:
    def test_environment_is_case_insensitive(self):
        settings = Settings(environment="PRODUCTION", storage_backend="Redis")
        assert settings.environment == Environment.PRODUCTION
        assert settings.storage_backend == StorageBackend.REDIS
        assert settings.is_production
        assert not settings.is_development

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("DEVGRAPH_ANALYSIS_WORKERS", "7")
        monkeypatch.setenv("DEVGRAPH_ENVIRONMENT", "testing")
        settings = Settings()
        assert settings.analysis_workers == 7
        assert settings.environment == Environment.TESTING
        assert not settings.is_production


class TestLoggingSetup:
    def test_production_renders_json(self, monkeypatch):
        settings = Settings(environment=Environment.PRODUCTION)
        monkeypatch.setattr(logging_config, "get_settings", lambda: settings)
        seen = []
        monkeypatch.setattr(
            structlog.processors,
            "JSONRenderer",
            lambda *a, **kw: seen.append("json") or structlog.dev.ConsoleRenderer(),
        )
        logging_config.setup_logging()
        assert seen == ["json"]

    def test_development_renders_console(self, monkeypatch):
        settings = Settings(environment=Environment.DEVELOPMENT)
        monkeypatch.setattr(logging_config, "get_settings", lambda: settings)
        seen = []
        monkeypatch.setattr(
            structlog.processors,
            "JSONRenderer",
            lambda *a, **kw: seen.append("json") or structlog.dev.ConsoleRenderer(),
        )
        logging_config.setup_logging()
        assert seen == []
