"""Tests for settings and the data service factory."""

import asyncio

import pytest
from pydantic import ValidationError

from messmate.config import (
    CacheSettings,
    ConnectivitySettings,
    RemoteSettings,
    get_settings,
    validate_all_settings,
)
from messmate.data_service import create_data_service
from messmate.models import DataSource
from messmate.services.storage import InMemoryMedium


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        remote = RemoteSettings()
        assert remote.base_url == "http://localhost:5000/api"
        assert remote.use_backend is True
        assert CacheSettings().short_ttl_seconds == 10.0
        assert ConnectivitySettings().health_check_interval_seconds > 0

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MESSMATE_API_BASE_URL", "https://mess.example.com/api/")
        monkeypatch.setenv("MESSMATE_API_TIMEOUT_SECONDS", "3")
        remote = RemoteSettings()
        assert remote.base_url == "https://mess.example.com/api"
        assert remote.timeout_seconds == 3.0

    def test_invalid_timeout_rejected(self, monkeypatch):
        monkeypatch.setenv("MESSMATE_API_TIMEOUT_SECONDS", "0")
        with pytest.raises(ValidationError):
            RemoteSettings()

    def test_invalid_log_level_reported(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        results = validate_all_settings()
        assert results["remote"] is True
        assert results["app"] is False


class TestFactory:
    """Tests for create_data_service."""

    def test_backend_disabled_serves_locally(self, monkeypatch):
        monkeypatch.setenv("MESSMATE_API_USE_BACKEND", "false")
        service = create_data_service(medium=InMemoryMedium())

        outcome = asyncio.run(service.get_meals("mo1"))

        assert service.connectivity.remote_configured is False
        assert outcome.ok is True
        assert outcome.source == DataSource.LOCAL
        assert outcome.value == []
