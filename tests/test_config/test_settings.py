"""Tests for application and component settings."""

import pytest
from pydantic import ValidationError

from forumwatch.cache.config import CacheConfig
from forumwatch.config.settings import Settings, get_settings
from forumwatch.ranking.config import RankingConfig
from forumwatch.refresh.config import RefreshConfig


class TestSettings:
    """Tests for the central Settings object."""

    def test_defaults(self, monkeypatch):
        for var in ("ENVIRONMENT", "GITHUB_TOKEN", "POLL_INTERVAL_SECONDS", "ADMIN_API_KEYS"):
            monkeypatch.delenv(var, raising=False)

        settings = Settings()

        assert settings.environment == "development"
        assert settings.poll_interval_seconds == 60
        assert settings.github_configured is False
        assert settings.is_production is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_abc")

        settings = Settings()

        assert settings.is_production is True
        assert settings.github_configured is True

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "qa")

        with pytest.raises(ValidationError):
            Settings()

    def test_admin_keys_split(self, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEYS", " a, ,b ")

        assert Settings().admin_keys == ["a", "b"]

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestComponentConfigs:
    """Tests for the per-module settings classes."""

    def test_refresh_env_prefix(self, monkeypatch):
        monkeypatch.setenv("REFRESH_MAX_CONCURRENCY", "4")
        monkeypatch.setenv("REFRESH_TIER1_TTL_SECONDS", "120")

        config = RefreshConfig()

        assert config.max_concurrency == 4
        assert config.ttl_for(1) == 120

    def test_refresh_concurrency_bounds(self):
        with pytest.raises(ValidationError):
            RefreshConfig(max_concurrency=0)

    def test_ranking_defaults(self):
        config = RankingConfig()

        assert (config.hot_limit, config.fresh_limit) == (5, 5)
        assert config.activity_window_days == 7.0

    def test_cache_defaults(self):
        config = CacheConfig()

        assert config.defunct_confirmations == 2
        assert config.max_entries > 0
