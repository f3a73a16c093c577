"""Process-wide settings read from the environment (and an optional .env)."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Deployment-level settings: credentials, ports, polling cadence.

    Read without a prefix so conventional names like GITHUB_TOKEN work.
    Component-specific tuning lives in the per-module config classes
    (RATELIMIT_*, FETCH_*, CACHE_*, REFRESH_*, RANKING_*).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Upstream credentials
    github_token: str | None = None
    snapshot_api_key: str | None = None
    user_agent: str = "forumwatch/0.1.0 (forum aggregator)"

    # Source registry override (JSON file, replaces the bundled list)
    sources_file: str | None = None

    # Polling
    poll_interval_seconds: int = Field(default=60, ge=1)
    refresh_on_startup: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    admin_api_keys: str | None = None
    cors_origins: str = "*"
    api_polling_enabled: bool = True

    # Observability
    metrics_port: int = 8000
    metrics_enabled: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def admin_keys(self) -> list[str]:
        """ADMIN_API_KEYS split on commas, blanks dropped."""
        return [k.strip() for k in (self.admin_api_keys or "").split(",") if k.strip()]

    @property
    def github_configured(self) -> bool:
        """Check if GitHub Discussions can be polled."""
        return bool(self.github_token)


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process; tests call get_settings.cache_clear()."""
    return Settings()
