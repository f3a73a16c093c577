"""Configuration for upstream fetching."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from forumwatch.ingestion.http_client import RetryPolicy


class FetchConfig(BaseSettings):
    """Timeouts, retry policy and page sizes for upstream fetches (FETCH_* env vars)."""

    model_config = SettingsConfigDict(
        env_prefix="FETCH_",
        case_sensitive=False,
        extra="ignore",
    )

    timeout_seconds: float = Field(default=15.0, gt=0, description="Per-attempt HTTP timeout")

    # Retry policy shared by every adapter
    max_retries: int = Field(default=2, ge=0, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    max_backoff: float = Field(default=30.0, gt=0)
    jitter: float = Field(default=0.1, ge=0, le=1)
    rate_limit_multiplier: float = Field(default=5.0, ge=1)

    # Longest a fetch may sleep waiting on the outbound limiter
    max_rate_limit_wait_seconds: float = Field(default=90.0, ge=0)

    max_redirects: int = Field(default=3, ge=0)

    # Page sizes
    github_limit: int = Field(default=30, ge=1, le=50)
    snapshot_limit: int = Field(default=20, ge=1, le=100)
    research_limit: int = Field(default=30, ge=1, le=100)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_backoff,
            jitter=self.jitter,
            rate_limit_multiplier=self.rate_limit_multiplier,
        )
