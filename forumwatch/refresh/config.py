"""Configuration for the refresh orchestrator, worker pool and poller."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RefreshConfig(BaseSettings):
    """Refresh scheduling and fan-out settings (REFRESH_* env vars).

    Tier TTLs: tier 1 (major forums) every 5 minutes, tier 2 every 15,
    tier 3 (emerging) every 30.
    """

    model_config = SettingsConfigDict(
        env_prefix="REFRESH_",
        case_sensitive=False,
        extra="ignore",
    )

    max_concurrency: int = Field(default=8, ge=1, le=64)

    tier1_ttl_seconds: float = Field(default=300.0, gt=0)
    tier2_ttl_seconds: float = Field(default=900.0, gt=0)
    tier3_ttl_seconds: float = Field(default=1800.0, gt=0)

    # Upper bound for one polling cycle
    cycle_timeout_seconds: float = Field(default=300.0, gt=0)
    # Used by wait=true admin refreshes that don't pass a timeout
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    # Upstream search fan-out: sources per query and how long to wait
    search_max_sources: int = Field(default=8, ge=1, le=32)
    search_timeout_seconds: float = Field(default=10.0, gt=0)

    # Background worker pool for fire-and-forget triggers
    worker_count: int = Field(default=2, ge=1)
    queue_size: int = Field(default=100, ge=1)

    # Polling loop error recovery
    backoff_base_delay: float = 5.0
    backoff_max_delay: float = 300.0

    def ttl_for(self, tier: int) -> float:
        if tier <= 1:
            return self.tier1_ttl_seconds
        if tier == 2:
            return self.tier2_ttl_seconds
        return self.tier3_ttl_seconds
