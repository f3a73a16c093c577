"""Configuration for inbound and outbound rate limiting."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseSettings):
    """Settings for both limiter instances.

    The outbound budget is shared by every feature that talks to a given
    upstream domain. Discourse throttles at ~60 req/min by default and some
    forums lower it, so the outbound default stays well under that.
    """

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
        extra="ignore",
    )

    inbound_enabled: bool = True
    inbound_window_seconds: float = Field(default=60.0, gt=0)
    inbound_max_requests: int = Field(default=30, ge=1)

    outbound_window_seconds: float = Field(default=60.0, gt=0)
    outbound_max_requests: int = Field(default=20, ge=1, le=60)

    max_keys: int = Field(
        default=10_000,
        ge=1,
        description="Maximum tracked windows per limiter before eviction",
    )
