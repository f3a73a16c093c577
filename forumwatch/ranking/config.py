"""Configuration for hot/new ranking and digest sections."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RankingConfig(BaseSettings):
    """List sizes and activity window (RANKING_* env vars)."""

    model_config = SettingsConfigDict(
        env_prefix="RANKING_",
        case_sensitive=False,
        extra="ignore",
    )

    hot_limit: int = Field(default=5, ge=1, le=50)
    fresh_limit: int = Field(default=5, ge=1, le=50)
    activity_window_days: float = Field(
        default=7.0,
        gt=0,
        description="Topics with no activity for longer than this are not ranked",
    )

    digest_section_limit: int = Field(default=5, ge=1, le=50)
    delegate_corner_limit: int = Field(default=3, ge=1, le=50)
