"""Configuration for the in-process cache store."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheConfig(BaseSettings):
    """Cache capacity and defunct confirmation (CACHE_* env vars)."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        extra="ignore",
    )

    max_entries: int = Field(
        default=1000,
        ge=1,
        description="Entries kept before the least recently fetched is evicted",
    )
    defunct_confirmations: int = Field(
        default=2,
        ge=1,
        description="Consecutive defunct signals before a source is marked defunct",
    )
