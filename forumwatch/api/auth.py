"""
Admin guard for the cache management routes.

Keys come from ``ADMIN_API_KEYS`` (comma-separated) and are sent in the
``X-API-KEY`` header. With no keys configured the routes are open in
development and disabled (503) in production.
"""

import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from forumwatch.config.settings import get_settings

admin_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


def _matches(candidate: str, keys: list[str]) -> bool:
    return any(secrets.compare_digest(candidate, key) for key in keys)


async def verify_admin_key(api_key: str | None = Security(admin_key_header)) -> str:
    """Return the accepted key, or ``"dev-mode"`` when the routes are open."""
    settings = get_settings()
    keys = settings.admin_keys

    if not keys:
        if settings.is_production:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Admin routes disabled: ADMIN_API_KEYS is not set",
            )
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-API-KEY header required",
        )
    if not _matches(api_key, keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return api_key
