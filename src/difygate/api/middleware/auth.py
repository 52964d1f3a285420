"""Request authentication: bearer keys for /v1, admin key for /api."""

from __future__ import annotations

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader
import structlog

logger = structlog.get_logger()

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def bearer_token(request: Request) -> str | None:
    """Token from ``Authorization: Bearer <key>``, or None if absent."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def verify_admin_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """Verify the admin API key. The admin API is off when no key is configured."""
    config_key = request.app.state.config.admin_api_key

    if not config_key:
        raise HTTPException(status_code=404, detail="Admin API is disabled.")

    if not api_key:
        logger.warning("auth.missing_admin_key", path=request.url.path)
        raise HTTPException(status_code=401, detail="Missing API key. Provide X-API-Key header.")

    if api_key != config_key:
        logger.warning("auth.invalid_admin_key", path=request.url.path)
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return api_key
