"""Gateway API key resolution."""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from difygate.gateway.errors import Unauthorized
from difygate.gateway.models import AppConfig

logger = structlog.get_logger()


class AppStore(Protocol):
    async def app_get_by_api_key(self, api_key: str) -> dict[str, Any] | None:
        ...


class KeyResolver:
    """Maps a bearer token to the enabled application it was issued for."""

    def __init__(self, store: AppStore) -> None:
        self.store = store

    async def resolve(self, api_key: str | None) -> AppConfig:
        # Unknown and disabled keys fail identically.
        if not api_key:
            raise Unauthorized()

        row = await self.store.app_get_by_api_key(api_key)
        if row is None:
            logger.warning("auth.unknown_key")
            raise Unauthorized()

        app = AppConfig.from_row(row)
        if not app.is_enabled:
            logger.warning("auth.unknown_key")
            raise Unauthorized()
        return app
