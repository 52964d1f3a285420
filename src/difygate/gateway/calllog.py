"""Best-effort call log recording."""

from __future__ import annotations

from dataclasses import asdict
from typing import Protocol

import structlog

from difygate.gateway.models import CallLogEntry

logger = structlog.get_logger()


class CallLogStore(Protocol):
    async def call_log_insert(self, **fields) -> int:
        ...


class CallLogger:
    """Writes call log entries without ever failing the caller."""

    def __init__(self, store: CallLogStore | None) -> None:
        self.store = store

    async def record(self, entry: CallLogEntry) -> None:
        if self.store is None:
            return
        try:
            await self.store.call_log_insert(**asdict(entry))
        except Exception as exc:
            logger.warning(
                "calllog.write_failed",
                endpoint=entry.endpoint,
                status_code=entry.status_code,
                error=str(exc),
            )
