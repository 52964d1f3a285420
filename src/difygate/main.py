"""difygate — FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from difygate.config import get_config
from difygate.db.engine import Database
from difygate.gateway import CallLogger, DifyClient, DifyGateway, KeyResolver
from difygate.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info(
        "difygate.starting",
        version="0.1.0",
        upstream_timeout_s=config.upstream.timeout_s,
        admin_api=bool(config.admin_api_key),
    )

    db = Database(
        config.data_dir,
        journal_mode=config.db_journal_mode,
        busy_timeout_ms=config.db_busy_timeout_ms,
    )
    await db.initialize()

    upstream = DifyClient(timeout_s=config.upstream.timeout_s, user=config.upstream.user)
    gateway = DifyGateway(
        resolver=KeyResolver(db),
        upstream=upstream,
        call_logger=CallLogger(db),
        log_prompts=config.log_prompts,
    )

    # Store on app state
    app.state.config = config
    app.state.db = db
    app.state.gateway = gateway

    logger.info("difygate.ready", **await db.app_stats())

    yield

    # Shutdown
    logger.info("difygate.shutting_down")
    await upstream.close()
    await db.close()
    logger.info("difygate.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="difygate",
        version="0.1.0",
        description="OpenAI-compatible chat completions gateway for Dify applications.",
        lifespan=lifespan,
    )

    # Register routes
    from difygate.api.routes.apps import router as apps_router
    from difygate.api.routes.health import router as health_router
    from difygate.api.routes.logs import router as logs_router
    from difygate.api.routes.openai import router as openai_router

    app.include_router(health_router, tags=["health"])
    app.include_router(openai_router, tags=["openai"])
    app.include_router(apps_router, tags=["apps"])
    app.include_router(logs_router, tags=["logs"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "difygate.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
