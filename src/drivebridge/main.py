"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from drivebridge import __version__
from drivebridge.api import api_router
from drivebridge.api.dependencies import get_settings, get_transfer_runtime

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build FastAPI application."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        """Build singleton dependencies and own the scheduler and connection lifetimes."""

        runtime = get_transfer_runtime()
        try:
            if not get_settings().scheduler_enabled:
                logger.info(
                    "Transfer scheduler disabled; jobs stay queued until another worker runs."
                )
                yield
            else:
                async with runtime.scheduler:
                    yield
        finally:
            await runtime.close()

    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()


def run() -> None:
    """Run local development server."""

    settings = get_settings()
    uvicorn.run(
        "drivebridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,
    )


__all__ = ["app", "create_app", "run"]
