"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bondly_api import __version__
from bondly_api.api.errors import register_exception_handlers
from bondly_api.api.routes import airdrops, auth, health, wallets
from bondly_api.runtime import Application

logger = logging.getLogger(__name__)


def create_app(application: Application | None = None) -> FastAPI:
    """Build the HTTP app around an Application.

    The Application is started and stopped by the FastAPI lifespan.
    """
    application = application or Application()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await application.start()
        try:
            yield
        finally:
            await application.stop()

    app = FastAPI(title="Bondly API", version=__version__, lifespan=lifespan)
    app.state.application = application

    register_exception_handlers(app)
    app.include_router(auth.router)
    app.include_router(wallets.router)
    app.include_router(airdrops.router)
    app.include_router(health.router)
    return app
