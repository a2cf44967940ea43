"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from sqlalchemy.orm import Session

from matterflow.core.config import Settings, settings
from matterflow.core.structured_logging import configure_logging
from matterflow.db.session import SessionLocal
from matterflow.routers import internal, webhooks
from matterflow.services.clio_client import ClioClient
from matterflow.services.entity_queue import build_queue
from matterflow.services.token_service import ClioTokenService

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    *,
    clio: ClioClient | None = None,
    tokens: ClioTokenService | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> FastAPI:
    """
    Build the application.

    Collaborators live on ``app.state`` so tests can hand in fakes.
    """
    app_settings = app_settings or settings
    tokens = tokens or ClioTokenService(session_factory, app_settings=app_settings)
    clio = clio or ClioClient(tokens, app_settings=app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("matterflow starting (env=%s, queue=%s)", app_settings.ENV, app_settings.QUEUE_MODE)
        yield
        await app.state.clio.aclose()

    app = FastAPI(
        title="matterflow",
        version=app_settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.session_factory = session_factory
    app.state.tokens = tokens
    app.state.clio = clio
    app.state.queue = build_queue(app_settings, lambda: clio.rate_limit)

    app.include_router(webhooks.router)
    app.include_router(internal.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "env": app_settings.ENV, "version": app_settings.VERSION}

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()
