"""FastAPI dependencies for request handling."""

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.db.session import SessionLocal
from matterflow.services.clio_client import ClioClient
from matterflow.services.entity_queue import EntityQueue


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Database session dependency.

    Opens a session from the app's session factory and closes it after the request.
    """
    session_factory = getattr(request.app.state, "session_factory", SessionLocal)
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clio(request: Request) -> ClioClient:
    return request.app.state.clio


def get_queue(request: Request) -> EntityQueue:
    return request.app.state.queue
