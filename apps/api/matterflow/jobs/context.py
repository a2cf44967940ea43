"""Collaborators handed to every scheduled job."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.services.clio_client import ClioClient
from matterflow.services.token_service import ClioTokenService


@dataclass
class JobContext:
    session_factory: Callable[[], Session]
    clio: ClioClient
    tokens: ClioTokenService
    settings: Settings
