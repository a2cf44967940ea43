"""Clio OAuth token storage and refresh."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from matterflow.core.config import Settings, settings as default_settings
from matterflow.db.models import ClioToken
from matterflow.db.session import SessionLocal
from matterflow.utils.datetimes import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Clio access tokens live for 7 days
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)
DEFAULT_REFRESH_THRESHOLD = timedelta(hours=24)


class TokenRefreshError(Exception):
    """Raised when Clio rejects a refresh or no refresh token is available."""

    pass


class ClioTokenService:
    """
    Keeps the current Clio access token in the clio_tokens table.

    The stored row wins over the bootstrap CLIO_ACCESS_TOKEN once a refresh
    has happened. Concurrent refreshes share one in-flight request.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        app_settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = app_settings or default_settings
        self._transport = transport
        self._lock = asyncio.Lock()

    def _load(self, db: Session) -> ClioToken | None:
        return db.query(ClioToken).order_by(ClioToken.id.desc()).first()

    def get_access_token(self) -> str:
        with self._session_factory() as db:
            row = self._load(db)
            if row and row.access_token:
                return row.access_token
        return self._settings.CLIO_ACCESS_TOKEN

    def get_expires_at(self) -> datetime | None:
        with self._session_factory() as db:
            row = self._load(db)
            return ensure_utc(row.expires_at) if row else None

    def save_tokens(
        self,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> None:
        with self._session_factory() as db:
            row = self._load(db)
            if row is None:
                row = ClioToken(access_token=access_token)
                db.add(row)
            row.access_token = access_token
            if refresh_token:
                row.refresh_token = refresh_token
            row.expires_at = expires_at
            db.commit()

    def _refresh_token_value(self) -> str:
        with self._session_factory() as db:
            row = self._load(db)
            if row and row.refresh_token:
                return row.refresh_token
        return self._settings.CLIO_REFRESH_TOKEN

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token and persist it."""
        async with self._lock:
            refresh_token = self._refresh_token_value()
            if not refresh_token:
                raise TokenRefreshError("No Clio refresh token configured")

            url = f"{self._settings.CLIO_API_BASE_URL.rstrip('/')}/oauth/token"
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._settings.CLIO_REQUEST_TIMEOUT_SECONDS,
            ) as client:
                response = await client.post(
                    url,
                    data={
                        "client_id": self._settings.CLIO_CLIENT_ID,
                        "client_secret": self._settings.CLIO_CLIENT_SECRET,
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                    },
                )
            if response.status_code >= 400:
                raise TokenRefreshError(
                    f"Clio token refresh failed with status {response.status_code}"
                )

            payload = response.json()
            access_token = payload.get("access_token")
            if not access_token:
                raise TokenRefreshError("Clio token response missing access_token")

            expires_in = payload.get("expires_in")
            lifetime = (
                timedelta(seconds=int(expires_in)) if expires_in else DEFAULT_TOKEN_LIFETIME
            )
            expires_at = utc_now() + lifetime
            self.save_tokens(access_token, payload.get("refresh_token"), expires_at)
            logger.info("Clio access token refreshed, expires at %s", expires_at.isoformat())
            return access_token

    async def check_and_refresh(
        self, threshold: timedelta = DEFAULT_REFRESH_THRESHOLD
    ) -> bool:
        """Refresh when the token expires within ``threshold``. Returns True if refreshed."""
        expires_at = self.get_expires_at()
        if expires_at is not None and expires_at - utc_now() > threshold:
            logger.info("Clio token valid until %s, no refresh needed", expires_at.isoformat())
            return False
        if expires_at is None:
            logger.info("Clio token expiry unknown, refreshing")
        else:
            logger.info("Clio token expires at %s, refreshing", expires_at.isoformat())
        await self.refresh_access_token()
        return True
