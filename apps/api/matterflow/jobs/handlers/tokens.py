"""Clio OAuth token refresh job."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from matterflow.jobs.context import JobContext
from matterflow.services.token_service import TokenRefreshError

logger = logging.getLogger(__name__)


async def run_refresh_token(ctx: JobContext) -> dict[str, Any]:
    """Refresh the access token when it expires within 24 hours."""
    started = time.monotonic()
    try:
        was_refreshed = await ctx.tokens.check_and_refresh()
    except (TokenRefreshError, httpx.HTTPError, SQLAlchemyError) as exc:
        logger.error("Token refresh job failed: %s", exc)
        return {
            "success": False,
            "error": str(exc),
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
    return {
        "success": True,
        "was_refreshed": was_refreshed,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
