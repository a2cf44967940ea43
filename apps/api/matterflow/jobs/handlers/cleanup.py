"""Error log retention job."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from matterflow.db.models import ErrorLog
from matterflow.jobs.context import JobContext
from matterflow.utils.datetimes import utc_now

logger = logging.getLogger(__name__)


async def run_cleanup_events(ctx: JobContext) -> dict[str, Any]:
    """Delete error log rows older than RETENTION_DAYS. The webhook ledger is kept."""
    cutoff = utc_now() - timedelta(days=ctx.settings.RETENTION_DAYS)
    with ctx.session_factory() as db:
        try:
            deleted = (
                db.query(ErrorLog)
                .filter(ErrorLog.created_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error log cleanup failed: %s", exc)
            return {"success": False, "deleted": 0, "error": str(exc)}
    logger.info("Deleted %s error log rows older than %s", deleted, cutoff.isoformat())
    return {"success": True, "deleted": deleted, "cutoff": cutoff.isoformat()}
