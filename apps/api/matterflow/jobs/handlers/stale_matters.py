"""
Stale matter alerts.

Tracks how long each matter has sat in its current stage. A matter that
has not moved for STALE_INITIAL_ALERT_DAYS gets a one-off review task;
matters parked in the funding stage get a reminder every
STALE_RECURRING_ALERT_DAYS instead.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.db.models import MatterHistory, MatterStageTracking
from matterflow.jobs.context import JobContext
from matterflow.services import matter_service
from matterflow.services.clio_client import ClioApiError, ClioClient, Found, NotFound
from matterflow.utils.datetimes import add_business_days, ensure_utc, format_for_clio, utc_now

logger = logging.getLogger(__name__)

INITIAL_ALERT_TITLE = "Action Required: MATTER HAS NO PROGRESS - PLEASE REVIEW"
RECURRING_ALERT_TITLE = "30 Day Notification"


def sync_tracking(db: Session, latest: MatterHistory) -> MatterStageTracking:
    """Keep one tracking row per matter, reset whenever the stage changes."""
    tracking = (
        db.query(MatterStageTracking)
        .filter(MatterStageTracking.matter_id == latest.matter_id)
        .first()
    )
    if tracking is not None and tracking.stage_name == latest.stage_name:
        return tracking

    entered = matter_service.first_entered_stage(db, latest.matter_id, latest.stage_name) or latest.date
    if tracking is None:
        tracking = MatterStageTracking(matter_id=latest.matter_id)
        db.add(tracking)
    tracking.stage_name = latest.stage_name
    tracking.stage_entered_at = entered
    tracking.initial_notification_sent = False
    tracking.initial_notification_sent_at = None
    tracking.last_recurring_notification_at = None
    tracking.recurring_notification_count = 0
    db.commit()
    return tracking


def alert_due(tracking: MatterStageTracking, app_settings: Settings, now: datetime) -> str | None:
    """"initial", "recurring" or None."""
    entered = ensure_utc(tracking.stage_entered_at)
    if tracking.stage_name == app_settings.STALE_FUNDING_STAGE_NAME:
        last = ensure_utc(tracking.last_recurring_notification_at) or entered
        if now - last >= timedelta(days=app_settings.STALE_RECURRING_ALERT_DAYS):
            return "recurring"
        return None
    if tracking.initial_notification_sent:
        return None
    if now - entered >= timedelta(days=app_settings.STALE_INITIAL_ALERT_DAYS):
        return "initial"
    return None


async def _create_alert(
    clio: ClioClient,
    app_settings: Settings,
    tracking: MatterStageTracking,
    kind: str,
    now: datetime,
) -> int:
    days = (now - ensure_utc(tracking.stage_entered_at)).days
    if kind == "initial":
        name = INITIAL_ALERT_TITLE
        due = add_business_days(now, app_settings.STALE_INITIAL_DUE_BUSINESS_DAYS)
        assignee_id = app_settings.STALE_INITIAL_ASSIGNEE_ID
    else:
        name = RECURRING_ALERT_TITLE
        due = add_business_days(now, app_settings.STALE_RECURRING_DUE_BUSINESS_DAYS)
        assignee_id = app_settings.STALE_RECURRING_ASSIGNEE_ID
    task = await clio.create_task(
        {
            "name": name,
            "description": f"Matter has been in {tracking.stage_name} for {days} days.",
            "matter": {"id": tracking.matter_id},
            "assignee": {"id": assignee_id, "type": "User"},
            "due_at": format_for_clio(due),
        }
    )
    return task.id


async def run_stale_matters(ctx: JobContext) -> dict[str, Any]:
    now = utc_now()
    summary = {"checked": 0, "initial_alerts": 0, "recurring_alerts": 0, "skipped_closed": 0, "errors": 0}

    with ctx.session_factory() as db:
        try:
            latest_rows = matter_service.latest_history_by_matter(db)
        except SQLAlchemyError as exc:
            logger.error("Stale matter job could not read history: %s", exc)
            return {"success": False, "error": str(exc), **summary}

        for latest in latest_rows:
            summary["checked"] += 1
            try:
                tracking = sync_tracking(db, latest)
            except SQLAlchemyError as exc:
                db.rollback()
                summary["errors"] += 1
                logger.warning("Tracking update for matter %s failed: %s", latest.matter_id, exc)
                continue
            kind = alert_due(tracking, ctx.settings, now)
            if kind is None:
                continue

            fetched = await ctx.clio.get_matter(tracking.matter_id)
            if isinstance(fetched, NotFound) or (
                isinstance(fetched, Found) and fetched.value.is_closed
            ):
                summary["skipped_closed"] += 1
                continue
            if not isinstance(fetched, Found):
                summary["errors"] += 1
                logger.warning(
                    "Could not fetch matter %s: %s", tracking.matter_id, fetched.error.message
                )
                continue

            try:
                task_id = await _create_alert(ctx.clio, ctx.settings, tracking, kind, now)
            except ClioApiError as exc:
                summary["errors"] += 1
                logger.warning("Stale alert for matter %s failed: %s", tracking.matter_id, exc.message)
                continue

            matter_id = tracking.matter_id
            if kind == "initial":
                tracking.initial_notification_sent = True
                tracking.initial_notification_sent_at = now
            else:
                tracking.last_recurring_notification_at = now
                tracking.recurring_notification_count += 1
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                summary["errors"] += 1
                logger.warning(
                    "Stale alert task %s created but tracking for matter %s not saved: %s",
                    task_id,
                    matter_id,
                    exc,
                )
                continue
            summary[f"{kind}_alerts"] += 1
            logger.info("Created %s stale alert task %s for matter %s", kind, task_id, matter_id)

    return {"success": summary["errors"] == 0, **summary}
