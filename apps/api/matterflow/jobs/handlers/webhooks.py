"""Clio webhook subscription renewal job."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from matterflow.jobs.context import JobContext
from matterflow.services.clio_client import ClioApiError
from matterflow.utils.datetimes import utc_now

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "enabled"


async def run_renew_webhooks(ctx: JobContext) -> dict[str, Any]:
    """
    Push out the expiry of active subscriptions that lapse soon.

    Clio disables a webhook at its expires_at; anything expiring within
    WEBHOOK_RENEW_WITHIN_DAYS is extended to WEBHOOK_RENEW_EXTEND_DAYS out.
    """
    now = utc_now()
    renew_before = now + timedelta(days=ctx.settings.WEBHOOK_RENEW_WITHIN_DAYS)
    new_expiry = now + timedelta(days=ctx.settings.WEBHOOK_RENEW_EXTEND_DAYS)

    try:
        subscriptions = await ctx.clio.list_webhooks()
    except ClioApiError as exc:
        logger.error("Could not list webhooks: %s", exc.message)
        return {"success": False, "renewed": 0, "failed": 0, "results": [], "error": exc.message}

    results: list[dict[str, Any]] = []
    renewed = 0
    failed = 0
    for webhook in subscriptions:
        if webhook.status and webhook.status != ACTIVE_STATUS:
            continue
        if webhook.expires_at is not None and webhook.expires_at > renew_before:
            continue
        try:
            updated = await ctx.clio.renew_webhook(webhook.id, new_expiry)
        except ClioApiError as exc:
            failed += 1
            logger.warning("Failed to renew webhook %s: %s", webhook.id, exc.message)
            results.append({"id": webhook.id, "success": False, "error": exc.message})
            continue
        renewed += 1
        expires_at = updated.expires_at or new_expiry
        results.append({"id": webhook.id, "success": True, "expires_at": expires_at.isoformat()})

    logger.info("Webhook renewal: %s renewed, %s failed", renewed, failed)
    return {"success": failed == 0, "renewed": renewed, "failed": failed, "results": results}
