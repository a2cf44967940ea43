"""Scheduled job registry."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from matterflow.jobs.context import JobContext
from matterflow.jobs.handlers import cleanup, stale_matters, tokens, webhooks

JobHandler = Callable[[JobContext], Awaitable[dict[str, Any]]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    "refresh_token": tokens.run_refresh_token,
    "renew_webhooks": webhooks.run_renew_webhooks,
    "stale_matters": stale_matters.run_stale_matters,
    "cleanup_events": cleanup.run_cleanup_events,
}


def resolve_job_handler(name: str) -> JobHandler:
    handler = JOB_HANDLERS.get(name.replace("-", "_"))
    if not handler:
        raise ValueError(f"Unknown job: {name}")
    return handler
