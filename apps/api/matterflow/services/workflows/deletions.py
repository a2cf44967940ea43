"""Task and calendar entry deletions."""

from __future__ import annotations

import logging
from datetime import datetime

from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import EventType, ResourceType
from matterflow.schemas.clio import WebhookEnvelope
from matterflow.services import matter_service, task_service
from matterflow.services.clio_client import ClioApiError
from matterflow.services.workflows.base import BaseWorkflow, WorkflowContext, WorkflowOutcome

logger = logging.getLogger(__name__)


class _DeletionWorkflow(BaseWorkflow):
    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        data = envelope.data
        return data.deleted_at or envelope.occurred_at or data.updated_at


class TaskDeletedWorkflow(_DeletionWorkflow):
    trigger = "task_deleted"
    event_type = EventType.TASK_DELETED
    resource_type = ResourceType.TASK

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        task = task_service.mark_deleted(ctx.db, envelope.data.id)
        if task is None:
            return WorkflowOutcome(action="task_not_found")
        return WorkflowOutcome(action="task_marked_deleted", details={"task_id": task.task_id})


class CalendarEntryDeletedWorkflow(_DeletionWorkflow):
    """Remove the meeting's open tasks; completed work stays."""

    trigger = "calendar_entry_deleted"
    event_type = EventType.CALENDAR_ENTRY_DELETED
    resource_type = ResourceType.CALENDAR_ENTRY

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        entry_id = envelope.data.id
        tasks = task_service.get_tasks_by_calendar_entry(ctx.db, entry_id, incomplete_only=True)
        removed = 0
        for task in tasks:
            log_context = build_log_context(calendar_entry_id=entry_id, task_id=task.task_id)
            try:
                if not await ctx.clio.delete_task(task.task_id):
                    logger.info("Task already gone from Clio", extra=log_context)
            except ClioApiError as exc:
                logger.warning("Failed to delete task in Clio: %s", exc.message, extra=log_context)
            task_service.mark_deleted(ctx.db, task.task_id)
            removed += 1

        bookings = matter_service.mark_booking_cancelled(ctx.db, entry_id)
        return WorkflowOutcome(
            action="calendar_tasks_removed",
            details={"tasks_removed": removed, "bookings_cancelled": bookings},
        )
