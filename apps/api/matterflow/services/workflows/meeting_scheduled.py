"""Calendar entry created or updated: generate the meeting's task list."""

from __future__ import annotations

import logging
from datetime import datetime

from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import ErrorCode, EventType, ResourceType, TaskPriority
from matterflow.db.models import CalendarEventMapping
from matterflow.schemas.clio import CalendarEntry, WebhookEnvelope
from matterflow.services import matter_service, reference_service, task_service, template_service
from matterflow.services.assignee_resolver import Assignee, extract_location_keyword
from matterflow.services.clio_client import FetchFailed, NotFound
from matterflow.services.error_log_service import log_error
from matterflow.services.task_generation import GenerationScope
from matterflow.services.workflows.base import (
    BaseWorkflow,
    WorkflowAborted,
    WorkflowContext,
    WorkflowOutcome,
    verify_and_merge,
)
from matterflow.utils.datetimes import format_for_clio, utc_now

logger = logging.getLogger(__name__)


class MeetingScheduledWorkflow(BaseWorkflow):
    trigger = "meeting_scheduled"
    event_type = EventType.CALENDAR_ENTRY_CREATED
    resource_type = ResourceType.CALENDAR_ENTRY

    @staticmethod
    def _is_update(envelope: WebhookEnvelope) -> bool:
        data = envelope.data
        return data.updated_at is not None and data.updated_at != data.created_at

    def event_type_for(self, envelope: WebhookEnvelope) -> str:
        if self._is_update(envelope):
            return EventType.CALENDAR_ENTRY_UPDATED.value
        return EventType.CALENDAR_ENTRY_CREATED.value

    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        if self._is_update(envelope):
            return envelope.data.updated_at
        return envelope.data.created_at or envelope.data.updated_at

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        entry = await self._fetch_entry(ctx, envelope.data.id)
        if entry is None:
            return WorkflowOutcome(action="not_found")

        if entry.start_at is None:
            log_error(
                ctx.db,
                ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
                "Calendar entry missing start_at",
                {"calendar_entry_id": entry.id},
            )
            return WorkflowOutcome(action="missing_meeting_date", success=False)

        event_type = entry.calendar_entry_event_type
        if event_type is None or event_type.id is None:
            return WorkflowOutcome(action="skipped_no_event_type")
        if entry.matter is None or entry.matter.id is None:
            return WorkflowOutcome(action="no_matter")

        mapping = reference_service.get_calendar_event_mapping(ctx.db, event_type.id)
        if mapping is None:
            return WorkflowOutcome(action="not_mapped", details={"event_type_id": event_type.id})

        matter_service.upsert_meeting_booking(
            ctx.db,
            matter_id=entry.matter.id,
            calendar_event_id=event_type.id,
            calendar_entry_id=entry.id,
            stage_id=mapping.stage_id,
            stage_name=mapping.stage_name,
            date=entry.start_at,
            location=entry.location,
        )

        matter = await self.fetch_matter(ctx, entry.matter.id)
        if matter.is_closed:
            return WorkflowOutcome(action="skipped_closed_matter")

        templates = template_service.get_meeting_templates(ctx.db, event_type.id)
        if not templates:
            return WorkflowOutcome(action="no_templates", details={"event_type_id": event_type.id})
        validation = template_service.validate_templates(templates)
        if not validation.valid:
            log_error(
                ctx.db,
                ErrorCode.TEMPLATE_DUPLICATE,
                "; ".join(validation.errors),
                {"matter_id": matter.id, "calendar_entry_id": entry.id},
            )
            return WorkflowOutcome(
                action="template_validation_failed",
                success=False,
                details={"errors": validation.errors},
            )

        signing = bool(mapping.uses_meeting_location)
        scope = GenerationScope(
            matter=matter,
            stage_id=mapping.stage_id,
            stage_name=mapping.stage_name,
            calendar_entry_id=entry.id,
            meeting_start=entry.start_at,
            meeting_location=entry.location if signing else None,
            meeting_location_required=signing,
        )
        engine = ctx.engine()

        missing = engine.check_for_missing_data(scope, templates)
        if missing:
            error_task = await engine.create_missing_data_error_task(scope, missing)
            return WorkflowOutcome(
                action="missing_data_error_task_created",
                details={"missing_fields": missing, "error_task_id": error_task.id},
            )

        owned = task_service.get_tasks_by_calendar_entry(ctx.db, entry.id)
        if owned:
            result = await engine.refresh_meeting_tasks(scope, templates, owned, link=False)
            action = "tasks_updated"
        else:
            stage_tasks = [
                t
                for t in task_service.get_tasks_by_matter_and_stage(ctx.db, matter.id, mapping.stage_id)
                if t.calendar_entry_id is None
            ]
            if stage_tasks:
                result = await engine.refresh_meeting_tasks(scope, templates, stage_tasks, link=True)
                action = "tasks_linked_and_updated"
            else:
                if signing and any(t.uses_location for t in templates):
                    outcome = await self._check_meeting_location(ctx, scope, mapping, entry)
                    if outcome is not None:
                        return outcome
                result = await engine.generate_tasks(scope, templates)
                action = "tasks_created"

        verification = await verify_and_merge(ctx, engine, scope, templates, result)
        details = {"calendar_entry_id": entry.id, "stage_name": mapping.stage_name}
        if verification is not None:
            details["verification"] = verification.as_dict()
        return WorkflowOutcome.from_generation(result, default_action=action, **details)

    async def _fetch_entry(self, ctx: WorkflowContext, entry_id: int) -> CalendarEntry | None:
        fetched = await ctx.clio.get_calendar_entry(entry_id)
        if isinstance(fetched, NotFound):
            return None
        if isinstance(fetched, FetchFailed):
            log_error(
                ctx.db,
                ErrorCode.CLIO_API_FAILED,
                f"Failed to fetch calendar entry {entry_id}: {fetched.error.message}",
                {"calendar_entry_id": entry_id},
            )
            raise WorkflowAborted("clio_fetch_failed", fetched.error.message, cause=fetched.error)
        return fetched.value

    async def _check_meeting_location(
        self,
        ctx: WorkflowContext,
        scope: GenerationScope,
        mapping: CalendarEventMapping,
        entry: CalendarEntry,
    ) -> WorkflowOutcome | None:
        """Signing meetings need a recognizable location before anything is created."""
        if entry.location and extract_location_keyword(ctx.db, entry.location):
            return None

        code = ErrorCode.MEETING_INVALID_LOCATION if entry.location else ErrorCode.MEETING_NO_LOCATION
        keywords = reference_service.get_location_keywords(ctx.db)
        fallback = Assignee(
            id=ctx.settings.FALLBACK_ASSIGNEE_ID, name=ctx.settings.FALLBACK_ASSIGNEE_NAME
        )
        current = entry.location or "(empty)"
        task = await ctx.clio.create_task(
            {
                "name": f"⚠️ Meeting Location Empty - {mapping.stage_name}",
                "description": (
                    f"The meeting location is {current}. Update the calendar entry with a "
                    f"location containing one of: {', '.join(keywords)}. "
                    "Tasks will be generated once the meeting is updated."
                ),
                "matter": {"id": scope.matter.id},
                "assignee": fallback.as_clio(),
                "due_at": format_for_clio(utc_now()),
                "priority": TaskPriority.HIGH.value,
            }
        )
        log_error(
            ctx.db,
            code,
            None,
            {**scope.log_context(), "meeting_location": entry.location, "error_task_id": task.id},
        )
        logger.warning(
            "Meeting location unusable, created error task %s",
            task.id,
            extra=build_log_context(matter_id=scope.matter.id, calendar_entry_id=entry.id),
        )
        return WorkflowOutcome(action="error_task_created", details={"error_task_id": task.id})

