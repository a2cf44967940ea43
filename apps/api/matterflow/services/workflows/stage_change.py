"""Matter stage change: generate (or refresh) the tasks for the new stage."""

from __future__ import annotations

import logging
from datetime import datetime

from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import ErrorCode, EventType, ResourceType
from matterflow.schemas.clio import Matter, WebhookEnvelope
from matterflow.services import matter_service, reference_service, task_service, template_service
from matterflow.services.clio_client import ClioApiError
from matterflow.services.error_log_service import log_error
from matterflow.services.task_generation import GenerationScope, TaskEngine
from matterflow.services.workflows.base import (
    BaseWorkflow,
    WorkflowContext,
    WorkflowOutcome,
    verify_and_merge,
)

logger = logging.getLogger(__name__)


def _template_error_code(templates: list) -> ErrorCode:
    return ErrorCode.TEMPLATE_DUPLICATE if templates else ErrorCode.TEMPLATE_MISSING


async def generate_stage_tasks(
    ctx: WorkflowContext,
    engine: TaskEngine,
    matter: Matter,
    *,
    created_action: str = "created_tasks",
    updated_action: str = "updated_tasks",
) -> WorkflowOutcome:
    """Load, validate and generate the stage's templates for ``matter``."""
    probate = template_service.is_probate(ctx.settings, matter.practice_area_id)
    templates = template_service.get_stage_templates(ctx.db, matter.stage_id, probate=probate)
    validation = template_service.validate_templates(templates)
    if not validation.valid:
        log_error(
            ctx.db,
            _template_error_code(templates),
            "; ".join(validation.errors),
            {"matter_id": matter.id, "stage_id": matter.stage_id, "probate": probate},
        )
        return WorkflowOutcome(
            action="template_validation_failed",
            success=False,
            details={"errors": validation.errors},
        )

    existing = task_service.get_tasks_by_matter_and_stage(ctx.db, matter.id, matter.stage_id)
    owned_by_meeting = [t for t in existing if t.calendar_entry_id is not None]
    if owned_by_meeting:
        logger.info(
            "Stage tasks already generated by a calendar entry, skipping",
            extra=build_log_context(matter_id=matter.id),
        )
        return WorkflowOutcome(
            action="skipped_calendar_tasks_exist",
            details={"calendar_entry_id": owned_by_meeting[0].calendar_entry_id},
        )

    scope = GenerationScope(matter=matter, stage_id=matter.stage_id, stage_name=matter.stage_name)
    missing = engine.check_for_missing_data(scope, templates)
    if missing:
        error_task = await engine.create_missing_data_error_task(scope, missing)
        return WorkflowOutcome(
            action="missing_data_error_task_created",
            details={"missing_fields": missing, "error_task_id": error_task.id},
        )

    templates = template_service.without_attempt_follow_ups(templates)
    if existing:
        result = await engine.update_or_create(scope, templates, existing)
        action = updated_action
    else:
        result = await engine.generate_tasks(scope, templates)
        action = created_action

    verification = await verify_and_merge(ctx, engine, scope, templates, result)
    details = {"stage_name": matter.stage_name}
    if verification is not None:
        details["verification"] = verification.as_dict()
    return WorkflowOutcome.from_generation(result, default_action=action, **details)


class StageChangeWorkflow(BaseWorkflow):
    trigger = "stage_change"
    event_type = EventType.MATTER_UPDATED
    resource_type = ResourceType.MATTER

    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        return envelope.data.matter_stage_updated_at or envelope.data.updated_at

    def matter_id(self, envelope: WebhookEnvelope) -> int | None:
        return envelope.matter_id(resource_is_matter=True)

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        await ctx.consistency_delay()
        matter = await self.fetch_matter(ctx, envelope.data.id)
        if matter.is_closed:
            return WorkflowOutcome(action="skipped_closed_matter")
        if matter.stage_id is None:
            log_error(ctx.db, ErrorCode.VALIDATION_MISSING_STAGE, None, {"matter_id": matter.id})
            return WorkflowOutcome(action="missing_stage", success=False)

        await self._sync_matter_status(ctx, matter)

        engine = ctx.engine()
        rolled_back = 0
        previous = matter_service.check_recent_stage_change(
            ctx.db, matter.id, matter.stage_id, ctx.settings.ROLLBACK_WINDOW_MINUTES
        )
        if previous is not None:
            logger.info(
                "Stage changed again within %s minutes, rolling back stage %s",
                ctx.settings.ROLLBACK_WINDOW_MINUTES,
                previous.stage_name,
                extra=build_log_context(matter_id=matter.id),
            )
            rolled_back = await engine.handle_rollback(matter.id, previous.stage_id)

        matter_service.upsert_matter_info(ctx.db, matter)
        matter_service.insert_history(ctx.db, matter.id, matter.stage_id, matter.stage_name)

        outcome = await generate_stage_tasks(ctx, engine, matter)
        if rolled_back:
            outcome.details["rolled_back_tasks"] = rolled_back
        return outcome

    async def _sync_matter_status(self, ctx: WorkflowContext, matter: Matter) -> None:
        status = reference_service.get_matter_status_for_stage(ctx.db, matter.stage_name)
        if not status or status == matter.status:
            return
        try:
            await ctx.clio.update_matter_status(matter.id, status)
        except ClioApiError as exc:
            logger.warning(
                "Could not update matter status to %s: %s",
                status,
                exc.message,
                extra=build_log_context(matter_id=matter.id),
            )
