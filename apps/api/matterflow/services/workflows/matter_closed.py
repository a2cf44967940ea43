"""Matter closed without payment: queue the green-folder purge task."""

from __future__ import annotations

from matterflow.db.enums import AssigneeRole, ErrorCode, EventType, ResourceType, SystemTaskNumber
from matterflow.schemas.clio import Matter, WebhookEnvelope
from matterflow.services import due_date_service
from matterflow.services.assignee_resolver import AssigneeError, build_assignee_error_task, resolve
from matterflow.services.clio_client import ClioApiError
from matterflow.services.error_log_service import log_error
from matterflow.services.task_generation import GenerationScope
from matterflow.services.template_service import DueAnchor
from matterflow.services.workflows.base import (
    BaseWorkflow,
    WorkflowAborted,
    WorkflowContext,
    WorkflowOutcome,
)
from matterflow.utils.datetimes import format_for_clio

NOT_ENGAGED_TITLE = "Client did not engage"
NOT_ENGAGED_DESCRIPTION = "Purge Green Folder - Client did not engage"
NOT_ENGAGED_DUE = DueAnchor(offset_magnitude=1)


class MatterClosedWorkflow(BaseWorkflow):
    trigger = "matter_closed"
    event_type = EventType.MATTER_CLOSED
    resource_type = ResourceType.MATTER

    def matter_id(self, envelope: WebhookEnvelope) -> int | None:
        return envelope.matter_id(resource_is_matter=True)

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        await ctx.consistency_delay()
        matter = await self.fetch_matter(ctx, envelope.data.id)
        if not matter.is_closed:
            return WorkflowOutcome(action="skipped_not_closed")

        try:
            paid = await ctx.clio.has_payments(matter.id)
        except ClioApiError as exc:
            log_error(
                ctx.db,
                ErrorCode.PAYMENT_CHECK_FAILED,
                f"Failed to check payments: {exc.message}",
                {"matter_id": matter.id},
            )
            raise WorkflowAborted("payment_check_failed", exc.message, cause=exc) from exc
        if paid:
            return WorkflowOutcome(action="skipped_has_payments")

        try:
            assignee = resolve(ctx.db, AssigneeRole.CSC.value, matter, app_settings=ctx.settings)
        except AssigneeError as exc:
            return await self._assignment_error(ctx, matter, exc)

        due = due_date_service.compute(NOT_ENGAGED_DUE, app_settings=ctx.settings)
        payload = {
            "name": NOT_ENGAGED_TITLE,
            "description": NOT_ENGAGED_DESCRIPTION,
            "matter": {"id": matter.id},
            "assignee": assignee.as_clio(),
            "due_at": format_for_clio(due),
        }
        task = await self._create(ctx, matter, payload)
        scope = GenerationScope(matter=matter, stage_id=matter.stage_id, stage_name=matter.stage_name)
        ctx.engine().record(
            scope,
            task,
            task_number=SystemTaskNumber.CLIENT_NOT_ENGAGED.value,
            assignee=assignee,
            due=due,
        )
        return WorkflowOutcome(action="task_created", tasks_created=1, details={"task_id": task.id})

    async def _assignment_error(
        self, ctx: WorkflowContext, matter: Matter, error: AssigneeError
    ) -> WorkflowOutcome:
        log_error(ctx.db, error.code, error.message, {"matter_id": matter.id, **error.context})
        payload = build_assignee_error_task(matter, error.message)
        payload["description"] = f"Unable to create closed matter task. {error.message}"
        task = await self._create(ctx, matter, payload)
        return WorkflowOutcome(
            action="error_task_created",
            details={"error_task_id": task.id, "error": error.message},
        )

    async def _create(self, ctx: WorkflowContext, matter: Matter, payload: dict):
        try:
            return await ctx.clio.create_task(payload)
        except ClioApiError as exc:
            log_error(
                ctx.db,
                ErrorCode.CLOSED_MATTER_TASK_FAILED,
                f"Failed to create closed matter task: {exc.message}",
                {"matter_id": matter.id},
            )
            raise WorkflowAborted("task_creation_failed", exc.message, cause=exc) from exc
