"""
Task completion follow-ups.

Completing a task can advance an attempt sequence, regenerate a stage whose
missing-data error task was resolved, or schedule templates that were
waiting on this task's number. The first follow-up that applies wins.
"""

from __future__ import annotations

import logging
from datetime import datetime

from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import ErrorCode, EventType, ResourceType, SystemTaskNumber
from matterflow.db.models import Task
from matterflow.schemas.clio import ClioTask, Matter, WebhookEnvelope
from matterflow.services import due_date_service, reference_service, task_service, template_service
from matterflow.services.assignee_resolver import AssigneeError
from matterflow.services.clio_client import ClioApiError, FetchFailed, Found, NotFound
from matterflow.services.error_log_service import log_error
from matterflow.services.task_generation import GenerationResult, GenerationScope, TaskEngine
from matterflow.services.template_service import ParsedTemplate
from matterflow.services.workflows.base import (
    BaseWorkflow,
    WorkflowAborted,
    WorkflowContext,
    WorkflowOutcome,
)
from matterflow.services.workflows.stage_change import generate_stage_tasks
from matterflow.utils.datetimes import format_for_clio, utc_now

logger = logging.getLogger(__name__)


class TaskCompletedWorkflow(BaseWorkflow):
    trigger = "task_completed"
    event_type = EventType.TASK_COMPLETED
    resource_type = ResourceType.TASK

    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        return envelope.data.completed_at or envelope.data.updated_at

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        task_id = envelope.data.id
        record = task_service.get_task(ctx.db, task_id)

        fetched = await ctx.clio.get_task(task_id)
        if isinstance(fetched, NotFound):
            if record is None:
                return WorkflowOutcome(action="not_found")
            task_service.mark_deleted(ctx.db, task_id)
            return WorkflowOutcome(action="task_deleted")
        if isinstance(fetched, FetchFailed):
            log_error(
                ctx.db,
                ErrorCode.CLIO_API_FAILED,
                f"Failed to fetch task {task_id}: {fetched.error.message}",
                {"task_id": task_id},
            )
            raise WorkflowAborted("clio_fetch_failed", fetched.error.message, cause=fetched.error)

        clio_task = fetched.value
        if clio_task.matter is None or clio_task.matter.id is None:
            log_error(ctx.db, ErrorCode.VALIDATION_MISSING_MATTER, None, {"task_id": task_id})
            return WorkflowOutcome(action="missing_matter", success=False)
        if record is None:
            return WorkflowOutcome(action="not_found")

        if not clio_task.is_complete:
            if record.completed:
                task_service.mark_reopened(ctx.db, task_id)
                return WorkflowOutcome(action="task_reopened")
            return WorkflowOutcome(action="skipped_not_completed")

        task_service.mark_completed(ctx.db, task_id)

        matter = await self.fetch_matter(ctx, clio_task.matter.id)
        if matter.is_closed:
            return WorkflowOutcome(action="skipped_closed_matter")

        engine = ctx.engine()

        outcome = await self._attempt_sequence(ctx, engine, matter, record, clio_task)
        if outcome is not None:
            return outcome

        if record.task_number == SystemTaskNumber.MISSING_DATA:
            if matter.stage_id is None:
                log_error(ctx.db, ErrorCode.VALIDATION_MISSING_STAGE, None, {"matter_id": matter.id})
                return WorkflowOutcome(action="missing_stage", success=False)
            return await generate_stage_tasks(
                ctx,
                engine,
                matter,
                created_action="error_task_regenerated",
                updated_action="error_task_regenerated",
            )

        outcome = await self._dependents(ctx, engine, matter, record)
        if outcome is not None:
            return outcome
        return WorkflowOutcome(action="none")

    def _stage_templates(self, ctx: WorkflowContext, matter: Matter, record: Task) -> list[ParsedTemplate]:
        probate = template_service.is_probate(ctx.settings, matter.practice_area_id)
        return template_service.get_stage_templates(ctx.db, record.stage_id, probate=probate)

    def _scope(self, matter: Matter, record: Task) -> GenerationScope:
        return GenerationScope(
            matter=matter,
            stage_id=record.stage_id,
            stage_name=record.stage_name,
            calendar_entry_id=record.calendar_entry_id,
        )

    async def _attempt_sequence(
        self,
        ctx: WorkflowContext,
        engine: TaskEngine,
        matter: Matter,
        record: Task,
        clio_task: ClioTask,
    ) -> WorkflowOutcome | None:
        name = (clio_task.name or record.task_name or "").lower()
        sequence = next(
            (
                s
                for s in reference_service.get_attempt_sequences(ctx.db)
                if s.current_attempt and s.current_attempt.lower() in name
            ),
            None,
        )
        if sequence is None:
            return None

        next_name = (sequence.next_attempt or "").lower()
        template = next(
            (
                t
                for t in self._stage_templates(ctx, matter, record)
                if next_name and next_name in (t.title or "").lower()
            ),
            None,
        )
        log_context = build_log_context(matter_id=matter.id, task_id=record.task_id)
        if template is None:
            log_error(
                ctx.db,
                ErrorCode.TEMPLATE_NOT_FOUND,
                f'No template found for next attempt "{sequence.next_attempt}"',
                {"matter_id": matter.id, "task_id": record.task_id, "stage_id": record.stage_id},
            )
            return WorkflowOutcome(
                action="attempt_sequence",
                success=False,
                details={"next_attempt": sequence.next_attempt, "error": "template_not_found"},
            )

        scope = self._scope(matter, record)
        result = GenerationResult()
        try:
            assignee = engine.resolve_assignee(scope, template)
            task = await engine.create_from_template(scope, template, assignee)
        except AssigneeError as exc:
            log_error(ctx.db, exc.code, exc.message, {**scope.log_context(), **exc.context})
            result.fail(template, exc.message, exc.code)
        except ClioApiError as exc:
            log_error(ctx.db, ErrorCode.CLIO_API_FAILED, exc.message, scope.log_context())
            result.fail(template, exc.message, ErrorCode.CLIO_API_FAILED)
        else:
            result.created += 1
            logger.info(
                "Attempt sequence advanced to %s (task %s)",
                sequence.next_attempt,
                task.id,
                extra=log_context,
            )
        outcome = WorkflowOutcome.from_generation(
            result, default_action="attempt_sequence", next_attempt=sequence.next_attempt
        )
        outcome.action = "attempt_sequence"
        return outcome

    async def _dependents(
        self,
        ctx: WorkflowContext,
        engine: TaskEngine,
        matter: Matter,
        record: Task,
    ) -> WorkflowOutcome | None:
        if record.task_number is None:
            return None
        dependents = template_service.dependents_of(
            self._stage_templates(ctx, matter, record), record.task_number
        )
        if not dependents:
            return None

        scope = self._scope(matter, record)
        existing = {
            t.task_number: t
            for t in task_service.get_tasks_by_matter_and_stage(ctx.db, matter.id, record.stage_id)
        }
        result = GenerationResult()
        for template in dependents:
            due = due_date_service.compute(template.anchor, due_date_service.NOW, ctx.settings)
            current = existing.get(template.task_number)
            if current is not None and current.completed:
                result.skipped += 1
                continue
            if current is not None and await self._reschedule(ctx, scope, template, current, due, result):
                continue
            try:
                assignee = engine.resolve_assignee(scope, template)
                await engine.create_from_template(scope, template, assignee, due=due)
            except AssigneeError as exc:
                log_error(ctx.db, exc.code, exc.message, {**scope.log_context(), **exc.context})
                result.fail(template, exc.message, exc.code)
                continue
            except ClioApiError as exc:
                log_error(ctx.db, ErrorCode.CLIO_API_FAILED, exc.message, scope.log_context())
                result.fail(template, exc.message, ErrorCode.CLIO_API_FAILED)
                continue
            result.created += 1

        return WorkflowOutcome.from_generation(result, default_action="dependent_tasks")

    async def _reschedule(
        self,
        ctx: WorkflowContext,
        scope: GenerationScope,
        template: ParsedTemplate,
        current: Task,
        due: datetime,
        result: GenerationResult,
    ) -> bool:
        """Move an existing dependent's due date. False means it must be recreated."""
        outcome = await ctx.clio.update_task(current.task_id, {"due_at": format_for_clio(due)})
        if isinstance(outcome, Found):
            task_service.update_task(
                ctx.db, current.task_id, due_date=due.date(), due_date_generated=utc_now()
            )
            result.updated += 1
            return True
        if isinstance(outcome, NotFound):
            task_service.mark_deleted(ctx.db, current.task_id)
            log_error(
                ctx.db,
                ErrorCode.TASK_NOT_FOUND_IN_CLIO,
                None,
                {**scope.log_context(), "task_id": current.task_id},
            )
            return False
        result.fail(template, outcome.error.message, ErrorCode.CLIO_API_FAILED)
        return True
