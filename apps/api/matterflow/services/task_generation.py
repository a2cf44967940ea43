"""
Template-driven task generation.

One engine instance serves one workflow run. Template-level failures are
collected into the result and never abort the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import ErrorCode, SystemTaskNumber, TaskPriority
from matterflow.db.models import Task
from matterflow.schemas.clio import ClioTask, Matter
from matterflow.services import due_date_service, task_service
from matterflow.services.assignee_resolver import (
    Assignee,
    AssigneeError,
    build_assignee_error_task,
    resolve_for_template,
)
from matterflow.services.clio_client import ClioApiError, ClioClient, Found, NotFound
from matterflow.services.error_log_service import log_error
from matterflow.services.task_service import TaskRecordData
from matterflow.services.template_service import ParsedTemplate
from matterflow.utils.datetimes import format_for_clio, utc_now

logger = logging.getLogger(__name__)


@dataclass
class GenerationScope:
    """What a generation pass is for: a matter stage, optionally one meeting."""

    matter: Matter
    stage_id: int | None
    stage_name: str | None
    calendar_entry_id: int | None = None
    meeting_start: datetime | None = None
    meeting_location: str | None = None
    meeting_location_required: bool = False

    def log_context(self) -> dict[str, Any]:
        return {
            "matter_id": self.matter.id,
            "stage_id": self.stage_id,
            "stage_name": self.stage_name,
            "calendar_entry_id": self.calendar_entry_id,
        }


@dataclass
class TaskFailure:
    task_title: str | None
    task_number: int | None
    error: str
    error_code: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "task_title": self.task_title,
            "task_number": self.task_number,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class GenerationResult:
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[TaskFailure] = field(default_factory=list)
    error_task_ids: list[int] = field(default_factory=list)

    @property
    def needs_verification(self) -> bool:
        return self.created > 0 or self.failed > 0

    def fail(self, template: ParsedTemplate, error: str, code: ErrorCode | str) -> None:
        self.failed += 1
        self.failures.append(
            TaskFailure(
                task_title=template.title,
                task_number=template.task_number,
                error=error,
                error_code=code.value if isinstance(code, ErrorCode) else code,
            )
        )

    def merge(self, other: "GenerationResult") -> "GenerationResult":
        self.created += other.created
        self.updated += other.updated
        self.failed += other.failed
        self.skipped += other.skipped
        self.failures.extend(other.failures)
        self.error_task_ids.extend(other.error_task_ids)
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "tasks_created": self.created,
            "tasks_updated": self.updated,
            "tasks_failed": self.failed,
            "tasks_skipped": self.skipped,
            "failures": [failure.as_dict() for failure in self.failures],
        }


class TaskEngine:
    def __init__(self, db: Session, clio: ClioClient, app_settings: Settings):
        self.db = db
        self.clio = clio
        self.settings = app_settings

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def resolve_assignee(self, scope: GenerationScope, template: ParsedTemplate) -> Assignee:
        return resolve_for_template(
            self.db,
            template,
            scope.matter,
            meeting_location=scope.meeting_location,
            meeting_location_required=scope.meeting_location_required,
            app_settings=self.settings,
        )

    def due_for(self, scope: GenerationScope, template: ParsedTemplate) -> datetime | None:
        return due_date_service.for_template(
            template, meeting_start=scope.meeting_start, app_settings=self.settings
        )

    def _log_template_error(
        self,
        scope: GenerationScope,
        template: ParsedTemplate,
        code: ErrorCode,
        message: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        context = {**scope.log_context(), "template_title": template.title, **(extra or {})}
        log_error(self.db, code, message, context)

    def record(
        self,
        scope: GenerationScope,
        clio_task: ClioTask,
        *,
        task_number: int | None,
        assignee: Assignee | None,
        due: datetime | None,
        verification: bool = False,
    ) -> Task | None:
        """Mirror a created Clio task; a store failure is logged, not raised."""
        data = TaskRecordData(
            task_id=clio_task.id,
            task_name=clio_task.name or "",
            task_desc=clio_task.description,
            matter_id=scope.matter.id,
            assigned_user_id=assignee.id if assignee else None,
            assigned_user=assignee.name if assignee else "Unassigned",
            due_date=due.date() if due else None,
            stage_id=scope.stage_id,
            stage_name=scope.stage_name,
            task_number=task_number,
            calendar_entry_id=scope.calendar_entry_id,
            verification_attempted=verification,
        )
        try:
            return task_service.insert_task(self.db, data)
        except SQLAlchemyError as exc:
            self.db.rollback()
            log_error(
                self.db,
                ErrorCode.STORE_SYNC_FAILED,
                f"Task created in Clio but failed to record locally: {exc}",
                {**scope.log_context(), "task_id": clio_task.id, "task_number": task_number},
            )
            return None

    async def create_from_template(
        self,
        scope: GenerationScope,
        template: ParsedTemplate,
        assignee: Assignee,
        *,
        verification: bool = False,
        due: datetime | None = None,
    ) -> ClioTask:
        """Create one task in Clio and record it. Raises ClioApiError."""
        if due is None:
            due = self.due_for(scope, template)
        payload: dict[str, Any] = {
            "name": template.title,
            "description": template.description,
            "matter": {"id": scope.matter.id},
            "assignee": assignee.as_clio(),
        }
        if due is not None:
            payload["due_at"] = format_for_clio(due)

        clio_task = await self.clio.create_task(payload)
        self.record(
            scope,
            clio_task,
            task_number=template.task_number,
            assignee=assignee,
            due=due,
            verification=verification,
        )
        logger.info(
            "Created task %s for template %s",
            clio_task.id,
            template.task_number,
            extra=build_log_context(matter_id=scope.matter.id, task_id=clio_task.id),
        )
        return clio_task

    async def _create_counted(
        self,
        scope: GenerationScope,
        template: ParsedTemplate,
        assignee: Assignee,
        result: GenerationResult,
        *,
        verification: bool = False,
    ) -> None:
        try:
            await self.create_from_template(scope, template, assignee, verification=verification)
        except ClioApiError as exc:
            message = f"Failed to create task in Clio: {exc.message}"
            self._log_template_error(scope, template, ErrorCode.CLIO_API_FAILED, message)
            result.fail(template, f"Clio API failed: {exc.message}", ErrorCode.CLIO_API_FAILED)
            return
        result.created += 1

    async def _assignment_error_task(
        self, scope: GenerationScope, error: AssigneeError
    ) -> int | None:
        payload = build_assignee_error_task(scope.matter, error.message)
        payload["description"] = (
            f"Unable to generate tasks for stage {scope.stage_name}. {error.message}"
        )
        try:
            task = await self.clio.create_task(payload)
        except ClioApiError as exc:
            logger.error(
                "Could not create assignment error task: %s",
                exc.message,
                extra=build_log_context(matter_id=scope.matter.id),
            )
            return None
        return task.id

    async def _handle_assignee_error(
        self,
        scope: GenerationScope,
        template: ParsedTemplate,
        error: AssigneeError,
        result: GenerationResult,
        *,
        skip_unresolvable: bool = False,
    ) -> None:
        if error.code is ErrorCode.ASSIGNEE_NO_ATTORNEY:
            error_task_id = await self._assignment_error_task(scope, error)
            self._log_template_error(
                scope,
                template,
                error.code,
                error.message,
                {**error.context, "error_task_id": error_task_id},
            )
            if error_task_id is not None:
                result.error_task_ids.append(error_task_id)
            result.skipped += 1
            return

        self._log_template_error(scope, template, error.code, error.message, error.context)
        if skip_unresolvable:
            result.skipped += 1
        else:
            result.fail(template, error.message, error.code)

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    async def generate_tasks(
        self, scope: GenerationScope, templates: list[ParsedTemplate]
    ) -> GenerationResult:
        """Create mode: nothing exists yet for this scope."""
        result = GenerationResult()
        for template in templates:
            try:
                assignee = self.resolve_assignee(scope, template)
            except AssigneeError as exc:
                await self._handle_assignee_error(scope, template, exc, result)
                continue
            await self._create_counted(scope, template, assignee, result)
        return result

    async def update_or_create(
        self,
        scope: GenerationScope,
        templates: list[ParsedTemplate],
        existing: list[Task],
        *,
        only_meeting_relative: bool = False,
        skip_unresolvable: bool = False,
    ) -> GenerationResult:
        """
        Refresh existing tasks in place and create the missing ones.

        Completed tasks are never touched. With ``only_meeting_relative``,
        existing tasks from creation-anchored templates keep their due date.
        """
        result = GenerationResult()
        by_number = {task.task_number: task for task in existing if task.task_number is not None}

        for template in templates:
            current = by_number.get(template.task_number)
            if current is not None and current.completed:
                result.skipped += 1
                continue
            if current is not None and only_meeting_relative and not template.is_meeting_relative:
                continue

            try:
                assignee = self.resolve_assignee(scope, template)
            except AssigneeError as exc:
                await self._handle_assignee_error(
                    scope, template, exc, result, skip_unresolvable=skip_unresolvable
                )
                continue

            if current is None:
                await self._create_counted(scope, template, assignee, result)
                continue

            await self._update_existing(scope, template, current, assignee, result)

        return result

    async def _update_existing(
        self,
        scope: GenerationScope,
        template: ParsedTemplate,
        current: Task,
        assignee: Assignee,
        result: GenerationResult,
    ) -> None:
        due = self.due_for(scope, template)
        updates: dict[str, Any] = {"assignee": assignee.as_clio()}
        if due is not None:
            updates["due_at"] = format_for_clio(due)

        outcome = await self.clio.update_task(current.task_id, updates)
        if isinstance(outcome, Found):
            changes: dict[str, Any] = {
                "assigned_user_id": assignee.id,
                "assigned_user": assignee.name,
            }
            if due is not None:
                changes["due_date"] = due.date()
                changes["due_date_generated"] = utc_now()
            if scope.calendar_entry_id is not None:
                changes["calendar_entry_id"] = scope.calendar_entry_id
            try:
                task_service.update_task(self.db, current.task_id, **changes)
            except SQLAlchemyError as exc:
                self.db.rollback()
                log_error(
                    self.db,
                    ErrorCode.STORE_SYNC_FAILED,
                    f"Task updated in Clio but failed to update locally: {exc}",
                    {**scope.log_context(), "task_id": current.task_id},
                )
            result.updated += 1
            return

        if isinstance(outcome, NotFound):
            # Deleted upstream: free the slot and recreate
            task_service.mark_deleted(self.db, current.task_id)
            log_error(
                self.db,
                ErrorCode.TASK_NOT_FOUND_IN_CLIO,
                None,
                {**scope.log_context(), "task_id": current.task_id, "task_number": template.task_number},
            )
            await self._create_counted(scope, template, assignee, result)
            return

        message = f"Failed to update task {current.task_id}: {outcome.error.message}"
        self._log_template_error(scope, template, ErrorCode.CLIO_API_FAILED, message)
        result.fail(template, message, ErrorCode.CLIO_API_FAILED)

    async def refresh_meeting_tasks(
        self,
        scope: GenerationScope,
        templates: list[ParsedTemplate],
        existing: list[Task],
        *,
        link: bool,
    ) -> GenerationResult:
        """
        Meeting update (``link=False``) or link-and-update (``link=True``).

        Linking stamps the calendar entry id onto stage-generated tasks and
        then only moves meeting-relative due dates.
        """
        if link:
            for task in existing:
                if task.calendar_entry_id is None:
                    task_service.update_task(
                        self.db, task.task_id, calendar_entry_id=scope.calendar_entry_id
                    )
        return await self.update_or_create(
            scope,
            templates,
            existing,
            only_meeting_relative=link,
            skip_unresolvable=True,
        )

    async def regenerate(
        self,
        scope: GenerationScope,
        templates: list[ParsedTemplate],
        task_numbers: list[int],
    ) -> GenerationResult:
        """Recreate specific template numbers, tagging them as verification output."""
        result = GenerationResult()
        by_number = {t.task_number: t for t in templates}
        for number in task_numbers:
            template = by_number.get(number)
            if template is None:
                continue
            try:
                assignee = self.resolve_assignee(scope, template)
            except AssigneeError as exc:
                self._log_template_error(scope, template, exc.code, exc.message, exc.context)
                result.fail(template, exc.message, exc.code)
                continue
            await self._create_counted(scope, template, assignee, result, verification=True)
        return result

    # ------------------------------------------------------------------
    # Rollback and missing data
    # ------------------------------------------------------------------

    async def handle_rollback(self, matter_id: int, previous_stage_id: int | None) -> int:
        """Delete tasks generated for the stage the matter just bounced out of."""
        cutoff = task_service.rollback_cutoff(self.settings.ROLLBACK_WINDOW_MINUTES)
        recent = task_service.get_tasks_generated_since(
            self.db, matter_id, cutoff, stage_id=previous_stage_id
        )
        logger.info(
            "Rollback: deleting %s tasks from stage %s",
            len(recent),
            previous_stage_id,
            extra=build_log_context(matter_id=matter_id),
        )
        for task in recent:
            try:
                await self.clio.delete_task(task.task_id)
            except ClioApiError as exc:
                logger.warning(
                    "Rollback: failed to delete task %s in Clio: %s",
                    task.task_id,
                    exc.message,
                    extra=build_log_context(matter_id=matter_id, task_id=task.task_id),
                )
        return task_service.delete_tasks(self.db, [task.task_id for task in recent])

    @staticmethod
    def check_for_missing_data(
        scope: GenerationScope, templates: list[ParsedTemplate]
    ) -> list[str]:
        """Matter fields that templates need but the matter lacks."""
        missing: list[str] = []
        needs_location = any(t.uses_location for t in templates)
        if needs_location and not scope.meeting_location_required and not scope.matter.location:
            missing.append("location")
        if any(t.uses_attorney for t in templates) and scope.matter.attorney is None:
            missing.append("responsible_attorney")
        return missing

    async def create_missing_data_error_task(
        self, scope: GenerationScope, missing_fields: list[str]
    ) -> ClioTask:
        lines = []
        if "location" in missing_fields:
            lines.append("• Matter Location")
        if "responsible_attorney" in missing_fields:
            lines.append("• Responsible Attorney")
        stage = scope.stage_name
        description = (
            "Please add the following information to this matter:\n"
            + "\n".join(lines)
            + "\n\nOnce you've added the missing information, mark this task as complete "
            f"and the automation will regenerate the tasks for {stage} stage automatically."
        )
        fallback = Assignee(
            id=self.settings.FALLBACK_ASSIGNEE_ID, name=self.settings.FALLBACK_ASSIGNEE_NAME
        )
        now = utc_now()
        clio_task = await self.clio.create_task(
            {
                "name": f"⚠️ Missing Data - Cannot Generate Tasks for {stage}",
                "description": description,
                "matter": {"id": scope.matter.id},
                "assignee": fallback.as_clio(),
                "due_at": format_for_clio(now),
                "priority": TaskPriority.HIGH.value,
            }
        )
        self.record(
            scope,
            clio_task,
            task_number=SystemTaskNumber.MISSING_DATA.value,
            assignee=fallback,
            due=now,
        )
        log_error(
            self.db,
            ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
            f"Missing required data for task generation: {', '.join(missing_fields)}",
            {
                **scope.log_context(),
                "missing_fields": missing_fields,
                "error_task_id": clio_task.id,
            },
        )
        return clio_task
