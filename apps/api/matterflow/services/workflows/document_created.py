"""New document saved at a matter's root folder: remind staff to file it."""

from __future__ import annotations

from datetime import datetime

from matterflow.db.enums import ErrorCode, EventType, ResourceType
from matterflow.schemas.clio import WebhookEnvelope
from matterflow.services.assignee_resolver import Assignee
from matterflow.services.clio_client import FetchFailed, NotFound
from matterflow.services.due_date_service import local_now
from matterflow.services.error_log_service import log_error
from matterflow.services.task_generation import GenerationScope
from matterflow.services.workflows.base import (
    BaseWorkflow,
    WorkflowAborted,
    WorkflowContext,
    WorkflowOutcome,
)
from matterflow.utils.datetimes import add_business_days, format_for_clio

DOCUMENT_TASK_TITLE = "New Clio Drive Document Save to OD"


class DocumentCreatedWorkflow(BaseWorkflow):
    trigger = "document_created"
    event_type = EventType.DOCUMENT_CREATED
    resource_type = ResourceType.DOCUMENT

    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        return envelope.data.created_at

    async def handle(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> WorkflowOutcome:
        document_id = envelope.data.id
        fetched = await ctx.clio.get_document(document_id)
        if isinstance(fetched, NotFound):
            return WorkflowOutcome(action="not_found")
        if isinstance(fetched, FetchFailed):
            log_error(
                ctx.db,
                ErrorCode.CLIO_API_FAILED,
                f"Failed to fetch document {document_id}: {fetched.error.message}",
                {"document_id": document_id},
            )
            raise WorkflowAborted("clio_fetch_failed", fetched.error.message, cause=fetched.error)

        document = fetched.value
        matter_id = document.matter.id if document.matter else envelope.matter_id()
        if matter_id is None:
            log_error(
                ctx.db, ErrorCode.VALIDATION_MISSING_MATTER, None, {"document_id": document_id}
            )
            return WorkflowOutcome(action="missing_matter", success=False)

        matter = await self.fetch_matter(ctx, matter_id)
        if matter.is_closed:
            return WorkflowOutcome(action="skipped_closed_matter")

        # Only documents saved at the matter's top-level folder
        folder = document.parent.name if document.parent else None
        if folder != matter.display_number:
            return WorkflowOutcome(action="skipped_in_folder", details={"folder": folder})

        assignee = Assignee(id=ctx.settings.DOCUMENT_TASK_ASSIGNEE_ID, name=None)
        due = add_business_days(local_now(ctx.settings), 1)
        task = await ctx.clio.create_task(
            {
                "name": DOCUMENT_TASK_TITLE,
                "description": f"New document: {document.name}",
                "matter": {"id": matter.id},
                "assignee": assignee.as_clio(),
                "due_at": format_for_clio(due),
            }
        )
        scope = GenerationScope(matter=matter, stage_id=matter.stage_id, stage_name=matter.stage_name)
        ctx.engine().record(scope, task, task_number=None, assignee=assignee, due=due)
        return WorkflowOutcome(action="task_created", tasks_created=1, details={"task_id": task.id})
