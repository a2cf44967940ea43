"""Workflow registry."""

from __future__ import annotations

from matterflow.services.workflows.base import Workflow
from matterflow.services.workflows.deletions import CalendarEntryDeletedWorkflow, TaskDeletedWorkflow
from matterflow.services.workflows.document_created import DocumentCreatedWorkflow
from matterflow.services.workflows.matter_closed import MatterClosedWorkflow
from matterflow.services.workflows.meeting_scheduled import MeetingScheduledWorkflow
from matterflow.services.workflows.stage_change import StageChangeWorkflow
from matterflow.services.workflows.task_completed import TaskCompletedWorkflow

_WORKFLOWS: dict[str, Workflow] = {
    workflow.trigger: workflow
    for workflow in (
        StageChangeWorkflow(),
        MatterClosedWorkflow(),
        TaskCompletedWorkflow(),
        TaskDeletedWorkflow(),
        MeetingScheduledWorkflow(),
        CalendarEntryDeletedWorkflow(),
        DocumentCreatedWorkflow(),
    )
}


def get_workflow(trigger: str) -> Workflow:
    workflow = _WORKFLOWS.get(trigger)
    if not workflow:
        raise KeyError(f"Unknown workflow: {trigger}")
    return workflow
