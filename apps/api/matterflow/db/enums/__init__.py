"""Enum definitions for application constants."""

from matterflow.db.enums.assignees import AssigneeRole, LookupOverride
from matterflow.db.enums.errors import ErrorCode
from matterflow.db.enums.tasks import SystemTaskNumber, TaskList, TaskPriority, TaskStatus
from matterflow.db.enums.webhooks import EventType, LedgerOutcome, ResourceType

__all__ = [
    "AssigneeRole",
    "ErrorCode",
    "EventType",
    "LedgerOutcome",
    "LookupOverride",
    "ResourceType",
    "SystemTaskNumber",
    "TaskList",
    "TaskPriority",
    "TaskStatus",
]
