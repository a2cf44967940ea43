"""Webhook ledger enums."""

from enum import Enum


class LedgerOutcome(str, Enum):
    """Outcome of a webhook ledger row."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILURE = "failure"


class EventType(str, Enum):
    """Event types used to build idempotency keys."""

    MATTER_UPDATED = "matter.updated"
    MATTER_CLOSED = "matter.closed"
    TASK_COMPLETED = "task.completed"
    TASK_DELETED = "task.deleted"
    CALENDAR_ENTRY_CREATED = "calendar_entry.created"
    CALENDAR_ENTRY_UPDATED = "calendar_entry.updated"
    CALENDAR_ENTRY_DELETED = "calendar_entry.deleted"
    DOCUMENT_CREATED = "document.created"


class ResourceType(str, Enum):
    MATTER = "matter"
    TASK = "task"
    CALENDAR_ENTRY = "calendar_entry"
    DOCUMENT = "document"
