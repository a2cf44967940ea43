"""SQLAlchemy ORM models."""

from matterflow.db.models.errors import ErrorLog
from matterflow.db.models.matters import (
    MatterHistory,
    MatterInfo,
    MatterStageTracking,
    MeetingBooking,
)
from matterflow.db.models.reference import (
    AssigneeReference,
    AttemptSequence,
    LocationKeyword,
    StageStatusMapping,
)
from matterflow.db.models.tasks import Task
from matterflow.db.models.templates import CalendarEventMapping, TaskTemplate
from matterflow.db.models.tokens import ClioToken
from matterflow.db.models.webhooks import WebhookEvent

__all__ = [
    "AssigneeReference",
    "AttemptSequence",
    "CalendarEventMapping",
    "ClioToken",
    "ErrorLog",
    "LocationKeyword",
    "MatterHistory",
    "MatterInfo",
    "MatterStageTracking",
    "MeetingBooking",
    "StageStatusMapping",
    "Task",
    "TaskTemplate",
    "WebhookEvent",
]
