"""Task-related enums."""

from enum import Enum, IntEnum


class TaskStatus(str, Enum):
    """Lifecycle status of a mirrored task record."""

    PENDING = "pending"
    COMPLETED = "completed"
    DELETED = "deleted"  # Soft delete, the row is kept


class TaskList(str, Enum):
    """Which template list a template row belongs to."""

    NON_MEETING = "non_meeting"  # Keyed by stage id
    PROBATE = "probate"  # Keyed by stage id, probate practice area only
    MEETING = "meeting"  # Keyed by calendar event type id


class SystemTaskNumber(IntEnum):
    """Negative task numbers reserved for system-generated tasks."""

    MISSING_DATA = -1
    CLIENT_NOT_ENGAGED = -2


class TaskPriority(str, Enum):
    NORMAL = "Normal"
    HIGH = "High"
