"""Assignee role enums."""

from enum import Enum


class AssigneeRole(str, Enum):
    """
    Abstract roles a template can name instead of a user id.

    FUND_TABLE also accepts the spelling "FUND TABLE" from older templates.
    """

    ATTORNEY = "ATTORNEY"
    CSC = "CSC"
    PARALEGAL = "PARALEGAL"
    FUNDING_COOR = "FUNDING_COOR"
    FUND_TABLE = "FUND_TABLE"
    VA = "VA"

    @classmethod
    def parse(cls, value: str | None) -> "AssigneeRole | None":
        if not value:
            return None
        normalized = value.strip().upper().replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return None


class LookupOverride(str, Enum):
    """Explicit lookup overrides carried in a template's assignee_id column."""

    LOCATION = "location"
    ATTORNEY = "attorney"

    @classmethod
    def parse(cls, value: str | None) -> "LookupOverride | None":
        if not value:
            return None
        normalized = value.strip().lower()
        if normalized == "attorney_id":
            return cls.ATTORNEY
        try:
            return cls(normalized)
        except ValueError:
            return None
