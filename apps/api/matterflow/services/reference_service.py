"""Read-only reference data lookups (assignees, keywords, mappings)."""

from __future__ import annotations

from sqlalchemy.orm import Session

from matterflow.db.models import (
    AssigneeReference,
    AttemptSequence,
    CalendarEventMapping,
    LocationKeyword,
    StageStatusMapping,
)


def _active_assignees(db: Session) -> list[AssigneeReference]:
    return (
        db.query(AssigneeReference)
        .filter(AssigneeReference.active.is_(True))
        .order_by(AssigneeReference.id)
        .all()
    )


def get_location_keywords(db: Session) -> list[str]:
    rows = (
        db.query(LocationKeyword)
        .filter(LocationKeyword.active.is_(True))
        .order_by(LocationKeyword.id)
        .all()
    )
    return [row.keyword for row in rows]


def get_assignee_by_location(db: Session, location: str) -> AssigneeReference | None:
    """
    Exact match against a user's location list first, then, if ``location``
    is itself a known keyword, the first user with a location containing it.
    """
    users = _active_assignees(db)
    for user in users:
        if location in (user.location or []):
            return user

    needle = location.lower()
    keywords = {keyword.lower() for keyword in get_location_keywords(db)}
    if needle not in keywords:
        return None
    for user in users:
        if any(needle in (entry or "").lower() for entry in user.location or []):
            return user
    return None


def get_assignee_by_attorney_id(db: Session, attorney_id: int) -> AssigneeReference | None:
    """The paralegal mapped to an attorney."""
    for user in _active_assignees(db):
        if attorney_id in (user.attorney_id or []):
            return user
    return None


def get_assignee_by_fund_table(db: Session, attorney_id: int) -> AssigneeReference | None:
    for user in _active_assignees(db):
        if attorney_id in (user.fund_table or []):
            return user
    return None


def get_attempt_sequences(db: Session) -> list[AttemptSequence]:
    return (
        db.query(AttemptSequence)
        .filter(AttemptSequence.active.is_(True))
        .order_by(AttemptSequence.sequence_order)
        .all()
    )


def get_matter_status_for_stage(db: Session, stage_name: str | None) -> str | None:
    if not stage_name:
        return None
    row = (
        db.query(StageStatusMapping)
        .filter(
            StageStatusMapping.stage_name == stage_name,
            StageStatusMapping.active.is_(True),
        )
        .first()
    )
    return row.matter_status if row else None


def get_calendar_event_mapping(db: Session, calendar_event_id: int) -> CalendarEventMapping | None:
    return (
        db.query(CalendarEventMapping)
        .filter(
            CalendarEventMapping.calendar_event_id == calendar_event_id,
            CalendarEventMapping.active.is_(True),
        )
        .first()
    )
