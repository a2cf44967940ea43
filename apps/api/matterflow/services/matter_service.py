"""Matter snapshots, stage history and meeting bookings."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from matterflow.db.models import MatterHistory, MatterInfo, MeetingBooking
from matterflow.schemas.clio import Matter
from matterflow.utils.datetimes import utc_now


def upsert_matter_info(db: Session, matter: Matter) -> MatterInfo:
    info = db.get(MatterInfo, matter.id)
    if info is None:
        info = MatterInfo(matter_id=matter.id)
        db.add(info)
    info.display_number = matter.display_number
    info.status = matter.status
    info.stage_id = matter.stage_id
    info.stage_name = matter.stage_name
    info.practice_area_id = matter.practice_area_id
    info.location = matter.location
    info.responsible_attorney_id = (
        matter.responsible_attorney.id if matter.responsible_attorney else None
    )
    info.originating_attorney_id = (
        matter.originating_attorney.id if matter.originating_attorney else None
    )
    info.updated_at = utc_now()
    db.commit()
    return info


def insert_history(
    db: Session,
    matter_id: int,
    stage_id: int | None,
    stage_name: str | None,
    at: datetime | None = None,
) -> MatterHistory:
    row = MatterHistory(
        matter_id=matter_id,
        stage_id=stage_id,
        stage_name=stage_name,
        date=at or utc_now(),
    )
    db.add(row)
    db.commit()
    return row


def check_recent_stage_change(
    db: Session, matter_id: int, current_stage_id: int, window_minutes: int
) -> MatterHistory | None:
    """Latest history row for a *different* stage inside the rollback window."""
    cutoff = utc_now() - timedelta(minutes=window_minutes)
    return (
        db.query(MatterHistory)
        .filter(
            MatterHistory.matter_id == matter_id,
            MatterHistory.stage_id != current_stage_id,
            MatterHistory.date > cutoff,
        )
        .order_by(MatterHistory.date.desc(), MatterHistory.id.desc())
        .first()
    )


def latest_history_by_matter(db: Session) -> list[MatterHistory]:
    """Most recent stage row per matter."""
    rows = (
        db.query(MatterHistory)
        .order_by(MatterHistory.matter_id, MatterHistory.date.desc(), MatterHistory.id.desc())
        .all()
    )
    latest: dict[int, MatterHistory] = {}
    for row in rows:
        latest.setdefault(row.matter_id, row)
    return list(latest.values())


def first_entered_stage(db: Session, matter_id: int, stage_name: str) -> datetime | None:
    """Start of the matter's current uninterrupted run in ``stage_name``."""
    rows = (
        db.query(MatterHistory)
        .filter(MatterHistory.matter_id == matter_id)
        .order_by(MatterHistory.date.desc(), MatterHistory.id.desc())
        .all()
    )
    entered = None
    for row in rows:
        if row.stage_name != stage_name:
            break
        entered = row.date
    return entered


def get_meeting_booking(
    db: Session, matter_id: int, calendar_event_id: int
) -> MeetingBooking | None:
    return (
        db.query(MeetingBooking)
        .filter(
            MeetingBooking.matter_id == matter_id,
            MeetingBooking.calendar_event_id == calendar_event_id,
        )
        .first()
    )


def upsert_meeting_booking(
    db: Session,
    *,
    matter_id: int,
    calendar_event_id: int,
    calendar_entry_id: int,
    stage_id: int | None,
    stage_name: str | None,
    date: datetime | None,
    location: str | None,
) -> MeetingBooking:
    booking = get_meeting_booking(db, matter_id, calendar_event_id)
    if booking is None:
        booking = MeetingBooking(matter_id=matter_id, calendar_event_id=calendar_event_id)
        db.add(booking)
    booking.calendar_entry_id = calendar_entry_id
    booking.stage_id = stage_id
    booking.stage_name = stage_name
    booking.date = date
    booking.location = location
    booking.booked = True
    db.commit()
    return booking


def mark_booking_cancelled(db: Session, calendar_entry_id: int) -> int:
    bookings = (
        db.query(MeetingBooking)
        .filter(MeetingBooking.calendar_entry_id == calendar_entry_id)
        .all()
    )
    for booking in bookings:
        booking.booked = False
    db.commit()
    return len(bookings)
