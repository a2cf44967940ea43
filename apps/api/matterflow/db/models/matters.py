"""Matter snapshot, stage history, meeting bookings and stage tracking."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from matterflow.db.base import Base
from matterflow.utils.datetimes import utc_now


class MatterInfo(Base):
    """Current state of a matter as last seen, one row per matter."""

    __tablename__ = "matters"

    matter_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    practice_area_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    responsible_attorney_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    originating_attorney_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)


class MatterHistory(Base):
    """Append-only stage history; drives rollback detection and stale alerts."""

    __tablename__ = "matter_history"
    __table_args__ = (Index("idx_matter_history_matter_date", "matter_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    matter_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class MeetingBooking(Base):
    """Latest booking of one meeting type for a matter."""

    __tablename__ = "matters_meetings_booked"
    __table_args__ = (
        UniqueConstraint("matter_id", "calendar_event_id", name="uq_meeting_booking"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    matter_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    calendar_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    calendar_entry_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[datetime | None] = mapped_column(nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    booked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)


class MatterStageTracking(Base):
    """How long a matter has dwelt in a stage, and which alerts went out."""

    __tablename__ = "matter_stage_tracking"
    __table_args__ = (
        UniqueConstraint("matter_id", "stage_name", name="uq_matter_stage_tracking"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    matter_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    stage_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stage_entered_at: Mapped[datetime] = mapped_column(nullable=False)
    initial_notification_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    initial_notification_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_recurring_notification_at: Mapped[datetime | None] = mapped_column(nullable=True)
    recurring_notification_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)
