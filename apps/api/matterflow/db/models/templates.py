"""Task templates and calendar event mappings (read-only reference data)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from matterflow.db.base import Base
from matterflow.utils.datetimes import utc_now


class TaskTemplate(Base):
    """
    One recurring task to generate for a stage or meeting type.

    task_list selects the list: non_meeting and probate rows are keyed by
    stage_id, meeting rows by calendar_event_id. The due_date_* columns
    are raw text and are parsed once by template_service.
    """

    __tablename__ = "task_templates"
    __table_args__ = (
        Index("idx_task_templates_stage", "task_list", "stage_id"),
        Index("idx_task_templates_event", "task_list", "calendar_event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_list: Mapped[str] = mapped_column(String(20), nullable=False)
    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_event_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    task_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    task_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    task_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Role token (ATTORNEY, CSC, ...) or a literal user id
    assignee: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Lookup override ("location", "attorney") or a literal id for FUNDING_COOR
    assignee_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    due_date_value: Mapped[str | None] = mapped_column(String(20), nullable=True)
    due_date_time_relation: Mapped[str | None] = mapped_column(String(50), nullable=True)
    due_date_relation: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class CalendarEventMapping(Base):
    """Maps a calendar event type to the stage whose meeting templates it triggers."""

    __tablename__ = "calendar_event_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    calendar_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    calendar_event_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Signing meetings resolve location roles from the meeting location only
    uses_meeting_location: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
