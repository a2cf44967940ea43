"""Mirrored task records."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import BigInteger, Boolean, Date, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from matterflow.db.base import Base
from matterflow.db.enums import TaskStatus
from matterflow.utils.datetimes import utc_now


class Task(Base):
    """
    One task in Clio, mirrored in the store.

    task_id is assigned by Clio and is authoritative. The triple
    (matter_id, stage_id, task_number) is unique among non-deleted rows.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        Index(
            "uq_task_per_stage",
            "matter_id",
            "stage_id",
            "task_number",
            unique=True,
            postgresql_where=text("status <> 'deleted'"),
            sqlite_where=text("status <> 'deleted'"),
        ),
        Index("idx_tasks_matter_stage", "matter_id", "stage_id"),
        Index("idx_tasks_calendar_entry", "calendar_entry_id"),
    )

    task_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    task_name: Mapped[str] = mapped_column(String(500), nullable=False)
    task_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    matter_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    assigned_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    assigned_user: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Null means "not yet computable" (waiting on a dependency)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    stage_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Negative numbers are system tasks (see SystemTaskNumber)
    task_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=TaskStatus.PENDING.value, nullable=False
    )
    calendar_entry_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    task_date_generated: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    due_date_generated: Mapped[datetime | None] = mapped_column(nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(nullable=True)

    verification_attempted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_attempted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.status == TaskStatus.DELETED.value
