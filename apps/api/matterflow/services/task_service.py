"""Task record persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from matterflow.db.enums import TaskStatus
from matterflow.db.models import Task
from matterflow.utils.datetimes import utc_now

logger = logging.getLogger(__name__)


@dataclass
class TaskRecordData:
    """Fields written when a generated task is recorded."""

    task_id: int
    task_name: str
    matter_id: int
    task_desc: str | None = None
    assigned_user_id: int | None = None
    assigned_user: str | None = None
    due_date: date | None = None
    stage_id: int | None = None
    stage_name: str | None = None
    task_number: int | None = None
    calendar_entry_id: int | None = None
    verification_attempted: bool = False


def _active(query):
    return query.filter(Task.status != TaskStatus.DELETED.value)


def get_task(db: Session, task_id: int) -> Task | None:
    return db.query(Task).filter(Task.task_id == task_id).first()


def insert_task(db: Session, data: TaskRecordData) -> Task:
    """
    Record a task, upserting on task_id.

    If another live record already holds the (matter, stage, task_number)
    slot, that record is rewritten with the new task id instead. Its
    calendar_entry_id is only replaced when the new data carries one.
    """
    now = utc_now()
    values: dict[str, Any] = {
        "task_name": data.task_name,
        "task_desc": data.task_desc,
        "matter_id": data.matter_id,
        "assigned_user_id": data.assigned_user_id,
        "assigned_user": data.assigned_user,
        "due_date": data.due_date,
        "stage_id": data.stage_id,
        "stage_name": data.stage_name,
        "task_number": data.task_number,
        "completed": False,
        "status": TaskStatus.PENDING.value,
        "task_date_generated": now,
        "due_date_generated": now if data.due_date else None,
        "last_updated": now,
        "verification_attempted": data.verification_attempted,
        "verification_attempted_at": now if data.verification_attempted else None,
    }
    if data.calendar_entry_id is not None:
        values["calendar_entry_id"] = data.calendar_entry_id

    existing = get_task(db, data.task_id)
    if existing is not None:
        for key, value in values.items():
            setattr(existing, key, value)
        task = existing
    else:
        task = Task(task_id=data.task_id, **values)
        db.add(task)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if data.task_number is None:
            raise
        slot_owner = _slot_owner(db, data.matter_id, data.stage_id, data.task_number)
        if slot_owner is None:
            raise
        logger.info(
            "Task slot already taken, rewriting record %s -> %s",
            slot_owner.task_id,
            data.task_id,
            extra={"matter_id": data.matter_id, "task_id": data.task_id},
        )
        db.execute(
            update(Task)
            .where(Task.task_id == slot_owner.task_id)
            .values(task_id=data.task_id, **values)
        )
        db.commit()
        db.expire_all()
        task = get_task(db, data.task_id)

    db.refresh(task)
    return task


def _slot_owner(
    db: Session, matter_id: int, stage_id: int | None, task_number: int
) -> Task | None:
    return (
        _active(db.query(Task))
        .filter(
            Task.matter_id == matter_id,
            Task.stage_id == stage_id,
            Task.task_number == task_number,
        )
        .first()
    )


def update_task(db: Session, task_id: int, **changes: Any) -> Task | None:
    task = get_task(db, task_id)
    if task is None:
        return None
    for key, value in changes.items():
        setattr(task, key, value)
    task.last_updated = utc_now()
    db.commit()
    db.refresh(task)
    return task


def mark_completed(db: Session, task_id: int) -> Task | None:
    return update_task(
        db, task_id, completed=True, status=TaskStatus.COMPLETED.value
    )


def mark_reopened(db: Session, task_id: int) -> Task | None:
    return update_task(
        db, task_id, completed=False, status=TaskStatus.PENDING.value
    )


def mark_deleted(db: Session, task_id: int) -> Task | None:
    """Soft delete: the row is kept and its slot freed."""
    return update_task(db, task_id, status=TaskStatus.DELETED.value)


def get_tasks_by_matter_and_stage(
    db: Session,
    matter_id: int,
    stage_id: int | None,
    *,
    completed: bool | None = None,
) -> list[Task]:
    query = _active(db.query(Task)).filter(
        Task.matter_id == matter_id, Task.stage_id == stage_id
    )
    if completed is not None:
        query = query.filter(Task.completed.is_(completed))
    return query.order_by(Task.task_number).all()


def get_tasks_by_calendar_entry(
    db: Session, calendar_entry_id: int, *, incomplete_only: bool = False
) -> list[Task]:
    query = _active(db.query(Task)).filter(Task.calendar_entry_id == calendar_entry_id)
    if incomplete_only:
        query = query.filter(Task.completed.is_(False))
    return query.order_by(Task.task_number).all()


def get_recorded_task_numbers(
    db: Session,
    matter_id: int,
    stage_id: int | None,
    *,
    calendar_entry_id: int | None = None,
) -> set[int]:
    """Template numbers that currently have a live record in scope."""
    query = _active(db.query(Task.task_number)).filter(
        Task.matter_id == matter_id,
        Task.stage_id == stage_id,
        Task.task_number.is_not(None),
    )
    if calendar_entry_id is not None:
        query = query.filter(Task.calendar_entry_id == calendar_entry_id)
    return {row.task_number for row in query.all()}


def get_tasks_generated_since(
    db: Session, matter_id: int, since: datetime, *, stage_id: int | None = None
) -> list[Task]:
    """Live tasks generated for a matter after ``since`` (rollback candidates)."""
    query = _active(db.query(Task)).filter(
        Task.matter_id == matter_id, Task.task_date_generated >= since
    )
    if stage_id is not None:
        query = query.filter(Task.stage_id == stage_id)
    return query.all()


def delete_tasks(db: Session, task_ids: list[int]) -> int:
    """Hard delete local records (rollback only)."""
    if not task_ids:
        return 0
    count = (
        db.query(Task)
        .filter(Task.task_id.in_(task_ids))
        .delete(synchronize_session=False)
    )
    db.commit()
    return count


def rollback_cutoff(window_minutes: int) -> datetime:
    return utc_now() - timedelta(minutes=window_minutes)
