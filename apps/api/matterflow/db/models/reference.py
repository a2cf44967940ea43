"""Assignee and lookup reference tables."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from matterflow.db.base import Base, JSONType


class AssigneeReference(Base):
    """
    A firm user and the lookups that resolve to them.

    location holds location names, attorney_id the attorneys this user
    is paralegal for, fund_table the attorneys this user funds for.
    """

    __tablename__ = "assigned_user_reference"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    attorney_id: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)
    fund_table: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class LocationKeyword(Base):
    __tablename__ = "location_keywords"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    keyword: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AttemptSequence(Base):
    """Attempt 1 -> Attempt 2 -> ... -> No Response follow-up chain."""

    __tablename__ = "attempt_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    current_attempt: Mapped[str] = mapped_column(String(100), nullable=False)
    next_attempt: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class StageStatusMapping(Base):
    """Matter status to set when a matter enters a stage."""

    __tablename__ = "stage_status_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    matter_status: Mapped[str] = mapped_column(String(50), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
