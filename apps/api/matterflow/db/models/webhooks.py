"""Webhook idempotency ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from matterflow.db.base import Base
from matterflow.db.enums import LedgerOutcome
from matterflow.utils.datetimes import utc_now


class WebhookEvent(Base):
    """
    One row per idempotency key.

    Inserted once as in_progress, finalized once, never deleted.
    """

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    webhook_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    outcome: Mapped[str] = mapped_column(
        String(20), default=LedgerOutcome.IN_PROGRESS.value, nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), default="processing", nullable=False)
    webhook_payload: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tasks_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_details: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    @property
    def in_progress(self) -> bool:
        return self.outcome == LedgerOutcome.IN_PROGRESS.value

    @property
    def success(self) -> bool | None:
        if self.in_progress:
            return None
        return self.outcome == LedgerOutcome.SUCCESS.value
