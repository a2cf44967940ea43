"""Webhook idempotency ledger."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from matterflow.db.enums import LedgerOutcome
from matterflow.db.models import WebhookEvent
from matterflow.utils.datetimes import utc_now

logger = logging.getLogger(__name__)


def make_key(event_type: str, resource_id: int | str, timestamp: datetime | str) -> str:
    """
    Compose ``event_type:resource_id:timestamp``.

    The timestamp must be the event's own timestamp (not receipt time) so
    redeliveries of one logical event collide.
    """
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    return f"{event_type}:{resource_id}:{timestamp}"


class IdempotencyLedger:
    """
    One ledger row per idempotency key.

    ``reserve`` is the concurrency primitive: an insert that collides on the
    unique key means another worker owns the event.
    """

    def __init__(self, db: Session):
        self.db = db

    def lookup(self, key: str) -> WebhookEvent | None:
        """Read a ledger row; a read failure degrades to "not yet processed"."""
        try:
            return (
                self.db.query(WebhookEvent)
                .filter(WebhookEvent.idempotency_key == key)
                .first()
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(
                "Ledger lookup failed, treating event as unprocessed",
                exc_info=True,
                extra={"idempotency_key": key},
            )
            return None

    def reserve(
        self,
        key: str,
        *,
        event_type: str,
        resource_type: str,
        resource_id: int | None,
        payload: dict[str, Any] | None = None,
        webhook_id: str | None = None,
    ) -> bool:
        """Insert an in_progress row. Returns False if the key already exists."""
        event = WebhookEvent(
            idempotency_key=key,
            webhook_id=webhook_id,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=LedgerOutcome.IN_PROGRESS.value,
            action="processing",
            webhook_payload=payload,
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Ledger key already reserved", extra={"idempotency_key": key}
            )
            return False
        return True

    def finalize(
        self,
        key: str,
        *,
        success: bool,
        action: str,
        duration_ms: int | None = None,
        tasks_created: int = 0,
        tasks_updated: int = 0,
        failure_details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """Move a reserved row to its terminal outcome. Raises on write failure."""
        event = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.idempotency_key == key)
            .first()
        )
        if event is None:
            raise LookupError(f"Ledger key not reserved: {key}")

        event.outcome = (LedgerOutcome.SUCCESS if success else LedgerOutcome.FAILURE).value
        event.action = action
        event.processing_duration_ms = duration_ms
        event.tasks_created = tasks_created
        event.tasks_updated = tasks_updated
        event.failure_details = failure_details
        event.error_message = error_message
        event.processed_at = utc_now()
        self.db.commit()
