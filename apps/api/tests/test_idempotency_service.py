"""Tests for the webhook idempotency ledger."""

import logging

import pytest
from sqlalchemy.exc import OperationalError

from matterflow.db.enums import LedgerOutcome
from matterflow.db.models import WebhookEvent
from matterflow.services.idempotency_service import IdempotencyLedger, make_key


def test_make_key_uses_event_timestamp(at):
    key = make_key("matter.updated", 5001, at(2026, 10, 19, 14, 0))
    assert key == "matter.updated:5001:2026-10-19T14:00:00+00:00"


def test_make_key_accepts_raw_timestamp():
    assert make_key("task.completed", 7, "2026-10-19T14:00:00Z") == (
        "task.completed:7:2026-10-19T14:00:00Z"
    )


def test_reserve_is_exclusive(db):
    ledger = IdempotencyLedger(db)
    kwargs = dict(event_type="matter.updated", resource_type="matter", resource_id=5001)

    assert ledger.reserve("k1", **kwargs) is True
    assert ledger.reserve("k1", **kwargs) is False
    assert db.query(WebhookEvent).count() == 1


def test_lookup_sees_in_progress_row(db):
    ledger = IdempotencyLedger(db)
    assert ledger.lookup("k1") is None

    ledger.reserve(
        "k1",
        event_type="task.completed",
        resource_type="task",
        resource_id=9,
        payload={"data": {"id": 9}},
        webhook_id="evt-1",
    )
    row = ledger.lookup("k1")
    assert row.in_progress is True
    assert row.success is None
    assert row.action == "processing"
    assert row.webhook_payload == {"data": {"id": 9}}


def test_finalize_records_outcome(db):
    ledger = IdempotencyLedger(db)
    ledger.reserve("k1", event_type="matter.updated", resource_type="matter", resource_id=1)

    ledger.finalize(
        "k1",
        success=False,
        action="partial_failure",
        duration_ms=12,
        tasks_created=2,
        failure_details={"failures": [{"task_number": 3}]},
    )

    row = ledger.lookup("k1")
    assert row.outcome == LedgerOutcome.FAILURE.value
    assert row.success is False
    assert row.action == "partial_failure"
    assert row.tasks_created == 2
    assert row.processing_duration_ms == 12
    assert row.failure_details == {"failures": [{"task_number": 3}]}
    assert row.processed_at is not None


def test_finalize_requires_reservation(db):
    ledger = IdempotencyLedger(db)
    with pytest.raises(LookupError):
        ledger.finalize("missing", success=True, action="created_tasks")


def test_lookup_read_failure_is_treated_as_unprocessed(db, monkeypatch, caplog):
    rollbacks = []

    def failing_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "query", failing_query)
    monkeypatch.setattr(db, "rollback", lambda: rollbacks.append(True))

    with caplog.at_level(logging.WARNING, logger="matterflow.services.idempotency_service"):
        assert IdempotencyLedger(db).lookup("matter.updated:5001:x") is None

    assert rollbacks == [True]
    assert "Ledger lookup failed" in caplog.text
