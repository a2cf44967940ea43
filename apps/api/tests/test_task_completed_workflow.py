"""Tests for task completion follow-ups."""

import pytest

from matterflow.db.enums import ErrorCode, TaskStatus
from matterflow.db.models import ErrorLog
from matterflow.schemas.clio import ClioTask, Ref, WebhookEnvelope
from matterflow.services import due_date_service, task_service
from matterflow.services.workflows.stage_change import StageChangeWorkflow
from matterflow.services.workflows.task_completed import TaskCompletedWorkflow

from conftest import MATTER_ID, STAGE_ID, utc

workflow = TaskCompletedWorkflow()


def _event(task_id: int, completed_at: str = "2026-10-14T15:00:00Z") -> WebhookEnvelope:
    return WebhookEnvelope.model_validate(
        {
            "data": {
                "id": task_id,
                "completed_at": completed_at,
                "matter": {"id": MATTER_ID},
            }
        }
    )


@pytest.mark.asyncio
async def test_attempt_sequence_creates_next_attempt(ctx, db, seed, clio):
    seed.attempt("Attempt 1", "Attempt 2")
    seed.template(1, "Attempt 1 - Call client", assignee="VA")
    seed.template(2, "Attempt 2", assignee="VA")
    seed.matter()
    seed.task(501, 1, name="Attempt 1 - Call client", completed=True)

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "attempt_sequence"
    assert result["tasks_created"] == 1
    assert result["next_attempt"] == "Attempt 2"
    assert clio.created_names() == ["Attempt 2"]
    assert task_service.get_task(db, 501).completed is True
    assert task_service.get_recorded_task_numbers(db, MATTER_ID, STAGE_ID) == {1, 2}


@pytest.mark.asyncio
async def test_attempt_sequence_without_template_fails(ctx, db, seed, clio):
    seed.attempt("Attempt 1", "Attempt 2")
    seed.template(1, "Attempt 1 - Call client", assignee="VA")
    seed.matter()
    seed.task(501, 1, name="Attempt 1 - Call client", completed=True)

    result = await workflow.run(ctx, _event(501))

    assert result["success"] is False
    assert result["error"] == "template_not_found"
    assert db.query(ErrorLog).one().error_code == ErrorCode.TEMPLATE_NOT_FOUND.value
    assert clio.created == []


@pytest.fixture
def frozen_now(monkeypatch):
    def _freeze(*args: int):
        monkeypatch.setattr(due_date_service, "utc_now", lambda: utc(*args))

    return _freeze


@pytest.mark.asyncio
async def test_dependent_task_is_due_relative_to_now(ctx, seed, clio, frozen_now):
    seed.template(1, "Gather documents", assignee="VA")
    seed.template(2, "Review documents", assignee="VA", due_value="2", relation="after task 1")
    seed.matter()
    seed.task(501, 1, completed=True)
    # Wednesday + 2 days
    frozen_now(2026, 10, 14, 15)

    result = await workflow.run(ctx, _event(501, "2026-10-14T15:00:00Z"))

    assert result["action"] == "dependent_tasks"
    assert result["tasks_created"] == 1
    assert clio.created[0]["name"] == "Review documents"
    assert clio.created[0]["due_at"] == "2026-10-16"


@pytest.mark.asyncio
async def test_late_completion_webhook_does_not_backdate_dependents(ctx, seed, clio, frozen_now):
    seed.template(1, "Gather documents", assignee="VA")
    seed.template(2, "Review documents", assignee="VA", due_value="2", relation="after task 1")
    seed.matter()
    seed.task(501, 1, completed=True)
    frozen_now(2026, 10, 19, 15)

    await workflow.run(ctx, _event(501, "2026-09-01T15:00:00Z"))

    assert clio.created[0]["due_at"] == "2026-10-21"


@pytest.mark.asyncio
async def test_dependents_use_firm_local_now(ctx, seed, clio, frozen_now):
    ctx.settings.TIMEZONE_OFFSET_HOURS = 4
    seed.template(1, "Gather documents", assignee="VA")
    seed.template(2, "Review documents", assignee="VA", due_value="1", relation="after task 1")
    seed.matter()
    seed.task(501, 1, completed=True)
    # 01:00 UTC Tuesday is still Monday evening locally
    frozen_now(2026, 10, 20, 1)

    await workflow.run(ctx, _event(501, "2026-10-20T01:00:00Z"))

    assert clio.created[0]["due_at"] == "2026-10-20"


@pytest.mark.asyncio
async def test_existing_dependent_is_rescheduled(ctx, seed, clio, frozen_now):
    seed.template(1, "Gather documents", assignee="VA")
    seed.template(2, "Review documents", assignee="VA", due_value="2", relation="after task 1")
    seed.matter()
    seed.task(501, 1, completed=True)
    seed.task(502, 2)
    # Thursday + 2 days lands on Saturday
    frozen_now(2026, 10, 15, 15)

    result = await workflow.run(ctx, _event(501, "2026-10-15T15:00:00Z"))

    assert result["action"] == "dependent_tasks"
    assert result["tasks_updated"] == 1
    assert clio.updated == [(502, {"due_at": "2026-10-19"})]
    assert clio.created == []


@pytest.mark.asyncio
async def test_completing_missing_data_task_regenerates_stage(ctx, db, seed, clio):
    seed.template(1, "Schedule intake call", assignee="CSC")
    seed.template(2, "Send welcome packet", assignee="VA")
    seed.assignee(301, "Carla CSC", location=["Bethesda Office"])
    seed.matter(location=None)
    first = await StageChangeWorkflow().run(
        ctx,
        WebhookEnvelope.model_validate(
            {"data": {"id": MATTER_ID, "matter_stage_updated_at": "2026-10-19T14:00:00Z"}}
        ),
    )
    error_task_id = first["error_task_id"]

    seed.matter()
    clio.complete(error_task_id)
    result = await workflow.run(ctx, _event(error_task_id, "2026-10-19T15:00:00Z"))

    assert result["action"] == "error_task_regenerated"
    assert result["tasks_created"] == 2
    assert clio.created_names()[1:] == ["Schedule intake call", "Send welcome packet"]
    assert task_service.get_recorded_task_numbers(db, MATTER_ID, STAGE_ID) == {-1, 1, 2}


@pytest.mark.asyncio
async def test_reopened_task_is_marked_pending(ctx, db, seed, clio):
    seed.matter()
    seed.task(501, 1, completed=True)
    clio.tasks[501] = clio.tasks[501].model_copy(update={"status": "pending"})

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "task_reopened"
    assert task_service.get_task(db, 501).completed is False


@pytest.mark.asyncio
async def test_incomplete_task_is_skipped(ctx, seed):
    seed.matter()
    seed.task(501, 1)

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "skipped_not_completed"


@pytest.mark.asyncio
async def test_task_deleted_upstream_is_soft_deleted(ctx, db, seed):
    seed.matter()
    seed.task(501, 1, in_clio=False)

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "task_deleted"
    assert task_service.get_task(db, 501).status == TaskStatus.DELETED.value


@pytest.mark.asyncio
async def test_untracked_task_is_ignored(ctx, seed, clio):
    seed.matter()
    clio.tasks[777] = ClioTask(id=777, name="Manual task", status="complete", matter=Ref(id=MATTER_ID))

    result = await workflow.run(ctx, _event(777))

    assert result["action"] == "not_found"


@pytest.mark.asyncio
async def test_closed_matter_gets_no_follow_ups(ctx, seed, clio):
    seed.template(1, "Gather documents", assignee="VA")
    seed.template(2, "Review documents", assignee="VA", due_value="2", relation="after task 1")
    seed.matter(status="Closed")
    seed.task(501, 1, completed=True)

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "skipped_closed_matter"
    assert clio.created == []


@pytest.mark.asyncio
async def test_task_without_follow_ups(ctx, seed, clio):
    seed.template(1, "Gather documents", assignee="VA")
    seed.matter()
    seed.task(501, 1, completed=True)

    result = await workflow.run(ctx, _event(501))

    assert result["action"] == "none"
    assert result["success"] is True
