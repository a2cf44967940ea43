"""Tests for the template-driven task generation engine."""

from datetime import timedelta

import pytest

from matterflow.db.enums import ErrorCode, SystemTaskNumber, TaskStatus
from matterflow.db.models import ErrorLog, Task
from matterflow.services import task_service, template_service
from matterflow.services.task_generation import GenerationScope, TaskEngine
from matterflow.services.verification_service import verify_generation
from matterflow.utils.datetimes import utc_now

from conftest import MATTER_ID, STAGE_ID, STAGE_NAME


@pytest.fixture
def engine(db, clio, settings) -> TaskEngine:
    return TaskEngine(db, clio, settings)


def _scope(matter) -> GenerationScope:
    return GenerationScope(matter=matter, stage_id=STAGE_ID, stage_name=STAGE_NAME)


def _standard_templates(seed):
    seed.assignee(301, "Carla CSC", location=["Bethesda Office"])
    seed.template(1, "Open file", assignee="ATTORNEY")
    seed.template(2, "Schedule intake call", assignee="CSC")
    seed.template(3, "Send welcome packet", assignee="VA")


@pytest.mark.asyncio
async def test_generate_creates_one_task_per_template(db, seed, clio, engine):
    _standard_templates(seed)
    matter = seed.matter()
    templates = template_service.get_stage_templates(db, STAGE_ID)

    result = await engine.generate_tasks(_scope(matter), templates)

    assert (result.created, result.failed, result.skipped) == (3, 0, 0)
    assert clio.created_names() == ["Open file", "Schedule intake call", "Send welcome packet"]
    assert [p["assignee"]["id"] for p in clio.created] == [77, 301, engine.settings.FALLBACK_ASSIGNEE_ID]
    assert task_service.get_recorded_task_numbers(db, MATTER_ID, STAGE_ID) == {1, 2, 3}
    assert all(p["due_at"] for p in clio.created)


@pytest.mark.asyncio
async def test_clio_failure_is_collected_not_raised(db, seed, clio, engine):
    _standard_templates(seed)
    clio.fail_create.add("Schedule intake call")
    templates = template_service.get_stage_templates(db, STAGE_ID)

    result = await engine.generate_tasks(_scope(seed.matter()), templates)

    assert (result.created, result.failed) == (2, 1)
    assert result.failures[0].task_number == 2
    assert result.failures[0].error_code == ErrorCode.CLIO_API_FAILED.value
    assert result.needs_verification is True
    assert db.query(ErrorLog).filter_by(error_code=ErrorCode.CLIO_API_FAILED.value).count() == 1


@pytest.mark.asyncio
async def test_missing_attorney_creates_assignment_error_task(db, seed, clio, engine):
    seed.template(1, "Open file", assignee="ATTORNEY")
    matter = seed.matter(responsible_attorney=None)
    templates = template_service.get_stage_templates(db, STAGE_ID)

    result = await engine.generate_tasks(_scope(matter), templates)

    assert (result.created, result.skipped, result.failed) == (0, 1, 0)
    assert clio.created_names() == ["⚠️ Assignment Error - 00123-Smith"]
    assert result.error_task_ids == list(clio.tasks)
    log = db.query(ErrorLog).filter_by(error_code=ErrorCode.ASSIGNEE_NO_ATTORNEY.value).one()
    assert log.matter_id == MATTER_ID


@pytest.mark.asyncio
async def test_other_assignee_errors_fail_the_template(db, seed, clio, engine):
    seed.template(1, "Schedule intake call", assignee="CSC")
    templates = template_service.get_stage_templates(db, STAGE_ID)

    result = await engine.generate_tasks(_scope(seed.matter()), templates)

    assert result.failed == 1
    assert result.failures[0].error_code == ErrorCode.ASSIGNEE_NO_CSC.value
    assert clio.created == []


@pytest.mark.asyncio
async def test_update_or_create_refreshes_and_fills_gaps(db, seed, clio, engine):
    _standard_templates(seed)
    seed.task(501, 1)
    seed.task(502, 2, completed=True)
    templates = template_service.get_stage_templates(db, STAGE_ID)
    existing = task_service.get_tasks_by_matter_and_stage(db, MATTER_ID, STAGE_ID)

    result = await engine.update_or_create(_scope(seed.matter()), templates, existing)

    assert (result.updated, result.created, result.skipped) == (1, 1, 1)
    assert [task_id for task_id, _ in clio.updated] == [501]
    assert clio.created_names() == ["Send welcome packet"]
    assert task_service.get_task(db, 501).assigned_user_id == 77


@pytest.mark.asyncio
async def test_update_of_task_deleted_upstream_recreates_it(db, seed, clio, engine):
    seed.template(1, "Open file")
    seed.task(501, 1, in_clio=False)
    templates = template_service.get_stage_templates(db, STAGE_ID)
    existing = task_service.get_tasks_by_matter_and_stage(db, MATTER_ID, STAGE_ID)

    result = await engine.update_or_create(_scope(seed.matter()), templates, existing)

    assert (result.updated, result.created) == (0, 1)
    assert task_service.get_task(db, 501).status == TaskStatus.DELETED.value
    live = task_service.get_tasks_by_matter_and_stage(db, MATTER_ID, STAGE_ID)
    assert [t.task_number for t in live] == [1]
    assert live[0].task_id != 501
    assert db.query(ErrorLog).filter_by(error_code=ErrorCode.TASK_NOT_FOUND_IN_CLIO.value).count() == 1


@pytest.mark.asyncio
async def test_rollback_deletes_recent_tasks_of_previous_stage(db, seed, clio, engine):
    seed.task(501, 1)
    seed.task(502, 2)
    seed.task(601, 1, stage_id=20, stage_name="Drafting")

    deleted = await engine.handle_rollback(MATTER_ID, STAGE_ID)

    assert deleted == 2
    assert sorted(clio.deleted) == [501, 502]
    assert [t.task_id for t in db.query(Task).all()] == [601]


@pytest.mark.asyncio
async def test_missing_data_check_and_error_task(db, seed, clio, engine):
    seed.template(1, "Open file", assignee="ATTORNEY")
    seed.template(2, "Schedule intake call", assignee="CSC")
    matter = seed.matter(location=None, responsible_attorney=None)
    templates = template_service.get_stage_templates(db, STAGE_ID)
    scope = _scope(matter)

    missing = engine.check_for_missing_data(scope, templates)
    assert missing == ["location", "responsible_attorney"]

    task = await engine.create_missing_data_error_task(scope, missing)

    payload = clio.created[0]
    assert payload["name"] == "⚠️ Missing Data - Cannot Generate Tasks for Intake"
    assert "• Matter Location" in payload["description"]
    assert "• Responsible Attorney" in payload["description"]
    record = task_service.get_task(db, task.id)
    assert record.task_number == SystemTaskNumber.MISSING_DATA
    assert db.query(ErrorLog).filter_by(
        error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD.value
    ).count() == 1


def test_meeting_scopes_do_not_need_matter_location(seed):
    seed.template(1, "Bring documents", assignee="CSC")
    scope = GenerationScope(
        matter=seed.matter(location=None),
        stage_id=STAGE_ID,
        stage_name=STAGE_NAME,
        meeting_location_required=True,
    )
    templates = template_service.get_stage_templates(seed.db, STAGE_ID)
    assert TaskEngine.check_for_missing_data(scope, templates) == []


@pytest.mark.asyncio
async def test_verification_regenerates_exactly_the_missing_numbers(db, seed, clio, engine, fake_sleep, sleeps):
    for number in (1, 2, 3, 4):
        seed.template(number, f"Step {number}", assignee="VA")
    seed.template(5, "Attempt 2", assignee="VA")
    seed.task(501, 1)
    seed.task(503, 3)
    templates = template_service.get_stage_templates(db, STAGE_ID)

    verification = await verify_generation(
        engine, _scope(seed.matter()), templates, settle_seconds=1.5, sleep=fake_sleep
    )

    assert sleeps == [1.5]
    assert verification.expected == [1, 2, 3, 4]
    assert verification.missing == [2, 4]
    assert verification.regenerated == 2
    assert clio.created_names() == ["Step 2", "Step 4"]
    regenerated = [task_service.get_task(db, task_id) for task_id in sorted(clio.tasks)[-2:]]
    assert all(t.verification_attempted for t in regenerated)
    assert task_service.get_recorded_task_numbers(db, MATTER_ID, STAGE_ID) == {1, 2, 3, 4}


@pytest.mark.asyncio
async def test_verification_passes_when_complete(db, seed, clio, engine):
    seed.template(1, "Step 1", assignee="VA")
    seed.task(501, 1)
    templates = template_service.get_stage_templates(db, STAGE_ID)

    verification = await verify_generation(engine, _scope(seed.matter()), templates, settle_seconds=0)

    assert verification.complete is True
    assert clio.created == []


@pytest.mark.asyncio
async def test_verification_counts_older_live_records(db, seed, clio, engine):
    # Records refreshed in place by an update pass keep their original generated_at
    seed.template(1, "Step 1", assignee="VA")
    seed.template(2, "Step 2", assignee="VA")
    seed.task(501, 1, generated_at=utc_now() - timedelta(days=2))
    seed.task(502, 2)
    templates = template_service.get_stage_templates(db, STAGE_ID)

    verification = await verify_generation(engine, _scope(seed.matter()), templates, settle_seconds=0)

    assert verification.complete is True
    assert clio.created == []
