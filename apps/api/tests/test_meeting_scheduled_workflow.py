"""Tests for calendar entry (meeting) task generation."""

import pytest

from matterflow.db.enums import ErrorCode, TaskList
from matterflow.db.models import ErrorLog, MeetingBooking
from matterflow.schemas.clio import CalendarEntry, WebhookEnvelope
from matterflow.services import task_service
from matterflow.services.workflows.meeting_scheduled import MeetingScheduledWorkflow

from conftest import MATTER_ID, STAGE_ID

workflow = MeetingScheduledWorkflow()

ENTRY_ID = 7001
EVENT_TYPE_ID = 555


def _event(created="2026-10-19T12:00:00Z", updated=None) -> WebhookEnvelope:
    return WebhookEnvelope.model_validate(
        {
            "data": {
                "id": ENTRY_ID,
                "created_at": created,
                "updated_at": updated or created,
                "matter": {"id": MATTER_ID},
            }
        }
    )


def _entry(clio, start="2026-10-21T15:00:00Z", location=None, event_type_id=EVENT_TYPE_ID, matter_id=MATTER_ID):
    clio.calendar_entries[ENTRY_ID] = CalendarEntry.model_validate(
        {
            "id": ENTRY_ID,
            "summary": "Design meeting",
            "calendar_entry_event_type": {"id": event_type_id} if event_type_id else None,
            "matter": {"id": matter_id} if matter_id else None,
            "location": location,
            "start_at": start,
        }
    )


def _meeting_templates(seed, first_assignee="ATTORNEY"):
    common = dict(task_list=TaskList.MEETING, stage_id=None, calendar_event_id=EVENT_TYPE_ID)
    seed.template(1, "Prepare binder", assignee=first_assignee, relation="before meeting", **common)
    seed.template(2, "Confirm attendance", assignee="VA", **common)


@pytest.mark.asyncio
async def test_new_meeting_creates_meeting_tasks(ctx, db, seed, clio):
    seed.mapping(EVENT_TYPE_ID)
    _meeting_templates(seed)
    seed.matter()
    _entry(clio)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "tasks_created"
    assert result["tasks_created"] == 2
    assert clio.created[0]["name"] == "Prepare binder"
    # one day before a Wednesday meeting
    assert clio.created[0]["due_at"] == "2026-10-20"
    owned = task_service.get_tasks_by_calendar_entry(db, ENTRY_ID)
    assert [(t.task_number, t.stage_id) for t in owned] == [(1, STAGE_ID), (2, STAGE_ID)]
    booking = db.query(MeetingBooking).one()
    assert (booking.calendar_entry_id, booking.booked) == (ENTRY_ID, True)
    assert result["verification"]["missing"] == []


@pytest.mark.asyncio
async def test_rescheduled_meeting_moves_owned_tasks(ctx, seed, clio):
    seed.mapping(EVENT_TYPE_ID)
    _meeting_templates(seed)
    seed.matter()
    _entry(clio)
    await workflow.run(ctx, _event())

    _entry(clio, start="2026-10-28T15:00:00Z")
    result = await workflow.run(ctx, _event(updated="2026-10-20T09:00:00Z"))

    assert result["action"] == "tasks_updated"
    assert result["tasks_updated"] == 2
    assert clio.updated[0][1]["due_at"] == "2026-10-27"


@pytest.mark.asyncio
async def test_meeting_links_stage_generated_tasks(ctx, db, seed, clio):
    seed.mapping(EVENT_TYPE_ID)
    _meeting_templates(seed)
    seed.matter()
    seed.task(501, 1)
    seed.task(502, 2)
    _entry(clio)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "tasks_linked_and_updated"
    # only the meeting-relative task moves
    assert result["tasks_updated"] == 1
    assert [task_id for task_id, _ in clio.updated] == [501]
    assert {t.calendar_entry_id for t in task_service.get_tasks_by_matter_and_stage(db, MATTER_ID, STAGE_ID)} == {ENTRY_ID}
    assert clio.created == []


@pytest.mark.asyncio
async def test_signing_meeting_without_location_creates_error_task(ctx, db, seed, clio):
    seed.keywords("Bethesda")
    seed.mapping(EVENT_TYPE_ID, stage_name="Signing", signing=True)
    _meeting_templates(seed, first_assignee="CSC")
    seed.matter()
    _entry(clio, location=None)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "error_task_created"
    assert clio.created_names() == ["⚠️ Meeting Location Empty - Signing"]
    assert db.query(ErrorLog).one().error_code == ErrorCode.MEETING_NO_LOCATION.value
    assert task_service.get_tasks_by_calendar_entry(db, ENTRY_ID) == []


@pytest.mark.asyncio
async def test_signing_meeting_with_unknown_location(ctx, db, seed, clio):
    seed.keywords("Bethesda")
    seed.mapping(EVENT_TYPE_ID, stage_name="Signing", signing=True)
    _meeting_templates(seed, first_assignee="CSC")
    seed.matter()
    _entry(clio, location="Client's kitchen")

    result = await workflow.run(ctx, _event())

    assert result["action"] == "error_task_created"
    assert db.query(ErrorLog).one().error_code == ErrorCode.MEETING_INVALID_LOCATION.value


@pytest.mark.asyncio
async def test_signing_meeting_resolves_csc_from_meeting_location(ctx, seed, clio):
    seed.keywords("Bethesda")
    seed.assignee(301, "Carla CSC", location=["Bethesda Office"])
    seed.mapping(EVENT_TYPE_ID, stage_name="Signing", signing=True)
    _meeting_templates(seed, first_assignee="CSC")
    seed.matter(location="Rockville")
    _entry(clio, location="Bethesda conference room")

    result = await workflow.run(ctx, _event())

    assert result["action"] == "tasks_created"
    assert clio.created[0]["assignee"] == {"id": 301, "type": "User"}


@pytest.mark.asyncio
async def test_unmapped_event_type(ctx, seed, clio):
    seed.matter()
    _entry(clio, event_type_id=999)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "not_mapped"
    assert clio.created == []


@pytest.mark.asyncio
async def test_entry_without_event_type(ctx, seed, clio):
    seed.matter()
    _entry(clio, event_type_id=None)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "skipped_no_event_type"


@pytest.mark.asyncio
async def test_entry_without_matter(ctx, seed, clio):
    seed.mapping(EVENT_TYPE_ID)
    _entry(clio, matter_id=None)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "no_matter"


@pytest.mark.asyncio
async def test_entry_without_start(ctx, seed, clio):
    seed.matter()
    _entry(clio, start=None)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "missing_meeting_date"
    assert result["success"] is False


@pytest.mark.asyncio
async def test_deleted_entry(ctx):
    result = await workflow.run(ctx, _event())
    assert result["action"] == "not_found"


@pytest.mark.asyncio
async def test_mapped_event_without_templates(ctx, seed, clio):
    seed.mapping(EVENT_TYPE_ID)
    seed.matter()
    _entry(clio)

    result = await workflow.run(ctx, _event())

    assert result["action"] == "no_templates"


def test_update_detection():
    created = _event()
    updated = _event(updated="2026-10-20T09:00:00Z")
    assert workflow.event_type_for(created) == "calendar_entry.created"
    assert workflow.event_type_for(updated) == "calendar_entry.updated"
    assert workflow.event_timestamp(updated).day == 20
