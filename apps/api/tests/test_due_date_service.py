"""Tests for due-date calculation."""

from datetime import timedelta

from matterflow.services import due_date_service
from matterflow.services.due_date_service import NOW, At, compute, for_template, local_now
from matterflow.services.template_service import (
    AnchorReference,
    DueAnchor,
    OffsetUnit,
    ParsedTemplate,
    Relation,
)
from matterflow.utils.datetimes import add_business_days, format_for_clio

# 2026-10-16 is a Friday, 2026-10-19 a Monday


def test_weekend_result_moves_to_monday(at):
    anchor = DueAnchor(offset_magnitude=1, offset_unit=OffsetUnit.DAYS)
    assert compute(anchor, At(at(2026, 10, 16, 10))) == at(2026, 10, 19, 10)


def test_sunday_result_moves_to_monday(at):
    anchor = DueAnchor(offset_magnitude=2, offset_unit=OffsetUnit.DAYS)
    assert compute(anchor, At(at(2026, 10, 16, 10))) == at(2026, 10, 19, 10)


def test_weekday_result_is_unshifted(at):
    anchor = DueAnchor(offset_magnitude=2, offset_unit=OffsetUnit.DAYS)
    assert compute(anchor, At(at(2026, 10, 14, 15))) == at(2026, 10, 16, 15)


def test_zero_offset_is_never_shifted(at):
    saturday = at(2026, 10, 17, 9)
    assert compute(DueAnchor(offset_magnitude=0), At(saturday)) == saturday


def test_now_relation_is_never_shifted(at):
    anchor = DueAnchor(offset_magnitude=1, relation=Relation.NOW)
    assert compute(anchor, At(at(2026, 10, 16, 9))) == at(2026, 10, 17, 9)


def test_before_meeting(at):
    anchor = DueAnchor(
        offset_magnitude=2, relation=Relation.BEFORE, reference=AnchorReference.MEETING
    )
    assert compute(anchor, At(at(2026, 10, 21, 15))) == at(2026, 10, 19, 15)


def test_hours_before(at):
    anchor = DueAnchor(offset_magnitude=3, offset_unit=OffsetUnit.HOURS, relation=Relation.BEFORE)
    assert compute(anchor, At(at(2026, 10, 21, 15))) == at(2026, 10, 21, 12)


def test_minutes_after(at):
    anchor = DueAnchor(offset_magnitude=30, offset_unit=OffsetUnit.MINUTES)
    assert compute(anchor, At(at(2026, 10, 21, 15))) == at(2026, 10, 21, 15, 30)


def test_unknown_unit_adds_nothing(at):
    anchor = DueAnchor(offset_magnitude=4, offset_unit=None)
    assert compute(anchor, At(at(2026, 10, 21, 15))) == at(2026, 10, 21, 15)


def test_now_reference_uses_firm_local_time(settings, monkeypatch, at):
    monkeypatch.setattr(due_date_service, "utc_now", lambda: at(2026, 10, 20, 3))
    settings.TIMEZONE_OFFSET_HOURS = 4

    assert local_now(settings) == at(2026, 10, 19, 23)
    # 23:00 Monday local + 1 day is Tuesday, not Wednesday
    anchor = DueAnchor(offset_magnitude=1)
    assert format_for_clio(compute(anchor, NOW, settings)) == "2026-10-20"


def _template(anchor: DueAnchor) -> ParsedTemplate:
    return ParsedTemplate(
        task_number=2, title="Follow up", description=None, assignee="VA", assignee_id=None, anchor=anchor
    )


def test_task_dependent_template_has_no_due_date(at):
    anchor = DueAnchor(offset_magnitude=2, reference=AnchorReference.TASK, depends_on_task_number=1)
    assert for_template(_template(anchor), meeting_start=at(2026, 10, 21)) is None


def test_meeting_template_without_meeting_has_no_due_date():
    anchor = DueAnchor(offset_magnitude=1, relation=Relation.BEFORE, reference=AnchorReference.MEETING)
    assert for_template(_template(anchor)) is None


def test_meeting_template_uses_meeting_start(at):
    anchor = DueAnchor(offset_magnitude=1, relation=Relation.BEFORE, reference=AnchorReference.MEETING)
    due = for_template(_template(anchor), meeting_start=at(2026, 10, 21, 15))
    assert due == at(2026, 10, 20, 15)


def test_creation_template_is_relative_to_now(settings):
    due = for_template(_template(DueAnchor(offset_magnitude=0)), app_settings=settings)
    assert abs(due - local_now(settings)) < timedelta(seconds=5)


def test_add_business_days_skips_weekend(at):
    assert add_business_days(at(2026, 10, 16, 9), 1) == at(2026, 10, 19, 9)
    assert add_business_days(at(2026, 10, 14, 9), 6) == at(2026, 10, 22, 9)
