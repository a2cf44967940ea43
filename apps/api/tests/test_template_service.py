"""Tests for template loading, anchor parsing and validation."""

import pytest

from matterflow.db.enums import TaskList
from matterflow.services import template_service
from matterflow.services.template_service import (
    AnchorReference,
    DueAnchor,
    OffsetUnit,
    ParsedTemplate,
    Relation,
)


@pytest.mark.parametrize(
    "value,unit,relation,expected",
    [
        ("3", "Days", "before meeting", DueAnchor(3, OffsetUnit.DAYS, Relation.BEFORE, AnchorReference.MEETING)),
        ("-2", "hours", "after task 4", DueAnchor(2, OffsetUnit.HOURS, Relation.AFTER, AnchorReference.TASK, 4)),
        (None, None, None, DueAnchor(0, OffsetUnit.DAYS, Relation.AFTER, AnchorReference.CREATION)),
        ("15", "Minutes", "After Creation", DueAnchor(15, OffsetUnit.MINUTES, Relation.AFTER, AnchorReference.CREATION)),
        ("x", "weeks", "now", DueAnchor(0, None, Relation.NOW, AnchorReference.CREATION)),
    ],
)
def test_due_anchor_parse(value, unit, relation, expected):
    assert DueAnchor.parse(value, unit, relation) == expected


def _template(number, title="Task", **kwargs) -> ParsedTemplate:
    return ParsedTemplate(
        task_number=number, title=title, description=None, assignee="VA", assignee_id=None, **kwargs
    )


def test_validate_accepts_unique_numbers():
    result = template_service.validate_templates([_template(1), _template(2)])
    assert result.valid is True
    assert result.errors == []


def test_validate_rejects_empty_list():
    result = template_service.validate_templates([])
    assert result.valid is False
    assert result.errors == ["No templates found"]


def test_validate_reports_duplicates_and_missing_fields():
    result = template_service.validate_templates(
        [_template(1), _template(2), _template(2), _template(None), _template(3, title=None)]
    )
    assert result.valid is False
    assert "Duplicate task_numbers found: 2" in result.errors
    assert "Template at index 3 missing task_number" in result.errors
    assert "Template at index 4 missing task_title" in result.errors


def test_attempt_follow_ups_are_excluded_from_generation():
    templates = [
        _template(1, "Attempt 1 - Call client"),
        _template(2, "Attempt 2"),
        _template(3, "No Response"),
        _template(4, "Send engagement letter"),
    ]
    kept = template_service.without_attempt_follow_ups(templates)
    assert [t.task_number for t in kept] == [1, 4]
    assert template_service.expected_task_numbers(templates) == {1, 4}


def test_dependents_of():
    dependent = _template(2, anchor=DueAnchor.parse("2", "days", "after task 1"))
    templates = [_template(1), dependent, _template(3)]
    assert template_service.dependents_of(templates, 1) == [dependent]
    assert template_service.find_by_number(templates, 3).task_number == 3
    assert template_service.find_by_number(templates, 9) is None


def test_role_flags():
    assert ParsedTemplate(1, "t", None, "CSC", None).uses_location is True
    assert ParsedTemplate(1, "t", None, "VA", "location").uses_location is True
    assert ParsedTemplate(1, "t", None, "fund table", None).uses_attorney is True
    assert ParsedTemplate(1, "t", None, "VA", None).uses_attorney is False


def test_stage_templates_pick_list_by_practice_area(db, seed, settings):
    seed.template(1, "Standard intake")
    seed.template(1, "Probate intake", task_list=TaskList.PROBATE)
    seed.template(2, "Other stage", stage_id=99)

    standard = template_service.get_stage_templates(db, 10)
    probate = template_service.get_stage_templates(db, 10, probate=True)

    assert [t.title for t in standard] == ["Standard intake"]
    assert [t.title for t in probate] == ["Probate intake"]
    assert template_service.is_probate(settings, settings.PROBATE_PRACTICE_AREA_ID) is True
    assert template_service.is_probate(settings, None) is False


def test_meeting_templates_are_ordered(db, seed):
    seed.template(2, "Second", task_list=TaskList.MEETING, stage_id=None, calendar_event_id=555)
    seed.template(1, "First", task_list=TaskList.MEETING, stage_id=None, calendar_event_id=555)

    templates = template_service.get_meeting_templates(db, 555)

    assert [t.title for t in templates] == ["First", "Second"]
    assert templates[0].anchor == DueAnchor(1, OffsetUnit.DAYS, Relation.AFTER, AnchorReference.CREATION)
