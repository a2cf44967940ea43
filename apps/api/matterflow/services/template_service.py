"""Task template loading, anchor parsing and validation."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.db.enums import TaskList
from matterflow.db.models import TaskTemplate

# Follow-ups created by task completion, never by stage generation
ATTEMPT_FOLLOW_UP_TITLES = frozenset(
    {"attempt 2", "attempt 2 follow up", "attempt 3", "attempt 3 follow up", "no response"}
)

_DEPENDS_ON_TASK = re.compile(r"after\s+task\s+(\d+)", re.IGNORECASE)


class OffsetUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class Relation(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    NOW = "now"


class AnchorReference(str, Enum):
    CREATION = "creation"
    MEETING = "meeting"
    TASK = "task"


@dataclass(frozen=True)
class DueAnchor:
    """Parsed due-date rule: offset, direction and what it is relative to."""

    offset_magnitude: int = 0
    offset_unit: OffsetUnit | None = OffsetUnit.DAYS
    relation: Relation = Relation.AFTER
    reference: AnchorReference = AnchorReference.CREATION
    depends_on_task_number: int | None = None

    @classmethod
    def parse(
        cls,
        value: str | int | None,
        unit: str | None,
        relation: str | None,
    ) -> "DueAnchor":
        try:
            magnitude = abs(int(str(value).strip())) if value not in (None, "") else 0
        except ValueError:
            magnitude = 0

        unit_text = (unit or "days").lower()
        if "hour" in unit_text:
            offset_unit: OffsetUnit | None = OffsetUnit.HOURS
        elif "day" in unit_text:
            offset_unit = OffsetUnit.DAYS
        elif "minute" in unit_text:
            offset_unit = OffsetUnit.MINUTES
        else:
            offset_unit = None

        relation_text = (relation or "after creation").lower()
        if "now" in relation_text:
            parsed_relation = Relation.NOW
        elif "before" in relation_text:
            parsed_relation = Relation.BEFORE
        else:
            parsed_relation = Relation.AFTER

        depends_on = None
        match = _DEPENDS_ON_TASK.search(relation_text)
        if match:
            reference = AnchorReference.TASK
            depends_on = int(match.group(1))
        elif "meeting" in relation_text:
            reference = AnchorReference.MEETING
        else:
            reference = AnchorReference.CREATION

        return cls(
            offset_magnitude=magnitude,
            offset_unit=offset_unit,
            relation=parsed_relation,
            reference=reference,
            depends_on_task_number=depends_on,
        )


@dataclass(frozen=True)
class ParsedTemplate:
    task_number: int | None
    title: str | None
    description: str | None
    assignee: str | None
    assignee_id: str | None
    anchor: DueAnchor = field(default_factory=DueAnchor)
    task_list: str | None = None
    stage_id: int | None = None
    stage_name: str | None = None
    calendar_event_id: int | None = None

    @property
    def is_meeting_relative(self) -> bool:
        return self.anchor.reference == AnchorReference.MEETING

    @property
    def is_attempt_follow_up(self) -> bool:
        return (self.title or "").strip().lower() in ATTEMPT_FOLLOW_UP_TITLES

    @property
    def uses_location(self) -> bool:
        return (self.assignee or "").strip().upper() == "CSC" or (
            (self.assignee_id or "").strip().lower() == "location"
        )

    @property
    def uses_attorney(self) -> bool:
        role = (self.assignee or "").strip().upper().replace(" ", "_")
        return role in {"ATTORNEY", "PARALEGAL", "FUND_TABLE"} or (
            (self.assignee_id or "").strip().lower() in {"attorney", "attorney_id"}
        )


@dataclass
class TemplateValidation:
    valid: bool
    errors: list[str]


def parse_template(row: TaskTemplate) -> ParsedTemplate:
    return ParsedTemplate(
        task_number=row.task_number,
        title=row.task_title,
        description=row.task_description,
        assignee=row.assignee,
        assignee_id=row.assignee_id,
        anchor=DueAnchor.parse(
            row.due_date_value, row.due_date_time_relation, row.due_date_relation
        ),
        task_list=row.task_list,
        stage_id=row.stage_id,
        stage_name=row.stage_name,
        calendar_event_id=row.calendar_event_id,
    )


def _load(db: Session, task_list: TaskList, **filters) -> list[ParsedTemplate]:
    query = db.query(TaskTemplate).filter(TaskTemplate.task_list == task_list.value)
    for column, value in filters.items():
        query = query.filter(getattr(TaskTemplate, column) == value)
    rows = query.order_by(TaskTemplate.task_number, TaskTemplate.id).all()
    return [parse_template(row) for row in rows]


def is_probate(app_settings: Settings, practice_area_id: int | None) -> bool:
    return practice_area_id is not None and practice_area_id == app_settings.PROBATE_PRACTICE_AREA_ID


def get_stage_templates(
    db: Session, stage_id: int, *, probate: bool = False
) -> list[ParsedTemplate]:
    task_list = TaskList.PROBATE if probate else TaskList.NON_MEETING
    return _load(db, task_list, stage_id=stage_id)


def get_meeting_templates(db: Session, calendar_event_id: int) -> list[ParsedTemplate]:
    return _load(db, TaskList.MEETING, calendar_event_id=calendar_event_id)


def validate_templates(templates: list[ParsedTemplate]) -> TemplateValidation:
    if not templates:
        return TemplateValidation(valid=False, errors=["No templates found"])

    errors: list[str] = []
    counts = Counter(t.task_number for t in templates if t.task_number is not None)
    duplicates = sorted(number for number, count in counts.items() if count > 1)
    if duplicates:
        errors.append(
            "Duplicate task_numbers found: " + ", ".join(str(n) for n in duplicates)
        )
    for index, template in enumerate(templates):
        if not template.title:
            errors.append(f"Template at index {index} missing task_title")
        if template.task_number is None:
            errors.append(f"Template at index {index} missing task_number")
    return TemplateValidation(valid=not errors, errors=errors)


def without_attempt_follow_ups(templates: list[ParsedTemplate]) -> list[ParsedTemplate]:
    return [t for t in templates if not t.is_attempt_follow_up]


def expected_task_numbers(templates: list[ParsedTemplate]) -> set[int]:
    """Numbers a generation pass should leave a record for."""
    return {
        t.task_number
        for t in without_attempt_follow_ups(templates)
        if t.task_number is not None
    }


def find_by_number(templates: list[ParsedTemplate], task_number: int) -> ParsedTemplate | None:
    for template in templates:
        if template.task_number == task_number:
            return template
    return None


def dependents_of(templates: list[ParsedTemplate], task_number: int) -> list[ParsedTemplate]:
    return [t for t in templates if t.anchor.depends_on_task_number == task_number]
