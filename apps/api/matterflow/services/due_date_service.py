"""Due-date calculation for generated tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union

from matterflow.core.config import Settings, settings as default_settings
from matterflow.services.template_service import (
    AnchorReference,
    DueAnchor,
    OffsetUnit,
    ParsedTemplate,
    Relation,
)
from matterflow.utils.datetimes import ensure_utc, is_weekend, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Now:
    """Reference is the current instant, shifted into firm-local time."""


@dataclass(frozen=True)
class At:
    """Reference is a real calendar instant (meeting start, task completion)."""

    instant: datetime


Reference = Union[Now, At]

NOW = Now()


def local_now(app_settings: Settings | None = None) -> datetime:
    """Server time (UTC) moved back by the firm's offset."""
    app_settings = app_settings or default_settings
    return utc_now() - timedelta(hours=app_settings.TIMEZONE_OFFSET_HOURS)


def _offset(anchor: DueAnchor) -> timedelta:
    if anchor.offset_unit is OffsetUnit.HOURS:
        delta = timedelta(hours=anchor.offset_magnitude)
    elif anchor.offset_unit is OffsetUnit.DAYS:
        delta = timedelta(days=anchor.offset_magnitude)
    elif anchor.offset_unit is OffsetUnit.MINUTES:
        delta = timedelta(minutes=anchor.offset_magnitude)
    else:
        delta = timedelta(0)
    return -delta if anchor.relation is Relation.BEFORE else delta


def shift_weekend_to_monday(value: datetime) -> datetime:
    if not is_weekend(value):
        return value
    return value + timedelta(days=7 - value.weekday())


def compute(
    anchor: DueAnchor,
    reference: Reference = NOW,
    app_settings: Settings | None = None,
) -> datetime:
    """
    Apply a parsed anchor to a reference instant.

    Zero offsets and "now" relations come back unshifted; anything else that
    lands on a weekend moves to the following Monday at the same time.
    """
    if isinstance(reference, At):
        base = ensure_utc(reference.instant)
    else:
        base = local_now(app_settings)

    due = base + _offset(anchor)
    if anchor.offset_magnitude == 0 or anchor.relation is Relation.NOW:
        return due
    return shift_weekend_to_monday(due)


def for_template(
    template: ParsedTemplate,
    *,
    meeting_start: datetime | None = None,
    app_settings: Settings | None = None,
) -> datetime | None:
    """
    Due date for a template at generation time.

    Task-dependent anchors stay unset until the dependency completes.
    Meeting anchors need a meeting; without one the date is left unset.
    """
    reference = template.anchor.reference
    if reference is AnchorReference.TASK:
        return None
    if reference is AnchorReference.MEETING:
        if meeting_start is None:
            logger.warning(
                "Template %s is meeting-relative but no meeting date is known",
                template.task_number,
            )
            return None
        return compute(template.anchor, At(meeting_start), app_settings)
    return compute(template.anchor, NOW, app_settings)
