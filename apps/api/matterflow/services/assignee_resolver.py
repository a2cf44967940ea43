"""Map a template's assignee role to a concrete Clio user."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from matterflow.core.config import Settings, settings as default_settings
from matterflow.db.enums import AssigneeRole, ErrorCode, LookupOverride, TaskPriority
from matterflow.schemas.clio import Matter
from matterflow.services import reference_service
from matterflow.services.template_service import ParsedTemplate
from matterflow.utils.datetimes import format_for_clio, utc_now

logger = logging.getLogger(__name__)

USER_TYPE = "User"
ALLOWED_ROLES = "ATTORNEY, CSC, PARALEGAL, FUND_TABLE (or FUND TABLE), FUNDING_COOR, VA, or numeric ID"


@dataclass(frozen=True)
class Assignee:
    id: int
    name: str | None
    type: str = USER_TYPE

    def as_clio(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type}


class AssigneeError(Exception):
    """Role could not be mapped to a user."""

    def __init__(self, code: ErrorCode, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}


@dataclass
class _Request:
    db: Session
    matter: Matter
    meeting_location: str | None
    meeting_location_required: bool
    app_settings: Settings
    context: dict[str, Any] = field(default_factory=dict)


def _is_numeric(value: str | None) -> bool:
    return bool(value) and value.strip().isdigit()


def extract_location_keyword(db: Session, location: str | None) -> str | None:
    """First configured keyword appearing as a whole word in ``location``."""
    if not location:
        return None
    keywords = [k for k in reference_service.get_location_keywords(db) if k]
    if not keywords:
        return None
    pattern = re.compile(
        r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE
    )
    match = pattern.search(location)
    return match.group(1).lower() if match else None


def _attorney(request: _Request, purpose: str) -> Assignee:
    attorney = request.matter.attorney
    if attorney is None:
        raise AssigneeError(
            ErrorCode.ASSIGNEE_NO_ATTORNEY,
            f"No attorney found for {purpose} assignment. Matter: {request.matter.id}",
            {"matter_id": request.matter.id},
        )
    return Assignee(id=attorney.id, name=attorney.name)


def _by_location(request: _Request) -> Assignee:
    matter_id = request.matter.id
    if request.meeting_location_required:
        if not request.meeting_location:
            raise AssigneeError(
                ErrorCode.MEETING_NO_LOCATION,
                f"Meeting location is required but was not provided. Matter: {matter_id}",
                {"matter_id": matter_id, "require_meeting_location": True},
            )
        location = request.meeting_location
    else:
        location = request.meeting_location or request.matter.location
        if not location:
            raise AssigneeError(
                ErrorCode.MEETING_NO_LOCATION,
                f"No location found for assignee lookup. Matter: {matter_id}",
                {"matter_id": matter_id},
            )

    if request.meeting_location:
        keyword = extract_location_keyword(request.db, request.meeting_location)
        if not keyword:
            raise AssigneeError(
                ErrorCode.MEETING_INVALID_LOCATION,
                "Could not extract location keyword from meeting location: "
                f"{request.meeting_location}",
                {"matter_id": matter_id, "meeting_location": request.meeting_location},
            )
        location = keyword

    user = reference_service.get_assignee_by_location(request.db, location)
    if user is None:
        raise AssigneeError(
            ErrorCode.ASSIGNEE_NO_CSC,
            f"No CSC found for location: {location}",
            {"matter_id": matter_id, "location": location},
        )
    return Assignee(id=user.user_id, name=user.user_name)


def resolve(
    db: Session,
    role: str | None,
    matter: Matter,
    *,
    meeting_location: str | None = None,
    lookup: str | None = None,
    meeting_location_required: bool = False,
    app_settings: Settings | None = None,
) -> Assignee:
    """
    Resolve ``role`` for ``matter``.

    ``lookup`` is either an override ("location", "attorney") or, for
    FUNDING_COOR, the literal user id. Raises AssigneeError on every
    unresolvable case.
    """
    request = _Request(
        db=db,
        matter=matter,
        meeting_location=meeting_location,
        meeting_location_required=meeting_location_required,
        app_settings=app_settings or default_settings,
    )

    override = LookupOverride.parse(lookup)
    if override is LookupOverride.LOCATION:
        return _by_location(request)
    if override is LookupOverride.ATTORNEY:
        return _attorney(request, "attorney lookup")

    parsed = AssigneeRole.parse(role)
    if parsed is AssigneeRole.ATTORNEY:
        return _attorney(request, "ATTORNEY")

    if parsed is AssigneeRole.CSC:
        return _by_location(request)

    if parsed is AssigneeRole.PARALEGAL:
        attorney = _attorney(request, "PARALEGAL")
        user = reference_service.get_assignee_by_attorney_id(db, attorney.id)
        if user is None:
            raise AssigneeError(
                ErrorCode.ASSIGNEE_NO_PARALEGAL,
                f"No PARALEGAL found for attorney ID: {attorney.id}",
                {"matter_id": matter.id, "attorney_id": attorney.id},
            )
        return Assignee(id=user.user_id, name=user.user_name)

    if parsed is AssigneeRole.FUNDING_COOR:
        if not lookup:
            raise AssigneeError(
                ErrorCode.ASSIGNEE_INVALID_TYPE,
                f"No assignee_id provided for FUNDING_COOR assignment. Matter: {matter.id}",
                {"matter_id": matter.id},
            )
        if not _is_numeric(lookup):
            raise AssigneeError(
                ErrorCode.ASSIGNEE_INVALID_TYPE,
                f'Invalid assignee_id for FUNDING_COOR: "{lookup}". '
                "Must be numeric Clio user ID.",
                {"matter_id": matter.id, "assignee_id": lookup},
            )
        return Assignee(id=int(lookup.strip()), name="Funding Coordinator")

    if parsed is AssigneeRole.FUND_TABLE:
        attorney = _attorney(request, "FUND TABLE")
        user = reference_service.get_assignee_by_fund_table(db, attorney.id)
        if user is None:
            raise AssigneeError(
                ErrorCode.ASSIGNEE_NO_FUND_TABLE,
                f"No assignee found in fund_table for attorney ID: {attorney.id}",
                {"matter_id": matter.id, "attorney_id": attorney.id},
            )
        return Assignee(id=user.user_id, name=user.user_name)

    if parsed is AssigneeRole.VA:
        return Assignee(
            id=request.app_settings.FALLBACK_ASSIGNEE_ID,
            name=request.app_settings.FALLBACK_ASSIGNEE_NAME,
        )

    if _is_numeric(role):
        return Assignee(id=int(role.strip()), name="Direct Assignment")

    raise AssigneeError(
        ErrorCode.ASSIGNEE_INVALID_TYPE,
        f'Invalid assignee type: "{role}". Must be {ALLOWED_ROLES}.',
        {"matter_id": matter.id, "assignee_type": role},
    )


def resolve_for_template(
    db: Session,
    template: ParsedTemplate,
    matter: Matter,
    *,
    meeting_location: str | None = None,
    meeting_location_required: bool = False,
    app_settings: Settings | None = None,
) -> Assignee:
    """Apply the template's assignee / assignee_id columns to ``resolve``."""
    role = template.assignee
    assignee_id = (template.assignee_id or "").strip() or None
    kwargs = dict(
        meeting_location=meeting_location,
        meeting_location_required=meeting_location_required,
        app_settings=app_settings,
    )

    if AssigneeRole.parse(role) is AssigneeRole.FUNDING_COOR:
        return resolve(db, role, matter, lookup=assignee_id, **kwargs)
    if _is_numeric(assignee_id):
        return resolve(db, assignee_id, matter, **kwargs)
    if assignee_id:
        return resolve(db, role, matter, lookup=assignee_id, **kwargs)
    return resolve(db, role, matter, **kwargs)


def build_assignee_error_task(matter: Matter, message: str) -> dict[str, Any]:
    """Clio payload for the task telling the attorney that assignment failed."""
    payload: dict[str, Any] = {
        "name": f"⚠️ Assignment Error - {matter.display_number}",
        "description": f"Unable to generate tasks for stage. {message}",
        "matter": {"id": matter.id},
        "due_at": format_for_clio(utc_now()),
        "priority": TaskPriority.HIGH.value,
    }
    attorney = matter.attorney
    if attorney is not None:
        payload["assignee"] = {"id": attorney.id, "type": USER_TYPE}
    return payload
