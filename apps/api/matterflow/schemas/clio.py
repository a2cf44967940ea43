"""Pydantic models for Clio resources and inbound webhook envelopes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from matterflow.utils.datetimes import ensure_utc

CLOSED_STATUS = "Closed"


class ClioModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class Ref(ClioModel):
    """Nested ``{id, name}`` reference (stage, attorney, practice area, ...)."""

    id: int | None = None
    name: str | None = None


class Matter(ClioModel):
    id: int
    display_number: str | None = None
    status: str | None = None
    matter_stage: Ref | None = None
    matter_stage_updated_at: datetime | None = None
    location: str | None = None
    practice_area: Ref | None = None
    responsible_attorney: Ref | None = None
    originating_attorney: Ref | None = None
    updated_at: datetime | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == CLOSED_STATUS

    @property
    def stage_id(self) -> int | None:
        return self.matter_stage.id if self.matter_stage else None

    @property
    def stage_name(self) -> str | None:
        return self.matter_stage.name if self.matter_stage else None

    @property
    def practice_area_id(self) -> int | None:
        return self.practice_area.id if self.practice_area else None

    @property
    def attorney(self) -> Ref | None:
        """Responsible attorney, falling back to the originating attorney."""
        if self.responsible_attorney and self.responsible_attorney.id:
            return self.responsible_attorney
        if self.originating_attorney and self.originating_attorney.id:
            return self.originating_attorney
        return None


class ClioTask(ClioModel):
    id: int
    name: str | None = None
    description: str | None = None
    status: str | None = None
    matter: Ref | None = None
    assignee: Ref | None = None
    due_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return (self.status or "").lower() == "complete"


class CalendarEntry(ClioModel):
    id: int
    summary: str | None = None
    calendar_entry_event_type: Ref | None = None
    matter: Ref | None = None
    location: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None


class DocumentParent(Ref):
    type: str | None = None


class Document(ClioModel):
    id: int
    name: str | None = None
    parent: DocumentParent | None = None
    matter: Ref | None = None
    created_at: datetime | None = None


class Bill(ClioModel):
    id: int
    total: float | None = None
    paid: float | None = None
    balance: float | None = None
    status: str | None = None


class Webhook(ClioModel):
    """A Clio webhook subscription."""

    id: int
    url: str | None = None
    status: str | None = None
    events: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class WebhookData(ClioModel):
    """
    Resource fields carried by a delivery.

    Only the fields routing and idempotency need are declared; everything
    else is re-fetched from Clio before acting.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int | None = None
    status: str | None = None
    matter: Ref | None = None
    matter_id: int | None = None
    matter_stage: Ref | None = None
    matter_stage_updated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    deleted_at: datetime | None = None


class WebhookEnvelope(ClioModel):
    id: str | None = None
    type: str | None = None
    occurred_at: datetime | None = None
    data: WebhookData = Field(default_factory=WebhookData)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value)

    @property
    def is_deletion(self) -> bool:
        return self.data.deleted_at is not None or self.type == "activity.deleted"

    def matter_id(self, *, resource_is_matter: bool = False) -> int | None:
        """Entity key: the matter itself for matter events, else data.matter.id."""
        if resource_is_matter:
            return self.data.id
        if self.data.matter and self.data.matter.id:
            return self.data.matter.id
        return self.data.matter_id
