"""Clio API client.

Reads return an explicit result (``Found`` / ``NotFound`` / ``FetchFailed``)
so that "deleted upstream" is an ordinary branch for callers. Writes raise
``ClioApiError`` once the bounded retries are exhausted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, Protocol, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from matterflow.core.config import Settings, settings as default_settings
from matterflow.schemas.clio import Bill, CalendarEntry, ClioTask, Document, Matter, Webhook
from matterflow.services.http_service import SleepFn, request_with_retries
from matterflow.services.token_service import TokenRefreshError
from matterflow.utils.datetimes import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

MATTER_FIELDS = (
    "id,display_number,etag,status,matter_stage,matter_stage_updated_at,location,"
    "practice_area,originating_attorney,responsible_attorney,updated_at"
)
TASK_FIELDS = "id,name,description,status,matter{id,display_number},assignee{id,name},due_at"
CALENDAR_ENTRY_FIELDS = "id,summary,calendar_entry_event_type,matter,location,start_at,end_at"
DOCUMENT_FIELDS = "id,name,parent{id,name,type},matter,created_at"
BILL_FIELDS = "id,total,paid,balance,status"
WEBHOOK_FIELDS = "id,url,status,events,expires_at"


class ClioApiError(Exception):
    """A Clio request failed after retries (or could not be sent at all)."""

    def __init__(self, status_code: int | None, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    resource: str
    id: int


@dataclass(frozen=True)
class FetchFailed:
    error: ClioApiError


FetchResult = Union[Found[T], NotFound, FetchFailed]


def unwrap(result: FetchResult[T]) -> T:
    """Return the found value or raise ``ClioApiError``."""
    if isinstance(result, Found):
        return result.value
    if isinstance(result, NotFound):
        raise ClioApiError(404, f"{result.resource} {result.id} not found")
    raise result.error


@dataclass
class RateLimitStatus:
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None

    @property
    def known(self) -> bool:
        return self.remaining is not None

    def wait_ms(self, now: datetime | None = None) -> int:
        """Milliseconds until the quota resets (0 when unknown or past)."""
        if self.reset_at is None:
            return 0
        delta = self.reset_at - (now or utc_now())
        return max(0, int(delta.total_seconds() * 1000))

    def as_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


class TokenProvider(Protocol):
    def get_access_token(self) -> str:
        """Return the current access token."""

    async def refresh_access_token(self) -> str:
        """Refresh and return a new access token."""


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


class ClioClient:
    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        app_settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._settings = app_settings or default_settings
        self._tokens = token_provider
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self._settings.CLIO_API_BASE_URL.rstrip("/"),
            transport=transport,
            timeout=self._settings.CLIO_REQUEST_TIMEOUT_SECONDS,
        )
        self.rate_limit = RateLimitStatus()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _record_rate_limit(self, response: httpx.Response) -> None:
        limit = _int_header(response.headers, "X-RateLimit-Limit")
        remaining = _int_header(response.headers, "X-RateLimit-Remaining")
        reset = _int_header(response.headers, "X-RateLimit-Reset")
        if limit is None and remaining is None and reset is None:
            return
        if limit is not None:
            self.rate_limit.limit = limit
        if remaining is not None:
            self.rate_limit.remaining = remaining
        if reset is not None:
            # Epoch seconds, or seconds-until-reset for small values
            if reset > 1_000_000_000:
                self.rate_limit.reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)
            else:
                self.rate_limit.reset_at = utc_now() + timedelta(seconds=reset)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async def request_fn() -> httpx.Response:
            token = self._tokens.get_access_token()
            return await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )

        response = await request_with_retries(
            request_fn,
            max_attempts=self._settings.CLIO_RETRY_ATTEMPTS,
            delay_seconds=self._settings.CLIO_RETRY_DELAY_MS / 1000,
            sleep=self._sleep,
        )
        self._record_rate_limit(response)
        return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request; on 401 refresh the token and replay exactly once."""
        try:
            response = await self._send(method, path, params=params, json=json)
            if response.status_code != 401:
                return response

            logger.warning("Clio returned 401 for %s %s, refreshing token", method, path)
            try:
                await self._tokens.refresh_access_token()
            except TokenRefreshError as exc:
                raise ClioApiError(401, f"Token refresh failed: {exc}") from exc
            return await self._send(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            raise ClioApiError(None, f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            raise ClioApiError(
                response.status_code,
                f"{action} failed with status {response.status_code}: {response.text[:200]}",
            )

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise ClioApiError(
                response.status_code, f"Response is not JSON: {response.text[:200]}"
            ) from exc
        return body.get("data") if isinstance(body, dict) else None

    @classmethod
    def _parse(cls, response: httpx.Response, model: type[ModelT], action: str) -> ModelT:
        try:
            return model.model_validate(cls._data(response))
        except ValidationError as exc:
            raise ClioApiError(response.status_code, f"{action}: unexpected payload: {exc}") from exc

    async def _fetch(
        self,
        resource: str,
        resource_id: int,
        path: str,
        fields: str,
        model: type[ModelT],
    ) -> FetchResult[ModelT]:
        try:
            response = await self._request("GET", path, params={"fields": fields})
        except ClioApiError as exc:
            return FetchFailed(exc)

        if response.status_code == 404:
            return NotFound(resource, resource_id)
        if response.status_code >= 400:
            return FetchFailed(
                ClioApiError(
                    response.status_code,
                    f"Fetching {resource} {resource_id} failed with status {response.status_code}",
                )
            )
        try:
            return Found(self._parse(response, model, f"Fetching {resource} {resource_id}"))
        except ClioApiError as exc:
            return FetchFailed(exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_matter(self, matter_id: int) -> FetchResult[Matter]:
        return await self._fetch(
            "matter", matter_id, f"/api/v4/matters/{matter_id}.json", MATTER_FIELDS, Matter
        )

    async def get_task(self, task_id: int) -> FetchResult[ClioTask]:
        return await self._fetch(
            "task", task_id, f"/api/v4/tasks/{task_id}.json", TASK_FIELDS, ClioTask
        )

    async def get_calendar_entry(self, entry_id: int) -> FetchResult[CalendarEntry]:
        return await self._fetch(
            "calendar_entry",
            entry_id,
            f"/api/v4/calendar_entries/{entry_id}.json",
            CALENDAR_ENTRY_FIELDS,
            CalendarEntry,
        )

    async def get_document(self, document_id: int) -> FetchResult[Document]:
        return await self._fetch(
            "document",
            document_id,
            f"/api/v4/documents/{document_id}.json",
            DOCUMENT_FIELDS,
            Document,
        )

    async def _list(self, path: str, params: dict[str, Any], model: type[ModelT]) -> list[ModelT]:
        response = await self._request("GET", path, params=params)
        self._raise_for_status(response, f"GET {path}")
        try:
            return [model.model_validate(item) for item in self._data(response) or []]
        except ValidationError as exc:
            raise ClioApiError(response.status_code, f"GET {path}: unexpected payload: {exc}") from exc

    async def get_tasks_by_matter(self, matter_id: int) -> list[ClioTask]:
        return await self._list(
            "/api/v4/tasks.json", {"matter_id": matter_id, "fields": TASK_FIELDS}, ClioTask
        )

    async def get_bills_by_matter(self, matter_id: int) -> list[Bill]:
        return await self._list(
            "/api/v4/bills.json", {"matter_id": matter_id, "fields": BILL_FIELDS}, Bill
        )

    async def has_payments(self, matter_id: int) -> bool:
        bills = await self.get_bills_by_matter(matter_id)
        return any((bill.paid or 0) > 0 for bill in bills)

    async def list_webhooks(self) -> list[Webhook]:
        return await self._list("/api/v4/webhooks.json", {"fields": WEBHOOK_FIELDS}, Webhook)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_task(self, payload: dict[str, Any]) -> ClioTask:
        response = await self._request(
            "POST",
            "/api/v4/tasks.json",
            params={"fields": TASK_FIELDS},
            json={"data": payload},
        )
        self._raise_for_status(response, "Create task")
        return self._parse(response, ClioTask, "Create task")

    async def update_task(self, task_id: int, updates: dict[str, Any]) -> FetchResult[ClioTask]:
        try:
            response = await self._request(
                "PATCH",
                f"/api/v4/tasks/{task_id}.json",
                params={"fields": TASK_FIELDS},
                json={"data": updates},
            )
        except ClioApiError as exc:
            return FetchFailed(exc)
        if response.status_code == 404:
            return NotFound("task", task_id)
        if response.status_code >= 400:
            return FetchFailed(
                ClioApiError(
                    response.status_code,
                    f"Update task {task_id} failed with status {response.status_code}",
                )
            )
        try:
            return Found(self._parse(response, ClioTask, f"Update task {task_id}"))
        except ClioApiError as exc:
            return FetchFailed(exc)

    async def delete_task(self, task_id: int) -> bool:
        """Delete a task. Returns False when it was already gone."""
        response = await self._request("DELETE", f"/api/v4/tasks/{task_id}.json")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"Delete task {task_id}")
        return True

    async def update_matter(self, matter_id: int, updates: dict[str, Any]) -> Matter:
        response = await self._request(
            "PATCH",
            f"/api/v4/matters/{matter_id}.json",
            params={"fields": MATTER_FIELDS},
            json={"data": updates},
        )
        self._raise_for_status(response, f"Update matter {matter_id}")
        return self._parse(response, Matter, f"Update matter {matter_id}")

    async def update_matter_status(self, matter_id: int, status: str) -> Matter:
        return await self.update_matter(matter_id, {"status": status})

    async def renew_webhook(self, webhook_id: int, expires_at: datetime) -> Webhook:
        response = await self._request(
            "PUT",
            f"/api/v4/webhooks/{webhook_id}.json",
            params={"fields": WEBHOOK_FIELDS},
            json={"data": {"expires_at": expires_at.isoformat()}},
        )
        self._raise_for_status(response, f"Renew webhook {webhook_id}")
        return self._parse(response, Webhook, f"Renew webhook {webhook_id}")
