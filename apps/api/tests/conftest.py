"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, fresh per test
- FakeClio: an in-process stand-in for the Clio API
- Seeder for reference data, templates and task records
- HTTPX AsyncClient bound to an app built around the fakes
"""
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Keep the module-level engine away from any real database
os.environ["DATABASE_URL"] = "sqlite://"

from matterflow.core.config import Settings
from matterflow.core.deps import get_db
from matterflow.db.base import Base
from matterflow.db.enums import TaskList, TaskStatus
from matterflow.db.models import (
    AssigneeReference,
    AttemptSequence,
    CalendarEventMapping,
    LocationKeyword,
    StageStatusMapping,
    Task,
    TaskTemplate,
)
from matterflow.main import create_app
from matterflow.schemas.clio import (
    Bill,
    CalendarEntry,
    ClioTask,
    Document,
    Matter,
    Ref,
    Webhook,
)
from matterflow.services.clio_client import ClioApiError, Found, NotFound, RateLimitStatus
from matterflow.services.token_service import ClioTokenService
from matterflow.services.workflows.base import WorkflowContext
from matterflow.utils.datetimes import utc_now

MATTER_ID = 5001
ATTORNEY_ID = 77
STAGE_ID = 10
STAGE_NAME = "Intake"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """Session factory over a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def settings() -> Settings:
    return Settings(
        _env_file=None,
        CONSISTENCY_DELAY_MS=0,
        VERIFICATION_SETTLE_SECONDS=0,
        CLIO_RETRY_DELAY_MS=0,
        QUEUE_INTER_REQUEST_DELAY_MS=0,
        TIMEZONE_OFFSET_HOURS=0,
        INTERNAL_SECRET="internal-secret",
        CLIO_WEBHOOK_SECRET="",
        CLIO_REFRESH_TOKEN="refresh-1",
    )


# =============================================================================
# Clio fake
# =============================================================================

class FakeClio:
    """Records every write; reads come from the dicts below."""

    def __init__(self) -> None:
        self.rate_limit = RateLimitStatus()
        self.matters: dict[int, Matter] = {}
        self.tasks: dict[int, ClioTask] = {}
        self.calendar_entries: dict[int, CalendarEntry] = {}
        self.documents: dict[int, Document] = {}
        self.bills: dict[int, list[Bill]] = {}
        self.webhooks: list[Webhook] = []

        self.created: list[dict[str, Any]] = []
        self.updated: list[tuple[int, dict[str, Any]]] = []
        self.deleted: list[int] = []
        self.status_updates: list[tuple[int, str]] = []
        self.renewed: list[tuple[int, datetime]] = []

        self.fail_create: set[str] = set()
        self.fail_payments = False
        self._next_id = 90000

    def created_names(self) -> list[str]:
        return [payload["name"] for payload in self.created]

    def complete(self, task_id: int) -> None:
        self.tasks[task_id] = self.tasks[task_id].model_copy(update={"status": "complete"})

    async def get_matter(self, matter_id: int):
        matter = self.matters.get(matter_id)
        return Found(matter) if matter else NotFound("matter", matter_id)

    async def get_task(self, task_id: int):
        task = self.tasks.get(task_id)
        return Found(task) if task else NotFound("task", task_id)

    async def get_calendar_entry(self, entry_id: int):
        entry = self.calendar_entries.get(entry_id)
        return Found(entry) if entry else NotFound("calendar_entry", entry_id)

    async def get_document(self, document_id: int):
        document = self.documents.get(document_id)
        return Found(document) if document else NotFound("document", document_id)

    async def has_payments(self, matter_id: int) -> bool:
        if self.fail_payments:
            raise ClioApiError(503, "bills unavailable")
        return any((bill.paid or 0) > 0 for bill in self.bills.get(matter_id, []))

    async def create_task(self, payload: dict[str, Any]) -> ClioTask:
        if payload["name"] in self.fail_create:
            raise ClioApiError(500, f"cannot create {payload['name']}")
        self._next_id += 1
        assignee = payload.get("assignee")
        task = ClioTask(
            id=self._next_id,
            name=payload["name"],
            description=payload.get("description"),
            status="pending",
            matter=Ref(id=payload["matter"]["id"]),
            assignee=Ref(id=assignee["id"]) if assignee else None,
        )
        self.tasks[task.id] = task
        self.created.append(payload)
        return task

    async def update_task(self, task_id: int, updates: dict[str, Any]):
        self.updated.append((task_id, updates))
        task = self.tasks.get(task_id)
        return Found(task) if task else NotFound("task", task_id)

    async def delete_task(self, task_id: int) -> bool:
        self.deleted.append(task_id)
        return self.tasks.pop(task_id, None) is not None

    async def update_matter_status(self, matter_id: int, status: str) -> Matter:
        self.status_updates.append((matter_id, status))
        matter = self.matters[matter_id].model_copy(update={"status": status})
        self.matters[matter_id] = matter
        return matter

    async def list_webhooks(self) -> list[Webhook]:
        return list(self.webhooks)

    async def renew_webhook(self, webhook_id: int, expires_at: datetime) -> Webhook:
        self.renewed.append((webhook_id, expires_at))
        return Webhook(id=webhook_id, status="enabled", expires_at=expires_at)

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="function")
def clio() -> FakeClio:
    return FakeClio()


@pytest.fixture(scope="function")
def sleeps() -> list[float]:
    return []


@pytest.fixture(scope="function")
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture(scope="function")
def ctx(db: Session, clio: FakeClio, settings: Settings, fake_sleep) -> WorkflowContext:
    return WorkflowContext(db=db, clio=clio, settings=settings, sleep=fake_sleep)


# =============================================================================
# Seed data
# =============================================================================

def make_matter(**overrides: Any) -> Matter:
    values: dict[str, Any] = {
        "id": MATTER_ID,
        "display_number": "00123-Smith",
        "status": "Open",
        "matter_stage": {"id": STAGE_ID, "name": STAGE_NAME},
        "location": "Bethesda Office",
        "practice_area": {"id": 1, "name": "Estate Planning"},
        "responsible_attorney": {"id": ATTORNEY_ID, "name": "Alice Attorney"},
        "updated_at": "2026-10-19T14:00:00Z",
    }
    values.update(overrides)
    return Matter.model_validate(values)


class Seeder:
    def __init__(self, db: Session, clio: FakeClio):
        self.db = db
        self.clio = clio

    def _add(self, row):
        self.db.add(row)
        self.db.commit()
        return row

    def matter(self, **overrides: Any) -> Matter:
        matter = make_matter(**overrides)
        self.clio.matters[matter.id] = matter
        return matter

    def template(
        self,
        task_number: int | None,
        title: str,
        *,
        assignee: str | None = "ATTORNEY",
        assignee_id: str | None = None,
        due_value: str | None = "1",
        due_unit: str | None = "days",
        relation: str | None = "after creation",
        task_list: TaskList = TaskList.NON_MEETING,
        stage_id: int | None = STAGE_ID,
        stage_name: str | None = STAGE_NAME,
        calendar_event_id: int | None = None,
    ) -> TaskTemplate:
        return self._add(
            TaskTemplate(
                task_list=task_list.value,
                stage_id=stage_id,
                stage_name=stage_name,
                calendar_event_id=calendar_event_id,
                task_number=task_number,
                task_title=title,
                task_description=f"{title} description",
                assignee=assignee,
                assignee_id=assignee_id,
                due_date_value=due_value,
                due_date_time_relation=due_unit,
                due_date_relation=relation,
            )
        )

    def assignee(
        self,
        user_id: int,
        user_name: str,
        *,
        location: list[str] | None = None,
        attorney_id: list[int] | None = None,
        fund_table: list[int] | None = None,
    ) -> AssigneeReference:
        return self._add(
            AssigneeReference(
                user_id=user_id,
                user_name=user_name,
                location=location or [],
                attorney_id=attorney_id or [],
                fund_table=fund_table or [],
            )
        )

    def keywords(self, *keywords: str) -> None:
        for keyword in keywords:
            self._add(LocationKeyword(keyword=keyword))

    def mapping(
        self,
        calendar_event_id: int,
        *,
        stage_id: int = STAGE_ID,
        stage_name: str = STAGE_NAME,
        signing: bool = False,
    ) -> CalendarEventMapping:
        return self._add(
            CalendarEventMapping(
                calendar_event_id=calendar_event_id,
                calendar_event_name=f"Meeting {calendar_event_id}",
                stage_id=stage_id,
                stage_name=stage_name,
                uses_meeting_location=signing,
            )
        )

    def attempt(self, current: str, following: str, order: int = 1) -> AttemptSequence:
        return self._add(
            AttemptSequence(current_attempt=current, next_attempt=following, sequence_order=order)
        )

    def stage_status(self, stage_name: str, status: str) -> StageStatusMapping:
        return self._add(StageStatusMapping(stage_name=stage_name, matter_status=status))

    def task(
        self,
        task_id: int,
        task_number: int | None,
        *,
        name: str | None = None,
        matter_id: int = MATTER_ID,
        stage_id: int | None = STAGE_ID,
        stage_name: str | None = STAGE_NAME,
        calendar_entry_id: int | None = None,
        completed: bool = False,
        in_clio: bool = True,
        generated_at: datetime | None = None,
    ) -> Task:
        """A local task record, mirrored in the fake unless ``in_clio`` is False."""
        name = name or f"Task {task_number}"
        if in_clio:
            self.clio.tasks[task_id] = ClioTask(
                id=task_id,
                name=name,
                status="complete" if completed else "pending",
                matter=Ref(id=matter_id),
            )
        return self._add(
            Task(
                task_id=task_id,
                task_name=name,
                matter_id=matter_id,
                stage_id=stage_id,
                stage_name=stage_name,
                task_number=task_number,
                calendar_entry_id=calendar_entry_id,
                completed=completed,
                status=(TaskStatus.COMPLETED if completed else TaskStatus.PENDING).value,
                task_date_generated=generated_at or utc_now(),
            )
        )


@pytest.fixture(scope="function")
def seed(db: Session, clio: FakeClio) -> Seeder:
    return Seeder(db, clio)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def at():
    """Build aware UTC datetimes: ``at(2026, 10, 19, 9)``."""
    return utc


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(
    db: Session, clio: FakeClio, settings: Settings, session_factory: sessionmaker
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against an app wired to the fake Clio and the test database."""
    tokens = ClioTokenService(session_factory, app_settings=settings)
    app = create_app(settings, clio=clio, tokens=tokens, session_factory=session_factory)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
