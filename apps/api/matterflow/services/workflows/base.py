"""Workflow interface and the idempotent run skeleton shared by every trigger."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.core.structured_logging import build_log_context
from matterflow.db.enums import ErrorCode, EventType, ResourceType
from matterflow.schemas.clio import Matter, WebhookEnvelope
from matterflow.services.clio_client import ClioApiError, ClioClient, Found, NotFound
from matterflow.services.error_log_service import log_error
from matterflow.services.http_service import SleepFn
from matterflow.services.idempotency_service import IdempotencyLedger, make_key
from matterflow.services.task_generation import GenerationResult, GenerationScope, TaskEngine
from matterflow.services.template_service import ParsedTemplate
from matterflow.services.verification_service import VerificationResult, verify_generation

logger = logging.getLogger(__name__)

STILL_PROCESSING = "still_processing"


class WorkflowValidationError(Exception):
    """The event lacks a field the workflow cannot run without."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code


class WorkflowAborted(Exception):
    """Stop processing and finalize the ledger as failed with ``action``."""

    def __init__(self, action: str, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.action = action
        self.cause = cause


@dataclass
class WorkflowContext:
    """Collaborators a workflow run needs; tests substitute fakes."""

    db: Session
    clio: ClioClient
    settings: Settings
    sleep: SleepFn = asyncio.sleep
    ledger: IdempotencyLedger = field(init=False)

    def __post_init__(self) -> None:
        self.ledger = IdempotencyLedger(self.db)

    def engine(self) -> TaskEngine:
        return TaskEngine(self.db, self.clio, self.settings)

    async def consistency_delay(self) -> None:
        if self.settings.CONSISTENCY_DELAY_MS:
            await self.sleep(self.settings.CONSISTENCY_DELAY_MS / 1000)


@dataclass
class WorkflowOutcome:
    action: str
    success: bool = True
    tasks_created: int = 0
    tasks_updated: int = 0
    details: dict[str, Any] = field(default_factory=dict)
    failure_details: dict[str, Any] | None = None

    @classmethod
    def from_generation(
        cls, result: GenerationResult, *, default_action: str, **details: Any
    ) -> "WorkflowOutcome":
        action = "partial_failure" if result.failed else default_action
        return cls(
            action=action,
            success=result.failed == 0,
            tasks_created=result.created,
            tasks_updated=result.updated,
            details={**result.as_dict(), **details},
            failure_details={"failures": [f.as_dict() for f in result.failures]}
            if result.failures
            else None,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action,
            "tasks_created": self.tasks_created,
            "tasks_updated": self.tasks_updated,
            **self.details,
        }


class Workflow(Protocol):
    trigger: str

    async def run(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> dict[str, Any]:
        """Process one webhook delivery."""


class BaseWorkflow:
    """
    lookup -> reserve -> handle -> finalize.

    Subclasses describe how to key the event and implement ``handle``.
    """

    trigger: ClassVar[str]
    event_type: ClassVar[EventType]
    resource_type: ClassVar[ResourceType]

    def event_type_for(self, envelope: WebhookEnvelope) -> str:
        return self.event_type.value

    def resource_id(self, envelope: WebhookEnvelope) -> int | None:
        return envelope.data.id

    def event_timestamp(self, envelope: WebhookEnvelope) -> datetime | None:
        return envelope.data.updated_at

    def matter_id(self, envelope: WebhookEnvelope) -> int | None:
        return envelope.matter_id()

    async def handle(
        self, ctx: WorkflowContext, envelope: WebhookEnvelope
    ) -> WorkflowOutcome:
        raise NotImplementedError

    async def run(self, ctx: WorkflowContext, envelope: WebhookEnvelope) -> dict[str, Any]:
        started = time.monotonic()
        resource_id = self.resource_id(envelope)
        timestamp = self.event_timestamp(envelope)
        if resource_id is None or timestamp is None:
            missing = "id" if resource_id is None else "timestamp"
            message = f"{self.trigger} webhook missing required {missing}"
            log_error(
                ctx.db,
                ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
                message,
                {"resource_id": resource_id, "trigger": self.trigger},
            )
            raise WorkflowValidationError(ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD, message)

        event_type = self.event_type_for(envelope)
        key = make_key(event_type, resource_id, timestamp)
        log_context = build_log_context(
            trigger=self.trigger, matter_id=self.matter_id(envelope), idempotency_key=key
        )

        existing = ctx.ledger.lookup(key)
        if existing is not None:
            if existing.in_progress:
                logger.info("Event still processing", extra=log_context)
                return {"success": None, "action": STILL_PROCESSING}
            logger.info("Event already processed, returning cached result", extra=log_context)
            return {
                "success": existing.success,
                "action": existing.action,
                "cached": True,
                "processed_at": existing.processed_at.isoformat() if existing.processed_at else None,
            }

        reserved = ctx.ledger.reserve(
            key,
            event_type=event_type,
            resource_type=self.resource_type.value,
            resource_id=resource_id,
            payload=envelope.model_dump(mode="json"),
            webhook_id=envelope.id,
        )
        if not reserved:
            return {"success": None, "action": STILL_PROCESSING}

        try:
            if not ctx.settings.allows_matter(self.matter_id(envelope)):
                outcome = WorkflowOutcome(action="skipped_test_mode")
            else:
                outcome = await self.handle(ctx, envelope)
        except WorkflowAborted as exc:
            self._finalize_failure(ctx, key, exc.action, str(exc), started, log_context)
            raise
        except Exception as exc:
            self._finalize_failure(ctx, key, "error", str(exc), started, log_context)
            raise

        ctx.ledger.finalize(
            key,
            success=outcome.success,
            action=outcome.action,
            duration_ms=_elapsed_ms(started),
            tasks_created=outcome.tasks_created,
            tasks_updated=outcome.tasks_updated,
            failure_details=outcome.failure_details,
        )
        logger.info("Event processed: %s", outcome.action, extra=log_context)
        return outcome.as_dict()

    def _finalize_failure(
        self,
        ctx: WorkflowContext,
        key: str,
        action: str,
        message: str,
        started: float,
        log_context: dict[str, Any],
    ) -> None:
        ctx.db.rollback()
        logger.error("Event failed (%s): %s", action, message, extra=log_context)
        try:
            ctx.ledger.finalize(
                key,
                success=False,
                action=action,
                duration_ms=_elapsed_ms(started),
                error_message=message,
            )
        except (SQLAlchemyError, LookupError):
            # The caller re-raises the workflow error
            ctx.db.rollback()
            logger.exception("Failed to finalize ledger entry", extra=log_context)

    # ------------------------------------------------------------------
    # Helpers shared by workflows
    # ------------------------------------------------------------------

    async def fetch_matter(self, ctx: WorkflowContext, matter_id: int) -> Matter:
        """Fetch a matter or abort the event."""
        result = await ctx.clio.get_matter(matter_id)
        if isinstance(result, Found):
            return result.value
        if isinstance(result, NotFound):
            log_error(
                ctx.db,
                ErrorCode.CLIO_API_FAILED,
                f"Matter {matter_id} not found in Clio",
                {"matter_id": matter_id},
            )
            raise WorkflowAborted("matter_not_found", f"Matter {matter_id} not found")
        log_error(
            ctx.db,
            ErrorCode.CLIO_API_FAILED,
            f"Failed to fetch matter {matter_id}: {result.error.message}",
            {"matter_id": matter_id},
        )
        raise WorkflowAborted("clio_fetch_failed", result.error.message, cause=result.error)


async def verify_and_merge(
    ctx: WorkflowContext,
    engine: TaskEngine,
    scope: GenerationScope,
    templates: list[ParsedTemplate],
    result: GenerationResult,
) -> VerificationResult | None:
    """Run the verification pass when the batch needs one; errors are logged."""
    if not result.needs_verification:
        return None
    try:
        verification = await verify_generation(
            engine,
            scope,
            templates,
            settle_seconds=ctx.settings.VERIFICATION_SETTLE_SECONDS,
            sleep=ctx.sleep,
        )
    except (ClioApiError, SQLAlchemyError) as exc:
        ctx.db.rollback()
        logger.error(
            "Verification failed: %s",
            exc,
            extra=build_log_context(
                matter_id=scope.matter.id, calendar_entry_id=scope.calendar_entry_id
            ),
        )
        return None
    result.created += verification.regenerated
    return verification


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
