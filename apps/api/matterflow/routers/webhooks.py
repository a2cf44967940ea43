"""Inbound Clio webhooks."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from matterflow.core.config import Settings
from matterflow.core.deps import get_clio, get_db, get_queue, get_settings
from matterflow.db.enums import ErrorCode, ResourceType
from matterflow.schemas.clio import CLOSED_STATUS, WebhookEnvelope
from matterflow.services.clio_client import ClioClient, Found
from matterflow.services.entity_queue import EntityQueue
from matterflow.services.error_log_service import log_error
from matterflow.services.workflows.base import WorkflowContext
from matterflow.services.workflows.registry import get_workflow

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

HOOK_SECRET_HEADER = "X-Hook-Secret"
SIGNATURE_HEADER = "X-Clio-Signature"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded."""
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _check_signature(db: Session, request: Request, body: bytes, app_settings: Settings) -> None:
    secret = app_settings.CLIO_WEBHOOK_SECRET
    if not secret:
        return
    signature = request.headers.get(SIGNATURE_HEADER)
    context = {"path": request.url.path}
    if not signature:
        log_error(db, ErrorCode.WEBHOOK_MISSING_SIGNATURE, None, context)
        raise HTTPException(status_code=401, detail="Missing signature")
    if not verify_signature(body, signature, secret):
        log_error(db, ErrorCode.WEBHOOK_INVALID_SIGNATURE, None, context)
        raise HTTPException(status_code=401, detail="Invalid signature")


async def _trigger_for_matter(clio: ClioClient, envelope: WebhookEnvelope) -> str | None:
    """Closed matters and stage moves arrive on the same subscription."""
    status = envelope.data.status
    stage = envelope.data.matter_stage
    fetched = await clio.get_matter(envelope.data.id) if envelope.data.id else None
    if isinstance(fetched, Found):
        status = fetched.value.status
        stage = fetched.value.matter_stage
    if status == CLOSED_STATUS:
        return "matter_closed"
    if stage is None or stage.id is None:
        return None
    return "stage_change"


async def _route(
    resource: ResourceType, clio: ClioClient, envelope: WebhookEnvelope
) -> str | None:
    if resource is ResourceType.MATTER:
        return await _trigger_for_matter(clio, envelope)
    if resource is ResourceType.TASK:
        return "task_deleted" if envelope.is_deletion else "task_completed"
    if resource is ResourceType.CALENDAR_ENTRY:
        return "calendar_entry_deleted" if envelope.is_deletion else "meeting_scheduled"
    return "document_created"


async def _receive(
    resource: ResourceType,
    request: Request,
    db: Session,
    clio: ClioClient,
    queue: EntityQueue,
    app_settings: Settings,
):
    hook_secret = request.headers.get(HOOK_SECRET_HEADER)
    if hook_secret:
        logger.info("Webhook activation handshake for %s", resource.value)
        return JSONResponse(
            {"success": True, "message": "Webhook activated"},
            headers={HOOK_SECRET_HEADER: hook_secret},
        )

    body = await request.body()
    _check_signature(db, request, body, app_settings)
    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    matter_id = envelope.matter_id(resource_is_matter=resource is ResourceType.MATTER)
    if app_settings.TEST_MODE:
        if matter_id is None:
            return {"success": True, "action": "skipped", "reason": "test_mode_no_matter_id"}
        if not app_settings.allows_matter(matter_id):
            return {"success": True, "action": "skipped", "reason": "test_mode_filter"}

    ctx = WorkflowContext(db=db, clio=clio, settings=app_settings)

    async def work() -> dict[str, Any]:
        trigger = await _route(resource, clio, envelope)
        if trigger is None:
            return {"success": True, "action": "skipped_no_stage"}
        return await get_workflow(trigger).run(ctx, envelope)

    try:
        result = await queue.enqueue(matter_id, work)
    except Exception as exc:
        logger.exception("Webhook processing failed for %s %s", resource.value, envelope.data.id)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    return {"success": True, "data": result}


@router.post("/matters")
async def receive_matter_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clio: ClioClient = Depends(get_clio),
    queue: EntityQueue = Depends(get_queue),
    app_settings: Settings = Depends(get_settings),
):
    """Matter updated (stage change) or closed."""
    return await _receive(ResourceType.MATTER, request, db, clio, queue, app_settings)


@router.post("/tasks")
async def receive_task_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clio: ClioClient = Depends(get_clio),
    queue: EntityQueue = Depends(get_queue),
    app_settings: Settings = Depends(get_settings),
):
    """Task completed or deleted."""
    return await _receive(ResourceType.TASK, request, db, clio, queue, app_settings)


@router.post("/calendar")
async def receive_calendar_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clio: ClioClient = Depends(get_clio),
    queue: EntityQueue = Depends(get_queue),
    app_settings: Settings = Depends(get_settings),
):
    """Calendar entry created, updated or deleted."""
    return await _receive(ResourceType.CALENDAR_ENTRY, request, db, clio, queue, app_settings)


@router.post("/documents")
async def receive_document_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clio: ClioClient = Depends(get_clio),
    queue: EntityQueue = Depends(get_queue),
    app_settings: Settings = Depends(get_settings),
):
    """Document created."""
    return await _receive(ResourceType.DOCUMENT, request, db, clio, queue, app_settings)


@router.get("/health")
async def webhook_health(app_settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "queue_mode": app_settings.QUEUE_MODE,
        "test_mode": app_settings.TEST_MODE,
    }


@router.get("/queue-stats")
async def queue_stats(queue: EntityQueue = Depends(get_queue)):
    return queue.get_stats()
