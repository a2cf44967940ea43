"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external scheduler.
"""

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from matterflow.core.config import Settings
from matterflow.core.deps import get_settings
from matterflow.db.session import SessionLocal
from matterflow.jobs.context import JobContext
from matterflow.jobs.registry import resolve_job_handler

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str, app_settings: Settings) -> None:
    """Verify the internal secret header."""
    expected = app_settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class JobRunResponse(BaseModel):
    job: str
    result: dict[str, Any]


@router.post("/{job_name}", response_model=JobRunResponse)
async def run_scheduled_job(
    job_name: str,
    request: Request,
    x_internal_secret: str = Header(...),
    app_settings: Settings = Depends(get_settings),
):
    """Run one scheduled job (refresh_token, renew_webhooks, stale_matters, cleanup_events)."""
    verify_internal_secret(x_internal_secret, app_settings)
    try:
        handler = resolve_job_handler(job_name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    state = request.app.state
    ctx = JobContext(
        session_factory=getattr(state, "session_factory", SessionLocal),
        clio=state.clio,
        tokens=state.tokens,
        settings=app_settings,
    )
    result = await handler(ctx)
    return JobRunResponse(job=job_name, result=result)
