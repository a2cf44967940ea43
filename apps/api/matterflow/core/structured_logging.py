"""Structured logging helpers (ids only, never payload bodies)."""

from typing import Any


def build_log_context(
    *,
    trigger: str | None = None,
    matter_id: int | None = None,
    task_id: int | None = None,
    calendar_entry_id: int | None = None,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``extra=``."""
    context: dict[str, Any] = {}
    if trigger:
        context["trigger"] = trigger
    if matter_id:
        context["matter_id"] = matter_id
    if task_id:
        context["task_id"] = task_id
    if calendar_entry_id:
        context["calendar_entry_id"] = calendar_entry_id
    if idempotency_key:
        context["idempotency_key"] = idempotency_key
    return context


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for entry points (API, CLI)."""
    import logging

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
