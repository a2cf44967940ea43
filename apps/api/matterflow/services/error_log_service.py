"""Structured error log writes."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matterflow.db.enums import ErrorCode
from matterflow.db.models import ErrorLog

logger = logging.getLogger(__name__)

_ID_COLUMNS = ("matter_id", "task_id", "calendar_entry_id")


def log_error(
    db: Session,
    code: ErrorCode,
    message: str | None = None,
    context: dict[str, Any] | None = None,
) -> ErrorLog | None:
    """
    Record a structured error.

    Never raises: a failure to write the log is itself logged and rolled back
    so the caller's own error handling continues.
    """
    context = dict(context or {})
    ids = {column: context.pop(column, None) for column in _ID_COLUMNS}
    entry = ErrorLog(
        error_code=code.value,
        error_message=message or code.default_message,
        context=context or None,
        **ids,
    )
    logger.error("%s: %s", code.value, entry.error_message, extra={k: v for k, v in ids.items() if v})
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write error log %s", code.value)
        return None
    return entry
