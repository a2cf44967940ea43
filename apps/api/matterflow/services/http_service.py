"""HTTP helpers with bounded, fixed-delay retries for the Clio API."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}

SleepFn = Callable[[float], Awaitable[None]]


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    delay_seconds: float = 1.0,
    retry_statuses: set[int] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> httpx.Response:
    """
    Execute an HTTP request, retrying transport errors and retryable statuses.

    The delay between attempts is fixed. The last response is returned as-is
    (callers decide what a non-2xx means); the last transport error is raised.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    attempts = max(1, max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                "HTTP request failed (attempt %s/%s), retrying", attempt, attempts, exc_info=exc
            )
            if delay_seconds:
                await sleep(delay_seconds)
            continue

        if response.status_code in statuses and attempt < attempts:
            logger.warning(
                "HTTP request returned %s (attempt %s/%s), retrying",
                response.status_code,
                attempt,
                attempts,
            )
            if delay_seconds:
                await sleep(delay_seconds)
            continue

        return response

    return response
