"""
Per-entity webhook queues.

Work for the same entity key runs strictly one at a time in FIFO order;
different keys drain in parallel. Buckets are dropped once empty.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from matterflow.core.config import Settings
from matterflow.services.clio_client import RateLimitStatus
from matterflow.services.http_service import SleepFn

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[Any]]


@dataclass
class QueueEntry:
    work: Work
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class EntityQueue:
    """Serializes work per entity key (usually a matter id)."""

    mode = "entity"

    def __init__(self) -> None:
        self._buckets: dict[str, deque[QueueEntry]] = {}
        self._processing: set[str] = set()
        self._drainers: set[asyncio.Task] = set()

    async def enqueue(self, key: int | str | None, work: Work) -> Any:
        """Run ``work`` after everything already queued under ``key``.

        A None key cannot be serialized and runs immediately.
        """
        if key is None:
            return await work()
        return await self._enqueue_bucket(str(key), work)

    async def _enqueue_bucket(self, key: str, work: Work) -> Any:
        loop = asyncio.get_running_loop()
        entry = QueueEntry(work=work, future=loop.create_future())
        bucket = self._buckets.setdefault(key, deque())
        bucket.append(entry)
        logger.debug("Queued work for %s (position %s)", key, len(bucket))

        if key not in self._processing:
            self._processing.add(key)
            drainer = asyncio.create_task(self._drain(key))
            self._drainers.add(drainer)
            drainer.add_done_callback(self._drainers.discard)

        return await entry.future

    async def _drain(self, key: str) -> None:
        try:
            while True:
                bucket = self._buckets.get(key)
                if not bucket:
                    break
                entry = bucket[0]
                try:
                    await self._before_entry(key)
                    result = await entry.work()
                except asyncio.CancelledError:
                    entry.future.cancel()
                    raise
                except Exception as exc:
                    if not entry.future.done():
                        entry.future.set_exception(exc)
                else:
                    if not entry.future.done():
                        entry.future.set_result(result)
                finally:
                    bucket.popleft()
                    if not bucket:
                        self._buckets.pop(key, None)

                if key in self._buckets:
                    await self._between_entries(key)
        finally:
            self._processing.discard(key)

    async def _before_entry(self, key: str) -> None:
        return None

    async def _between_entries(self, key: str) -> None:
        return None

    def get_stats(self) -> dict[str, Any]:
        now = time.monotonic()
        buckets = {}
        for key, bucket in self._buckets.items():
            oldest = bucket[0].enqueued_at if bucket else now
            buckets[key] = {
                "size": len(bucket),
                "processing": key in self._processing,
                "oldest_wait_ms": int((now - oldest) * 1000),
            }
        return {
            "mode": self.mode,
            "total_queued": sum(len(bucket) for bucket in self._buckets.values()),
            "active_keys": len(self._processing),
            "buckets": buckets,
        }


class RateAwareQueue(EntityQueue):
    """
    Entity queue that only queues under upstream quota pressure.

    While remaining quota is above the threshold, work runs inline. At or
    below it, work is queued per entity (or under ``global``), each entry
    waits for the quota reset when that is near, and entries are spaced by
    a fixed delay.
    """

    mode = "rate_aware"
    GLOBAL_KEY = "global"

    def __init__(
        self,
        rate_limit: Callable[[], RateLimitStatus],
        *,
        threshold: int = 5,
        max_reset_wait_ms: int = 15000,
        inter_request_delay_ms: int = 200,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        super().__init__()
        self._rate_limit = rate_limit
        self.threshold = threshold
        self.max_reset_wait_ms = max_reset_wait_ms
        self.inter_request_delay_ms = inter_request_delay_ms
        self._sleep = sleep

    def should_queue(self) -> bool:
        status = self._rate_limit()
        if not status.known:
            return False
        return status.remaining <= self.threshold

    async def enqueue(self, key: int | str | None, work: Work) -> Any:
        if not self.should_queue():
            return await work()
        status = self._rate_limit()
        bucket_key = str(key) if key is not None else self.GLOBAL_KEY
        logger.info(
            "Rate limit low (%s/%s), queueing work under %s",
            status.remaining,
            status.limit,
            bucket_key,
        )
        return await self._enqueue_bucket(bucket_key, work)

    async def _before_entry(self, key: str) -> None:
        if not self.should_queue():
            return
        wait_ms = self._rate_limit().wait_ms()
        if 0 < wait_ms < self.max_reset_wait_ms:
            logger.info("Waiting %sms for rate limit reset before %s", wait_ms, key)
            await self._sleep(wait_ms / 1000)

    async def _between_entries(self, key: str) -> None:
        if self.inter_request_delay_ms:
            await self._sleep(self.inter_request_delay_ms / 1000)

    def get_stats(self) -> dict[str, Any]:
        stats = super().get_stats()
        stats["rate_limit"] = self._rate_limit().as_dict()
        stats["should_queue"] = self.should_queue()
        return stats


def build_queue(
    app_settings: Settings, rate_limit: Callable[[], RateLimitStatus]
) -> EntityQueue:
    """Pick the queue variant configured by QUEUE_MODE."""
    if app_settings.rate_aware_queue:
        return RateAwareQueue(
            rate_limit,
            threshold=app_settings.RATE_LIMIT_THRESHOLD,
            max_reset_wait_ms=app_settings.QUEUE_MAX_RESET_WAIT_MS,
            inter_request_delay_ms=app_settings.QUEUE_INTER_REQUEST_DELAY_MS,
        )
    return EntityQueue()
