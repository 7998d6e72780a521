"""Dead Letter Queue for failed receiver deliveries.

Two Redis lists back the queue:
- the pending list holds items waiting for their next retry
- the dead list holds items that ran out of retries (manual cleanup only)

Items are retried with exponential backoff (1min, 2min, 4min, ...) and moved
to the dead list once they fail more than ``DLQ_MAX_ATTEMPTS`` times.

Every operation fails soft: if Redis is unreachable the error is logged and an
empty result is returned, so the queue never breaks the submission flow.
"""

import time
import uuid
from datetime import datetime, timedelta
from typing import Any, TypeVar

import redis.asyncio as redis
from prometheus_client import Counter, Gauge
from pydantic import ValidationError

from delivery_queue.config import Settings
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.models import (
    DeadLetterRecord,
    QueueItem,
    QueueStats,
    StoreHealth,
    UpdateOutcome,
    utcnow,
)
from delivery_queue.store import STORE_ERRORS

logger = get_logger(__name__)

ItemT = TypeVar("ItemT", bound=QueueItem)

# === Prometheus Metrics ===

DLQ_OPERATIONS_TOTAL = Counter(
    "dlq_operations_total",
    "Dead letter queue operations",
    ["operation", "status"],
)

DLQ_ITEMS_TOTAL = Counter(
    "dlq_items_total",
    "Queue item state transitions",
    ["outcome"],
)

DLQ_DEPTH = Gauge(
    "dlq_queue_depth",
    "Number of items waiting in the pending list",
)


class DeadLetterQueue:
    """Persistent retry queue on top of Redis lists.

    Usage:
        client = redis.from_url("redis://localhost:6379/0", decode_responses=True)
        dlq = DeadLetterQueue(client, settings)

        item_id = await dlq.enqueue("rec123", "session-1", payload, "HTTP 502")
        for item in await dlq.list_ready():
            ...
            await dlq.update_after_retry(item, success=False, error="timeout")
    """

    def __init__(self, redis_client: redis.Redis | None, settings: Settings):
        self.redis = redis_client
        self.pending_key = settings.DLQ_PENDING_KEY
        self.dead_key = settings.DLQ_DEAD_KEY
        self.base_backoff = timedelta(seconds=settings.DLQ_BASE_BACKOFF_SECONDS)
        self.max_attempts = settings.DLQ_MAX_ATTEMPTS

    @property
    def is_configured(self) -> bool:
        return self.redis is not None

    def compute_backoff(self, attempts: int) -> timedelta:
        """Delay before the next retry for an item with ``attempts`` failures."""
        return self.base_backoff * (2 ** (attempts - 1))

    @staticmethod
    def _new_id() -> str:
        return f"dlq-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"

    @staticmethod
    def _parse(raw: str, model: type[ItemT]) -> ItemT | None:
        try:
            return model.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(
                "Skipping malformed queue entry",
                error=str(e)[:200],
                model=model.__name__,
            )
            return None

    def _store_failed(self, operation: str, error: Exception) -> None:
        DLQ_OPERATIONS_TOTAL.labels(operation=operation, status="error").inc()
        logger.error(
            "Queue store operation failed",
            event_type=LogEventType.STORE_ERROR,
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def enqueue(
        self,
        source_record_id: str,
        correlation_id: str,
        payload: dict[str, Any],
        error: str,
    ) -> str:
        """Add a failed submission to the pending list.

        Returns:
            The new item id, or "" if the queue is unavailable
        """
        if not self.is_configured:
            logger.warning(
                "Queue not configured, dropping failed submission",
                source_record_id=source_record_id,
                correlation_id=correlation_id,
            )
            return ""

        now = utcnow()
        item = QueueItem(
            id=self._new_id(),
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            payload=payload,
            attempts=1,
            first_failed_at=now,
            last_failed_at=now,
            last_error=error,
            next_retry_at=now + self.compute_backoff(1),
        )

        try:
            await self.redis.lpush(self.pending_key, item.to_json())
        except STORE_ERRORS as e:
            self._store_failed("enqueue", e)
            return ""

        DLQ_OPERATIONS_TOTAL.labels(operation="enqueue", status="success").inc()
        DLQ_ITEMS_TOTAL.labels(outcome="queued").inc()
        logger.info(
            "Queued submission for retry",
            event_type=LogEventType.QUEUE_PUSH,
            item_id=item.id,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            next_retry_at=item.next_retry_at.isoformat(),
        )
        return item.id

    async def _read_pending(self) -> list[str]:
        return await self.redis.lrange(self.pending_key, 0, -1)

    async def list_ready(self, now: datetime | None = None) -> list[QueueItem]:
        """Return every pending item whose next retry time has passed."""
        if not self.is_configured:
            return []

        now = now or utcnow()
        try:
            entries = await self._read_pending()
        except STORE_ERRORS as e:
            self._store_failed("list_ready", e)
            return []

        ready = []
        for raw in entries:
            item = self._parse(raw, QueueItem)
            if item is not None and item.is_ready(now):
                ready.append(item)

        DLQ_OPERATIONS_TOTAL.labels(operation="list_ready", status="success").inc()
        return ready

    async def _remove(self, item_id: str) -> bool:
        """Remove the stored entry with the given id from the pending list."""
        for raw in await self._read_pending():
            stored = self._parse(raw, QueueItem)
            if stored is not None and stored.id == item_id:
                removed = await self.redis.lrem(self.pending_key, 1, raw)
                return bool(removed)
        return False

    async def update_after_retry(
        self,
        item: QueueItem,
        success: bool,
        error: str | None = None,
    ) -> UpdateOutcome:
        """Record the outcome of a retry attempt.

        Success resolves the item. A failure bumps ``attempts`` and either
        requeues the item with a longer backoff or, past the maximum, moves it
        to the dead list.
        """
        if not self.is_configured:
            return UpdateOutcome.SKIPPED

        try:
            removed = await self._remove(item.id)
            if success:
                DLQ_ITEMS_TOTAL.labels(outcome="resolved").inc()
                logger.info(
                    "Queue item delivered",
                    event_type=LogEventType.QUEUE_POP,
                    item_id=item.id,
                    attempts=item.attempts,
                )
                return UpdateOutcome.RESOLVED

            if not removed:
                # Cleared or handled elsewhere while we were delivering.
                logger.warning(
                    "Queue item no longer pending, not requeueing",
                    item_id=item.id,
                    attempts=item.attempts,
                )
                return UpdateOutcome.SKIPPED

            now = utcnow()
            attempts = item.attempts + 1
            last_error = error or item.last_error

            if attempts > self.max_attempts:
                record = DeadLetterRecord(
                    **item.model_dump(exclude={"attempts", "last_error", "last_failed_at"}),
                    attempts=attempts,
                    last_error=last_error,
                    last_failed_at=now,
                    exhausted_at=now,
                )
                await self.redis.lpush(self.dead_key, record.to_json())
                DLQ_ITEMS_TOTAL.labels(outcome="exhausted").inc()
                logger.error(
                    "Queue item exhausted all retries",
                    event_type=LogEventType.ITEM_EXHAUSTED,
                    item_id=item.id,
                    correlation_id=item.correlation_id,
                    attempts=attempts,
                    max_attempts=self.max_attempts,
                )
                return UpdateOutcome.EXHAUSTED

            updated = item.model_copy(
                update={
                    "attempts": attempts,
                    "last_failed_at": now,
                    "last_error": last_error,
                    "next_retry_at": now + self.compute_backoff(attempts),
                }
            )
            await self.redis.lpush(self.pending_key, updated.to_json())
        except STORE_ERRORS as e:
            self._store_failed("update_after_retry", e)
            return UpdateOutcome.SKIPPED

        DLQ_ITEMS_TOTAL.labels(outcome="requeued").inc()
        logger.info(
            "Requeued item",
            event_type=LogEventType.QUEUE_PUSH,
            item_id=item.id,
            attempts=attempts,
            max_attempts=self.max_attempts,
            next_retry_at=updated.next_retry_at.isoformat(),
        )
        return UpdateOutcome.REQUEUED

    async def stats(self, now: datetime | None = None) -> QueueStats:
        """Queue depth, oldest failure and number of items due now."""
        if not self.is_configured:
            return QueueStats()

        now = now or utcnow()
        try:
            entries = await self._read_pending()
        except STORE_ERRORS as e:
            self._store_failed("stats", e)
            return QueueStats()

        oldest: datetime | None = None
        ready = 0
        for raw in entries:
            item = self._parse(raw, QueueItem)
            if item is None:
                continue
            if oldest is None or item.first_failed_at < oldest:
                oldest = item.first_failed_at
            if item.is_ready(now):
                ready += 1

        DLQ_DEPTH.set(len(entries))
        return QueueStats(
            queue_depth=len(entries),
            oldest_item_timestamp=oldest,
            items_ready_now=ready,
        )

    async def dead_letters(self) -> list[DeadLetterRecord]:
        """Items in the permanent failure list, newest first."""
        if not self.is_configured:
            return []

        try:
            entries = await self.redis.lrange(self.dead_key, 0, -1)
        except STORE_ERRORS as e:
            self._store_failed("dead_letters", e)
            return []

        records = (self._parse(raw, DeadLetterRecord) for raw in entries)
        return [record for record in records if record is not None]

    async def clear(self) -> bool:
        """Drop every pending item. Irreversible; the dead list is kept."""
        if not self.is_configured:
            return False

        try:
            await self.redis.delete(self.pending_key)
        except STORE_ERRORS as e:
            self._store_failed("clear", e)
            return False

        DLQ_DEPTH.set(0)
        logger.warning(
            "Pending queue cleared",
            event_type=LogEventType.QUEUE_CLEAR,
            key=self.pending_key,
        )
        return True

    async def health_check(self) -> StoreHealth:
        """Verify the store answers a ping."""
        if not self.is_configured:
            return StoreHealth(healthy=False, error="DLQ not configured")

        try:
            await self.redis.ping()
        except STORE_ERRORS as e:
            self._store_failed("ping", e)
            return StoreHealth(healthy=False, error=str(e) or type(e).__name__)
        return StoreHealth(healthy=True)
