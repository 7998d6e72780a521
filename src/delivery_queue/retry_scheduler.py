"""Batch reprocessing of the dead letter queue.

``RetryScheduler.run`` is called by an external tick (every 5 minutes). It
takes the run lock, delivers every ready item one at a time with a small pause
in between, records the outcome and alerts on exhaustion. The lock TTL is
refreshed before each item; a run that lost its lock stops and leaves the rest
for the next tick.
"""

import asyncio
import time

from prometheus_client import Counter, Histogram

from delivery_queue.alerts import AlertDispatcher
from delivery_queue.config import Settings
from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.lock import LockHandle, RunLock
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.models import BatchResult, QueueItem, UpdateOutcome
from delivery_queue.receiver import ReceiverClient

logger = get_logger(__name__)

SCHEDULER_RUNS_TOTAL = Counter(
    "retry_scheduler_runs_total",
    "Retry scheduler runs by result",
    ["status"],
)

SCHEDULER_RUN_DURATION = Histogram(
    "retry_scheduler_run_duration_seconds",
    "Retry scheduler run duration in seconds",
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)


class RetryScheduler:
    def __init__(
        self,
        dlq: DeadLetterQueue,
        receiver: ReceiverClient,
        metrics: MetricsRecorder,
        alerts: AlertDispatcher,
        lock: RunLock,
        settings: Settings,
    ):
        self.dlq = dlq
        self.receiver = receiver
        self.metrics = metrics
        self.alerts = alerts
        self.lock = lock
        self.item_delay = settings.SCHEDULER_ITEM_DELAY_SECONDS

    async def run(self) -> BatchResult:
        """Process every item that is due. Never raises."""
        if not self.dlq.is_configured:
            SCHEDULER_RUNS_TOTAL.labels(status="not_configured").inc()
            return BatchResult(
                success=False,
                error="not_configured",
                message="DLQ not configured: set REDIS_URL",
            )
        if not self.receiver.is_configured:
            SCHEDULER_RUNS_TOTAL.labels(status="not_configured").inc()
            return BatchResult(
                success=False,
                error="not_configured",
                message=(
                    "Receiver not configured: set RECEIVER_WEBHOOK_URL "
                    "and RECEIVER_WEBHOOK_SECRET"
                ),
            )

        handle = await self.lock.acquire()
        if handle is None:
            SCHEDULER_RUNS_TOTAL.labels(status="locked").inc()
            logger.warning(
                "Another queue run is in progress, skipping",
                event_type=LogEventType.JOB_SKIPPED,
                lock_key=self.lock.key,
            )
            return BatchResult(
                success=False,
                error="locked",
                message="Another run is in progress",
            )

        start_time = time.perf_counter()
        try:
            result = await self._process(handle if isinstance(handle, LockHandle) else None)
        except Exception as e:
            SCHEDULER_RUNS_TOTAL.labels(status="error").inc()
            logger.error(
                "Queue run failed",
                event_type=LogEventType.JOB_ERROR,
                error=str(e),
                exc_info=True,
            )
            return BatchResult(success=False, error="internal_error", message=str(e))
        finally:
            SCHEDULER_RUN_DURATION.observe(time.perf_counter() - start_time)
            if isinstance(handle, LockHandle):
                await self.lock.release(handle)

        SCHEDULER_RUNS_TOTAL.labels(status="success").inc()
        return result

    async def _process(self, handle: LockHandle | None) -> BatchResult:
        logger.info("Starting queue processing", event_type=LogEventType.JOB_START)

        items = await self.dlq.list_ready()
        if not items:
            logger.info("Queue empty, nothing to process", event_type=LogEventType.JOB_END)
            stats = await self.dlq.stats()
            return BatchResult(message="Queue empty", queue_depth=stats.queue_depth)

        logger.info("Found items ready for retry", count=len(items))
        result = BatchResult()

        for index, item in enumerate(items):
            if index > 0 and self.item_delay > 0:
                await asyncio.sleep(self.item_delay)
            if index > 0 and handle is not None and not await self.lock.extend(handle):
                logger.warning(
                    "Run lock lost, leaving remaining items for the next run",
                    event_type=LogEventType.JOB_ERROR,
                    lock_key=handle.key,
                    remaining=len(items) - index,
                )
                result.message = "Run lock lost"
                break
            await self._process_item(item, result)

        stats = await self.dlq.stats()
        result.queue_depth = stats.queue_depth
        logger.info(
            "Queue processing completed",
            event_type=LogEventType.JOB_END,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            exhausted=result.exhausted,
            queue_depth=stats.queue_depth,
        )
        return result

    async def _process_item(self, item: QueueItem, result: BatchResult) -> None:
        result.processed += 1
        logger.info(
            "Retrying queued submission",
            event_type=LogEventType.DELIVERY_ATTEMPT,
            item_id=item.id,
            correlation_id=item.correlation_id,
            attempt=item.attempts + 1,
            max_attempts=self.dlq.max_attempts,
        )

        delivery = await self.receiver.deliver(item.payload)

        if delivery.success:
            result.succeeded += 1
            await self.dlq.update_after_retry(item, True)
            await self.metrics.record_success(delivery.latency_ms)
            logger.info(
                "Queued submission delivered",
                event_type=LogEventType.DELIVERY_SUCCEEDED,
                item_id=item.id,
                latency_ms=delivery.latency_ms,
            )
            return

        error = delivery.error_text
        result.failed += 1
        result.errors.append(f"{item.id}: {error}")

        outcome = await self.dlq.update_after_retry(item, False, error)
        await self.metrics.record_failure(error)
        logger.warning(
            "Queued submission failed again",
            event_type=LogEventType.DELIVERY_FAILED,
            item_id=item.id,
            kind=delivery.kind.value,
            error=error,
            outcome=outcome.value,
        )

        if outcome == UpdateOutcome.EXHAUSTED:
            result.exhausted += 1
            exhausted_item = item.model_copy(
                update={"attempts": item.attempts + 1, "last_error": error}
            )
            await self.alerts.send_exhausted_alert(exhausted_item, error)
