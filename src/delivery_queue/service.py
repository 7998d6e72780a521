"""Component wiring."""

from dataclasses import dataclass

import httpx
import redis.asyncio as redis

from delivery_queue.alerts import AlertDispatcher
from delivery_queue.config import Settings
from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.health import HealthMonitor
from delivery_queue.lock import RunLock
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.receiver import ReceiverClient
from delivery_queue.relay import SubmissionRelay
from delivery_queue.retry_scheduler import RetryScheduler
from delivery_queue.status import StatusAggregator
from delivery_queue.store import NotConfiguredError, create_redis_client

logger = get_logger(__name__)

_UNSET = object()


@dataclass
class Services:
    settings: Settings
    redis: redis.Redis | None
    dlq: DeadLetterQueue
    metrics: MetricsRecorder
    receiver: ReceiverClient
    alerts: AlertDispatcher
    scheduler: RetryScheduler
    health: HealthMonitor
    status: StatusAggregator
    relay: SubmissionRelay

    async def close(self) -> None:
        await self.receiver.close()
        if self.redis is not None:
            await self.redis.aclose()


def build_services(
    settings: Settings,
    redis_client=_UNSET,
    receiver_transport: httpx.AsyncBaseTransport | None = None,
    alert_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Build every component from settings.

    ``redis_client`` overrides the client created from REDIS_URL (pass None to
    run without a store).
    """
    if redis_client is _UNSET:
        try:
            redis_client = create_redis_client(settings)
        except NotConfiguredError as e:
            logger.error(
                "Queue store misconfigured, running without persistence",
                event_type=LogEventType.ERROR,
                error=str(e),
            )
            redis_client = None

    dlq = DeadLetterQueue(redis_client, settings)
    metrics = MetricsRecorder(redis_client, settings)
    receiver = ReceiverClient(settings, transport=receiver_transport)
    alerts = AlertDispatcher(settings, transport=alert_transport)
    lock = RunLock(
        redis_client, settings.SCHEDULER_LOCK_KEY, settings.SCHEDULER_LOCK_TTL_SECONDS
    )

    return Services(
        settings=settings,
        redis=redis_client,
        dlq=dlq,
        metrics=metrics,
        receiver=receiver,
        alerts=alerts,
        scheduler=RetryScheduler(dlq, receiver, metrics, alerts, lock, settings),
        health=HealthMonitor(receiver, metrics, alerts, dlq, settings),
        status=StatusAggregator(dlq, metrics, settings),
        relay=SubmissionRelay(receiver, dlq, metrics),
    )
