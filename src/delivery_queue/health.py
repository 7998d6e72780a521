"""Active health monitoring of the receiver."""

from delivery_queue.alerts import AlertDispatcher
from delivery_queue.config import Settings
from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.metrics import MetricsRecorder, classify_health
from delivery_queue.models import (
    DeliveryKind,
    HealthCheckResult,
    HealthRunResult,
    HealthStatus,
    QueueStats,
)
from delivery_queue.receiver import ReceiverClient

logger = get_logger(__name__)


class HealthMonitor:
    """Probes the receiver, records the result and alerts on trouble.

    A probe is healthy under the warning threshold, degraded at or above it,
    and unhealthy on timeout, transport failure or non-2xx. Alerts fire when
    unhealthy or slower than the critical threshold.
    """

    def __init__(
        self,
        receiver: ReceiverClient,
        metrics: MetricsRecorder,
        alerts: AlertDispatcher,
        dlq: DeadLetterQueue,
        settings: Settings,
    ):
        self.receiver = receiver
        self.metrics = metrics
        self.alerts = alerts
        self.dlq = dlq
        self.warning_ms = settings.HEALTH_LATENCY_WARNING_MS
        self.critical_ms = settings.HEALTH_LATENCY_CRITICAL_MS

    async def check(self) -> HealthCheckResult:
        probe = await self.receiver.probe()

        if probe.kind == DeliveryKind.NOT_CONFIGURED:
            return HealthCheckResult(
                healthy=False,
                status=HealthStatus.UNHEALTHY,
                latency_ms=0,
                message="Receiver not configured",
            )

        status = classify_health(probe.success, probe.latency_ms, self.warning_ms)
        if not probe.success:
            message = probe.error_text
        elif status == HealthStatus.DEGRADED:
            message = f"Slow response ({probe.latency_ms}ms)"
        else:
            message = "OK"

        return HealthCheckResult(
            healthy=probe.success,
            status=status,
            latency_ms=probe.latency_ms,
            status_code=probe.status_code,
            message=message,
        )

    def should_alert(self, result: HealthCheckResult) -> bool:
        return not result.healthy or result.latency_ms > self.critical_ms

    async def run(self) -> HealthRunResult:
        """One scheduled health check. Never raises."""
        logger.info("Running receiver health check", event_type=LogEventType.JOB_START)
        try:
            return await self._run()
        except Exception as e:
            logger.error(
                "Receiver health check failed",
                event_type=LogEventType.JOB_ERROR,
                error=str(e),
                exc_info=True,
            )
            return HealthRunResult(
                success=False,
                health=HealthCheckResult(
                    healthy=False,
                    status=HealthStatus.UNKNOWN,
                    latency_ms=0,
                    message="Health check failed",
                ),
                queue=QueueStats(),
                error=str(e) or type(e).__name__,
            )

    async def _run(self) -> HealthRunResult:
        result = await self.check()
        await self.metrics.record_health_check(
            result.healthy, result.latency_ms, result.message
        )

        alert_sent = False
        if self.should_alert(result):
            logger.warning(
                "Receiver health problem",
                event_type=LogEventType.HEALTH_CHECK,
                status=result.status.value,
                latency_ms=result.latency_ms,
                status_code=result.status_code,
                message=result.message,
            )
            await self.alerts.send_health_alert(result)
            alert_sent = True
        else:
            logger.info(
                "Receiver health check finished",
                event_type=LogEventType.HEALTH_CHECK,
                status=result.status.value,
                latency_ms=result.latency_ms,
            )

        queue = await self.dlq.stats()
        return HealthRunResult(health=result, queue=queue, alert_sent=alert_sent)
