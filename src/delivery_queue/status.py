"""Read-only status document for operators."""

import asyncio

from delivery_queue.config import Settings
from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.models import DeadLetterRecord, HealthStatus, utcnow

DEAD_LETTER_SUMMARY_LIMIT = 5
DEAD_LETTER_ERROR_LIMIT = 100

# Overall status thresholds
SUCCESS_RATE_TARGET = 95
SUCCESS_RATE_CRITICAL = 80
SUCCESS_RATE_MIN_SAMPLES = 10
QUEUE_DEPTH_WARNING = 10
QUEUE_DEPTH_CRITICAL = 50
DEAD_LETTERS_CRITICAL = 5

_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def _worse(current: HealthStatus, candidate: HealthStatus) -> HealthStatus:
    return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current


def summarize_dead_letter(record: DeadLetterRecord) -> dict:
    return {
        "id": record.id,
        "correlation_id": record.correlation_id,
        "source_record_id": record.source_record_id,
        "attempts": record.attempts,
        "first_failed_at": record.first_failed_at,
        "exhausted_at": record.exhausted_at,
        "last_error": record.last_error[:DEAD_LETTER_ERROR_LIMIT],
    }


class StatusAggregator:
    """Combines metrics, queue stats and dead letters into one document."""

    def __init__(
        self,
        dlq: DeadLetterQueue,
        metrics: MetricsRecorder,
        settings: Settings,
    ):
        self.dlq = dlq
        self.metrics = metrics
        self.settings = settings

    def configuration(self) -> dict[str, bool]:
        return {
            "metrics_configured": self.metrics.is_configured,
            "dlq_configured": self.dlq.is_configured,
            "receiver_configured": self.settings.is_receiver_configured,
            "alerting_configured": self.settings.is_alerting_configured,
        }

    async def build(self) -> dict:
        metrics, queue_stats, dead_letters, store = await asyncio.gather(
            self.metrics.get_metrics(),
            self.dlq.stats(),
            self.dlq.dead_letters(),
            self.dlq.health_check(),
        )

        overall = HealthStatus.HEALTHY
        issues: list[str] = []

        if metrics.health.status == HealthStatus.UNHEALTHY:
            overall = HealthStatus.UNHEALTHY
            issues.append("Receiver webhook is unhealthy")
        elif metrics.health.status == HealthStatus.DEGRADED:
            overall = HealthStatus.DEGRADED
            issues.append("Receiver webhook is slow")

        if (
            metrics.success_rate < SUCCESS_RATE_TARGET
            and metrics.total > SUCCESS_RATE_MIN_SAMPLES
        ):
            if metrics.success_rate < SUCCESS_RATE_CRITICAL:
                overall = HealthStatus.UNHEALTHY
                issues.append(f"Low success rate: {metrics.success_rate}%")
            else:
                overall = _worse(overall, HealthStatus.DEGRADED)
                issues.append(f"Success rate below target: {metrics.success_rate}%")

        depth = queue_stats.queue_depth
        if depth > QUEUE_DEPTH_CRITICAL:
            overall = HealthStatus.UNHEALTHY
            issues.append(f"High queue depth: {depth}")
        elif depth > QUEUE_DEPTH_WARNING:
            overall = _worse(overall, HealthStatus.DEGRADED)
            issues.append(f"Queue depth elevated: {depth}")

        if dead_letters:
            if len(dead_letters) > DEAD_LETTERS_CRITICAL:
                overall = HealthStatus.UNHEALTHY
            else:
                overall = _worse(overall, HealthStatus.DEGRADED)
            issues.append(f"{len(dead_letters)} items in dead letter queue")

        if self.dlq.is_configured and not store.healthy:
            overall = _worse(overall, HealthStatus.DEGRADED)
            issues.append(f"Queue store unreachable: {store.error}")

        return {
            "status": overall.value,
            "issues": issues,
            "configuration": self.configuration(),
            "metrics": {
                "success_rate": f"{metrics.success_rate}%",
                "avg_latency": f"{metrics.avg_latency_ms}ms",
                "last_24h": {
                    "success": metrics.success_count,
                    "failure": metrics.failure_count,
                    "total": metrics.total,
                },
                "timestamps": {
                    "last_success": metrics.last_success,
                    "last_failure": metrics.last_failure,
                },
            },
            "health": metrics.health.model_dump(),
            "store": store.model_dump(),
            "queue": {
                **queue_stats.model_dump(),
                "dead_letters": len(dead_letters),
            },
            "dead_letter_summary": [
                summarize_dead_letter(record)
                for record in dead_letters[:DEAD_LETTER_SUMMARY_LIMIT]
            ],
            "timestamp": utcnow(),
        }
