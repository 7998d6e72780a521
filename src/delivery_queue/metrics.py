"""Delivery metrics.

Two layers:
- MetricsRecorder keeps rolling 24h counters in Redis so every instance and
  every scheduled invocation sees the same numbers
- Prometheus series give the per-process view scraped from /metrics
"""

import json
from datetime import datetime

import redis.asyncio as redis
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from delivery_queue.config import Settings
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.models import HealthState, HealthStatus, MetricsSnapshot, utcnow
from delivery_queue.store import STORE_ERRORS

logger = get_logger(__name__)

# === Prometheus Metrics ===

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "delivery_attempts_total",
    "Receiver delivery attempts",
    ["outcome"],
)

DELIVERY_LATENCY_SECONDS = Histogram(
    "delivery_latency_seconds",
    "Latency of successful receiver deliveries",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 15.0, 30.0],
)

RECEIVER_HEALTH_STATUS = Gauge(
    "receiver_health_status",
    "Receiver health (0=healthy, 1=degraded, 2=unhealthy, -1=unknown)",
)

RECEIVER_PROBE_LATENCY_MS = Gauge(
    "receiver_probe_latency_ms",
    "Latency of the last receiver health probe in milliseconds",
)

_HEALTH_GAUGE_VALUES = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.UNKNOWN: -1,
}


def classify_health(healthy: bool, latency_ms: int, warning_ms: int) -> HealthStatus:
    """Map a probe outcome to a health status."""
    if not healthy:
        return HealthStatus.UNHEALTHY
    if latency_ms >= warning_ms:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _parse_json(value: str | None) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class MetricsRecorder:
    """Rolling-window delivery counters stored in Redis."""

    def __init__(self, redis_client: redis.Redis | None, settings: Settings):
        self.redis = redis_client
        self.ttl = settings.METRICS_TTL_SECONDS
        self.warning_ms = settings.HEALTH_LATENCY_WARNING_MS
        self.queue_key = settings.DLQ_PENDING_KEY

        prefix = settings.METRICS_KEY_PREFIX
        self.success_count_key = f"{prefix}:metrics:success:count"
        self.failure_count_key = f"{prefix}:metrics:failure:count"
        self.latency_sum_key = f"{prefix}:metrics:latency:sum"
        self.latency_count_key = f"{prefix}:metrics:latency:count"
        self.last_success_key = f"{prefix}:metrics:last_success"
        self.last_failure_key = f"{prefix}:metrics:last_failure"
        self.last_check_key = f"{prefix}:health:last_check"
        self.health_status_key = f"{prefix}:health:status"
        self.health_latency_key = f"{prefix}:health:latency"

    @property
    def is_configured(self) -> bool:
        return self.redis is not None

    @property
    def keys(self) -> list[str]:
        return [
            self.success_count_key,
            self.failure_count_key,
            self.latency_sum_key,
            self.latency_count_key,
            self.last_success_key,
            self.last_failure_key,
            self.last_check_key,
            self.health_status_key,
            self.health_latency_key,
        ]

    def _store_failed(self, operation: str, error: Exception) -> None:
        logger.warning(
            "Metrics store operation failed",
            event_type=LogEventType.STORE_ERROR,
            operation=operation,
            error=str(error),
        )

    async def record_success(self, latency_ms: int | float) -> None:
        """Count a successful delivery and its latency."""
        DELIVERY_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        DELIVERY_LATENCY_SECONDS.observe(latency_ms / 1000)
        if not self.is_configured:
            return

        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.incr(self.success_count_key)
                pipe.expire(self.success_count_key, self.ttl)
                pipe.incrby(self.latency_sum_key, round(latency_ms))
                pipe.expire(self.latency_sum_key, self.ttl)
                pipe.incr(self.latency_count_key)
                pipe.expire(self.latency_count_key, self.ttl)
                pipe.set(self.last_success_key, utcnow().isoformat())
                await pipe.execute()
        except STORE_ERRORS as e:
            self._store_failed("record_success", e)

    async def record_failure(self, error_message: str) -> None:
        """Count a failed delivery and remember the error."""
        DELIVERY_ATTEMPTS_TOTAL.labels(outcome="failure").inc()
        if not self.is_configured:
            return

        last_failure = json.dumps({"time": utcnow().isoformat(), "error": error_message})
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.incr(self.failure_count_key)
                pipe.expire(self.failure_count_key, self.ttl)
                pipe.set(self.last_failure_key, last_failure)
                await pipe.execute()
        except STORE_ERRORS as e:
            self._store_failed("record_failure", e)

    async def record_health_check(
        self,
        healthy: bool,
        latency_ms: int,
        message: str | None = None,
    ) -> HealthStatus:
        """Store the result of a receiver probe and return the derived status."""
        status = classify_health(healthy, latency_ms, self.warning_ms)
        RECEIVER_HEALTH_STATUS.set(_HEALTH_GAUGE_VALUES[status])
        RECEIVER_PROBE_LATENCY_MS.set(latency_ms)
        if not self.is_configured:
            return status

        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.set(self.last_check_key, utcnow().isoformat())
                pipe.set(
                    self.health_status_key,
                    json.dumps({"status": status.value, "message": message}),
                )
                pipe.set(self.health_latency_key, latency_ms)
                await pipe.execute()
        except STORE_ERRORS as e:
            self._store_failed("record_health_check", e)
        return status

    async def get_metrics(self) -> MetricsSnapshot:
        """Read the current rolling-window snapshot."""
        if not self.is_configured:
            return MetricsSnapshot()

        try:
            (
                success_count,
                failure_count,
                latency_sum,
                latency_count,
                last_success,
                last_failure,
                last_check,
                health_status,
                health_latency,
            ) = await self.redis.mget(self.keys)
            queue_depth = await self.redis.llen(self.queue_key)
        except STORE_ERRORS as e:
            self._store_failed("get_metrics", e)
            return MetricsSnapshot()

        success = int(success_count or 0)
        failure = int(failure_count or 0)
        total = success + failure
        samples = int(latency_count or 0)

        health = HealthState()
        parsed_health = _parse_json(health_status)
        if parsed_health:
            try:
                status = HealthStatus(parsed_health.get("status", "unknown"))
            except ValueError:
                status = HealthStatus.UNKNOWN
            health = HealthState(
                status=status,
                last_check=_parse_datetime(last_check),
                latency_ms=int(health_latency) if health_latency else None,
                message=parsed_health.get("message"),
            )

        parsed_failure = _parse_json(last_failure)

        return MetricsSnapshot(
            success_count=success,
            failure_count=failure,
            success_rate=round(success / total * 100) if total > 0 else 100,
            avg_latency_ms=round(int(latency_sum or 0) / samples) if samples else 0,
            last_success=_parse_datetime(last_success),
            last_failure=_parse_datetime(parsed_failure.get("time")),
            last_failure_error=parsed_failure.get("error"),
            health=health,
            queue_depth=queue_depth or 0,
        )

    async def reset_metrics(self) -> bool:
        """Delete every metrics key. For tests and operators only."""
        if not self.is_configured:
            return False

        try:
            await self.redis.delete(*self.keys)
        except STORE_ERRORS as e:
            self._store_failed("reset_metrics", e)
            return False

        logger.warning("Delivery metrics reset")
        return True


def get_metrics() -> bytes:
    """Return metrics in Prometheus format."""
    return generate_latest()


def get_content_type() -> str:
    """Return Prometheus content type."""
    return CONTENT_TYPE_LATEST
