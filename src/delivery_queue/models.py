"""Data models for the delivery queue."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Queue records ---


class QueueItem(BaseModel):
    """A submission waiting for redelivery.

    Stored as a flat JSON record with camelCase keys. The payload is carried
    as-is and never inspected.
    """

    id: str
    source_record_id: str
    correlation_id: str
    payload: dict[str, Any]
    attempts: int = Field(default=1, ge=1)
    first_failed_at: datetime
    last_failed_at: datetime
    last_error: str = ""
    next_retry_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def is_ready(self, now: datetime) -> bool:
        return self.next_retry_at <= now

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DeadLetterRecord(QueueItem):
    """Snapshot of an item that ran out of retries."""

    exhausted_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class UpdateOutcome(str, Enum):
    """What happened to an item after a retry attempt was recorded."""

    RESOLVED = "resolved"
    REQUEUED = "requeued"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"


class QueueStats(BaseModel):
    queue_depth: int = 0
    oldest_item_timestamp: datetime | None = None
    items_ready_now: int = 0


class StoreHealth(BaseModel):
    healthy: bool
    error: str | None = None


# --- Delivery ---


class DeliveryKind(str, Enum):
    """Classification of a single delivery attempt."""

    SUCCESS = "success"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    NOT_CONFIGURED = "not_configured"


class DeliveryResult(BaseModel):
    success: bool
    kind: DeliveryKind
    latency_ms: int = 0
    status_code: int | None = None
    error: str | None = None
    message: str | None = None

    @property
    def error_text(self) -> str:
        return self.error or self.message or "Unknown error"


class SubmissionOutcome(BaseModel):
    delivered: bool
    queued_id: str = ""
    error: str | None = None


class BatchResult(BaseModel):
    """Summary of one retry scheduler run."""

    success: bool = True
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0
    errors: list[str] = Field(default_factory=list)
    queue_depth: int | None = None
    message: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


# --- Health & metrics ---


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class HealthState(BaseModel):
    """Last recorded health of the receiver."""

    status: HealthStatus = HealthStatus.UNKNOWN
    last_check: datetime | None = None
    latency_ms: int | None = None
    message: str | None = None


class HealthCheckResult(BaseModel):
    """Outcome of a single receiver probe."""

    healthy: bool
    status: HealthStatus
    latency_ms: int
    status_code: int | None = None
    message: str


class HealthRunResult(BaseModel):
    success: bool = True
    health: HealthCheckResult
    queue: QueueStats
    alert_sent: bool = False
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class MetricsSnapshot(BaseModel):
    success_count: int = 0
    failure_count: int = 0
    success_rate: int = 100
    avg_latency_ms: int = 0
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_failure_error: str | None = None
    health: HealthState = Field(default_factory=HealthState)
    queue_depth: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count
