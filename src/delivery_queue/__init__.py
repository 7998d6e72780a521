"""Reliable delivery of intake submissions to a downstream receiver webhook."""

from delivery_queue.config import Settings, get_settings
from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.health import HealthMonitor
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.models import (
    BatchResult,
    DeadLetterRecord,
    HealthStatus,
    QueueItem,
    QueueStats,
    UpdateOutcome,
)
from delivery_queue.relay import SubmissionRelay
from delivery_queue.retry_scheduler import RetryScheduler
from delivery_queue.service import Services, build_services

__version__ = "0.1.0"

__all__ = [
    "BatchResult",
    "DeadLetterQueue",
    "DeadLetterRecord",
    "HealthMonitor",
    "HealthStatus",
    "MetricsRecorder",
    "QueueItem",
    "QueueStats",
    "RetryScheduler",
    "Services",
    "Settings",
    "SubmissionRelay",
    "UpdateOutcome",
    "build_services",
    "get_settings",
]
