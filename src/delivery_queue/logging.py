"""
Structured logging for the delivery queue service.

Usage:
    from delivery_queue.logging import configure_logging, get_logger, LogEventType

    # On startup
    configure_logging(
        service_name="delivery_queue",
        log_level=settings.LOG_LEVEL,
        json_format=True,
    )

    # In any module
    logger = get_logger(__name__)
    logger.info("Item queued", event_type=LogEventType.QUEUE_PUSH, item_id=item.id)
"""

import logging
import sys
from contextvars import ContextVar
from enum import Enum
from typing import Any

import structlog

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class LogEventType(str, Enum):
    """Event types for filtering in the log aggregator."""

    # HTTP/API events
    REQUEST_IN = "request_in"

    # Job events
    JOB_START = "job_start"
    JOB_END = "job_end"
    JOB_ERROR = "job_error"
    JOB_SKIPPED = "job_skipped"

    # Queue events
    QUEUE_PUSH = "queue_push"
    QUEUE_POP = "queue_pop"
    QUEUE_CLEAR = "queue_clear"
    STORE_ERROR = "store_error"

    # Delivery events
    DELIVERY_ATTEMPT = "delivery_attempt"
    DELIVERY_SUCCEEDED = "delivery_succeeded"
    DELIVERY_FAILED = "delivery_failed"
    ITEM_EXHAUSTED = "item_exhausted"

    # Health & alerting
    HEALTH_CHECK = "health_check"
    ALERT_SENT = "alert_sent"
    ALERT_FAILED = "alert_failed"

    # General events
    ERROR = "error"
    WARNING = "warning"
    STARTUP = "startup"
    SHUTDOWN = "shutdown"


def _add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor to add correlation_id from context."""
    cid = correlation_id_ctx.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _make_service_processor(service_name: str):
    """Factory for processor that adds service name."""

    def processor(
        logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["service"] = service_name
        return event_dict

    return processor


def _normalize_event_type(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Convert LogEventType enum to string if present."""
    event_type = event_dict.get("event_type")
    if isinstance(event_type, LogEventType):
        event_dict["event_type"] = event_type.value
    return event_dict


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> None:
    """
    Configure structlog for the service.

    Args:
        service_name: Name attached to every log line
        log_level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON (production), False for console (development)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        _make_service_processor(service_name),
        _normalize_event_type,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            parameters={
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(
            structlog.dev.ConsoleRenderer(colors=True, sort_keys=True)
        )

    structlog.configure(
        processors=shared_processors,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


def set_correlation_id(cid: str) -> None:
    """Set correlation_id for current context."""
    correlation_id_ctx.set(cid)


def get_correlation_id() -> str | None:
    """Get current correlation_id."""
    return correlation_id_ctx.get()


def clear_correlation_id() -> None:
    """Clear correlation_id from context."""
    correlation_id_ctx.set(None)
