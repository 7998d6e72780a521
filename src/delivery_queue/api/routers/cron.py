"""Trigger endpoints called by the platform scheduler every five minutes."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from delivery_queue.api.dependencies import ServicesDep, verify_cron_secret
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.models import utcnow

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])

CronAuth = Annotated[None, Depends(verify_cron_secret)]

_BATCH_ERROR_STATUS = {
    "not_configured": status.HTTP_503_SERVICE_UNAVAILABLE,
    "locked": status.HTTP_409_CONFLICT,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.get("/process-queue")
async def get_queue_processor_status(services: ServicesDep) -> dict:
    """Processor status: store health, queue stats and configured flags."""
    store = await services.dlq.health_check()
    queue = await services.dlq.stats()
    return {
        "service": "delivery-queue-processor",
        "configured": services.dlq.is_configured,
        "receiver_configured": services.receiver.is_configured,
        "store": store.model_dump(),
        "queue": queue.model_dump(mode="json"),
        "timestamp": utcnow(),
    }


@router.post("/process-queue")
async def process_queue(services: ServicesDep, _: CronAuth) -> JSONResponse:
    """Run the retry scheduler once."""
    logger.info("Queue processing triggered", event_type=LogEventType.REQUEST_IN)
    result = await services.scheduler.run()

    status_code = status.HTTP_200_OK
    if not result.success:
        status_code = _BATCH_ERROR_STATUS.get(result.error or "", status.HTTP_200_OK)

    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.get("/receiver-health")
async def get_receiver_health(services: ServicesDep) -> dict:
    """Last recorded health plus 24h delivery metrics."""
    metrics = await services.metrics.get_metrics()
    queue = await services.dlq.stats()
    return {
        "service": "receiver-health-monitor",
        "configured": services.metrics.is_configured,
        "receiver_configured": services.receiver.is_configured,
        "metrics": {
            "success_rate": metrics.success_rate,
            "avg_latency_ms": metrics.avg_latency_ms,
            "last_24h": {
                "success": metrics.success_count,
                "failure": metrics.failure_count,
                "total": metrics.total,
            },
            "last_success": metrics.last_success,
            "last_failure": metrics.last_failure,
            "last_failure_error": metrics.last_failure_error,
        },
        "health": metrics.health.model_dump(mode="json"),
        "queue": queue.model_dump(mode="json"),
        "timestamp": utcnow(),
    }


@router.post("/receiver-health")
async def run_receiver_health_check(services: ServicesDep, _: CronAuth) -> dict:
    """Probe the receiver, record the result and alert if needed."""
    logger.info("Receiver health check triggered", event_type=LogEventType.REQUEST_IN)
    result = await services.health.run()
    return result.model_dump(mode="json")
