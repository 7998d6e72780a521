"""Operator endpoints: status document and maintenance actions."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from delivery_queue.api.dependencies import ServicesDep, require_admin
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.models import utcnow

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)

AVAILABLE_ACTIONS = ["clear_metrics", "clear_queue", "retry_dead_letters"]


class AdminActionRequest(BaseModel):
    action: str


@router.get("/delivery-status")
async def get_delivery_status(services: ServicesDep) -> dict:
    return await services.status.build()


@router.post("/delivery-status")
async def run_admin_action(
    body: AdminActionRequest,
    services: ServicesDep,
) -> dict:
    """Run one maintenance action."""
    action = body.action
    logger.info(
        "Admin action requested",
        event_type=LogEventType.REQUEST_IN,
        action=action,
    )

    if action == "clear_metrics":
        cleared = await services.metrics.reset_metrics()
        return {
            "success": cleared,
            "message": "Metrics cleared" if cleared else "Metrics store unavailable",
            "timestamp": utcnow(),
        }

    if action == "clear_queue":
        cleared = await services.dlq.clear()
        return {
            "success": cleared,
            "message": "Pending queue cleared" if cleared else "Queue store unavailable",
            "timestamp": utcnow(),
        }

    if action == "retry_dead_letters":
        # TODO: move dead letters back to the pending list with attempts reset
        return {
            "success": False,
            "message": "Dead letter retry is not implemented yet",
            "timestamp": utcnow(),
        }

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "error": f"Unknown action: {action}",
            "available_actions": AVAILABLE_ACTIONS,
        },
    )
