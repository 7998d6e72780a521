"""Shared FastAPI dependencies."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.service import Services

logger = get_logger(__name__)


def get_services(request: Request) -> Services:
    """Get the wired components from app state."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token or None


async def verify_cron_secret(
    services: ServicesDep,
    x_cron_secret: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Reject trigger calls without the shared secret, when one is configured."""
    expected = services.settings.CRON_SECRET
    if not expected:
        return

    provided = x_cron_secret or _extract_bearer(authorization)
    if not provided or not secrets.compare_digest(provided, expected):
        logger.warning("Rejected trigger call", event_type=LogEventType.WARNING)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def require_admin() -> None:
    """Admin access check.

    Authentication is owned by the deployment (gateway or identity provider);
    install a real check with ``app.dependency_overrides[require_admin]``.
    """
    return None
