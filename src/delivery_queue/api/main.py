import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from delivery_queue.api.middleware import CorrelationIdMiddleware, PrometheusMiddleware
from delivery_queue.api.routers import admin, cron
from delivery_queue.config import Settings, get_settings
from delivery_queue.cron import create_scheduler
from delivery_queue.logging import LogEventType, configure_logging, get_logger
from delivery_queue.metrics import get_content_type, get_metrics
from delivery_queue.service import Services, build_services

logger = get_logger(__name__)


# Define a filter to exclude /health endpoint logs
class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            if len(record.args) >= 3 and isinstance(record.args[2], str):
                return record.args[2] != "/health"
        except (IndexError, TypeError):
            pass
        return True


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manages application lifespan events (startup/shutdown)."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting delivery queue service",
        event_type=LogEventType.STARTUP,
        store_configured=settings.is_store_configured,
        receiver_configured=settings.is_receiver_configured,
        alerting_configured=settings.is_alerting_configured,
    )

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = build_services(settings)
    services: Services = app.state.services

    scheduler = None
    if settings.CRON_ENABLED:
        scheduler = create_scheduler(services)
        scheduler.start()

    yield

    logger.info("Shutting down delivery queue service", event_type=LogEventType.SHUTDOWN)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    if owns_services:
        await services.close()
        app.state.services = None


def create_app(
    settings: Settings | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Build the FastAPI app. Pre-built ``services`` skip wiring from settings."""
    settings = settings or (services.settings if services else get_settings())

    configure_logging(
        service_name=settings.SERVICE_NAME,
        log_level=settings.LOG_LEVEL,
        json_format=settings.LOG_JSON_FORMAT,
    )

    app = FastAPI(lifespan=lifespan, title="Delivery Queue API")
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = exc.errors()
        logger.error(
            "Validation error",
            event_type=LogEventType.ERROR,
            errors=errors,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=422,
            content={"detail": errors},
        )

    app.include_router(cron.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=get_metrics(), media_type=get_content_type())

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
