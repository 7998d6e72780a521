"""In-process replacement for the platform cron.

Only used when CRON_ENABLED is set. Each job calls the same operation the
trigger endpoints call, so overlapping with an external trigger is still
guarded by the run lock.
"""

import time
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from prometheus_client import Counter, Histogram

from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.service import Services

logger = get_logger(__name__)

QUEUE_JOB_ID = "process_delivery_queue"
HEALTH_JOB_ID = "receiver_health_check"

jobs_total = Counter(
    "cron_jobs_total",
    "Total number of job executions",
    ["job_type", "status"],
)

job_duration_seconds = Histogram(
    "cron_job_duration_seconds",
    "Job execution duration in seconds",
    ["job_type"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)


def record_job_completed(job_type: str, duration_seconds: float) -> None:
    jobs_total.labels(job_type=job_type, status="completed").inc()
    job_duration_seconds.labels(job_type=job_type).observe(duration_seconds)


def record_job_failed(job_type: str) -> None:
    jobs_total.labels(job_type=job_type, status="failed").inc()


async def run_queue_job(services: Services) -> None:
    start_time = time.perf_counter()
    result = await services.scheduler.run()
    if result.success:
        record_job_completed("process_queue", time.perf_counter() - start_time)
    else:
        record_job_failed("process_queue")
        logger.warning(
            "Scheduled queue run did not complete",
            event_type=LogEventType.JOB_ERROR,
            error=result.error,
            message=result.message,
        )


async def run_health_job(services: Services) -> None:
    start_time = time.perf_counter()
    result = await services.health.run()
    if result.success:
        record_job_completed("health_check", time.perf_counter() - start_time)
    else:
        record_job_failed("health_check")


def create_scheduler(services: Services) -> AsyncIOScheduler:
    """Schedule the queue processor and the health monitor, offset from each other."""
    settings = services.settings
    scheduler = AsyncIOScheduler(timezone=UTC)

    scheduler.add_job(
        run_queue_job,
        IntervalTrigger(minutes=settings.CRON_QUEUE_INTERVAL_MINUTES, timezone=UTC),
        args=[services],
        id=QUEUE_JOB_ID,
        name="Process delivery queue",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )

    health_start = datetime.now(UTC) + timedelta(
        seconds=settings.CRON_HEALTH_OFFSET_SECONDS
    )
    scheduler.add_job(
        run_health_job,
        IntervalTrigger(
            minutes=settings.CRON_HEALTH_INTERVAL_MINUTES,
            start_date=health_start,
            timezone=UTC,
        ),
        args=[services],
        id=HEALTH_JOB_ID,
        name="Receiver health check",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )

    logger.info(
        "Scheduled delivery queue jobs",
        event_type=LogEventType.STARTUP,
        queue_interval_minutes=settings.CRON_QUEUE_INTERVAL_MINUTES,
        health_interval_minutes=settings.CRON_HEALTH_INTERVAL_MINUTES,
    )
    return scheduler
