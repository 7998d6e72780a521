"""Redis connection for the queue, metrics and lock stores."""

import redis.asyncio as redis
from redis.exceptions import RedisError

from delivery_queue.config import Settings
from delivery_queue.logging import get_logger

logger = get_logger(__name__)

# Errors that mean "the store is unavailable" and must never reach callers.
STORE_ERRORS: tuple[type[BaseException], ...] = (RedisError, OSError)


class DeliveryQueueError(Exception):
    """Base exception for delivery queue errors."""

    pass


class NotConfiguredError(DeliveryQueueError):
    """A required setting is missing or invalid."""

    pass


def create_redis_client(settings: Settings) -> redis.Redis | None:
    """Build an async Redis client, or None when no store is configured.

    Raises:
        NotConfiguredError: REDIS_URL is set but cannot be parsed
    """
    if not settings.is_store_configured:
        logger.warning("Queue store not configured, running without persistence")
        return None

    try:
        return redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
    except ValueError as e:
        raise NotConfiguredError(f"Invalid REDIS_URL: {e}") from e
