"""Configuration for the delivery queue service."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Delivery queue settings.

    Everything that talks to an external system is optional: a missing value
    makes the affected component report "not configured" instead of failing.
    """

    # Logging
    SERVICE_NAME: str = "delivery_queue"
    LOG_LEVEL: str = "INFO"
    LOG_JSON_FORMAT: bool = True
    ENVIRONMENT: str = "production"

    # Redis (queue store, metrics store, run lock)
    REDIS_URL: str | None = None
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Receiver webhook
    RECEIVER_WEBHOOK_URL: str | None = None
    RECEIVER_WEBHOOK_SECRET: str | None = None
    RECEIVER_TIMEOUT_SECONDS: float = 30.0
    RECEIVER_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Alerts
    ALERT_WEBHOOK_URL: str | None = None
    ALERT_TIMEOUT_SECONDS: float = 10.0
    ALERT_MAX_ATTEMPTS: int = 2

    # Trigger authentication
    CRON_SECRET: str | None = None

    # Queue
    DLQ_PENDING_KEY: str = "eonpro:dlq"
    DLQ_DEAD_KEY: str = "eonpro:dead"
    DLQ_BASE_BACKOFF_SECONDS: float = 60.0
    DLQ_MAX_ATTEMPTS: int = 10

    # Retry scheduler
    SCHEDULER_ITEM_DELAY_SECONDS: float = 0.5
    SCHEDULER_LOCK_KEY: str = "eonpro:dlq:lock"
    SCHEDULER_LOCK_TTL_SECONDS: int = 600

    # Metrics
    METRICS_KEY_PREFIX: str = "eonpro"
    METRICS_TTL_SECONDS: int = 86400

    # Health monitor
    HEALTH_TIMEOUT_SECONDS: float = 15.0
    HEALTH_LATENCY_WARNING_MS: int = 3000
    HEALTH_LATENCY_CRITICAL_MS: int = 10000
    HEALTH_PROBE_SOURCE: str = "weightlossintake"

    # In-process cron runner (off unless no external scheduler exists)
    CRON_ENABLED: bool = False
    CRON_QUEUE_INTERVAL_MINUTES: int = 5
    CRON_HEALTH_INTERVAL_MINUTES: int = 5
    CRON_HEALTH_OFFSET_SECONDS: int = 150

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_store_configured(self) -> bool:
        return bool(self.REDIS_URL)

    @property
    def is_receiver_configured(self) -> bool:
        return bool(self.RECEIVER_WEBHOOK_URL and self.RECEIVER_WEBHOOK_SECRET)

    @property
    def is_alerting_configured(self) -> bool:
        return bool(self.ALERT_WEBHOOK_URL)


@lru_cache
def get_settings() -> Settings:
    return Settings()
