"""Operator alerts posted to a Slack-compatible incoming webhook.

Alerting is best effort: without ALERT_WEBHOOK_URL alerts are only logged,
and a failing webhook is logged and swallowed so the caller keeps going.
"""

import httpx
from prometheus_client import Counter
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from delivery_queue.config import Settings
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.models import HealthCheckResult, HealthStatus, QueueItem, utcnow

logger = get_logger(__name__)

ALERT_ERROR_LIMIT = 200

ALERTS_TOTAL = Counter(
    "alerts_total",
    "Operator alerts by kind and delivery channel",
    ["kind", "channel"],
)


def format_health_alert(result: HealthCheckResult) -> dict:
    """Build the webhook message for a degraded or unhealthy receiver."""
    unhealthy = result.status == HealthStatus.UNHEALTHY
    emoji = "🚨" if unhealthy else "⚠️"
    status = "UNHEALTHY" if unhealthy else "DEGRADED"
    text = (
        f"*Receiver Status: {status}*\n"
        f"• Latency: {result.latency_ms}ms\n"
        f"• Status Code: {result.status_code or 'N/A'}\n"
        f"• Message: {result.message}\n"
        f"• Time: {utcnow().isoformat()}"
    )
    return {
        "text": f"{emoji} Receiver Health Alert",
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


def format_exhausted_alert(item: QueueItem, error: str | None = None) -> dict:
    """Build the webhook message for an item that ran out of retries."""
    last_error = (error or item.last_error or "")[:ALERT_ERROR_LIMIT]
    text = (
        "*Submission EXHAUSTED all retries*\n"
        f"• Correlation ID: `{item.correlation_id}`\n"
        f"• Record ID: `{item.source_record_id}`\n"
        f"• Attempts: {item.attempts}\n"
        f"• First Failed: {item.first_failed_at.isoformat()}\n"
        f"• Last Error: {last_error}"
    )
    return {
        "text": "🚨 Delivery Queue Alert",
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


class AlertDispatcher:
    """Sends alert messages; never raises."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = settings.ALERT_WEBHOOK_URL
        self.timeout = settings.ALERT_TIMEOUT_SECONDS
        self.max_attempts = max(1, settings.ALERT_MAX_ATTEMPTS)
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def _post(self, message: dict) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=False,
            ):
                with attempt:
                    response = await client.post(self.webhook_url, json=message)
                    response.raise_for_status()

    async def send(self, kind: str, message: dict, **context) -> bool:
        """Post a formatted message.

        Returns:
            True if the webhook accepted the alert, False if it was only logged
        """
        if not self.is_configured:
            ALERTS_TOTAL.labels(kind=kind, channel="log").inc()
            logger.warning(
                "Alert (no webhook configured)",
                event_type=LogEventType.ALERT_SENT,
                alert_kind=kind,
                text=message.get("blocks", [{}])[0].get("text", {}).get("text"),
                **context,
            )
            return False

        try:
            await self._post(message)
        except (httpx.HTTPError, httpx.InvalidURL, RetryError) as e:
            ALERTS_TOTAL.labels(kind=kind, channel="failed").inc()
            logger.error(
                "Failed to send alert",
                event_type=LogEventType.ALERT_FAILED,
                alert_kind=kind,
                error=str(e),
                **context,
            )
            return False
        except Exception as e:
            ALERTS_TOTAL.labels(kind=kind, channel="failed").inc()
            logger.error(
                "Unexpected error sending alert",
                event_type=LogEventType.ALERT_FAILED,
                alert_kind=kind,
                error=str(e),
                exc_info=True,
                **context,
            )
            return False

        ALERTS_TOTAL.labels(kind=kind, channel="webhook").inc()
        logger.info(
            "Alert sent", event_type=LogEventType.ALERT_SENT, alert_kind=kind, **context
        )
        return True

    async def send_health_alert(self, result: HealthCheckResult) -> bool:
        return await self.send(
            "health",
            format_health_alert(result),
            status=result.status.value,
            latency_ms=result.latency_ms,
        )

    async def send_exhausted_alert(
        self, item: QueueItem, error: str | None = None
    ) -> bool:
        return await self.send(
            "exhausted",
            format_exhausted_alert(item, error),
            item_id=item.id,
            correlation_id=item.correlation_id,
            source_record_id=item.source_record_id,
        )
