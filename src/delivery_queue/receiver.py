"""
HTTP client for the receiver webhook.

Unlike a regular service client this one never raises: every outcome
(success, rejection, non-2xx, network failure, timeout) is folded into a
DeliveryResult so the retry queue can decide what to do with it.
"""

import time
from typing import Any

import httpx
from prometheus_client import Counter, Histogram

from delivery_queue.config import Settings
from delivery_queue.logging import LogEventType, get_correlation_id, get_logger
from delivery_queue.models import DeliveryKind, DeliveryResult, utcnow

logger = get_logger(__name__)

WEBHOOK_SECRET_HEADER = "x-webhook-secret"
HEALTH_CHECK_HEADER = "x-health-check"
CORRELATION_ID_HEADER = "X-Correlation-ID"

# === Prometheus Metrics ===

RECEIVER_REQUESTS_TOTAL = Counter(
    "receiver_requests_total",
    "Requests made to the receiver webhook",
    ["operation", "kind"],
)

RECEIVER_REQUEST_DURATION = Histogram(
    "receiver_request_duration_seconds",
    "Receiver request duration in seconds",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0],
)


def _snippet(text: str, limit: int = 100) -> str:
    return text[:limit] if text else ""


class ReceiverClient:
    """
    Posts submissions and health probes to the receiver.

    Usage:
        async with ReceiverClient(settings) as receiver:
            result = await receiver.deliver({"sessionId": "s1", ...})
            if not result.success:
                print(result.error_text)
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = settings.RECEIVER_WEBHOOK_URL
        self.secret = settings.RECEIVER_WEBHOOK_SECRET
        self.timeout = settings.RECEIVER_TIMEOUT_SECONDS
        self.connect_timeout = settings.RECEIVER_CONNECT_TIMEOUT_SECONDS
        self.probe_timeout = settings.HEALTH_TIMEOUT_SECONDS
        self.probe_source = settings.HEALTH_PROBE_SOURCE
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.secret)

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None or self._client.is_closed:
            timeout = httpx.Timeout(self.timeout, connect=self.connect_timeout)
            self._client = httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ReceiverClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _headers(self, health_check: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            WEBHOOK_SECRET_HEADER: self.secret or "",
        }
        if health_check:
            headers[HEALTH_CHECK_HEADER] = "true"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_ID_HEADER] = correlation_id
        return headers

    async def _post(
        self,
        operation: str,
        body: dict[str, Any],
        headers: dict[str, str],
        timeout: float | None = None,
    ) -> tuple[httpx.Response | None, DeliveryResult | None, int]:
        """Send the request; on transport failure return a classified result."""
        client = await self._get_client()
        start_time = time.perf_counter()
        kwargs: dict[str, Any] = {"json": body, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await client.post(self.url, **kwargs)
        except httpx.TimeoutException as e:
            latency_ms = round((time.perf_counter() - start_time) * 1000)
            effective = timeout if timeout is not None else self.timeout
            return (
                None,
                DeliveryResult(
                    success=False,
                    kind=DeliveryKind.TIMEOUT,
                    latency_ms=latency_ms,
                    error=f"Timeout after {round(effective * 1000)}ms ({type(e).__name__})",
                ),
                latency_ms,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            latency_ms = round((time.perf_counter() - start_time) * 1000)
            logger.warning(
                "Receiver request failed",
                event_type=LogEventType.DELIVERY_FAILED,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return (
                None,
                DeliveryResult(
                    success=False,
                    kind=DeliveryKind.NETWORK_ERROR,
                    latency_ms=latency_ms,
                    error=str(e) or type(e).__name__,
                ),
                latency_ms,
            )
        finally:
            RECEIVER_REQUEST_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

        latency_ms = round((time.perf_counter() - start_time) * 1000)
        return response, None, latency_ms

    @staticmethod
    def _classify_delivery(response: httpx.Response, latency_ms: int) -> DeliveryResult:
        """Turn a receiver response into a DeliveryResult.

        A 2xx JSON body decides via its ``success`` flag. Anything else is a
        failure carrying the status code and a body snippet.
        """
        status_code = response.status_code
        if not response.is_success:
            return DeliveryResult(
                success=False,
                kind=DeliveryKind.HTTP_ERROR,
                latency_ms=latency_ms,
                status_code=status_code,
                error=f"HTTP {status_code}: {_snippet(response.text)}",
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            return DeliveryResult(
                success=False,
                kind=DeliveryKind.HTTP_ERROR,
                latency_ms=latency_ms,
                status_code=status_code,
                error=f"HTTP {status_code}: invalid response {_snippet(response.text)!r}",
            )

        if body.get("success") is True:
            return DeliveryResult(
                success=True,
                kind=DeliveryKind.SUCCESS,
                latency_ms=latency_ms,
                status_code=status_code,
                message=body.get("message"),
            )

        return DeliveryResult(
            success=False,
            kind=DeliveryKind.REJECTED,
            latency_ms=latency_ms,
            status_code=status_code,
            error=body.get("error"),
            message=body.get("message"),
        )

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        """POST a submission payload to the receiver."""
        if not self.is_configured:
            return DeliveryResult(
                success=False,
                kind=DeliveryKind.NOT_CONFIGURED,
                error="Receiver not configured",
            )

        response, failure, latency_ms = await self._post(
            "deliver", payload, self._headers()
        )
        result = failure or self._classify_delivery(response, latency_ms)

        RECEIVER_REQUESTS_TOTAL.labels(operation="deliver", kind=result.kind.value).inc()
        logger.info(
            "Delivery attempt finished",
            event_type=LogEventType.DELIVERY_ATTEMPT,
            success=result.success,
            kind=result.kind.value,
            status_code=result.status_code,
            latency_ms=result.latency_ms,
        )
        return result

    async def probe(self) -> DeliveryResult:
        """Send a synthetic health-check submission.

        Only transport and status code matter here; the body is ignored.
        """
        if not self.is_configured:
            return DeliveryResult(
                success=False,
                kind=DeliveryKind.NOT_CONFIGURED,
                error="Receiver not configured",
            )

        now = utcnow()
        body = {
            "submissionId": f"health-check-{int(now.timestamp() * 1000)}",
            "submittedAt": now.isoformat(),
            "schemaVersion": "1.0",
            "source": self.probe_source,
            "healthCheck": True,
            "data": {},
        }
        response, failure, latency_ms = await self._post(
            "probe", body, self._headers(health_check=True), timeout=self.probe_timeout
        )

        if failure is not None:
            result = failure
        elif response.is_success:
            result = DeliveryResult(
                success=True,
                kind=DeliveryKind.SUCCESS,
                latency_ms=latency_ms,
                status_code=response.status_code,
            )
        else:
            result = DeliveryResult(
                success=False,
                kind=DeliveryKind.HTTP_ERROR,
                latency_ms=latency_ms,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        RECEIVER_REQUESTS_TOTAL.labels(operation="probe", kind=result.kind.value).inc()
        return result
