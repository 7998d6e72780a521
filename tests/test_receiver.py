"""Tests for ReceiverClient."""

import json

import httpx
import pytest

from delivery_queue.logging import clear_correlation_id, set_correlation_id
from delivery_queue.models import DeliveryKind
from delivery_queue.receiver import ReceiverClient

PAYLOAD = {"sessionId": "session-1", "data": {"weight": 180}}


def make_receiver(settings, handler) -> ReceiverClient:
    return ReceiverClient(settings, transport=httpx.MockTransport(handler))


class TestDeliver:
    @pytest.mark.asyncio
    async def test_success(self, settings):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True, "message": "stored"})

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is True
        assert result.kind == DeliveryKind.SUCCESS
        assert result.status_code == 200
        assert result.latency_ms >= 0
        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == settings.RECEIVER_WEBHOOK_URL
        assert request.headers["x-webhook-secret"] == "receiver-secret"
        assert "x-health-check" not in request.headers
        assert json.loads(request.content) == PAYLOAD

    @pytest.mark.asyncio
    async def test_correlation_id_forwarded(self, settings):
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json={"success": True})

        set_correlation_id("corr-123")
        try:
            async with make_receiver(settings, handler) as receiver:
                await receiver.deliver(PAYLOAD)
        finally:
            clear_correlation_id()

        assert seen["x-correlation-id"] == "corr-123"

    @pytest.mark.asyncio
    async def test_server_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway" + "x" * 200)

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.HTTP_ERROR
        assert result.status_code == 502
        assert result.error.startswith("HTTP 502: Bad Gateway")
        assert len(result.error) == len("HTTP 502: ") + 100

    @pytest.mark.asyncio
    async def test_rejected_by_receiver(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "Duplicate"})

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.REJECTED
        assert result.error_text == "Duplicate"

    @pytest.mark.asyncio
    async def test_rejection_without_error_uses_message(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "message": "Invalid"})

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.error_text == "Invalid"

    @pytest.mark.asyncio
    async def test_non_json_body_is_failure(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="OK")

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.HTTP_ERROR
        assert result.status_code == 200
        assert "HTTP 200" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.TIMEOUT
        assert result.status_code is None
        assert result.error.startswith("Timeout after 30000ms")

    @pytest.mark.asyncio
    async def test_network_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.NETWORK_ERROR
        assert result.error == "Connection refused"

    @pytest.mark.asyncio
    async def test_malformed_url_is_network_error(self, settings):
        settings = settings.model_copy(
            update={"RECEIVER_WEBHOOK_URL": "https://receiver.test:abc/x"}
        )

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.deliver(PAYLOAD)

        assert result.success is False
        assert result.kind == DeliveryKind.NETWORK_ERROR
        assert result.error

    @pytest.mark.asyncio
    async def test_not_configured(self, settings):
        settings = settings.model_copy(update={"RECEIVER_WEBHOOK_SECRET": None})

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        receiver = make_receiver(settings, handler)
        result = await receiver.deliver(PAYLOAD)

        assert receiver.is_configured is False
        assert result.kind == DeliveryKind.NOT_CONFIGURED
        assert result.error == "Receiver not configured"


class TestProbe:
    @pytest.mark.asyncio
    async def test_probe_sends_health_check_flag(self, settings):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ignored")

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.probe()

        assert result.success is True
        request = requests[0]
        assert request.headers["x-health-check"] == "true"
        assert request.headers["x-webhook-secret"] == "receiver-secret"
        body = json.loads(request.content)
        assert body["healthCheck"] is True
        assert body["submissionId"].startswith("health-check-")
        assert body["source"] == settings.HEALTH_PROBE_SOURCE

    @pytest.mark.asyncio
    async def test_probe_server_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.probe()

        assert result.success is False
        assert result.status_code == 503
        assert result.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_probe_timeout_uses_probe_timeout(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with make_receiver(settings, handler) as receiver:
            result = await receiver.probe()

        assert result.kind == DeliveryKind.TIMEOUT
        assert result.error.startswith("Timeout after 15000ms")
