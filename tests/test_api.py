"""Tests for the HTTP API."""

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from delivery_queue.api.dependencies import require_admin
from delivery_queue.api.main import create_app
from delivery_queue.service import Services, build_services

CRON_SECRET = "cron-secret"


class ReceiverStub:
    def __init__(self):
        self.up = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.up:
            return httpx.Response(200, json={"success": True})
        return httpx.Response(503, text="Service Unavailable")


@pytest.fixture
def receiver_stub():
    return ReceiverStub()


@pytest.fixture
def api_settings(settings):
    return settings.model_copy(
        update={"CRON_SECRET": CRON_SECRET, "DLQ_BASE_BACKOFF_SECONDS": 0}
    )


@pytest.fixture
def services(api_settings, mock_redis, receiver_stub) -> Services:
    return build_services(
        api_settings,
        redis_client=mock_redis,
        receiver_transport=httpx.MockTransport(receiver_stub.handler),
    )


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


AUTH = {"x-cron-secret": CRON_SECRET}


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient):
        await client.post("/api/cron/process-queue", headers=AUTH)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "retry_scheduler_runs_total" in response.text
        assert "http_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_correlation_id_generated(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.headers["X-Correlation-ID"]


class TestProcessQueue:
    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient, mock_redis, api_settings, make_item):
        await mock_redis.lpush(api_settings.DLQ_PENDING_KEY, make_item().to_json())

        response = await client.get("/api/cron/process-queue")

        assert response.status_code == 200
        data = response.json()
        assert data["configured"] is True
        assert data["receiver_configured"] is True
        assert data["store"]["healthy"] is True
        assert data["queue"]["queue_depth"] == 1
        assert data["queue"]["items_ready_now"] == 1

    @pytest.mark.asyncio
    async def test_requires_secret(self, client: AsyncClient):
        response = await client.post("/api/cron/process-queue")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient):
        response = await client.post(
            "/api/cron/process-queue", headers={"x-cron-secret": "nope"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bearer_token(self, client: AsyncClient):
        response = await client.post(
            "/api/cron/process-queue",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_empty_queue(self, client: AsyncClient):
        response = await client.post("/api/cron/process-queue", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 0
        assert data["message"] == "Queue empty"

    @pytest.mark.asyncio
    async def test_processes_due_items(
        self, client: AsyncClient, mock_redis, api_settings, make_item
    ):
        await mock_redis.lpush(api_settings.DLQ_PENDING_KEY, make_item().to_json())

        response = await client.post("/api/cron/process-queue", headers=AUTH)

        data = response.json()
        assert data["processed"] == 1
        assert data["succeeded"] == 1
        assert data["queue_depth"] == 0

    @pytest.mark.asyncio
    async def test_locked(self, client: AsyncClient, mock_redis, api_settings):
        await mock_redis.set(api_settings.SCHEDULER_LOCK_KEY, "other-run")

        response = await client.post("/api/cron/process-queue", headers=AUTH)

        assert response.status_code == 409
        assert response.json()["error"] == "locked"

    @pytest.mark.asyncio
    async def test_not_configured(self, api_settings):
        app = create_app(services=build_services(api_settings, redis_client=None))

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.post("/api/cron/process-queue", headers=AUTH)

        assert response.status_code == 503
        assert response.json()["error"] == "not_configured"

    @pytest.mark.asyncio
    async def test_no_secret_configured_allows_trigger(self, settings, mock_redis):
        app = create_app(services=build_services(settings, redis_client=mock_redis))

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.post("/api/cron/process-queue")

        assert response.status_code == 200


class TestReceiverHealth:
    @pytest.mark.asyncio
    async def test_run_health_check(self, client: AsyncClient):
        response = await client.post("/api/cron/receiver-health", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["health"]["status"] == "healthy"
        assert data["alert_sent"] is False

    @pytest.mark.asyncio
    async def test_unhealthy_receiver(self, client: AsyncClient, receiver_stub):
        receiver_stub.up = False

        response = await client.post("/api/cron/receiver-health", headers=AUTH)

        data = response.json()
        assert data["health"]["status"] == "unhealthy"
        assert data["health"]["status_code"] == 503
        assert data["alert_sent"] is True

    @pytest.mark.asyncio
    async def test_requires_secret(self, client: AsyncClient):
        response = await client.post("/api/cron/receiver-health")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_report(self, client: AsyncClient):
        await client.post("/api/cron/receiver-health", headers=AUTH)

        response = await client.get("/api/cron/receiver-health")

        assert response.status_code == 200
        data = response.json()
        assert data["configured"] is True
        assert data["health"]["status"] == "healthy"
        assert data["metrics"]["success_rate"] == 100
        assert data["metrics"]["last_24h"]["total"] == 0


class TestAdmin:
    @pytest.mark.asyncio
    async def test_status_document(self, client: AsyncClient):
        response = await client.get("/api/admin/delivery-status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["configuration"]["dlq_configured"] is True
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_clear_metrics(self, client: AsyncClient, services):
        await services.metrics.record_failure("HTTP 500")

        response = await client.post(
            "/api/admin/delivery-status", json={"action": "clear_metrics"}
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert (await services.metrics.get_metrics()).failure_count == 0

    @pytest.mark.asyncio
    async def test_clear_queue(
        self, client: AsyncClient, mock_redis, api_settings, make_item
    ):
        await mock_redis.lpush(api_settings.DLQ_PENDING_KEY, make_item().to_json())

        response = await client.post(
            "/api/admin/delivery-status", json={"action": "clear_queue"}
        )

        assert response.json()["success"] is True
        assert await mock_redis.llen(api_settings.DLQ_PENDING_KEY) == 0

    @pytest.mark.asyncio
    async def test_retry_dead_letters_not_implemented(self, client: AsyncClient):
        response = await client.post(
            "/api/admin/delivery-status", json={"action": "retry_dead_letters"}
        )

        assert response.status_code == 200
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_action(self, client: AsyncClient):
        response = await client.post(
            "/api/admin/delivery-status", json={"action": "drop_everything"}
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["available_actions"] == [
            "clear_metrics",
            "clear_queue",
            "retry_dead_letters",
        ]

    @pytest.mark.asyncio
    async def test_missing_action(self, client: AsyncClient):
        response = await client.post("/api/admin/delivery-status", json={})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_admin_guard_override(self, app, client: AsyncClient):
        async def deny() -> None:
            raise HTTPException(status_code=403, detail="Forbidden")

        app.dependency_overrides[require_admin] = deny

        response = await client.get("/api/admin/delivery-status")

        assert response.status_code == 403


class TestUninitialized:
    @pytest.mark.asyncio
    async def test_services_missing(self, settings):
        app = create_app(settings=settings)

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get("/api/admin/delivery-status")

        assert response.status_code == 503
