"""Tests for SubmissionRelay."""

import httpx
import pytest

from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.receiver import ReceiverClient
from delivery_queue.relay import SubmissionRelay

PAYLOAD = {"sessionId": "session-1", "data": {"goal": "lose 20lb"}}


def make_relay(mock_redis, settings, response: httpx.Response) -> SubmissionRelay:
    receiver = ReceiverClient(
        settings, transport=httpx.MockTransport(lambda request: response)
    )
    return SubmissionRelay(
        receiver,
        DeadLetterQueue(mock_redis, settings),
        MetricsRecorder(mock_redis, settings),
    )


class TestSubmissionRelay:
    @pytest.mark.asyncio
    async def test_delivered_submission_is_not_queued(self, mock_redis, settings):
        relay = make_relay(mock_redis, settings, httpx.Response(200, json={"success": True}))

        outcome = await relay.submit("rec123", "session-1", PAYLOAD)

        assert outcome.delivered is True
        assert outcome.queued_id == ""
        assert await mock_redis.llen(settings.DLQ_PENDING_KEY) == 0
        assert (await relay.metrics.get_metrics()).success_count == 1

    @pytest.mark.asyncio
    async def test_failed_submission_is_queued(self, mock_redis, settings):
        relay = make_relay(mock_redis, settings, httpx.Response(503, text="Unavailable"))

        outcome = await relay.submit("rec123", "session-1", PAYLOAD)

        assert outcome.delivered is False
        assert outcome.error == "HTTP 503: Unavailable"
        assert outcome.queued_id.startswith("dlq-")
        items = await relay.dlq.stats()
        assert items.queue_depth == 1
        snapshot = await relay.metrics.get_metrics()
        assert snapshot.failure_count == 1
        assert snapshot.last_failure_error == "HTTP 503: Unavailable"

    @pytest.mark.asyncio
    async def test_failure_without_store_reports_not_queued(self, settings):
        receiver = ReceiverClient(
            settings,
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        relay = SubmissionRelay(
            receiver, DeadLetterQueue(None, settings), MetricsRecorder(None, settings)
        )

        outcome = await relay.submit("rec123", "session-1", PAYLOAD)

        assert outcome.delivered is False
        assert outcome.queued_id == ""

    @pytest.mark.asyncio
    async def test_malformed_receiver_url_queues_submission(self, mock_redis, settings):
        settings = settings.model_copy(
            update={"RECEIVER_WEBHOOK_URL": "https://receiver.test:abc/x"}
        )
        relay = make_relay(mock_redis, settings, httpx.Response(200, json={"success": True}))

        outcome = await relay.submit("rec123", "session-1", PAYLOAD)

        assert outcome.delivered is False
        assert outcome.queued_id.startswith("dlq-")
        assert await mock_redis.llen(settings.DLQ_PENDING_KEY) == 1
