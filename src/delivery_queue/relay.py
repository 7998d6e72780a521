"""Hand-off point for the intake flow."""

from typing import Any

from delivery_queue.dlq import DeadLetterQueue
from delivery_queue.logging import LogEventType, get_logger
from delivery_queue.metrics import MetricsRecorder
from delivery_queue.models import SubmissionOutcome
from delivery_queue.receiver import ReceiverClient

logger = get_logger(__name__)


class SubmissionRelay:
    """Makes the initial delivery attempt and queues the submission on failure.

    Usage:
        outcome = await relay.submit(record_id, session_id, payload)
        # outcome.delivered is False and outcome.queued_id is set when the
        # receiver was down; the retry scheduler takes it from there.
    """

    def __init__(
        self,
        receiver: ReceiverClient,
        dlq: DeadLetterQueue,
        metrics: MetricsRecorder,
    ):
        self.receiver = receiver
        self.dlq = dlq
        self.metrics = metrics

    async def submit(
        self,
        source_record_id: str,
        correlation_id: str,
        payload: dict[str, Any],
    ) -> SubmissionOutcome:
        result = await self.receiver.deliver(payload)

        if result.success:
            await self.metrics.record_success(result.latency_ms)
            return SubmissionOutcome(delivered=True)

        error = result.error_text
        await self.metrics.record_failure(error)
        queued_id = await self.dlq.enqueue(
            source_record_id, correlation_id, payload, error
        )
        logger.warning(
            "Initial delivery failed",
            event_type=LogEventType.DELIVERY_FAILED,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            kind=result.kind.value,
            error=error,
            queued_id=queued_id or None,
        )
        return SubmissionOutcome(delivered=False, queued_id=queued_id, error=error)
