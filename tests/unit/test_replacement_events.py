"""Tests for the replacement event channel and progress reporting."""

import json

from stylegov.execution.batch_scheduler import BatchOutcome, BatchProcessorState
from stylegov.models.replacement import ErrorKind, FailedElement, OperationType
from stylegov.services.progress_reporter import ProgressReporter, compute_progress
from stylegov.services.replacement_events import (
    FailedElementPayload,
    OperationCompletePayload,
    OperationErrorPayload,
    ProgressPayload,
    ReplacementEventChannel,
    ReplacementEventType,
)


def progress_payload(**overrides) -> ProgressPayload:
    values = dict(
        progress=50,
        current_batch=1,
        total_batches=2,
        current_batch_size=100,
        processed=100,
        failed=0,
    )
    values.update(overrides)
    return ProgressPayload(**values)


class TestReplacementEventChannel:
    """Tests for ReplacementEventChannel."""

    def test_publish_assigns_increasing_sequence(self):
        channel = ReplacementEventChannel()

        first = channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")
        second = channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")

        assert (first.sequence, second.sequence) == (1, 2)
        assert channel.history == (first, second)

    def test_subscribers_see_publication_order(self):
        channel = ReplacementEventChannel()
        received = []
        channel.subscribe(lambda event: received.append(event.payload.progress))

        for progress in (10, 40, 100):
            channel.publish(
                ReplacementEventType.PROGRESS,
                progress_payload(progress=progress),
                "op-1",
                "doc-1",
            )

        assert received == [10, 40, 100]

    def test_failing_subscriber_does_not_block_others(self):
        channel = ReplacementEventChannel()
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")

        assert len(received) == 1

    def test_unsubscribe(self):
        channel = ReplacementEventChannel()
        received = []
        unsubscribe = channel.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")

        assert received == []

    def test_history_can_be_disabled(self):
        channel = ReplacementEventChannel(keep_history=False)
        channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")

        assert channel.history == ()


class TestEventMessages:
    """Tests for the camelCase wire form."""

    def test_progress_message(self):
        channel = ReplacementEventChannel()
        event = channel.publish(ReplacementEventType.PROGRESS, progress_payload(), "op-1", "doc-1")

        message = event.to_message()

        assert message["type"] == "progress"
        assert message["operationId"] == "op-1"
        assert message["documentId"] == "doc-1"
        assert message["payload"] == {
            "state": "processing",
            "progress": 50,
            "currentBatch": 1,
            "totalBatches": 2,
            "currentBatchSize": 100,
            "processed": 100,
            "failed": 0,
        }
        json.dumps(message)

    def test_complete_message_omits_empty_failures(self):
        payload = OperationCompletePayload(
            operation_type=OperationType.TOKEN,
            updated_count=12,
            duration_ms=40,
            has_warnings=False,
        )

        assert payload.to_message() == {
            "operationType": "token",
            "updatedCount": 12,
            "durationMs": 40,
            "hasWarnings": False,
        }

    def test_complete_message_with_failures(self):
        failure = FailedElement(element_id="n1", element_name="Title", reason="Node is locked", retry_count=3)
        payload = OperationCompletePayload(
            operation_type=OperationType.STYLE,
            updated_count=9,
            failed_elements=[FailedElementPayload.from_failed_element(failure)],
            duration_ms=40,
            has_warnings=True,
        )

        assert payload.to_message()["failedElements"] == [
            {"elementId": "n1", "elementName": "Title", "reason": "Node is locked", "retryCount": 3}
        ]

    def test_error_message(self):
        payload = OperationErrorPayload(
            operation_type=OperationType.STYLE,
            error="Checkpoint failed",
            error_type=ErrorKind.CHECKPOINT,
        )

        assert payload.to_message() == {
            "operationType": "style",
            "error": "Checkpoint failed",
            "errorType": "checkpoint",
            "canRollback": False,
        }


class TestProgress:
    """Tests for progress computation and reporting."""

    def test_compute_progress_after_shrink(self):
        """Total batches is re-estimated from the resized batch size."""
        state = BatchProcessorState(
            total=120,
            current_batch_size=25,
            processed=100,
            batch_index=1,
            last_batch_size=100,
        )

        payload = compute_progress(state)

        assert payload.progress == 83
        assert payload.current_batch == 1
        assert payload.total_batches == 2
        assert payload.current_batch_size == 100

    def test_compute_progress_complete(self):
        state = BatchProcessorState(
            total=150,
            current_batch_size=100,
            processed=150,
            batch_index=2,
            last_batch_size=50,
        )

        payload = compute_progress(state)

        assert payload.progress == 100
        assert payload.total_batches == 2

    def test_reporter_publishes_progress(self):
        channel = ReplacementEventChannel()
        reporter = ProgressReporter(channel, "op-1", "doc-1")
        state = BatchProcessorState(
            total=200,
            current_batch_size=100,
            processed=100,
            batch_index=1,
            last_batch_size=100,
        )
        outcome = BatchOutcome(batch_number=1, batch_size=100, succeeded=100, failed=[], duration_ms=3)

        reporter.report(state, outcome)

        events = channel.events_of(ReplacementEventType.PROGRESS)
        assert len(events) == 1
        assert events[0].payload.progress == 50
        assert events[0].document_id == "doc-1"
        assert reporter.reports == 1

