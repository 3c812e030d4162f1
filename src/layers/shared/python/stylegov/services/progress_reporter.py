"""Batch-boundary progress reporting.

Progress is derived from the scheduler's state after each batch, never per
element, so a 25,000-element replacement produces hundreds of progress events
rather than tens of thousands.
"""

import math

import structlog

from stylegov.execution.batch_scheduler import BatchOutcome, BatchProcessorState
from stylegov.services.replacement_events import (
    ProgressPayload,
    ReplacementEventChannel,
    ReplacementEventType,
)

logger = structlog.get_logger()


def compute_progress(state: BatchProcessorState) -> ProgressPayload:
    """Project scheduler state into a progress payload.

    total_batches is an estimate: batches already run plus the batches needed
    for the remaining elements at the current (possibly resized) batch size.

    Args:
        state: Scheduler state at a batch boundary.

    Returns:
        ProgressPayload.
    """
    if state.total > 0:
        percent = math.floor(state.processed / state.total * 100)
    else:
        percent = 100

    remaining_batches = math.ceil(state.remaining / state.current_batch_size)

    return ProgressPayload(
        progress=percent,
        current_batch=state.batch_index,
        total_batches=state.batch_index + remaining_batches,
        current_batch_size=state.last_batch_size,
        processed=state.processed,
        failed=state.failed_count,
    )


class ProgressReporter:
    """Publishes a progress event for every completed batch."""

    def __init__(
        self,
        channel: ReplacementEventChannel,
        operation_id: str,
        document_id: str,
    ):
        self.channel = channel
        self.operation_id = operation_id
        self.document_id = document_id
        self.reports = 0
        self.logger = logger.bind(service="progress_reporter", operation_id=operation_id)

    def report(self, state: BatchProcessorState, outcome: BatchOutcome) -> ProgressPayload:
        """Batch hook for AdaptiveBatchScheduler."""
        payload = compute_progress(state)
        self.reports += 1

        self.logger.debug(
            "Batch progress",
            batch=outcome.batch_number,
            progress=payload.progress,
            processed=payload.processed,
            failed=payload.failed,
        )

        self.channel.publish(
            ReplacementEventType.PROGRESS,
            payload,
            operation_id=self.operation_id,
            document_id=self.document_id,
        )
        return payload
