"""Replacement event stream.

Every replacement publishes an ordered stream of events that a presentation
layer consumes:

    operation-started -> checkpoint-created -> progress* -> operation-complete
                      \\-> operation-error (from any step)

Events go through a ReplacementEventChannel owned by the engine. Subscribers
are plain callables.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import structlog

from stylegov.models.base import CamelModel
from stylegov.models.replacement import ErrorKind, FailedElement, OperationType

logger = structlog.get_logger()


class ReplacementEventType(str, Enum):
    """Replacement event types."""

    OPERATION_STARTED = "operation-started"
    CHECKPOINT_CREATED = "checkpoint-created"
    PROGRESS = "progress"
    OPERATION_COMPLETE = "operation-complete"
    OPERATION_ERROR = "operation-error"


class OperationStartedPayload(CamelModel):
    operation_type: OperationType
    state: str = "validating"
    source_id: str
    target_id: str
    affected_count: int


class CheckpointCreatedPayload(CamelModel):
    title: str
    timestamp: datetime


class ProgressPayload(CamelModel):
    state: str = "processing"
    progress: int
    current_batch: int
    total_batches: int
    current_batch_size: int
    processed: int
    failed: int


class FailedElementPayload(CamelModel):
    element_id: str
    element_name: str
    reason: str
    retry_count: int

    @classmethod
    def from_failed_element(cls, failure: FailedElement) -> "FailedElementPayload":
        return cls(
            element_id=failure.element_id,
            element_name=failure.element_name,
            reason=failure.reason,
            retry_count=failure.retry_count,
        )


class OperationCompletePayload(CamelModel):
    operation_type: OperationType
    updated_count: int
    failed_elements: list[FailedElementPayload] | None = None
    duration_ms: int
    has_warnings: bool


class OperationErrorPayload(CamelModel):
    operation_type: OperationType
    error: str
    error_type: ErrorKind
    checkpoint_title: str | None = None
    can_rollback: bool = False
    details: str | None = None


@dataclass(frozen=True)
class ReplacementEvent:
    """One event in an operation's stream."""

    type: ReplacementEventType
    operation_id: str
    document_id: str
    sequence: int
    payload: CamelModel
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_message(self) -> dict[str, Any]:
        """Wire form consumed by the presentation layer."""
        return {
            "type": self.type.value,
            "operationId": self.operation_id,
            "documentId": self.document_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "payload": self.payload.to_message(),
        }


Subscriber = Callable[[ReplacementEvent], Any]


class ReplacementEventChannel:
    """Ordered publish/subscribe channel for replacement events.

    Subscribers are called synchronously in subscription order, so every
    subscriber sees events in publication order. A failing subscriber is
    logged and does not affect the others or the operation.
    """

    def __init__(self, keep_history: bool = True):
        self._subscribers: list[Subscriber] = []
        self._history: list[ReplacementEvent] = []
        self._sequence = 0
        self.keep_history = keep_history
        self.logger = logger.bind(service="replacement_events")

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(
        self,
        event_type: ReplacementEventType,
        payload: CamelModel,
        operation_id: str,
        document_id: str,
    ) -> ReplacementEvent:
        """Publish an event to every subscriber."""
        self._sequence += 1
        event = ReplacementEvent(
            type=event_type,
            operation_id=operation_id,
            document_id=document_id,
            sequence=self._sequence,
            payload=payload,
        )

        if self.keep_history:
            self._history.append(event)

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                self.logger.warning(
                    "Replacement event subscriber failed",
                    event_type=event_type.value,
                    operation_id=operation_id,
                    error=str(e),
                )

        return event

    @property
    def history(self) -> tuple[ReplacementEvent, ...]:
        return tuple(self._history)

    def events_of(self, event_type: ReplacementEventType) -> list[ReplacementEvent]:
        return [event for event in self._history if event.type == event_type]

    def clear_history(self) -> None:
        self._history.clear()

