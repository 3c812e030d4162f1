"""Replacement engine for style and token governance.

Replaces one assignment with another across every affected element, with
safety guarantees:
- A version history checkpoint is created before the first mutation
- Elements are updated in adaptive batches (100 -> 25 -> back up)
- Each element mutation is retried with backoff
- Every element is accounted for as updated or failed

State machine:
    idle -> validating -> creating_checkpoint -> processing -> complete
                 |                |                  |
                 +--------------> error <-----------+
    complete -> idle, error -> idle

There is no cancelled state. Cancellation is honored only while validating,
before anything has touched the document.

Usage:
    engine = ReplacementEngine(checkpoints, applier, resolver)
    engine.on_event(lambda event: send_to_ui(event.to_message()))

    result = await engine.replace_style("S:old", "S:new", affected_ids)
    if engine.state == ReplacementState.COMPLETE:
        print(result.updated_count, result.has_warnings)
    engine.reset()
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable, Sequence

import structlog

from stylegov.execution.batch_scheduler import AdaptiveBatchScheduler, BatchSchedulerConfig
from stylegov.execution.failure_ledger import FailureLedger, aggregate_result
from stylegov.execution.retry_policy import RetryPolicy, describe_error, get_retry_policy
from stylegov.integrations.ports import AssignmentResolver, CheckpointProvider, MutationApplier
from stylegov.models.base import utc_now
from stylegov.models.replacement import (
    TERMINAL_STATES,
    Checkpoint,
    ErrorKind,
    OperationType,
    ReplacementOperation,
    ReplacementRequest,
    ReplacementResult,
    ReplacementState,
    can_transition,
)
from stylegov.services.operation_lock import DocumentLockRegistry, get_document_lock_registry
from stylegov.services.progress_reporter import ProgressReporter
from stylegov.services.replacement_events import (
    CheckpointCreatedPayload,
    FailedElementPayload,
    OperationCompletePayload,
    OperationErrorPayload,
    OperationStartedPayload,
    ReplacementEvent,
    ReplacementEventChannel,
    ReplacementEventType,
)
from stylegov.utils.error_messages import format_error_message
from stylegov.utils.exceptions import (
    CatastrophicError,
    CheckpointError,
    InvalidTransitionError,
    ValidationError,
)

logger = structlog.get_logger()

CHECKPOINT_OPERATION_NAMES = {
    OperationType.STYLE: "Style Replacement",
    OperationType.TOKEN: "Token Replacement",
}

UNRESOLVED_CODES = {
    OperationType.STYLE: "INVALID_STYLE_ID",
    OperationType.TOKEN: "TOKEN_NOT_FOUND",
}

StateChangeCallback = Callable[[ReplacementState, ReplacementState], Any]


def build_checkpoint_title(operation_type: OperationType, now: datetime | None = None) -> str:
    """Checkpoint title such as "Style Replacement - 2026-10-16 09:30:00"."""
    now = now or utc_now()
    return f"{CHECKPOINT_OPERATION_NAMES[operation_type]} - {now:%Y-%m-%d %H:%M:%S}"


@dataclass
class ReplacementConfig:
    """Configuration for a ReplacementEngine."""

    scheduler: BatchSchedulerConfig = field(default_factory=BatchSchedulerConfig)
    retry_policy: RetryPolicy = field(default_factory=get_retry_policy)

    @classmethod
    def from_env(cls) -> "ReplacementConfig":
        return cls(
            scheduler=BatchSchedulerConfig.from_env(),
            retry_policy=RetryPolicy.from_env(),
        )


class ReplacementEngine:
    """Runs one replacement operation at a time through its lifecycle.

    Business failures (validation, checkpoint, processing) settle the engine
    into the error state and are reported through the returned result and the
    event stream. Programming errors, such as starting an operation while one
    is active, raise StyleGovError subclasses.
    """

    def __init__(
        self,
        checkpoint_provider: CheckpointProvider,
        mutation_applier: MutationApplier,
        resolver: AssignmentResolver | None = None,
        config: ReplacementConfig | None = None,
        channel: ReplacementEventChannel | None = None,
        lock_registry: DocumentLockRegistry | None = None,
    ):
        """Initialize the engine.

        Args:
            checkpoint_provider: Creates the pre-mutation snapshot.
            mutation_applier: Applies the replacement to one element.
            resolver: Confirms source/target ids exist. Without one, only
                blank ids are rejected.
            config: Batch and retry configuration.
            channel: Event channel. A new one is created if omitted.
            lock_registry: Per-document lock registry. Defaults to the
                process-wide registry.
        """
        self.checkpoint_provider = checkpoint_provider
        self.mutation_applier = mutation_applier
        self.resolver = resolver
        self.config = config or ReplacementConfig()
        self.channel = channel or ReplacementEventChannel()
        self.lock_registry = lock_registry or get_document_lock_registry()

        self._state = ReplacementState.IDLE
        self._operation: ReplacementOperation | None = None
        self._result: ReplacementResult | None = None
        self._scheduler: AdaptiveBatchScheduler | None = None
        self._state_callbacks: list[StateChangeCallback] = []
        self._cancel_requested = False
        self.logger = logger.bind(service="replacement_engine")

    # ------------------------------------------------------------------
    # Queries and subscriptions
    # ------------------------------------------------------------------

    @property
    def state(self) -> ReplacementState:
        return self._state

    @property
    def operation(self) -> ReplacementOperation | None:
        return self._operation

    @property
    def result(self) -> ReplacementResult | None:
        return self._result

    @property
    def current_batch_size(self) -> int | None:
        return self._scheduler.current_batch_size if self._scheduler else None

    def can_cancel(self) -> bool:
        """Cancellation is only possible before the checkpoint exists."""
        return self._state in (ReplacementState.IDLE, ReplacementState.VALIDATING)

    def on_event(self, callback: Callable[[ReplacementEvent], Any]) -> Callable[[], None]:
        """Subscribe to every replacement event. Returns an unsubscribe function."""
        return self.channel.subscribe(callback)

    def on_progress(self, callback: Callable[[ReplacementEvent], Any]) -> Callable[[], None]:
        """Subscribe to progress events only."""

        def progress_only(event: ReplacementEvent) -> None:
            if event.type == ReplacementEventType.PROGRESS:
                callback(event)

        return self.channel.subscribe(progress_only)

    def on_state_change(self, callback: StateChangeCallback) -> Callable[[], None]:
        """Subscribe to lifecycle transitions as callback(old_state, new_state)."""
        self._state_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._state_callbacks:
                self._state_callbacks.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def replace_style(
        self,
        source_style_id: str,
        target_style_id: str,
        affected_element_ids: Sequence[str],
        document_id: str = "default",
        element_names: dict[str, str] | None = None,
    ) -> ReplacementResult | None:
        """Replace a named style across affected elements."""
        return await self.run(
            ReplacementRequest(
                operation_type=OperationType.STYLE,
                source_id=source_style_id,
                target_id=target_style_id,
                affected_element_ids=tuple(affected_element_ids),
                document_id=document_id,
                element_names=element_names or {},
            )
        )

    async def replace_token(
        self,
        source_token_id: str,
        target_token_id: str,
        affected_element_ids: Sequence[str],
        document_id: str = "default",
        element_names: dict[str, str] | None = None,
    ) -> ReplacementResult | None:
        """Replace a design token across affected elements."""
        return await self.run(
            ReplacementRequest(
                operation_type=OperationType.TOKEN,
                source_id=source_token_id,
                target_id=target_token_id,
                affected_element_ids=tuple(affected_element_ids),
                document_id=document_id,
                element_names=element_names or {},
            )
        )

    async def run(self, request: ReplacementRequest) -> ReplacementResult | None:
        """Drive a replacement request to a terminal state.

        Args:
            request: What to replace, and where.

        Returns:
            The ReplacementResult (also available as ``engine.result``), or
            None if the operation was cancelled during validation.

        Raises:
            InvalidTransitionError: If this engine is not idle.
            OperationInProgressError: If the document has another active
                operation.
        """
        if not can_transition(self._state, ReplacementState.VALIDATING):
            self.logger.warning(
                "Rejected replacement start",
                state=self._state.value,
            )
            raise InvalidTransitionError(self._state.value, ReplacementState.VALIDATING.value)

        operation = ReplacementOperation.from_request(request)
        self.lock_registry.acquire(operation.document_id, operation.id)

        self._operation = operation
        self._result = None
        self._scheduler = None
        self._cancel_requested = False

        try:
            return await self._drive(operation)
        finally:
            self.lock_registry.release(operation.document_id, operation.id)

    def cancel(self) -> bool:
        """Request cancellation.

        Honored only while validating, where it returns the engine to idle
        with no side effects. Returns False once a checkpoint may exist.
        """
        if self._state == ReplacementState.IDLE:
            return True
        if self._state == ReplacementState.VALIDATING:
            self._cancel_requested = True
            self.logger.info("Cancellation requested during validation")
            return True

        self.logger.warning(
            "Cancellation refused after checkpoint",
            state=self._state.value,
        )
        return False

    def notify_document_changed(self) -> None:
        """Record that the host document changed while an operation was active.

        The operation keeps running on the element ids captured at
        validation; the flag is carried on the result so the caller can
        re-run the audit.
        """
        if self._operation is None or self._state not in (
            ReplacementState.VALIDATING,
            ReplacementState.CREATING_CHECKPOINT,
            ReplacementState.PROCESSING,
        ):
            return

        if not self._operation.document_modified:
            self.logger.warning(
                "Document modified during replacement",
                operation_id=self._operation.id,
                state=self._state.value,
            )
        self._operation.document_modified = True

    def reset(self) -> None:
        """Acknowledge a terminal outcome and return to idle."""
        self._transition(ReplacementState.IDLE)
        self._operation = None
        self._result = None
        self._scheduler = None

    def dispose(self) -> None:
        """Drop subscriptions and return a settled engine to idle."""
        if self._state in TERMINAL_STATES:
            self.reset()
        elif self._state != ReplacementState.IDLE:
            raise InvalidTransitionError(self._state.value, ReplacementState.IDLE.value)

        self._state_callbacks.clear()
        self.channel = ReplacementEventChannel(keep_history=self.channel.keep_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _drive(self, operation: ReplacementOperation) -> ReplacementResult | None:
        started = time.monotonic()
        operation.started_at = utc_now()
        log = self.logger.bind(
            operation_id=operation.id,
            operation_type=operation.operation_type.value,
            document_id=operation.document_id,
        )

        # Validating
        self._transition(ReplacementState.VALIDATING)
        self._publish(
            ReplacementEventType.OPERATION_STARTED,
            OperationStartedPayload(
                operation_type=operation.operation_type,
                source_id=operation.source_id,
                target_id=operation.target_id,
                affected_count=operation.total,
            ),
        )

        validation_error = None
        try:
            await self._validate(operation)
        except ValidationError as e:
            validation_error = e

        # A cancel accepted while validating wins over the validation outcome
        if self._cancel_requested:
            log.info("Replacement cancelled before checkpoint")
            self._cancel_to_idle()
            return None

        if validation_error is not None:
            log.warning("Replacement validation failed", error=validation_error.message)
            return self._settle_error(
                operation, ErrorKind.VALIDATION, validation_error.message, started
            )

        # Creating checkpoint
        self._transition(ReplacementState.CREATING_CHECKPOINT)
        title = build_checkpoint_title(operation.operation_type)

        try:
            checkpoint = await self.checkpoint_provider.create_checkpoint(title)
            if isinstance(checkpoint, Mapping):
                checkpoint = Checkpoint.model_validate(checkpoint)
            if not isinstance(checkpoint, Checkpoint):
                raise CheckpointError(title, "provider returned no checkpoint")
        except Exception as e:
            error = e if isinstance(e, CheckpointError) else CheckpointError(title, describe_error(e))
            log.error("Checkpoint creation failed", title=title, error=error.message)
            message = format_error_message(
                "CHECKPOINT_FAILED", error.details.get("original_error")
            )
            return self._settle_error(operation, ErrorKind.CHECKPOINT, message, started)

        operation.checkpoint = checkpoint
        log.info("Created version checkpoint", title=checkpoint.title)
        self._publish(
            ReplacementEventType.CHECKPOINT_CREATED,
            CheckpointCreatedPayload(title=checkpoint.title, timestamp=checkpoint.timestamp),
        )

        # Processing
        self._transition(ReplacementState.PROCESSING)
        ledger = FailureLedger()
        reporter = ProgressReporter(self.channel, operation.id, operation.document_id)
        self._scheduler = AdaptiveBatchScheduler(
            config=self.config.scheduler,
            retry_policy=self.config.retry_policy,
            ledger=ledger,
            on_batch_complete=reporter.report,
            element_name=operation.element_name,
        )

        try:
            await self._scheduler.run(
                operation.affected_element_ids,
                partial(self._apply, operation),
            )
            result = aggregate_result(operation, ledger, self._elapsed_ms(started))
        except Exception as e:
            error = e if isinstance(e, CatastrophicError) else CatastrophicError(describe_error(e))
            log.error(
                "Replacement aborted by internal error",
                error=error.message,
                checkpoint=checkpoint.title,
                processed=self._scheduler.state.processed,
            )
            message = (
                f"{format_error_message('REPLACEMENT_FAILED', error.message)} "
                f"Checkpoint: '{checkpoint.title}'."
            )
            return self._settle_error(
                operation,
                ErrorKind.PROCESSING,
                message,
                started,
                ledger=ledger,
                updated_count=self._scheduler.state.updated_count,
            )

        if result.failed_count > 0 and result.updated_count == 0:
            kind = ErrorKind.PERMISSION if ledger.all_permission_failures() else ErrorKind.PROCESSING
            code = "PERMISSION_DENIED" if kind == ErrorKind.PERMISSION else "REPLACEMENT_FAILED"
            message = (
                f"{format_error_message(code, f'all {result.failed_count} elements failed')} "
                f"Checkpoint: '{checkpoint.title}'."
            )
            log.error("Replacement failed for every element", failed=result.failed_count)
            return self._settle_error(
                operation, kind, message, started, ledger=ledger, updated_count=0
            )

        return self._settle_complete(operation, result, log)

    async def _validate(self, operation: ReplacementOperation) -> None:
        element_ids = operation.affected_element_ids

        if not element_ids:
            raise ValidationError(
                format_error_message("EMPTY_SELECTION"),
                error_code="EMPTY_SELECTION",
                field="affected_element_ids",
            )

        if len(set(element_ids)) != len(element_ids):
            raise ValidationError(
                format_error_message("DUPLICATE_ELEMENTS"),
                error_code="DUPLICATE_ELEMENTS",
                field="affected_element_ids",
            )

        code = UNRESOLVED_CODES[operation.operation_type]
        for field_name, assignment_id in (
            ("source_id", operation.source_id),
            ("target_id", operation.target_id),
        ):
            if not assignment_id or not assignment_id.strip():
                raise ValidationError(
                    format_error_message(code, f"{field_name} is empty"),
                    error_code=code,
                    field=field_name,
                )

        if operation.source_id == operation.target_id:
            raise ValidationError(
                format_error_message("SAME_SOURCE_TARGET"),
                error_code="SAME_SOURCE_TARGET",
                field="target_id",
            )

        if self.resolver is None:
            return

        for field_name, assignment_id in (
            ("source_id", operation.source_id),
            ("target_id", operation.target_id),
        ):
            try:
                resolved = await self.resolver.resolve(assignment_id, operation.operation_type)
            except Exception as e:
                raise ValidationError(
                    format_error_message(code, f"{assignment_id}: {describe_error(e)}"),
                    error_code=code,
                    field=field_name,
                ) from e

            if not resolved:
                raise ValidationError(
                    format_error_message(code, assignment_id),
                    error_code=code,
                    field=field_name,
                )

    async def _apply(self, operation: ReplacementOperation, element_id: str) -> Any:
        return await self.mutation_applier.apply_replacement(
            element_id, operation.source_id, operation.target_id
        )

    def _settle_complete(
        self,
        operation: ReplacementOperation,
        result: ReplacementResult,
        log: Any,
    ) -> ReplacementResult:
        self._result = result
        operation.completed_at = utc_now()
        self._transition(ReplacementState.COMPLETE)

        if result.has_warnings:
            log.warning(
                "Replacement completed with warnings",
                updated=result.updated_count,
                failed=result.failed_count,
                checkpoint=result.checkpoint_title,
            )
        else:
            log.info(
                "Replacement complete",
                updated=result.updated_count,
                duration_ms=result.duration_ms,
                checkpoint=result.checkpoint_title,
            )

        self._publish(
            ReplacementEventType.OPERATION_COMPLETE,
            OperationCompletePayload(
                operation_type=operation.operation_type,
                updated_count=result.updated_count,
                failed_elements=[
                    FailedElementPayload.from_failed_element(failure)
                    for failure in result.failed_elements
                ] or None,
                duration_ms=result.duration_ms,
                has_warnings=result.has_warnings,
            ),
        )
        return result

    def _settle_error(
        self,
        operation: ReplacementOperation,
        kind: ErrorKind,
        message: str,
        started: float,
        ledger: FailureLedger | None = None,
        updated_count: int = 0,
    ) -> ReplacementResult:
        ledger = ledger if ledger is not None else FailureLedger()
        operation.error_kind = kind
        operation.error_message = message
        operation.completed_at = utc_now()

        result = ReplacementResult(
            operation_id=operation.id,
            operation_type=operation.operation_type,
            success=False,
            updated_count=updated_count,
            failed_count=len(ledger),
            failed_elements=ledger.entries,
            checkpoint_title=operation.checkpoint_title,
            duration_ms=self._elapsed_ms(started),
            has_warnings=False,
            failure_summary=ledger.summarize() if len(ledger) else None,
            document_modified=operation.document_modified,
            error_kind=kind,
            error_message=message,
        )
        self._result = result
        self._transition(ReplacementState.ERROR)

        self._publish(
            ReplacementEventType.OPERATION_ERROR,
            OperationErrorPayload(
                operation_type=operation.operation_type,
                error=message,
                error_type=kind,
                checkpoint_title=operation.checkpoint_title,
                can_rollback=operation.checkpoint is not None,
            ),
        )
        return result

    def _transition(self, new_state: ReplacementState) -> None:
        """Move to a new state, rejecting anything the lifecycle does not allow."""
        if not can_transition(self._state, new_state):
            self.logger.warning(
                "Rejected state transition",
                old_state=self._state.value,
                new_state=new_state.value,
            )
            raise InvalidTransitionError(self._state.value, new_state.value)

        self._set_state(new_state)

    def _cancel_to_idle(self) -> None:
        # validating -> idle is reserved for cancellation
        self._set_state(ReplacementState.IDLE)
        self._operation = None
        self._cancel_requested = False

    def _set_state(self, new_state: ReplacementState) -> None:
        old_state = self._state
        self._state = new_state
        if self._operation is not None:
            self._operation.state = new_state

        self.logger.info(
            "Replacement state transition",
            old_state=old_state.value,
            new_state=new_state.value,
        )

        for callback in list(self._state_callbacks):
            try:
                callback(old_state, new_state)
            except Exception as e:
                self.logger.warning("State change callback failed", error=str(e))

    def _publish(self, event_type: ReplacementEventType, payload: Any) -> ReplacementEvent:
        operation = self._operation
        return self.channel.publish(
            event_type,
            payload,
            operation_id=operation.id if operation else "",
            document_id=operation.document_id if operation else "",
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
