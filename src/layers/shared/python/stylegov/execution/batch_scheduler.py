"""Adaptive batch scheduler for bulk element mutation.

Processes affected elements in batches whose size follows how the host
document is behaving:
- Start at max_batch_size (100)
- Any failure in a batch: drop to min_batch_size (25)
- success_threshold consecutive clean batches: grow by growth_step,
  capped at max_batch_size

Each batch is a synchronization point. Every mutation in it is dispatched
concurrently through batch_retry, and the next batch starts only after all of
them have succeeded or exhausted their retries. Failed elements go to the
FailureLedger; a failing batch never stops the run.
"""

import asyncio
import inspect
import os
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Sequence

import structlog

from stylegov.execution.failure_ledger import FailureLedger
from stylegov.execution.retry_policy import (
    RetryPolicy,
    batch_retry,
    get_retry_policy,
    is_retry_failure,
    normalize_error,
)
from stylegov.models.replacement import FailedElement
from stylegov.utils.exceptions import CatastrophicError, ElementMutationError

logger = structlog.get_logger()

MutationFn = Callable[[str], Awaitable[Any]]

BATCH_SIZE_FLOOR = 25
BATCH_SIZE_CEILING = 100


@dataclass
class BatchSchedulerConfig:
    """Batch sizing configuration."""

    initial_batch_size: int = 100
    min_batch_size: int = 25
    max_batch_size: int = 100
    success_threshold: int = 5  # Clean batches before growing
    growth_step: int = 25

    def __post_init__(self) -> None:
        if not (
            BATCH_SIZE_FLOOR
            <= self.min_batch_size
            <= self.initial_batch_size
            <= self.max_batch_size
            <= BATCH_SIZE_CEILING
        ):
            raise ValueError(
                f"Batch sizes must satisfy {BATCH_SIZE_FLOOR} <= min <= initial <= max "
                f"<= {BATCH_SIZE_CEILING}, got "
                f"{self.min_batch_size}/{self.initial_batch_size}/{self.max_batch_size}"
            )
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be at least 1")
        if self.growth_step < 1:
            raise ValueError("growth_step must be at least 1")

    @classmethod
    def from_env(cls) -> "BatchSchedulerConfig":
        """Build a config from STYLEGOV_BATCH_* environment variables."""
        defaults = cls()
        return cls(
            initial_batch_size=int(
                os.environ.get("STYLEGOV_BATCH_INITIAL_SIZE", defaults.initial_batch_size)
            ),
            min_batch_size=int(
                os.environ.get("STYLEGOV_BATCH_MIN_SIZE", defaults.min_batch_size)
            ),
            max_batch_size=int(
                os.environ.get("STYLEGOV_BATCH_MAX_SIZE", defaults.max_batch_size)
            ),
            success_threshold=int(
                os.environ.get("STYLEGOV_BATCH_SUCCESS_THRESHOLD", defaults.success_threshold)
            ),
            growth_step=int(
                os.environ.get("STYLEGOV_BATCH_GROWTH_STEP", defaults.growth_step)
            ),
        )


@dataclass
class BatchProcessorState:
    """Progress cursor owned by the scheduler.

    processed + remaining == total holds at every batch boundary, and
    current_batch_size only changes between batches.
    """

    total: int
    current_batch_size: int
    consecutive_successes: int = 0
    processed: int = 0
    batch_index: int = 0
    last_batch_size: int = 0
    failures: FailureLedger = field(default_factory=FailureLedger)

    @property
    def remaining(self) -> int:
        return self.total - self.processed

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def updated_count(self) -> int:
        return self.processed - self.failed_count


@dataclass
class BatchOutcome:
    """Result of a single batch."""

    batch_number: int
    batch_size: int
    succeeded: int
    failed: list[FailedElement]
    duration_ms: int

    @property
    def failed_count(self) -> int:
        return len(self.failed)


BatchHook = Callable[[BatchProcessorState, BatchOutcome], Any]


class AdaptiveBatchScheduler:
    """Drives a sequence of element ids to completion in adaptive batches.

    Example:
        scheduler = AdaptiveBatchScheduler(on_batch_complete=reporter.report)

        state = await scheduler.run(
            element_ids,
            lambda element_id: applier.apply_replacement(element_id, src, dst),
        )
        print(state.failed_count)
    """

    def __init__(
        self,
        config: BatchSchedulerConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        ledger: FailureLedger | None = None,
        on_batch_complete: BatchHook | None = None,
        element_name: Callable[[str], str] | None = None,
    ):
        """Initialize the scheduler.

        Args:
            config: Batch sizing configuration.
            retry_policy: Policy applied to every element mutation.
            ledger: Ledger receiving failures. A new one is created if omitted.
            on_batch_complete: Called (sync or async) after every batch with
                the updated state and the batch outcome.
            element_name: Maps an element id to a display name for failures.
        """
        self.config = config or BatchSchedulerConfig()
        self.retry_policy = retry_policy or get_retry_policy()
        self.ledger = ledger if ledger is not None else FailureLedger()
        self.on_batch_complete = on_batch_complete
        self.element_name = element_name or (lambda element_id: element_id)
        self.state = BatchProcessorState(
            total=0,
            current_batch_size=self.config.initial_batch_size,
            failures=self.ledger,
        )
        self.logger = logger.bind(service="batch_scheduler")

    @property
    def current_batch_size(self) -> int:
        return self.state.current_batch_size

    @property
    def consecutive_successes(self) -> int:
        return self.state.consecutive_successes

    def reset(self) -> None:
        """Reset sizing and counters. The ledger is replaced, not cleared."""
        self.ledger = FailureLedger()
        self.state = BatchProcessorState(
            total=0,
            current_batch_size=self.config.initial_batch_size,
            failures=self.ledger,
        )

    async def run(
        self,
        element_ids: Sequence[str],
        mutate: MutationFn,
    ) -> BatchProcessorState:
        """Process every element in order.

        Args:
            element_ids: Ordered, duplicate-free element ids.
            mutate: Async callable applying the change to one element. It may
                raise, or return False or a reason string, to signal failure.

        Returns:
            Final scheduler state.

        Raises:
            CatastrophicError: On an internal invariant violation or when the
                mutation raised CatastrophicError.
        """
        element_ids = tuple(element_ids)
        self.state.total = len(element_ids)

        self.logger.info(
            "Starting batch processing",
            total=self.state.total,
            initial_batch_size=self.state.current_batch_size,
        )

        while self.state.remaining > 0:
            start = self.state.processed
            batch = element_ids[start:start + self.state.current_batch_size]
            self.state.batch_index += 1

            self.logger.debug(
                "Processing batch",
                batch=self.state.batch_index,
                batch_size=len(batch),
                processed=self.state.processed,
                total=self.state.total,
            )

            outcome = await self._process_batch(batch, mutate, self.state.batch_index)

            self.ledger.extend(outcome.failed)
            self.state.processed += outcome.batch_size
            self.state.last_batch_size = outcome.batch_size
            self._check_invariants()
            self._adapt_batch_size(outcome)

            if self.on_batch_complete is not None:
                hook_result = self.on_batch_complete(self.state, outcome)
                if inspect.isawaitable(hook_result):
                    await hook_result

            # Let other tasks run between batches
            await asyncio.sleep(0)

        self.logger.info(
            "Batch processing complete",
            batches=self.state.batch_index,
            updated=self.state.updated_count,
            failed=self.state.failed_count,
            final_batch_size=self.state.current_batch_size,
        )

        return self.state

    async def _process_batch(
        self,
        batch: Sequence[str],
        mutate: MutationFn,
        batch_number: int,
    ) -> BatchOutcome:
        started = time.monotonic()

        units = [partial(self._mutate_one, mutate, element_id) for element_id in batch]
        results = await batch_retry(units, self.retry_policy)

        if len(results) != len(batch):
            raise CatastrophicError(
                f"Batch {batch_number} returned {len(results)} results for {len(batch)} elements"
            )

        failed: list[FailedElement] = []
        for element_id, result in zip(batch, results):
            if is_retry_failure(result):
                error = ElementMutationError(
                    element_id, result.reason or result.error, result.attempts
                )
                failed.append(FailedElement.from_error(error, self.element_name(element_id)))

        return BatchOutcome(
            batch_number=batch_number,
            batch_size=len(batch),
            succeeded=len(batch) - len(failed),
            failed=failed,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    @staticmethod
    async def _mutate_one(mutate: MutationFn, element_id: str) -> Any:
        result = await mutate(element_id)
        if result is False or isinstance(result, str):
            raise normalize_error(result)
        return result

    def _check_invariants(self) -> None:
        state = self.state
        if state.processed > state.total or state.failed_count > state.processed:
            raise CatastrophicError(
                f"Batch cursor out of range: processed={state.processed} "
                f"failed={state.failed_count} total={state.total}"
            )

    def _adapt_batch_size(self, outcome: BatchOutcome) -> None:
        """Resize the next batch from this batch's outcome."""
        state = self.state
        old_size = state.current_batch_size

        if outcome.failed_count > 0:
            state.current_batch_size = self.config.min_batch_size
            state.consecutive_successes = 0

            self.logger.info(
                "Batch errors detected, reducing batch size",
                batch=outcome.batch_number,
                failed=outcome.failed_count,
                old_size=old_size,
                new_size=state.current_batch_size,
            )
            return

        state.consecutive_successes += 1

        if (
            state.consecutive_successes >= self.config.success_threshold
            and state.current_batch_size < self.config.max_batch_size
        ):
            state.current_batch_size = min(
                state.current_batch_size + self.config.growth_step,
                self.config.max_batch_size,
            )
            state.consecutive_successes = 0

            self.logger.info(
                "Consecutive successful batches, increasing batch size",
                threshold=self.config.success_threshold,
                old_size=old_size,
                new_size=state.current_batch_size,
            )
