"""Append-only ledger of elements that could not be updated.

The ledger is filled batch by batch by the scheduler and turned into the
operation's ReplacementResult when the operation settles:

    updated_count = total - failed_count
    success       = failed_count == 0
    has_warnings  = failed_count > 0 and updated_count > 0
"""

from typing import Iterable, Iterator

import structlog

from stylegov.execution.retry_policy import ErrorType, classify_error, is_permission_error
from stylegov.models.replacement import (
    FailedElement,
    FailureSummary,
    ReplacementOperation,
    ReplacementResult,
)
from stylegov.utils.exceptions import CatastrophicError

logger = structlog.get_logger()


class FailureLedger:
    """Accumulates FailedElement records. Entries are never removed."""

    def __init__(self) -> None:
        self._entries: list[FailedElement] = []
        self._ids: set[str] = set()

    def record(self, failure: FailedElement) -> None:
        """Append one failure.

        Raises:
            CatastrophicError: If the element was already recorded, which
                would mean the scheduler processed it twice.
        """
        if failure.element_id in self._ids:
            raise CatastrophicError(
                f"Element '{failure.element_id}' recorded as failed more than once"
            )
        self._ids.add(failure.element_id)
        self._entries.append(failure)

        logger.warning(
            "Element replacement failed",
            element_id=failure.element_id,
            reason=failure.reason,
            retry_count=failure.retry_count,
        )

    def extend(self, failures: Iterable[FailedElement]) -> None:
        for failure in failures:
            self.record(failure)

    @property
    def entries(self) -> tuple[FailedElement, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FailedElement]:
        return iter(tuple(self._entries))

    def summarize(self) -> FailureSummary:
        """Count failures by classification and collect distinct reasons."""
        counts = {error_type: 0 for error_type in ErrorType}
        messages: list[str] = []

        for failure in self._entries:
            counts[classify_error(RuntimeError(failure.reason))] += 1
            if failure.reason not in messages:
                messages.append(failure.reason)

        return FailureSummary(
            transient=counts[ErrorType.TRANSIENT],
            persistent=counts[ErrorType.PERSISTENT],
            validation=counts[ErrorType.VALIDATION],
            partial=counts[ErrorType.PARTIAL],
            total=len(self._entries),
            messages=tuple(messages),
        )

    def all_permission_failures(self) -> bool:
        """True when there is at least one failure and every one is a permission problem."""
        if not self._entries:
            return False
        return all(
            is_permission_error(RuntimeError(failure.reason)) for failure in self._entries
        )


def aggregate_result(
    operation: ReplacementOperation,
    ledger: FailureLedger,
    duration_ms: int,
) -> ReplacementResult:
    """Build the terminal ReplacementResult for an operation.

    Args:
        operation: The operation being settled.
        ledger: Failures recorded while processing.
        duration_ms: Wall time since the operation started.

    Returns:
        Immutable result.

    Raises:
        CatastrophicError: If the ledger holds more failures than the
            operation had elements.
    """
    total = operation.total
    failed_count = len(ledger)

    if failed_count > total:
        raise CatastrophicError(
            f"Recorded {failed_count} failures for {total} elements",
            checkpoint_title=operation.checkpoint_title,
        )

    updated_count = total - failed_count

    return ReplacementResult(
        operation_id=operation.id,
        operation_type=operation.operation_type,
        success=failed_count == 0,
        updated_count=updated_count,
        failed_count=failed_count,
        failed_elements=ledger.entries,
        checkpoint_title=operation.checkpoint_title,
        duration_ms=max(duration_ms, 0),
        has_warnings=failed_count > 0 and updated_count > 0,
        failure_summary=ledger.summarize() if failed_count else None,
        document_modified=operation.document_modified,
    )
