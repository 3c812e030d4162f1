"""Tests for the failure ledger and result aggregation."""

import pytest

from stylegov.execution.failure_ledger import FailureLedger, aggregate_result
from stylegov.models.base import utc_now
from stylegov.models.replacement import (
    Checkpoint,
    FailedElement,
    OperationType,
    ReplacementOperation,
)
from stylegov.utils.exceptions import CatastrophicError


def make_failure(element_id: str, reason: str = "Node is locked") -> FailedElement:
    return FailedElement(
        element_id=element_id,
        element_name=f"Layer {element_id}",
        reason=reason,
        retry_count=3,
    )


@pytest.fixture
def operation():
    """Create a 10-element operation with a checkpoint."""
    return ReplacementOperation(
        operation_type=OperationType.STYLE,
        source_id="S:primary",
        target_id="S:brand",
        affected_element_ids=[f"node-{i}" for i in range(10)],
        checkpoint=Checkpoint(title="Style Replacement - 2026-10-16 09:30:00", timestamp=utc_now()),
    )


class TestFailureLedger:
    """Tests for FailureLedger."""

    def test_records_in_order(self):
        ledger = FailureLedger()
        ledger.extend([make_failure("b"), make_failure("a")])

        assert len(ledger) == 2
        assert [failure.element_id for failure in ledger] == ["b", "a"]

    def test_rejects_duplicate_element(self):
        """An element can only fail once per operation."""
        ledger = FailureLedger()
        ledger.record(make_failure("a"))

        with pytest.raises(CatastrophicError):
            ledger.record(make_failure("a", reason="again"))

        assert len(ledger) == 1

    def test_entries_is_a_snapshot(self):
        ledger = FailureLedger()
        entries = ledger.entries
        ledger.record(make_failure("a"))

        assert entries == ()

    def test_summarize_groups_by_classification(self):
        ledger = FailureLedger()
        ledger.extend(
            [
                make_failure("a", "Request timeout"),
                make_failure("b", "Node is locked"),
                make_failure("c", "Node is locked"),
                make_failure("d", "Style not found"),
                make_failure("e", "Permission denied"),
            ]
        )

        summary = ledger.summarize()

        assert summary.transient == 1
        assert summary.partial == 2
        assert summary.validation == 1
        assert summary.persistent == 1
        assert summary.total == 5
        assert summary.messages == (
            "Request timeout",
            "Node is locked",
            "Style not found",
            "Permission denied",
        )

    def test_all_permission_failures(self):
        ledger = FailureLedger()
        assert ledger.all_permission_failures() is False

        ledger.extend([make_failure("a", "Permission denied"), make_failure("b", "Forbidden")])
        assert ledger.all_permission_failures() is True

        ledger.record(make_failure("c", "Node is locked"))
        assert ledger.all_permission_failures() is False


class TestAggregateResult:
    """Tests for aggregate_result."""

    def test_clean_run(self, operation):
        result = aggregate_result(operation, FailureLedger(), duration_ms=1200)

        assert result.success is True
        assert result.updated_count == 10
        assert result.failed_count == 0
        assert result.has_warnings is False
        assert result.failure_summary is None
        assert result.checkpoint_title == "Style Replacement - 2026-10-16 09:30:00"
        assert result.duration_ms == 1200

    def test_partial_failure_has_warnings(self, operation):
        ledger = FailureLedger()
        ledger.record(make_failure("node-3"))

        result = aggregate_result(operation, ledger, duration_ms=5)

        assert result.success is False
        assert result.updated_count == 9
        assert result.failed_count == 1
        assert result.has_warnings is True
        assert result.total == 10
        assert result.failure_summary.partial == 1

    def test_full_failure_has_no_warnings(self, operation):
        ledger = FailureLedger()
        ledger.extend(make_failure(element_id) for element_id in operation.affected_element_ids)

        result = aggregate_result(operation, ledger, duration_ms=5)

        assert result.updated_count == 0
        assert result.has_warnings is False

    def test_more_failures_than_elements_is_catastrophic(self, operation):
        ledger = FailureLedger()
        ledger.extend(make_failure(f"x-{i}") for i in range(11))

        with pytest.raises(CatastrophicError):
            aggregate_result(operation, ledger, duration_ms=5)

    def test_carries_document_modified_flag(self, operation):
        operation.document_modified = True

        result = aggregate_result(operation, FailureLedger(), duration_ms=5)

        assert result.document_modified is True
