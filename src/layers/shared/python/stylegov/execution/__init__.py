"""Execution infrastructure for resilient bulk mutation.

This module provides the components the replacement engine is built on:
- RetryPolicy / retry_with_backoff: bounded retries with increasing delay
- batch_retry: order-preserving fan-out retry with failure markers
- AdaptiveBatchScheduler: batch sizing that shrinks on failure and grows back
- FailureLedger: append-only record of elements that could not be updated
"""

from stylegov.execution.batch_scheduler import (
    AdaptiveBatchScheduler,
    BatchOutcome,
    BatchProcessorState,
    BatchSchedulerConfig,
)
from stylegov.execution.failure_ledger import FailureLedger, aggregate_result
from stylegov.execution.retry_policy import (
    RETRY_POLICIES,
    ErrorType,
    RetryFailure,
    RetryPolicy,
    batch_retry,
    classify_error,
    get_retry_policy,
    is_permission_error,
    is_retry_failure,
    is_transient,
    normalize_error,
    retry_with_backoff,
)

__all__ = [
    # Batch scheduler
    "AdaptiveBatchScheduler",
    "BatchOutcome",
    "BatchProcessorState",
    "BatchSchedulerConfig",
    # Failure ledger
    "FailureLedger",
    "aggregate_result",
    # Retry policy
    "RETRY_POLICIES",
    "ErrorType",
    "RetryFailure",
    "RetryPolicy",
    "batch_retry",
    "classify_error",
    "get_retry_policy",
    "is_permission_error",
    "is_retry_failure",
    "is_transient",
    "normalize_error",
    "retry_with_backoff",
]
