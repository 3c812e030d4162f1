"""Utility functions and helpers."""

from stylegov.utils.error_messages import (
    ERROR_CATALOG,
    ErrorCategory,
    ErrorMessage,
    format_error_message,
    get_error_message,
)
from stylegov.utils.exceptions import (
    CatastrophicError,
    CheckpointError,
    ElementMutationError,
    InvalidTransitionError,
    OperationInProgressError,
    RetryExhaustedError,
    StyleGovError,
    ValidationError,
)

__all__ = [
    # Error messages
    "ERROR_CATALOG",
    "ErrorCategory",
    "ErrorMessage",
    "format_error_message",
    "get_error_message",
    # Exceptions
    "CatastrophicError",
    "CheckpointError",
    "ElementMutationError",
    "InvalidTransitionError",
    "OperationInProgressError",
    "RetryExhaustedError",
    "StyleGovError",
    "ValidationError",
]
