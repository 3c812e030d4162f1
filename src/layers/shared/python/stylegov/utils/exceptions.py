"""Custom exception classes for stylegov."""


class StyleGovError(Exception):
    """Base exception for all stylegov errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict | None = None,
    ):
        """Initialize StyleGovError.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert exception to dictionary for event payloads."""
        result = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(StyleGovError):
    """Raised when a replacement request fails validation.

    Always raised before any side effect: no checkpoint, no mutation.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: str = "VALIDATION_ERROR",
        field: str | None = None,
    ):
        """Initialize ValidationError.

        Args:
            message: Error message.
            error_code: Catalog code for the specific validation failure.
            field: Name of the offending request field.
        """
        self.field = field
        super().__init__(
            message=message,
            error_code=error_code,
            details={"field": field} if field else None,
        )


class CheckpointError(StyleGovError):
    """Raised when the safety checkpoint could not be created."""

    def __init__(
        self,
        title: str,
        original_error: str | None = None,
    ):
        """Initialize CheckpointError.

        Args:
            title: Title of the checkpoint that was requested.
            original_error: Stringified provider failure.
        """
        self.title = title
        super().__init__(
            message=f"Checkpoint creation failed: {original_error or 'unknown error'}",
            error_code="CHECKPOINT_FAILED",
            details={"title": title, "original_error": original_error},
        )


class RetryExhaustedError(StyleGovError):
    """Raised when a unit of work failed on every allowed attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            message=f"Failed after {attempts} attempts. Last error: {last_error}",
            error_code="RETRY_EXHAUSTED",
            details={"attempts": attempts},
        )


class ElementMutationError(StyleGovError):
    """A single element exhausted its retries.

    Never escapes the batch that produced it; it becomes a ledger entry.
    """

    def __init__(
        self,
        element_id: str,
        reason: str,
        retry_count: int = 0,
    ):
        self.element_id = element_id
        self.reason = reason
        self.retry_count = retry_count
        super().__init__(
            message=f"Element '{element_id}' could not be updated: {reason}",
            error_code="ELEMENT_MUTATION_FAILED",
            details={"element_id": element_id, "retry_count": retry_count},
        )


class CatastrophicError(StyleGovError):
    """Raised for unexpected internal failures during processing.

    Unlike element failures, these abort the operation.
    """

    def __init__(
        self,
        message: str = "Unexpected internal error during replacement",
        checkpoint_title: str | None = None,
    ):
        self.checkpoint_title = checkpoint_title
        super().__init__(
            message=message,
            error_code="REPLACEMENT_FAILED",
            details={"checkpoint_title": checkpoint_title} if checkpoint_title else None,
        )


class InvalidTransitionError(StyleGovError):
    """Raised when the operation state machine is asked for an illegal move."""

    def __init__(self, current_state: str, requested_state: str):
        self.current_state = current_state
        self.requested_state = requested_state
        super().__init__(
            message=f"Cannot transition from '{current_state}' to '{requested_state}'",
            error_code="INVALID_TRANSITION",
            details={
                "current_state": current_state,
                "requested_state": requested_state,
            },
        )


class OperationInProgressError(StyleGovError):
    """Raised when a document already has an active replacement."""

    def __init__(self, document_id: str, active_operation_id: str | None = None):
        self.document_id = document_id
        self.active_operation_id = active_operation_id
        super().__init__(
            message=f"A replacement is already running on document '{document_id}'",
            error_code="OPERATION_IN_PROGRESS",
            details={
                "document_id": document_id,
                "active_operation_id": active_operation_id,
            },
        )
