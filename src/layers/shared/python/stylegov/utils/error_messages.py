"""User-facing error messages with actionable suggestions.

Keeps wording for replacement failures in one place so the event stream and
any presentation layer describe the same failure the same way.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Broad grouping for catalog entries."""

    VALIDATION = "validation"
    PERMISSION = "permission"
    NETWORK = "network"
    API = "api"
    TIMEOUT = "timeout"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorMessage:
    """A catalog entry."""

    message: str
    suggestion: str
    category: ErrorCategory
    severity: Severity


ERROR_CATALOG: dict[str, ErrorMessage] = {
    # Validation
    "EMPTY_SELECTION": ErrorMessage(
        message="No elements specified for replacement",
        suggestion="Run the audit again and select an assignment that is in use",
        category=ErrorCategory.VALIDATION,
        severity=Severity.WARNING,
    ),
    "INVALID_STYLE_ID": ErrorMessage(
        message="Style not found or invalid",
        suggestion="Ensure the style still exists in your document",
        category=ErrorCategory.VALIDATION,
        severity=Severity.ERROR,
    ),
    "TOKEN_NOT_FOUND": ErrorMessage(
        message="Design token not found",
        suggestion="Verify the token exists in your collections",
        category=ErrorCategory.NOT_FOUND,
        severity=Severity.ERROR,
    ),
    "SAME_SOURCE_TARGET": ErrorMessage(
        message="Source and target cannot be the same",
        suggestion="Select a different target for replacement",
        category=ErrorCategory.CONFLICT,
        severity=Severity.WARNING,
    ),
    "DUPLICATE_ELEMENTS": ErrorMessage(
        message="Affected elements contain duplicates",
        suggestion="Report this issue if it persists",
        category=ErrorCategory.VALIDATION,
        severity=Severity.ERROR,
    ),
    # Permission
    "PERMISSION_DENIED": ErrorMessage(
        message="You do not have permission to edit this document",
        suggestion="Ask the file owner to grant you edit access",
        category=ErrorCategory.PERMISSION,
        severity=Severity.ERROR,
    ),
    # Replacement
    "CHECKPOINT_FAILED": ErrorMessage(
        message="Could not create version history checkpoint",
        suggestion="Operation cancelled for safety. Your document was not modified. Try again",
        category=ErrorCategory.API,
        severity=Severity.ERROR,
    ),
    "REPLACEMENT_FAILED": ErrorMessage(
        message="Failed to replace assignments",
        suggestion="Restore the version history checkpoint to recover the previous state",
        category=ErrorCategory.API,
        severity=Severity.ERROR,
    ),
    "PARTIAL_REPLACEMENT": ErrorMessage(
        message="Replacement completed with some failures",
        suggestion="Review failed elements and retry if needed",
        category=ErrorCategory.API,
        severity=Severity.WARNING,
    ),
    "OPERATION_IN_PROGRESS": ErrorMessage(
        message="Another replacement is already running on this document",
        suggestion="Wait for it to finish before starting a new one",
        category=ErrorCategory.CONFLICT,
        severity=Severity.WARNING,
    ),
    "TIMEOUT": ErrorMessage(
        message="Operation timed out",
        suggestion="Try again or split into smaller batches",
        category=ErrorCategory.TIMEOUT,
        severity=Severity.ERROR,
    ),
    "UNKNOWN_ERROR": ErrorMessage(
        message="An unexpected error occurred",
        suggestion="Try again or report this issue",
        category=ErrorCategory.UNKNOWN,
        severity=Severity.ERROR,
    ),
}


def get_error_message(code: str) -> ErrorMessage:
    """Look up a catalog entry, falling back to UNKNOWN_ERROR.

    Args:
        code: Catalog code (e.g. "CHECKPOINT_FAILED").

    Returns:
        The matching ErrorMessage.
    """
    return ERROR_CATALOG.get(code, ERROR_CATALOG["UNKNOWN_ERROR"])


def format_error_message(code: str, detail: str | None = None) -> str:
    """Render a catalog entry as one line for an operator.

    Args:
        code: Catalog code.
        detail: Optional specifics appended in parentheses.

    Returns:
        "<message> (<detail>). <suggestion>."
    """
    entry = get_error_message(code)
    text = entry.message
    if detail:
        text = f"{text} ({detail})"
    return f"{text}. {entry.suggestion}."
