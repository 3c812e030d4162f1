"""Pydantic models for stylegov entities."""

from stylegov.models.base import BaseModel, CamelModel, FrozenModel, generate_ulid, utc_now
from stylegov.models.replacement import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    Checkpoint,
    ErrorKind,
    FailedElement,
    FailureSummary,
    OperationType,
    ReplacementOperation,
    ReplacementRequest,
    ReplacementResult,
    ReplacementState,
    can_transition,
)

__all__ = [
    "BaseModel",
    "CamelModel",
    "FrozenModel",
    "generate_ulid",
    "utc_now",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    "Checkpoint",
    "ErrorKind",
    "FailedElement",
    "FailureSummary",
    "OperationType",
    "ReplacementOperation",
    "ReplacementRequest",
    "ReplacementResult",
    "ReplacementState",
    "can_transition",
]
