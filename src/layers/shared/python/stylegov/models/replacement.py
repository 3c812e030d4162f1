"""Replacement operation models and lifecycle states."""

from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator

from stylegov.models.base import BaseModel, FrozenModel, generate_ulid
from stylegov.utils.exceptions import ElementMutationError


class OperationType(str, Enum):
    """What kind of assignment is being replaced."""

    STYLE = "style"
    TOKEN = "token"


class ReplacementState(str, Enum):
    """Replacement lifecycle states.

    There is no cancelled state: once a checkpoint exists the operation is
    always driven to complete or error.
    """

    IDLE = "idle"
    VALIDATING = "validating"
    CREATING_CHECKPOINT = "creating_checkpoint"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


VALID_TRANSITIONS: dict[ReplacementState, frozenset[ReplacementState]] = {
    ReplacementState.IDLE: frozenset({ReplacementState.VALIDATING}),
    ReplacementState.VALIDATING: frozenset(
        {ReplacementState.CREATING_CHECKPOINT, ReplacementState.ERROR}
    ),
    ReplacementState.CREATING_CHECKPOINT: frozenset(
        {ReplacementState.PROCESSING, ReplacementState.ERROR}
    ),
    ReplacementState.PROCESSING: frozenset(
        {ReplacementState.COMPLETE, ReplacementState.ERROR}
    ),
    ReplacementState.COMPLETE: frozenset({ReplacementState.IDLE}),
    ReplacementState.ERROR: frozenset({ReplacementState.IDLE}),
}

TERMINAL_STATES = frozenset({ReplacementState.COMPLETE, ReplacementState.ERROR})


def can_transition(current: ReplacementState, requested: ReplacementState) -> bool:
    """Check whether a lifecycle transition is allowed."""
    return requested in VALID_TRANSITIONS[current]


class ErrorKind(str, Enum):
    """Reported category of a failed operation."""

    VALIDATION = "validation"
    CHECKPOINT = "checkpoint"
    PROCESSING = "processing"
    PERMISSION = "permission"


class Checkpoint(FrozenModel):
    """A recoverable document snapshot taken before mutation."""

    title: str
    timestamp: datetime


class FailedElement(FrozenModel):
    """An element that could not be updated after all retries."""

    element_id: str
    element_name: str
    reason: str
    retry_count: int = Field(default=0, ge=0)

    @classmethod
    def from_error(cls, error: ElementMutationError, element_name: str) -> "FailedElement":
        return cls(
            element_id=error.element_id,
            element_name=element_name,
            reason=error.reason,
            retry_count=error.retry_count,
        )


class FailureSummary(FrozenModel):
    """Failure counts by classification plus the distinct reasons seen."""

    transient: int = 0
    persistent: int = 0
    validation: int = 0
    partial: int = 0
    total: int = 0
    messages: tuple[str, ...] = ()


class ReplacementRequest(FrozenModel):
    """What an operator asked for.

    affected_element_ids comes from the detection layer already ordered and
    without duplicates; the request is rejected at validation otherwise.
    """

    operation_type: OperationType
    source_id: str
    target_id: str
    affected_element_ids: tuple[str, ...]
    document_id: str = "default"
    element_names: dict[str, str] = Field(default_factory=dict)


class ReplacementOperation(BaseModel):
    """One in-flight bulk edit, owned by the engine processing it."""

    id: str = Field(default_factory=generate_ulid)
    operation_type: OperationType
    document_id: str = "default"
    source_id: str
    target_id: str
    affected_element_ids: tuple[str, ...] = ()
    element_names: dict[str, str] = Field(default_factory=dict)

    state: ReplacementState = ReplacementState.IDLE
    checkpoint: Checkpoint | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    document_modified: bool = False

    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("affected_element_ids", mode="before")
    @classmethod
    def _as_tuple(cls, value):
        return tuple(value) if value is not None else ()

    @property
    def total(self) -> int:
        return len(self.affected_element_ids)

    @property
    def checkpoint_title(self) -> str | None:
        return self.checkpoint.title if self.checkpoint else None

    def element_name(self, element_id: str) -> str:
        """Display name for an element, falling back to its id."""
        return self.element_names.get(element_id, element_id)

    @classmethod
    def from_request(cls, request: ReplacementRequest) -> "ReplacementOperation":
        return cls(
            operation_type=request.operation_type,
            document_id=request.document_id,
            source_id=request.source_id,
            target_id=request.target_id,
            affected_element_ids=request.affected_element_ids,
            element_names=dict(request.element_names),
        )


class ReplacementResult(FrozenModel):
    """Terminal summary of a replacement. Immutable once built."""

    operation_id: str
    operation_type: OperationType
    success: bool
    updated_count: int = Field(ge=0)
    failed_count: int = Field(ge=0)
    failed_elements: tuple[FailedElement, ...] = ()
    checkpoint_title: str | None = None
    duration_ms: int = Field(default=0, ge=0)
    has_warnings: bool = False
    failure_summary: FailureSummary | None = None
    document_modified: bool = False
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @property
    def total(self) -> int:
        return self.updated_count + self.failed_count
