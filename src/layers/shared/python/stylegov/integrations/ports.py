"""Interfaces the replacement engine consumes from the host document layer.

The engine never touches a document directly. Everything it knows about the
host comes through these ports, so retry, batching and checkpoint logic run
unchanged against a real document or a test double.
"""

from typing import Any, Protocol, runtime_checkable

from stylegov.models.replacement import Checkpoint, OperationType


@runtime_checkable
class CheckpointProvider(Protocol):
    """Creates a recoverable snapshot of the document.

    Called exactly once per operation, before any mutation. Raise to signal
    failure.
    """

    async def create_checkpoint(self, title: str) -> Checkpoint:
        ...


@runtime_checkable
class MutationApplier(Protocol):
    """Reassigns one element from the source assignment to the target.

    Return None (or any value other than False/str) on success. Failure is
    signalled by raising, or by returning False or a reason string.
    """

    async def apply_replacement(
        self,
        element_id: str,
        source_id: str,
        target_id: str,
    ) -> Any:
        ...


@runtime_checkable
class AssignmentResolver(Protocol):
    """Confirms that a style or token id exists in the document."""

    async def resolve(self, assignment_id: str, operation_type: OperationType) -> bool:
        ...
