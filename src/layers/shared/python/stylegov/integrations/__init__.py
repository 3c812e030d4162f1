"""Host-document integration ports."""

from stylegov.integrations.ports import AssignmentResolver, CheckpointProvider, MutationApplier

__all__ = [
    "AssignmentResolver",
    "CheckpointProvider",
    "MutationApplier",
]
