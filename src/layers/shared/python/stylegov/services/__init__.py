"""Replacement services."""

from stylegov.services.operation_lock import DocumentLockRegistry, get_document_lock_registry
from stylegov.services.progress_reporter import ProgressReporter, compute_progress
from stylegov.services.replacement_engine import (
    ReplacementConfig,
    ReplacementEngine,
    build_checkpoint_title,
)
from stylegov.services.replacement_events import (
    ReplacementEvent,
    ReplacementEventChannel,
    ReplacementEventType,
)

__all__ = [
    "DocumentLockRegistry",
    "get_document_lock_registry",
    "ProgressReporter",
    "compute_progress",
    "ReplacementConfig",
    "ReplacementEngine",
    "build_checkpoint_title",
    "ReplacementEvent",
    "ReplacementEventChannel",
    "ReplacementEventType",
]
