"""Tests for the error catalog and exception hierarchy."""

import pytest

from stylegov.utils.error_messages import (
    ERROR_CATALOG,
    ErrorCategory,
    format_error_message,
    get_error_message,
)
from stylegov.utils.exceptions import (
    CheckpointError,
    ElementMutationError,
    InvalidTransitionError,
    StyleGovError,
    ValidationError,
)


class TestErrorCatalog:
    """Tests for catalog lookups and formatting."""

    def test_unknown_code_falls_back(self):
        assert get_error_message("NOPE") is ERROR_CATALOG["UNKNOWN_ERROR"]

    def test_format_without_detail(self):
        assert format_error_message("SAME_SOURCE_TARGET") == (
            "Source and target cannot be the same. Select a different target for replacement."
        )

    def test_format_with_detail(self):
        message = format_error_message("CHECKPOINT_FAILED", "quota exceeded")

        assert message.startswith("Could not create version history checkpoint (quota exceeded).")
        assert "Your document was not modified" in message

    @pytest.mark.parametrize("code", sorted(ERROR_CATALOG))
    def test_every_entry_is_actionable(self, code):
        entry = ERROR_CATALOG[code]

        assert entry.message
        assert entry.suggestion
        assert isinstance(entry.category, ErrorCategory)


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_to_dict(self):
        error = ValidationError("Bad request", error_code="EMPTY_SELECTION", field="affected_element_ids")

        assert error.to_dict() == {
            "error": True,
            "error_code": "EMPTY_SELECTION",
            "message": "Bad request",
            "details": {"field": "affected_element_ids"},
        }

    def test_all_errors_share_base(self):
        errors = [
            CheckpointError("Style Replacement - 2026-10-16 09:30:00", "offline"),
            ElementMutationError("node-1", "Node is locked", 3),
            InvalidTransitionError("processing", "idle"),
        ]

        assert all(isinstance(error, StyleGovError) for error in errors)

    def test_checkpoint_error_keeps_original(self):
        error = CheckpointError("title", "offline")

        assert error.message == "Checkpoint creation failed: offline"
        assert error.details["original_error"] == "offline"

    def test_element_mutation_error(self):
        error = ElementMutationError("node-1", "Node is locked", 3)

        assert error.error_code == "ELEMENT_MUTATION_FAILED"
        assert "node-1" in str(error)
