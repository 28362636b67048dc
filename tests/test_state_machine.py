"""Tests for payroll run state machine."""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from gaji_engine.errors import AlreadyFinalizedError, EmptyRunError, FrozenError
from gaji_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)


def _run(status: str) -> SimpleNamespace:
    return SimpleNamespace(payroll_run_id=uuid4(), status=status)


class TestPayrollRunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Draft moves to finalized."""
        assert PayrollRunStateMachine.can_transition("draft", "finalized") is True

    def test_invalid_transitions(self):
        """Finalized is terminal and draft cannot loop to itself."""
        assert PayrollRunStateMachine.can_transition("finalized", "draft") is False
        assert PayrollRunStateMachine.can_transition("finalized", "finalized") is False
        assert PayrollRunStateMachine.can_transition("draft", "draft") is False
        assert PayrollRunStateMachine.can_transition("unknown", "finalized") is False

    def test_enum_values_match_plain_strings(self):
        """Enum members and ORM strings are interchangeable."""
        assert PayrollRunStateMachine.can_transition(
            PayrollRunStatus.DRAFT.value, PayrollRunStatus.FINALIZED.value
        )
        assert PayrollRunStatus.DRAFT == "draft"

    def test_validate_transition_raises(self):
        """validate_transition raises InvalidTransitionError, a FrozenError."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate_transition("finalized", "draft")

        assert exc_info.value.from_status == "finalized"
        assert exc_info.value.to_status == "draft"
        assert isinstance(exc_info.value, FrozenError)
        assert exc_info.value.code == "FROZEN"

    def test_mutability(self):
        """Only drafts can be edited or deleted."""
        assert PayrollRunStateMachine.is_mutable("draft") is True
        assert PayrollRunStateMachine.is_mutable("finalized") is False
        assert PayrollRunStateMachine.can_delete("draft") is True
        assert PayrollRunStateMachine.can_delete("finalized") is False

    def test_ensure_mutable(self):
        """ensure_mutable raises FrozenError naming the action."""
        PayrollRunStateMachine.ensure_mutable(_run("draft"), "edit item")

        run = _run("finalized")
        with pytest.raises(FrozenError) as exc_info:
            PayrollRunStateMachine.ensure_mutable(run, "edit item")
        assert exc_info.value.run_id == run.payroll_run_id
        assert "edit item" in exc_info.value.message


class TestValidateForFinalize:
    """Test finalize preconditions."""

    def test_draft_with_items_passes(self):
        """A draft with items can be finalized."""
        PayrollRunStateMachine.validate_for_finalize(_run("draft"), item_count=3)

    def test_finalized_run_rejected(self):
        """Finalizing twice is AlreadyFinalized."""
        with pytest.raises(AlreadyFinalizedError):
            PayrollRunStateMachine.validate_for_finalize(_run("finalized"), item_count=3)

    def test_empty_run_rejected(self):
        """A draft without items is EmptyRun."""
        with pytest.raises(EmptyRunError):
            PayrollRunStateMachine.validate_for_finalize(_run("draft"), item_count=0)
