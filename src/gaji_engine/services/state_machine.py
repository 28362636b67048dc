"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from gaji_engine.errors import AlreadyFinalizedError, EmptyRunError, FrozenError, PayrollError

if TYPE_CHECKING:
    from gaji_engine.models import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    FINALIZED = "finalized"


class InvalidTransitionError(FrozenError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        self.run_id = None
        self.action = f"transition to {to_status}"
        PayrollError.__init__(self, msg)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft -> finalized

    Finalized is terminal: items, totals and claim links are frozen.
    """

    # Keyed by plain values so ORM strings hash the same
    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT.value: [PayrollRunStatus.FINALIZED.value],
        PayrollRunStatus.FINALIZED.value: [],
    }

    # Statuses where items can be edited, added, removed or recalculated
    MUTABLE = {PayrollRunStatus.DRAFT.value}

    # Statuses where the run may be deleted
    DELETABLE = {PayrollRunStatus.DRAFT.value}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_mutable(cls, status: str) -> bool:
        return status in cls.MUTABLE

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def ensure_mutable(cls, run: PayrollRun, action: str) -> None:
        """Raise FrozenError unless the run is still a draft."""
        if not cls.is_mutable(run.status):
            raise FrozenError(run.payroll_run_id, action)

    @classmethod
    def validate_for_finalize(cls, run: PayrollRun, item_count: int) -> None:
        """Raise unless the run can be finalized."""
        if run.status == PayrollRunStatus.FINALIZED:
            raise AlreadyFinalizedError(run.payroll_run_id)
        cls.validate_transition(run.status, PayrollRunStatus.FINALIZED.value)
        if item_count == 0:
            raise EmptyRunError(run.payroll_run_id)
