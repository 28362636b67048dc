"""Error kinds raised by the payroll engine.

Every error carries a stable ``code`` discriminator that hosts (HTTP, CLI)
surface verbatim, plus the status code the HTTP host maps it to.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID


class PayrollError(Exception):
    """Base class for all engine errors."""

    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailedError(PayrollError):
    """Raised for missing scope fields, malformed IC or negative money."""

    code = "VALIDATION_FAILED"
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DuplicateRunError(PayrollError):
    """Raised when a run already exists for the same scope and period."""

    code = "DUPLICATE_RUN"
    status_code = 409

    def __init__(self, existing_id: UUID, month: int, year: int):
        self.existing_id = existing_id
        self.month = month
        self.year = year
        super().__init__(
            f"Payroll run for {month:02d}/{year} already exists: {existing_id}"
        )


class NotFoundError(PayrollError):
    """Raised when an entity is not found by id."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class FrozenError(PayrollError):
    """Raised when mutating a finalized run or its items."""

    code = "FROZEN"
    status_code = 409

    def __init__(self, run_id: UUID | None, action: str):
        self.run_id = run_id
        self.action = action
        super().__init__(f"Cannot {action}: payroll run {run_id} is finalized")


class AlreadyFinalizedError(PayrollError):
    """Raised when finalizing a run that is not a draft."""

    code = "ALREADY_FINALIZED"
    status_code = 409

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} is already finalized")


class EmptyRunError(PayrollError):
    """Raised when finalizing a run with no items."""

    code = "EMPTY_RUN"
    status_code = 400

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} has no items")


class NoEmployeesError(PayrollError):
    """Raised when a create scope contains no payable employees."""

    code = "NO_EMPLOYEES"
    status_code = 400

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"No employees in scope: {scope}")


class DependencyMissingError(PayrollError):
    """Employee has no basic salary and no carry-forward.

    Never surfaced to hosts as a failure; the orchestrator converts it into a
    warning on the run result.
    """

    code = "DEPENDENCY_MISSING"
    status_code = 200

    def __init__(self, employee_name: str):
        self.employee_name = employee_name
        super().__init__(f"{employee_name} has no basic salary set")


class StatutoryTableMissingError(PayrollError):
    """Raised when no statutory table version covers the run period."""

    code = "STATUTORY_TABLE_MISSING"
    status_code = 422

    def __init__(self, version: str, as_of: date | None = None):
        self.version = version
        self.as_of = as_of
        msg = f"Statutory table version '{version}' is not loaded"
        if as_of is not None:
            msg += f" for period starting {as_of.isoformat()}"
        super().__init__(msg)


class InternalError(PayrollError):
    """Raised for storage or I/O failures."""

    code = "INTERNAL"
    status_code = 500
