"""Reconciliation service exceptions."""

from uuid import UUID


class ReconciliationError(Exception):
    """Base exception for reconciliation service errors."""


class ReconciliationNotFoundError(ReconciliationError):
    """A reconciliation, account, statement line or transaction is missing or not owned."""

    def __init__(self, resource: str, identifier: UUID | str | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(message)


class InvalidReconciliationStateError(ReconciliationError):
    """The operation is not allowed in the reconciliation's current state."""
