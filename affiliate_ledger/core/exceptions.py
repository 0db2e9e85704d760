"""
Commission Ledger Exceptions

Every failure the engine raises is a LedgerError subclass carrying a
message that names the violated rule, optional structured details, and
the HTTP status the API layer maps it to.

    LedgerError
    ├── ValidationError          malformed or missing input
    ├── NotFoundError            unknown commission / marketer / product
    ├── DuplicateError           commission already exists for customer + product
    ├── BusinessRuleError        inactive entities, spend minimum, clearance,
    │                            clawback / adjustment bounds, undefined rates
    └── InvalidTransitionError   illegal status change
"""
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for commission ledger errors."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(LedgerError):
    """Input is malformed or missing."""
    status_code = 422


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    status_code = 404


class DuplicateError(LedgerError):
    """A commission already exists for the customer and product."""
    status_code = 409


class BusinessRuleError(LedgerError):
    """Input is well formed but violates a lifecycle or amount rule."""
    status_code = 400


class InvalidTransitionError(LedgerError):
    """Status change is not allowed from the current status."""
    status_code = 409

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid status transition from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status},
        )
