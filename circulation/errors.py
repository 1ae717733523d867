"""
Engine Error Taxonomy

DESIGN DECISION: Every rejected mutation surfaces as a typed error with a
stable machine-readable code. Callers (the desk UI, scripts, tests) branch
on the class or the code, never on message text.

Local errors (validation, conflicts, capacity, availability, state) are
raised before anything is written. PersistenceError is the only hard
failure: the store could not be reached or the write did not complete, and
the coordinator guarantees the cache was not touched.
"""

from typing import Any, Optional


class CirculationError(Exception):
    """Base class for every error the engine raises to its callers."""

    code = "circulation_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Plain-data form of the error for callers that render it."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CirculationError):
    """Malformed input. Carries the individual issues found."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        issues: Optional[list] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.issues = list(issues or [])

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["issues"] = [issue.model_dump() for issue in self.issues]
        return payload


class NotFoundError(CirculationError):
    """A referenced book, member or transaction does not exist."""

    code = "not_found"


class ConflictError(CirculationError):
    """Blocked by existing references (active loans, taken username)."""

    code = "conflict"


class CapacityError(CirculationError):
    """Borrowing limit reached, or a limit would drop below active loans."""

    code = "capacity_exceeded"


class NotAvailableError(CirculationError):
    """No copy of the book is available to lend."""

    code = "not_available"


class AlreadyReturnedError(CirculationError):
    """The transaction is no longer ACTIVE."""

    code = "already_returned"


class AuthError(CirculationError):
    """Credentials did not match an active account."""

    code = "auth_failed"


class PermissionDeniedError(CirculationError):
    """The acting member's role does not grant the capability."""

    code = "permission_denied"


class PersistenceError(CirculationError):
    """The store was unreachable, failed the write, or timed out."""

    code = "persistence_error"
