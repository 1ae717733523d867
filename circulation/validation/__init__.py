"""Validation package."""

from circulation.validation.validator import (
    BookValidator,
    MemberValidator,
    summarize,
    validate_capacity,
)

__all__ = [
    "BookValidator",
    "MemberValidator",
    "summarize",
    "validate_capacity",
]
