"""
Data Models Package

This package contains all Pydantic models used by the circulation engine.
All data crossing the engine boundary conforms to these schemas.
"""

from circulation.models.circulation import (
    DEFAULT_MEMBER_CAPACITY,
    Book,
    BookSpec,
    CapacityInfo,
    LibraryStatistics,
    LoanView,
    Member,
    MemberRole,
    MemberSpec,
    ResyncReport,
    Transaction,
    TransactionStatus,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    available_copies,
    to_money,
)
from circulation.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Circulation models
    "DEFAULT_MEMBER_CAPACITY",
    "Book",
    "BookSpec",
    "CapacityInfo",
    "LibraryStatistics",
    "LoanView",
    "Member",
    "MemberRole",
    "MemberSpec",
    "ResyncReport",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "available_copies",
    "to_money",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
