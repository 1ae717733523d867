"""
Audit Models for Library Circulation

Every mutation of the circulating inventory, and every rejected attempt,
is recorded for audit purposes. This provides:
1. Traceability of who changed which copy counts and loans
2. Debugging information when cache and store disagree
3. A history of drift repairs performed by resync

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from circulation.clock import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Catalog
    BOOK_ADDED = "book_added"
    BOOK_UPDATED = "book_updated"
    BOOK_DELETED = "book_deleted"

    # Registry
    MEMBER_ADDED = "member_added"
    MEMBER_UPDATED = "member_updated"
    MEMBER_DELETED = "member_deleted"
    CAPACITY_CHANGED = "capacity_changed"
    AUTH_FAILED = "auth_failed"

    # Ledger
    LOAN_BORROWED = "loan_borrowed"
    LOAN_RETURNED = "loan_returned"
    LOAN_CANCELLED = "loan_cancelled"

    # Rejections and failures
    OPERATION_REJECTED = "operation_rejected"
    PERSISTENCE_FAILED = "persistence_failed"

    # Cache maintenance
    RESYNC_COMPLETED = "resync_completed"
    DRIFT_REPAIRED = "drift_repaired"
    SAMPLE_DATA_SEEDED = "sample_data_seeded"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('book', 'member', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to (e.g., 'B001')"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Member who requested the operation, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one operation"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a desk user?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            self.actor_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
            int(self.is_user_action),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.loan_borrowed(transaction_id, book_id, member_id, due, cid)
        event = AuditEventBuilder.operation_rejected("borrow", error, cid)
    """

    @staticmethod
    def book_added(
        book_id: str,
        title: str,
        total_copies: int,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BOOK_ADDED,
            entity_type="book",
            entity_id=book_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Book added: {title} ({total_copies} copies)",
            details={"title": title, "total_copies": total_copies},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def book_updated(
        book_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BOOK_UPDATED,
            entity_type="book",
            entity_id=book_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Book updated: {book_id}",
            details={"changes": changes},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def book_deleted(
        book_id: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BOOK_DELETED,
            entity_type="book",
            entity_id=book_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Book marked inactive: {book_id}",
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def member_added(
        member_id: str,
        username: str,
        role: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_ADDED,
            entity_type="member",
            entity_id=member_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Member registered: {username} ({role})",
            details={"username": username, "role": role},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def member_updated(
        member_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_UPDATED,
            entity_type="member",
            entity_id=member_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Member profile updated: {member_id}",
            details={"changes": changes},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def member_deleted(
        member_id: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_DELETED,
            entity_type="member",
            entity_id=member_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Member deactivated: {member_id}",
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def capacity_changed(
        member_id: str,
        old_capacity: int,
        new_capacity: int,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CAPACITY_CHANGED,
            entity_type="member",
            entity_id=member_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Capacity changed for {member_id}: {old_capacity} -> {new_capacity}",
            details={"old_capacity": old_capacity, "new_capacity": new_capacity},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def auth_failed(username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="member",
            description="Authentication failed",
            details={"username": username},
            error_code="auth_failed",
            is_user_action=True,
        )

    @staticmethod
    def loan_borrowed(
        transaction_id: str,
        book_id: str,
        member_id: str,
        due_date: datetime,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_BORROWED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Book {book_id} lent to {member_id}",
            details={
                "book_id": book_id,
                "member_id": member_id,
                "due_date": due_date.isoformat(),
            },
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def loan_returned(
        transaction_id: str,
        book_id: str,
        fine_amount: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_RETURNED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Book {book_id} returned, fine ${fine_amount}",
            details={"book_id": book_id, "fine_amount": fine_amount},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def loan_cancelled(
        transaction_id: str,
        reason: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_CANCELLED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Loan cancelled: {transaction_id}",
            details={"reason": reason},
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {error_code}",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def persistence_failed(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Store failure during {operation}",
            details={"operation": operation},
            error_code="persistence_error",
            error_message=error_message,
        )

    @staticmethod
    def resync_completed(
        books: int,
        members: int,
        transactions: int,
        repaired: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESYNC_COMPLETED,
            correlation_id=correlation_id,
            description=(
                f"Cache rebuilt: {books} books, {members} members, "
                f"{transactions} transactions"
            ),
            details={
                "books": books,
                "members": members,
                "transactions": transactions,
                "repaired_books": repaired,
            },
        )

    @staticmethod
    def drift_repaired(
        book_id: str,
        stored_borrowed: int,
        derived_borrowed: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRIFT_REPAIRED,
            severity=AuditSeverity.WARNING,
            entity_type="book",
            entity_id=book_id,
            correlation_id=correlation_id,
            description=(
                f"Borrowed copies for {book_id} corrected: "
                f"{stored_borrowed} -> {derived_borrowed}"
            ),
            details={
                "stored_borrowed": stored_borrowed,
                "derived_borrowed": derived_borrowed,
            },
        )

    @staticmethod
    def sample_data_seeded(books: int, members: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAMPLE_DATA_SEEDED,
            description=f"Empty store seeded with {books} books and {members} members",
            details={"books": books, "members": members},
        )
