"""
Audit Logger

DESIGN DECISION: Every mutation of the circulating inventory is logged,
and so is every rejected attempt with its error code. This provides:
1. Traceability of copy counts and loans
2. A record of drift repairs and store failures
3. Debugging capability when cache and store disagree

The audit logger:
- Is async to not block main flow
- Gracefully handles failures of its own storage (never breaks a loan)
- Supports correlation IDs to trace related events
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from circulation.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from circulation.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(level.upper())

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("circulation.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # The audit trail must never fail the operation it records.
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -- catalog --------------------------------------------------------------

    async def log_book_added(
        self,
        book_id: str,
        title: str,
        total_copies: int,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.book_added(
            book_id=book_id,
            title=title,
            total_copies=total_copies,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_book_updated(
        self,
        book_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.book_updated(
            book_id=book_id,
            changes=changes,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_book_deleted(
        self,
        book_id: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.book_deleted(
            book_id=book_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    # -- registry -------------------------------------------------------------

    async def log_member_added(
        self,
        member_id: str,
        username: str,
        role: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_added(
            member_id=member_id,
            username=username,
            role=role,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_member_updated(
        self,
        member_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_updated(
            member_id=member_id,
            changes=changes,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_member_deleted(
        self,
        member_id: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_deleted(
            member_id=member_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_capacity_changed(
        self,
        member_id: str,
        old_capacity: int,
        new_capacity: int,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.capacity_changed(
            member_id=member_id,
            old_capacity=old_capacity,
            new_capacity=new_capacity,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_auth_failed(self, username: str) -> None:
        await self.log(AuditEventBuilder.auth_failed(username=username))

    # -- ledger ---------------------------------------------------------------

    async def log_loan_borrowed(
        self,
        transaction_id: str,
        book_id: str,
        member_id: str,
        due_date: datetime,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.loan_borrowed(
            transaction_id=transaction_id,
            book_id=book_id,
            member_id=member_id,
            due_date=due_date,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_loan_returned(
        self,
        transaction_id: str,
        book_id: str,
        fine_amount: Decimal,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.loan_returned(
            transaction_id=transaction_id,
            book_id=book_id,
            fine_amount=str(fine_amount),
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_loan_cancelled(
        self,
        transaction_id: str,
        reason: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.loan_cancelled(
            transaction_id=transaction_id,
            reason=reason,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    # -- failures -------------------------------------------------------------

    async def log_operation_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID],
        actor_id: Optional[str] = None,
    ) -> None:
        """Log a mutation refused before anything was written."""
        await self.log(AuditEventBuilder.operation_rejected(
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
            actor_id=actor_id,
        ))

    async def log_persistence_failed(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.persistence_failed(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    # -- maintenance ----------------------------------------------------------

    async def log_resync_completed(
        self,
        books: int,
        members: int,
        transactions: int,
        repaired: int,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.resync_completed(
            books=books,
            members=members,
            transactions=transactions,
            repaired=repaired,
            correlation_id=correlation_id,
        ))

    async def log_drift_repaired(
        self,
        book_id: str,
        stored_borrowed: int,
        derived_borrowed: int,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.drift_repaired(
            book_id=book_id,
            stored_borrowed=stored_borrowed,
            derived_borrowed=derived_borrowed,
            correlation_id=correlation_id,
        ))

    async def log_sample_data_seeded(self, books: int, members: int) -> None:
        await self.log(AuditEventBuilder.sample_data_seeded(books=books, members=members))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of each coordinator operation and pass it
    through every event the operation emits.
    """
    return uuid4()
