"""
Transaction Ledger

Owns the lifecycle of every loan:

    ACTIVE --return--> RETURNED    (terminal)
    ACTIVE --cancel--> CANCELLED   (terminal, administrative)

An ACTIVE loan past its due date is shown as OVERDUE, but that is a
read-time projection; nothing ever stores it.

Fines are a pure function of (due_date, return_date or now): whole days
past due times the daily rate. A returned loan's fine is frozen at the
return instant; an open loan's fine keeps running.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from circulation.catalog import BookCatalog
from circulation.clock import Clock
from circulation.errors import AlreadyReturnedError, NotAvailableError, NotFoundError
from circulation.ids import id_sort_key
from circulation.models.circulation import (
    Book,
    LoanView,
    Member,
    Transaction,
    TransactionStatus,
    TransactionType,
    available_copies,
    to_money,
)
from circulation.registry import MemberRegistry
from circulation.services.storage import CirculationStoreInterface, WriteBatch


LOAN_PERIOD_DAYS = 14
DAILY_FINE_RATE = Decimal("1.00")


def days_between(start: datetime, end: datetime) -> int:
    """Whole elapsed days from start to end. 0 if end is not after start."""
    if end <= start:
        return 0
    return (end - start).days


class TransactionLedger:
    """Loan rules over the authoritative store."""

    def __init__(
        self,
        store: CirculationStoreInterface,
        catalog: BookCatalog,
        registry: MemberRegistry,
        clock: Clock,
    ):
        self._store = store
        self._catalog = catalog
        self._registry = registry
        self._clock = clock

    async def require_transaction(self, transaction_id: str) -> Transaction:
        transaction = await self._store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(
                f"Transaction not found: {transaction_id}",
                {"transaction_id": transaction_id},
            )
        return transaction

    # =========================================================================
    # FINES AND OVERDUE (pure)
    # =========================================================================

    def _end_of(self, transaction: Transaction) -> datetime:
        return transaction.return_date or self._clock.now()

    def is_overdue(self, transaction: Transaction) -> bool:
        return transaction.is_open and self._clock.now() > transaction.due_date

    def days_overdue(self, transaction: Transaction) -> int:
        if transaction.status == TransactionStatus.CANCELLED:
            return 0
        return max(0, days_between(transaction.due_date, self._end_of(transaction)))

    def calculate_fine(self, transaction: Transaction) -> Decimal:
        """
        Running fine for open loans, frozen fine for returned ones.

        Cancelled loans carry no fine.
        """
        if transaction.status == TransactionStatus.CANCELLED:
            return to_money(Decimal("0"))
        return to_money(self.days_overdue(transaction) * DAILY_FINE_RATE)

    def display_status(self, transaction: Transaction) -> TransactionStatus:
        if self.is_overdue(transaction):
            return TransactionStatus.OVERDUE
        return transaction.status

    def to_view(
        self,
        transaction: Transaction,
        book: Optional[Book] = None,
        member: Optional[Member] = None,
    ) -> LoanView:
        return LoanView(
            transaction=transaction,
            display_status=self.display_status(transaction),
            is_overdue=self.is_overdue(transaction),
            days_overdue=self.days_overdue(transaction),
            current_fine=self.calculate_fine(transaction),
            book_title=book.title if book else None,
            member_username=member.username if member else None,
        )

    @staticmethod
    def newest_first(transactions: Iterable[Transaction]) -> list[Transaction]:
        """Member-facing order: latest borrow first, then highest id."""
        return sorted(
            transactions,
            key=lambda t: (t.borrow_date, id_sort_key(t.id)),
            reverse=True,
        )

    # =========================================================================
    # MUTATION PLANNING
    # =========================================================================

    async def plan_borrow(
        self,
        book_id: str,
        member_id: str,
        new_id: Callable[[], str],
    ) -> WriteBatch:
        """
        A new ACTIVE loan and the book with one more copy out.

        The book is checked before the member.

        Raises:
            NotFoundError: Unknown book or member
            NotAvailableError: No copy on the shelf, or the book is withdrawn
            ValidationError: Member inactive or not a MEMBER
            CapacityError: Member has no free slot
        """
        book = await self._catalog.require_book(book_id, include_inactive=True)
        if not book.is_active:
            raise NotAvailableError(
                f"Book {book_id} has been withdrawn",
                {"book_id": book_id},
            )
        borrowed = await self._catalog.borrowed_count(book_id)
        if available_copies(book.total_copies, borrowed) <= 0:
            raise NotAvailableError(
                f"No copies of {book_id} are available",
                {"book_id": book_id, "total_copies": book.total_copies, "borrowed_copies": borrowed},
            )
        await self._registry.check_can_borrow(member_id)

        now = self._clock.now()
        transaction = Transaction(
            id=new_id(),
            book_id=book_id,
            member_id=member_id,
            borrow_date=now,
            due_date=now + timedelta(days=LOAN_PERIOD_DAYS),
            type=TransactionType.BORROW,
            status=TransactionStatus.ACTIVE,
            fine_amount=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        moved = book.model_copy(update={"borrowed_copies": borrowed + 1})
        return WriteBatch().insert(transaction).update(moved)

    async def plan_return(self, transaction_id: str) -> WriteBatch:
        """
        The loan closed with its fine frozen, and the copy back on the shelf.

        Raises:
            AlreadyReturnedError: The loan is not ACTIVE
        """
        transaction = await self.require_transaction(transaction_id)
        if transaction.status != TransactionStatus.ACTIVE:
            raise AlreadyReturnedError(
                f"Transaction {transaction_id} is already {transaction.status.value}",
                {"transaction_id": transaction_id, "status": transaction.status.value},
            )

        now = self._clock.now()
        fine = to_money(days_between(transaction.due_date, now) * DAILY_FINE_RATE)
        closed = Transaction.model_validate({
            **transaction.model_dump(),
            "return_date": now,
            "status": TransactionStatus.RETURNED,
            "fine_amount": fine,
            "updated_at": now,
        })
        return await self._release_copy(WriteBatch().update(closed), transaction.book_id)

    async def plan_cancel(self, transaction_id: str, reason: str) -> WriteBatch:
        """
        Administrative cancel. The copy goes back on the shelf, no fine.

        Raises:
            AlreadyReturnedError: The loan is not ACTIVE
        """
        transaction = await self.require_transaction(transaction_id)
        if transaction.status != TransactionStatus.ACTIVE:
            raise AlreadyReturnedError(
                f"Transaction {transaction_id} is already {transaction.status.value}",
                {"transaction_id": transaction_id, "status": transaction.status.value},
            )

        now = self._clock.now()
        note = f"Cancelled: {reason}" if reason else "Cancelled"
        if transaction.notes:
            note = f"{transaction.notes}\n{note}"
        cancelled = Transaction.model_validate({
            **transaction.model_dump(),
            "status": TransactionStatus.CANCELLED,
            "fine_amount": Decimal("0"),
            "notes": note[:1000],
            "updated_at": now,
        })
        return await self._release_copy(WriteBatch().update(cancelled), transaction.book_id)

    async def _release_copy(self, batch: WriteBatch, book_id: str) -> WriteBatch:
        book = await self._store.get_book(book_id)
        if book is not None:
            borrowed = await self._catalog.borrowed_count(book_id)
            batch.update(book.model_copy(update={"borrowed_copies": max(0, borrowed - 1)}))
        return batch
