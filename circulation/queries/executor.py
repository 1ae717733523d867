"""
Read-Side Queries

DESIGN DECISION: Queries that answer "how many" or "whose" read the
store, not the cache. The desk's headline numbers (loans, overdue count,
fines) must agree with what the next borrow or return will see.

Results are plain models (LoanView, LibraryStatistics) with overdue status
and fines projected as of the clock's now.
"""

from collections import Counter
from decimal import Decimal
from typing import Optional

from circulation.clock import Clock
from circulation.ids import id_sort_key
from circulation.ledger import TransactionLedger
from circulation.models.circulation import (
    LibraryStatistics,
    LoanView,
    Transaction,
    TransactionStatus,
    available_copies,
    to_money,
)
from circulation.services.storage import CirculationStoreInterface


class CirculationQueries:
    """
    Executes read-side queries against the store.

    GUARANTEES:
    - Counts come from stored transactions, never from cached counters
    - OVERDUE appears only in the returned views
    """

    def __init__(
        self,
        store: CirculationStoreInterface,
        ledger: TransactionLedger,
        clock: Clock,
    ):
        self._store = store
        self._ledger = ledger
        self._clock = clock

    async def _views(self, transactions: list[Transaction]) -> list[LoanView]:
        books = {book.id: book for book in await self._store.list_books(include_inactive=True)}
        members = {m.id: m for m in await self._store.list_members(include_inactive=True)}
        return [
            self._ledger.to_view(
                transaction,
                book=books.get(transaction.book_id),
                member=members.get(transaction.member_id),
            )
            for transaction in transactions
        ]

    async def member_history(self, member_id: str) -> list[LoanView]:
        """Every loan of one member, newest borrow first."""
        transactions = await self._store.list_transactions(member_id=member_id)
        return await self._views(self._ledger.newest_first(transactions))

    async def _open_loans(self, member_id: Optional[str] = None) -> list[Transaction]:
        # Same predicate as count_active_loans, so listings match capacity checks.
        transactions = await self._store.list_transactions(
            member_id=member_id,
            status=TransactionStatus.ACTIVE,
        )
        return [t for t in transactions if t.is_open]

    async def active_loans(self, member_id: Optional[str] = None) -> list[LoanView]:
        transactions = await self._open_loans(member_id)
        return await self._views(self._ledger.newest_first(transactions))

    async def overdue_loans(self, member_id: Optional[str] = None) -> list[LoanView]:
        """Open loans past due, longest overdue first."""
        transactions = await self._open_loans(member_id)
        overdue = [t for t in transactions if self._ledger.is_overdue(t)]
        overdue.sort(key=lambda t: (t.due_date, id_sort_key(t.id)))
        return await self._views(overdue)

    async def all_transactions(self) -> list[LoanView]:
        transactions = await self._store.list_transactions()
        return await self._views(self._ledger.newest_first(transactions))

    async def statistics(self) -> LibraryStatistics:
        """
        Dashboard counts.

        total_fines adds frozen fines of returned loans to the running
        fines of open ones.
        """
        books = await self._store.list_books()
        members = await self._store.list_members()
        transactions = await self._store.list_transactions()

        active = [t for t in transactions if t.is_open]
        on_loan = Counter(t.book_id for t in active)
        total_fines = sum(
            (self._ledger.calculate_fine(t) for t in transactions),
            Decimal("0"),
        )

        return LibraryStatistics(
            total_books=len(books),
            total_members=len(members),
            total_transactions=len(transactions),
            available_books=sum(
                1 for book in books
                if available_copies(book.total_copies, on_loan[book.id]) > 0
            ),
            active_loans=len(active),
            overdue_loans=sum(1 for t in active if self._ledger.is_overdue(t)),
            total_fines=to_money(total_fines),
            generated_at=self._clock.now(),
        )
