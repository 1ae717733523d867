"""
In-memory read cache.

Holds the latest known copy of every book, member and transaction so the
desk can list and search without touching the store. It is only ever
written after the store accepted a write, or wholesale by resync.

Nothing read from here feeds a capacity or availability decision.
"""

from typing import Any, Optional

from circulation.models.circulation import Book, Member, Transaction
from circulation.services.storage import StoreSnapshot, WriteBatch


class CirculationCache:
    """Dict-backed cache keyed by record id."""

    def __init__(self):
        self._books: dict[str, Book] = {}
        self._members: dict[str, Member] = {}
        self._transactions: dict[str, Transaction] = {}
        self._hits = 0
        self._misses = 0
        self._resyncs = 0

    # -- reads ----------------------------------------------------------------

    def get_book(self, book_id: str) -> Optional[Book]:
        return self._count(self._books.get(book_id))

    def get_member(self, member_id: str) -> Optional[Member]:
        return self._count(self._members.get(member_id))

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._count(self._transactions.get(transaction_id))

    def books(self) -> list[Book]:
        return list(self._books.values())

    def members(self) -> list[Member]:
        return list(self._members.values())

    def transactions(self) -> list[Transaction]:
        return list(self._transactions.values())

    # -- writes ---------------------------------------------------------------

    def put_book(self, book: Book) -> None:
        self._books[book.id] = book

    def put_member(self, member: Member) -> None:
        self._members[member.id] = member

    def put_transaction(self, transaction: Transaction) -> None:
        self._transactions[transaction.id] = transaction

    def apply(self, batch: WriteBatch) -> None:
        """Mirror a batch the store has already committed."""
        for book in batch.books:
            self.put_book(book)
        for member in batch.members:
            self.put_member(member)
        for transaction in batch.transactions:
            self.put_transaction(transaction)

    def replace(self, snapshot: StoreSnapshot) -> None:
        """Drop everything and load a store snapshot."""
        self._books = {book.id: book for book in snapshot.books}
        self._members = {member.id: member for member in snapshot.members}
        self._transactions = {t.id: t for t in snapshot.transactions}
        self._resyncs += 1

    def get_stats(self) -> dict[str, Any]:
        return {
            "books": len(self._books),
            "members": len(self._members),
            "transactions": len(self._transactions),
            "hits": self._hits,
            "misses": self._misses,
            "resyncs": self._resyncs,
        }

    def _count(self, record):
        if record is None:
            self._misses += 1
        else:
            self._hits += 1
        return record
