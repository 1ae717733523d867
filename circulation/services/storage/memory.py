"""
In-Memory Storage Implementation

Used by tests and by callers that embed the engine without a database.
Behaves like the SQLite store: commits are all-or-nothing, usernames are
unique, and reads hand out copies.
"""

from typing import Optional
from uuid import UUID

from circulation.models.audit import AuditEvent
from circulation.models.circulation import (
    Book,
    Member,
    Transaction,
    TransactionStatus,
)
from circulation.services.storage.interface import (
    AuditStorageInterface,
    CirculationStoreInterface,
    DuplicateRecordError,
    RecordNotFoundError,
    StoreSnapshot,
    WriteBatch,
)


class InMemoryCirculationStore(CirculationStoreInterface):
    """Dict-backed circulation store."""

    def __init__(self):
        self._books: dict[str, Book] = {}
        self._members: dict[str, Member] = {}
        self._transactions: dict[str, Transaction] = {}

    async def initialize(self) -> None:
        return None

    async def get_book(self, book_id: str) -> Optional[Book]:
        book = self._books.get(book_id)
        return book.model_copy(deep=True) if book else None

    async def list_books(self, include_inactive: bool = False) -> list[Book]:
        return [
            book.model_copy(deep=True)
            for book in self._books.values()
            if include_inactive or book.is_active
        ]

    async def get_member(self, member_id: str) -> Optional[Member]:
        member = self._members.get(member_id)
        return member.model_copy(deep=True) if member else None

    async def get_member_by_username(self, username: str) -> Optional[Member]:
        for member in self._members.values():
            if member.username == username:
                return member.model_copy(deep=True)
        return None

    async def list_members(self, include_inactive: bool = False) -> list[Member]:
        return [
            member.model_copy(deep=True)
            for member in self._members.values()
            if include_inactive or member.is_active
        ]

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[Transaction]:
        results = []
        for transaction in self._transactions.values():
            if member_id is not None and transaction.member_id != member_id:
                continue
            if book_id is not None and transaction.book_id != book_id:
                continue
            if status is not None and transaction.status != status:
                continue
            results.append(transaction.model_copy(deep=True))
        return results

    async def count_active_loans(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> int:
        return sum(
            1
            for transaction in self._transactions.values()
            if transaction.is_open
            and (member_id is None or transaction.member_id == member_id)
            and (book_id is None or transaction.book_id == book_id)
        )

    async def commit(self, batch: WriteBatch, timeout: Optional[float] = None) -> None:
        # Applied within one step of the event loop, so it cannot outlive a deadline.
        # Check everything before touching anything.
        self._check_batch(batch)

        for book in batch.books:
            self._books[book.id] = book.model_copy(deep=True)
        for member in batch.members:
            self._members[member.id] = member.model_copy(deep=True)
        for transaction in batch.transactions:
            self._transactions[transaction.id] = transaction.model_copy(deep=True)

    async def snapshot(self) -> StoreSnapshot:
        books = [book.model_copy(deep=True) for book in self._books.values()]
        return StoreSnapshot(
            books=books,
            members=[m.model_copy(deep=True) for m in self._members.values()],
            transactions=[t.model_copy(deep=True) for t in self._transactions.values()],
            stored_availability={book.id: book.available_copies for book in books},
        )

    def _check_batch(self, batch: WriteBatch) -> None:
        for table, inserts, updates in (
            (self._books, batch.insert_books, batch.update_books),
            (self._members, batch.insert_members, batch.update_members),
            (self._transactions, batch.insert_transactions, batch.update_transactions),
        ):
            inserted_ids = [record.id for record in inserts]
            if len(set(inserted_ids)) != len(inserted_ids):
                raise DuplicateRecordError("Batch inserts the same id twice")
            for record_id in inserted_ids:
                if record_id in table:
                    raise DuplicateRecordError(f"Record already exists: {record_id}")
            for record in updates:
                if record.id not in table:
                    raise RecordNotFoundError(f"Record not found: {record.id}")

        # Username uniqueness across stored and incoming members
        usernames = {
            member.username: member.id
            for member in self._members.values()
        }
        for member in batch.members:
            owner = usernames.get(member.username)
            if owner is not None and owner != member.id:
                raise DuplicateRecordError(f"Username already taken: {member.username}")
            usernames[member.username] = member.id

        # Foreign keys
        known_books = set(self._books) | {book.id for book in batch.insert_books}
        known_members = set(self._members) | {m.id for m in batch.insert_members}
        for transaction in batch.transactions:
            if transaction.book_id not in known_books:
                raise RecordNotFoundError(f"Unknown book: {transaction.book_id}")
            if transaction.member_id not in known_members:
                raise RecordNotFoundError(f"Unknown member: {transaction.member_id}")


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)
