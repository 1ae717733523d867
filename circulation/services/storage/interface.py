"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the durable store.
This allows us to:
1. Run against SQLite in production
2. Use in-memory storage for testing and embedding
3. Keep the consistency protocol decoupled from the storage engine

The store is the source of truth. Multi-record mutations (a loan and the
book it moves) go through commit() as one WriteBatch so a failure leaves
no partial mutation behind.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from circulation.models.audit import AuditEvent
from circulation.models.circulation import (
    Book,
    Member,
    Transaction,
    TransactionStatus,
)


Record = Union[Book, Member, Transaction]


class WriteBatch(BaseModel):
    """
    Records to write atomically.

    Inserts must not collide with existing ids; updates must target
    existing ids. Either every record lands or none does.
    """

    insert_books: list[Book] = Field(default_factory=list)
    update_books: list[Book] = Field(default_factory=list)
    insert_members: list[Member] = Field(default_factory=list)
    update_members: list[Member] = Field(default_factory=list)
    insert_transactions: list[Transaction] = Field(default_factory=list)
    update_transactions: list[Transaction] = Field(default_factory=list)

    def insert(self, record: Record) -> 'WriteBatch':
        self._bucket(record, "insert").append(record)
        return self

    def update(self, record: Record) -> 'WriteBatch':
        self._bucket(record, "update").append(record)
        return self

    def _bucket(self, record: Record, action: str) -> list:
        if isinstance(record, Book):
            return getattr(self, f"{action}_books")
        if isinstance(record, Member):
            return getattr(self, f"{action}_members")
        if isinstance(record, Transaction):
            return getattr(self, f"{action}_transactions")
        raise TypeError(f"Cannot store {type(record).__name__}")

    @property
    def books(self) -> list[Book]:
        return self.insert_books + self.update_books

    @property
    def members(self) -> list[Member]:
        return self.insert_members + self.update_members

    @property
    def transactions(self) -> list[Transaction]:
        return self.insert_transactions + self.update_transactions

    @property
    def is_empty(self) -> bool:
        return not (self.books or self.members or self.transactions)


class StoreSnapshot(BaseModel):
    """
    Every record, read in one consistent pass.

    stored_availability carries the persisted available_copies column per
    book so resync can detect drift in it.
    """

    books: list[Book] = Field(default_factory=list)
    members: list[Member] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    stored_availability: dict[str, int] = Field(default_factory=dict)


class CirculationStoreInterface(ABC):
    """
    Abstract interface for the durable circulation store.

    Any storage implementation must implement these methods. Reads return
    copies; mutating a returned record never changes the store.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        pass

    # -- books ---------------------------------------------------------------

    @abstractmethod
    async def get_book(self, book_id: str) -> Optional[Book]:
        """Book by id, active or not. None if absent."""
        pass

    @abstractmethod
    async def list_books(self, include_inactive: bool = False) -> list[Book]:
        pass

    # -- members -------------------------------------------------------------

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[Member]:
        pass

    @abstractmethod
    async def get_member_by_username(self, username: str) -> Optional[Member]:
        """Exact username match, including inactive accounts."""
        pass

    @abstractmethod
    async def list_members(self, include_inactive: bool = False) -> list[Member]:
        pass

    # -- transactions --------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Returns:
            Matching transactions, no particular order
        """
        pass

    @abstractmethod
    async def count_active_loans(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> int:
        """
        Authoritative count of ACTIVE transactions.

        This is the number capacity and availability decisions are made on.
        """
        pass

    # -- bulk ----------------------------------------------------------------

    @abstractmethod
    async def commit(self, batch: WriteBatch, timeout: Optional[float] = None) -> None:
        """
        Apply a batch atomically.

        With a timeout, a batch that cannot be committed within that many
        seconds is rolled back rather than landing late.

        Raises:
            StoreTimeoutError: The deadline passed; nothing was written
            DuplicateRecordError: An insert collides with an existing id or username
            RecordNotFoundError: An update targets a missing id
            StorageError: Any other failure; nothing was written
        """
        pass

    @abstractmethod
    async def snapshot(self) -> StoreSnapshot:
        """All records, active or not, from one consistent read."""
        pass

    # -- single-record helpers ------------------------------------------------

    async def insert_book(self, book: Book) -> None:
        await self.commit(WriteBatch().insert(book))

    async def update_book(self, book: Book) -> None:
        await self.commit(WriteBatch().update(book))

    async def insert_member(self, member: Member) -> None:
        await self.commit(WriteBatch().insert(member))

    async def update_member(self, member: Member) -> None:
        await self.commit(WriteBatch().update(member))

    async def insert_transaction(self, transaction: Transaction) -> None:
        await self.commit(WriteBatch().insert(transaction))

    async def update_transaction(self, transaction: Transaction) -> None:
        await self.commit(WriteBatch().update(transaction))

    async def is_empty(self) -> bool:
        """True when the store holds no books and no members."""
        books = await self.list_books(include_inactive=True)
        if books:
            return False
        members = await self.list_members(include_inactive=True)
        return not members


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one operation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Events about one record, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Record not found in storage."""
    pass


class DuplicateRecordError(StorageError):
    """Attempted to insert a duplicate record."""
    pass


class StoreConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class StoreTimeoutError(StorageError):
    """A commit ran past its deadline and was rolled back."""
    pass
