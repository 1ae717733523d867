"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable store because:
1. The schema (books, members, transactions) is small and relational
2. No server to run at a single circulation desk
3. Multi-row writes get real transactions, so a loan and its book move
   together or not at all

TRADEOFFS:
- sqlite3 is blocking; every call runs in a worker thread
- One connection per call keeps threads from sharing a connection
- A worker thread cannot be cancelled, so a commit with a deadline
  interrupts and rolls itself back once the deadline passes

Timestamps are stored as ISO-8601 text in UTC. available_copies is written
on every book write so external readers see a current value, but the
engine never reads it as an input.
"""

import asyncio
import json
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from circulation.config import StoreSettings, get_settings
from circulation.models.audit import AuditEvent, AuditEventType, AuditSeverity
from circulation.models.circulation import (
    Book,
    Member,
    MemberRole,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from circulation.services.storage.interface import (
    AuditStorageInterface,
    CirculationStoreInterface,
    DuplicateRecordError,
    RecordNotFoundError,
    StorageError,
    StoreConnectionError,
    StoreSnapshot,
    StoreTimeoutError,
    WriteBatch,
)


logger = structlog.get_logger(__name__)

# SQLite VM instructions between deadline checks during a commit
PROGRESS_HANDLER_STEPS = 1000


SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author TEXT NOT NULL,
    isbn TEXT NOT NULL,
    genre TEXT,
    total_copies INTEGER NOT NULL DEFAULT 1,
    available_copies INTEGER NOT NULL DEFAULT 1,
    borrowed_copies INTEGER NOT NULL DEFAULT 0,
    description TEXT,
    publication_year INTEGER,
    publisher TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS members (
    id TEXT PRIMARY KEY,
    username TEXT UNIQUE NOT NULL,
    password TEXT NOT NULL,
    full_name TEXT,
    email TEXT,
    role TEXT NOT NULL,
    book_capacity INTEGER NOT NULL DEFAULT 5,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    member_id TEXT NOT NULL,
    borrow_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    return_date TEXT,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    fine_amount REAL NOT NULL DEFAULT 0.0,
    notes TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (book_id) REFERENCES books (id),
    FOREIGN KEY (member_id) REFERENCES members (id)
);

CREATE INDEX IF NOT EXISTS idx_transactions_member_status
    ON transactions (member_id, status);
CREATE INDEX IF NOT EXISTS idx_transactions_book_status
    ON transactions (book_id, status);

CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    actor_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_code TEXT,
    error_message TEXT,
    is_user_action INTEGER NOT NULL DEFAULT 0
);
"""

BOOK_COLUMNS = [
    "id",
    "title",
    "author",
    "isbn",
    "genre",
    "total_copies",
    "available_copies",
    "borrowed_copies",
    "description",
    "publication_year",
    "publisher",
    "is_active",
    "created_at",
]

MEMBER_COLUMNS = [
    "id",
    "username",
    "password",
    "full_name",
    "email",
    "role",
    "book_capacity",
    "is_active",
    "created_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "book_id",
    "member_id",
    "borrow_date",
    "due_date",
    "return_date",
    "type",
    "status",
    "fine_amount",
    "notes",
    "is_active",
    "created_at",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]


def _insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _update_sql(table: str, columns: list[str]) -> str:
    assignments = ", ".join(f"{column} = ?" for column in columns[1:])
    return f"UPDATE {table} SET {assignments} WHERE {columns[0]} = ?"


class SQLiteClient:
    """
    Low-level SQLite connection factory.

    Handles connection setup and provides retry logic for opening the
    database file.
    """

    def __init__(self, settings: Optional[StoreSettings] = None):
        self._settings = settings or get_settings().store

    @property
    def path(self) -> str:
        return self._settings.path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    def connect(self) -> sqlite3.Connection:
        """Open a connection with foreign keys enforced and Row access."""
        try:
            conn = sqlite3.connect(
                self._settings.path,
                timeout=self._settings.busy_timeout_seconds,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON;")
            return conn
        except sqlite3.Error as e:
            raise StoreConnectionError(
                f"Failed to open SQLite database {self._settings.path}: {e}"
            ) from e

    @contextmanager
    def session(self, deadline: Optional[float] = None) -> Iterator[sqlite3.Connection]:
        """
        One connection, one transaction.

        Commits when the block exits cleanly, rolls back otherwise. With a
        deadline (a time.monotonic() value), statements are interrupted and
        the transaction rolled back once it passes, so the block never
        commits late.
        """
        conn = self.connect()
        if deadline is not None:
            conn.set_progress_handler(
                lambda: int(time.monotonic() >= deadline),
                PROGRESS_HANDLER_STEPS,
            )
        try:
            with conn:
                yield conn
                if deadline is not None and time.monotonic() >= deadline:
                    raise StoreTimeoutError("Commit deadline passed; transaction rolled back")
        except sqlite3.Error as e:
            if deadline is not None and time.monotonic() >= deadline:
                raise StoreTimeoutError(f"Commit interrupted at deadline: {e}") from e
            raise StorageError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()


class SQLiteCirculationStore(CirculationStoreInterface):
    """
    SQLite implementation of the circulation store.

    Every public method hands its blocking work to a worker thread.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    @staticmethod
    def _book_to_row(book: Book) -> tuple:
        return (
            book.id,
            book.title,
            book.author,
            book.isbn,
            book.genre,
            book.total_copies,
            book.available_copies,
            book.borrowed_copies,
            book.description,
            book.publication_year,
            book.publisher,
            int(book.is_active),
            book.created_at.isoformat(),
        )

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            isbn=row["isbn"],
            genre=row["genre"] or "",
            total_copies=row["total_copies"],
            borrowed_copies=row["borrowed_copies"],
            description=row["description"],
            publication_year=row["publication_year"],
            publisher=row["publisher"] or "",
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _member_to_row(member: Member) -> tuple:
        return (
            member.id,
            member.username,
            member.password,
            member.full_name,
            member.email,
            member.role.value,
            member.book_capacity,
            int(member.is_active),
            member.created_at.isoformat(),
        )

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            username=row["username"],
            password=row["password"],
            full_name=row["full_name"] or "",
            email=row["email"] or "",
            role=MemberRole(row["role"]),
            book_capacity=row["book_capacity"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _transaction_to_row(transaction: Transaction) -> tuple:
        return (
            transaction.id,
            transaction.book_id,
            transaction.member_id,
            transaction.borrow_date.isoformat(),
            transaction.due_date.isoformat(),
            transaction.return_date.isoformat() if transaction.return_date else None,
            transaction.type.value,
            transaction.status.value,
            float(transaction.fine_amount),
            transaction.notes,
            int(transaction.is_active),
            transaction.created_at.isoformat(),
            transaction.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            book_id=row["book_id"],
            member_id=row["member_id"],
            borrow_date=datetime.fromisoformat(row["borrow_date"]),
            due_date=datetime.fromisoformat(row["due_date"]),
            return_date=(
                datetime.fromisoformat(row["return_date"])
                if row["return_date"] else None
            ),
            type=TransactionType(row["type"]),
            status=TransactionStatus(row["status"]),
            fine_amount=Decimal(str(row["fine_amount"] or 0)),
            notes=row["notes"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # =========================================================================
    # BLOCKING OPERATIONS (run in worker threads)
    # =========================================================================

    def _initialize_sync(self) -> None:
        with self._client.session() as conn:
            conn.executescript(SCHEMA)
        logger.info("sqlite_schema_ready", path=self._client.path)

    def _fetch_one(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        with self._client.session() as conn:
            return conn.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._client.session() as conn:
            return conn.execute(sql, params).fetchall()

    def _commit_sync(self, batch: WriteBatch, deadline: Optional[float] = None) -> None:
        plan = [
            ("books", BOOK_COLUMNS, batch.insert_books, batch.update_books, self._book_to_row),
            ("members", MEMBER_COLUMNS, batch.insert_members, batch.update_members, self._member_to_row),
            (
                "transactions",
                TRANSACTION_COLUMNS,
                batch.insert_transactions,
                batch.update_transactions,
                self._transaction_to_row,
            ),
        ]
        with self._client.session(deadline) as conn:
            try:
                for table, columns, inserts, updates, to_row in plan:
                    for record in inserts:
                        conn.execute(_insert_sql(table, columns), to_row(record))
                    for record in updates:
                        row = to_row(record)
                        cursor = conn.execute(_update_sql(table, columns), row[1:] + row[:1])
                        if cursor.rowcount == 0:
                            raise RecordNotFoundError(f"Record not found in {table}: {record.id}")
            except sqlite3.IntegrityError as e:
                # Raised inside the session so the transaction rolls back.
                if "FOREIGN KEY" in str(e):
                    raise RecordNotFoundError(f"Referenced record missing: {e}") from e
                raise DuplicateRecordError(f"Integrity constraint failed: {e}") from e

    def _snapshot_sync(self) -> StoreSnapshot:
        with self._client.session() as conn:
            # One read transaction so the three tables agree.
            conn.execute("BEGIN")
            book_rows = conn.execute("SELECT * FROM books").fetchall()
            member_rows = conn.execute("SELECT * FROM members").fetchall()
            transaction_rows = conn.execute("SELECT * FROM transactions").fetchall()

        return StoreSnapshot(
            books=[self._row_to_book(row) for row in book_rows],
            members=[self._row_to_member(row) for row in member_rows],
            transactions=[self._row_to_transaction(row) for row in transaction_rows],
            stored_availability={row["id"]: row["available_copies"] for row in book_rows},
        )

    # =========================================================================
    # ASYNC INTERFACE
    # =========================================================================

    async def initialize(self) -> None:
        await asyncio.to_thread(self._initialize_sync)

    async def get_book(self, book_id: str) -> Optional[Book]:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM books WHERE id = ?", (book_id,)
        )
        return self._row_to_book(row) if row else None

    async def list_books(self, include_inactive: bool = False) -> list[Book]:
        sql = "SELECT * FROM books"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        rows = await asyncio.to_thread(self._fetch_all, sql)
        return [self._row_to_book(row) for row in rows]

    async def get_member(self, member_id: str) -> Optional[Member]:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM members WHERE id = ?", (member_id,)
        )
        return self._row_to_member(row) if row else None

    async def get_member_by_username(self, username: str) -> Optional[Member]:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM members WHERE username = ?", (username,)
        )
        return self._row_to_member(row) if row else None

    async def list_members(self, include_inactive: bool = False) -> list[Member]:
        sql = "SELECT * FROM members"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        rows = await asyncio.to_thread(self._fetch_all, sql)
        return [self._row_to_member(row) for row in rows]

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        )
        return self._row_to_transaction(row) if row else None

    async def list_transactions(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[Transaction]:
        clauses = []
        params: list = []
        if member_id is not None:
            clauses.append("member_id = ?")
            params.append(member_id)
        if book_id is not None:
            clauses.append("book_id = ?")
            params.append(book_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        sql = "SELECT * FROM transactions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = await asyncio.to_thread(self._fetch_all, sql, tuple(params))
        return [self._row_to_transaction(row) for row in rows]

    async def count_active_loans(
        self,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM transactions WHERE status = ? AND is_active = 1"
        params: list = [TransactionStatus.ACTIVE.value]
        if member_id is not None:
            sql += " AND member_id = ?"
            params.append(member_id)
        if book_id is not None:
            sql += " AND book_id = ?"
            params.append(book_id)
        row = await asyncio.to_thread(self._fetch_one, sql, tuple(params))
        return int(row[0])

    async def commit(self, batch: WriteBatch, timeout: Optional[float] = None) -> None:
        if batch.is_empty:
            return
        deadline = time.monotonic() + timeout if timeout is not None else None
        await asyncio.to_thread(self._commit_sync, batch, deadline)

    async def snapshot(self) -> StoreSnapshot:
        return await asyncio.to_thread(self._snapshot_sync)


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only and share the circulation database file.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            actor_id=row["actor_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    def _append_sync(self, event: AuditEvent) -> None:
        with self._client.session() as conn:
            conn.execute(_insert_sql("audit_log", AUDIT_COLUMNS), event.to_row())

    def _select_sync(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._client.session() as conn:
            return conn.execute(sql, params).fetchall()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        await asyncio.to_thread(self._append_sync, event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = await asyncio.to_thread(
            self._select_sync,
            "SELECT * FROM audit_log WHERE correlation_id = ? ORDER BY timestamp",
            (str(correlation_id),),
        )
        return [self._row_to_event(row) for row in rows]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        rows = await asyncio.to_thread(
            self._select_sync,
            "SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ? ORDER BY timestamp",
            (entity_type, entity_id),
        )
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        rows = await asyncio.to_thread(
            self._select_sync,
            "SELECT * FROM audit_log ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_event(row) for row in rows]
