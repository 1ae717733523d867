"""
Tests for the SQLite store, run against a temporary database file.
"""

import asyncio
import sqlite3
import time
from datetime import timedelta
from decimal import Decimal

import pytest

from circulation.audit import AuditLogger, create_correlation_id
from circulation.clock import FixedClock
from circulation.coordinator import CirculationCoordinator
from circulation.errors import PersistenceError
from circulation.models.audit import AuditEventBuilder
from circulation.models.circulation import (
    Book,
    Member,
    MemberRole,
    Transaction,
    TransactionStatus,
)
from circulation.services.storage import (
    DuplicateRecordError,
    RecordNotFoundError,
    SQLiteAuditStorage,
    SQLiteCirculationStore,
    StoreTimeoutError,
    WriteBatch,
)


@pytest.fixture
async def db(sqlite_store):
    await sqlite_store.initialize()
    return sqlite_store


class SlowCommitStore(SQLiteCirculationStore):
    """SQLite store whose worker thread stalls before writing."""

    stall_seconds = 0.0

    def _commit_sync(self, batch, deadline=None):
        if self.stall_seconds:
            time.sleep(self.stall_seconds)
        super()._commit_sync(batch, deadline)


@pytest.fixture
async def slow_db(sqlite_client):
    store = SlowCommitStore(sqlite_client)
    await store.initialize()
    return store


def book(book_id="B001", **overrides) -> Book:
    fields = {"id": book_id, "title": "Dune", "author": "Herbert", "isbn": "1", "total_copies": 2}
    fields.update(overrides)
    return Book(**fields)


def member(member_id="U001", username="alice") -> Member:
    return Member(id=member_id, username=username, password="x", full_name="Alice")


def loan(clock, loan_id="T001", book_id="B001", member_id="U001") -> Transaction:
    now = clock.now()
    return Transaction(
        id=loan_id,
        book_id=book_id,
        member_id=member_id,
        borrow_date=now,
        due_date=now + timedelta(days=14),
    )


class TestRoundTrip:
    """Records come back as they went in."""

    async def test_book(self, db):
        """Test that a book survives a write and read."""
        original = book(genre="SF", publication_year=1965, description="Spice")
        await db.insert_book(original)

        stored = await db.get_book("B001")

        assert stored == original

    async def test_member(self, db):
        """Test that roles and capacity survive."""
        original = Member(id="U002", username="lib", password="x", role=MemberRole.LIBRARIAN)
        await db.insert_member(original)

        stored = await db.get_member_by_username("lib")

        assert stored.role == MemberRole.LIBRARIAN
        assert stored.book_capacity == 0

    async def test_transaction_with_fine(self, db, clock):
        """Test that returned loans keep their return date and fine."""
        await db.commit(WriteBatch().insert(book()).insert(member()).insert(loan(clock)))
        returned = (await db.get_transaction("T001")).model_copy(update={
            "status": TransactionStatus.RETURNED,
            "return_date": clock.now() + timedelta(days=17),
            "fine_amount": Decimal("3.00"),
        })
        await db.update_transaction(returned)

        stored = await db.get_transaction("T001")

        assert stored.status == TransactionStatus.RETURNED
        assert stored.fine_amount == Decimal("3.00")
        assert stored.return_date == clock.now() + timedelta(days=17)


class TestCommit:
    """Atomic batches."""

    async def test_available_column_is_written(self, db, sqlite_client):
        """Test that available_copies is persisted from the counts."""
        await db.insert_book(book(borrowed_copies=1))

        conn = sqlite3.connect(sqlite_client.path)
        try:
            row = conn.execute("SELECT available_copies FROM books WHERE id = 'B001'").fetchone()
        finally:
            conn.close()

        assert row[0] == 1

    async def test_failed_batch_writes_nothing(self, db, clock):
        """Test that an update of a missing record rolls back the whole batch."""
        batch = WriteBatch().insert(book()).update(member("U404"))

        with pytest.raises(RecordNotFoundError):
            await db.commit(batch)

        assert await db.get_book("B001") is None

    async def test_duplicate_username(self, db):
        """Test that the username constraint surfaces as DuplicateRecordError."""
        await db.insert_member(member())

        with pytest.raises(DuplicateRecordError):
            await db.insert_member(member("U002", "alice"))

    async def test_foreign_keys_enforced(self, db, clock):
        """Test that a loan of an unknown book is refused."""
        await db.insert_member(member())

        with pytest.raises(RecordNotFoundError):
            await db.insert_transaction(loan(clock, book_id="B404"))

    async def test_late_batch_is_rolled_back(self, slow_db, clock):
        """Test that a batch past its deadline raises and writes nothing."""
        await slow_db.insert_book(book())
        await slow_db.insert_member(member())
        slow_db.stall_seconds = 0.5

        with pytest.raises(StoreTimeoutError):
            await slow_db.commit(WriteBatch().insert(loan(clock)), timeout=0.2)

        assert await slow_db.get_transaction("T001") is None

    async def test_batch_within_deadline_commits(self, db, clock):
        """Test that a batch committed before its deadline lands normally."""
        await db.insert_book(book())
        await db.insert_member(member())

        await db.commit(WriteBatch().insert(loan(clock)), timeout=5.0)

        assert await db.count_active_loans(member_id="U001") == 1


class TestQueries:
    """Filters and counts."""

    async def test_count_active_loans(self, db, clock):
        """Test that only ACTIVE loans are counted."""
        await db.commit(
            WriteBatch()
            .insert(book())
            .insert(member())
            .insert(loan(clock, "T001"))
            .insert(loan(clock, "T002"))
        )
        first = await db.get_transaction("T001")
        await db.update_transaction(first.model_copy(update={
            "status": TransactionStatus.CANCELLED,
        }))

        assert await db.count_active_loans(member_id="U001") == 1
        assert await db.count_active_loans(book_id="B001") == 1
        assert len(await db.list_transactions(status=TransactionStatus.CANCELLED)) == 1

    async def test_inactive_books_hidden(self, db):
        """Test that list_books hides deleted books unless asked."""
        await db.insert_book(book("B001"))
        await db.insert_book(book("B002", is_active=False))

        assert [b.id for b in await db.list_books()] == ["B001"]
        assert len(await db.list_books(include_inactive=True)) == 2

    async def test_snapshot_reports_stored_availability(self, db, sqlite_client):
        """Test that the snapshot exposes the persisted availability column."""
        await db.insert_book(book())
        conn = sqlite3.connect(sqlite_client.path)
        try:
            with conn:
                conn.execute("UPDATE books SET available_copies = 0 WHERE id = 'B001'")
        finally:
            conn.close()

        snapshot = await db.snapshot()

        assert snapshot.stored_availability == {"B001": 0}
        assert snapshot.books[0].available_copies == 2


class TestAuditStorage:
    """Audit rows in the same database."""

    async def test_append_and_query(self, db, sqlite_client):
        """Test that events can be found by entity and correlation id."""
        storage = SQLiteAuditStorage(sqlite_client)
        correlation_id = create_correlation_id()
        event = AuditEventBuilder.book_deleted(book_id="B001", correlation_id=correlation_id, actor_id="U001")

        assert await storage.append_event(event)

        by_entity = await storage.get_events_by_entity("book", "B001")
        assert [e.event_id for e in by_entity] == [event.event_id]
        by_correlation = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.entity_id for e in by_correlation] == ["B001"]
        recent = await storage.get_recent_events(limit=5)
        assert recent[0].actor_id == "U001"


class TestEngineOnSQLite:
    """The coordinator end to end over a real database."""

    async def test_sample_library_and_resync(self, sqlite_store, sqlite_client, settings):
        """Test seeding, lending and drift repair against SQLite."""
        clock = FixedClock(book().created_at)
        engine = CirculationCoordinator(
            store=sqlite_store,
            clock=clock,
            settings=settings.model_copy(update={"store_timeout_seconds": 5.0}),
            audit_logger=AuditLogger(SQLiteAuditStorage(sqlite_client)),
        )
        await engine.initialize(seed_sample_data_if_empty=True)

        loan_record = await engine.borrow("B004", "U004")
        assert loan_record.id == "T004"
        assert engine.get_book("B004").available_copies == 1

        conn = sqlite3.connect(sqlite_client.path)
        try:
            with conn:
                conn.execute("UPDATE books SET borrowed_copies = 0, available_copies = 2 WHERE id = 'B004'")
        finally:
            conn.close()

        report = await engine.resync()

        assert report.repaired_book_ids == ["B004"]
        assert (await sqlite_store.get_book("B004")).borrowed_copies == 1

    async def test_timed_out_borrow_never_lands(
        self, slow_db, sqlite_client, settings, book_spec, member_spec
    ):
        """Test that a borrow whose write stalls past the timeout leaves store and cache unchanged."""
        engine = CirculationCoordinator(
            store=slow_db,
            clock=FixedClock(book().created_at),
            settings=settings,
            audit_logger=AuditLogger(SQLiteAuditStorage(sqlite_client)),
        )
        await engine.initialize(seed_sample_data_if_empty=False)
        title = await engine.add_book(book_spec())
        reader = await engine.add_member(member_spec())
        slow_db.stall_seconds = 1.0

        with pytest.raises(PersistenceError) as exc_info:
            await engine.borrow(title.id, reader.id)

        assert isinstance(exc_info.value.__cause__, StoreTimeoutError)
        await asyncio.sleep(slow_db.stall_seconds)
        assert await slow_db.count_active_loans() == 0
        assert await slow_db.get_book(title.id) == title
        assert engine.get_book(title.id).available_copies == 1
        assert engine.cache.transactions() == []
