"""
Consistency Coordinator for Library Circulation

This module ties together the catalog, registry and ledger and is the only
entry point the desk UI calls for anything that changes state.

DESIGN DECISION: Every mutation follows one protocol, "store first, cache
second":
1. Check the actor's capability
2. Validate against the store (never the cache)
3. Commit the records to the store as one atomic batch
4. Only then mirror the batch into the cache
5. Re-derive copy counts from the store and replace the cached books
6. Audit the outcome

A store failure or timeout in steps 2-3 raises PersistenceError and the
cache is never touched. A timed-out commit is rolled back by the store and
awaited to its end, so no write lands after the error. resync() rebuilds
the cache wholesale and repairs persisted counts that have drifted from the
transaction table.

Concurrency: per-entity locks serialize mutations on the same book or
member across steps 2-5; resync holds a gate exclusively so it never sees a
half-applied mutation.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from circulation.audit import AuditLogger, configure_logging, create_correlation_id
from circulation.cache import CirculationCache
from circulation.catalog import BookCatalog
from circulation.clock import Clock, SystemClock
from circulation.config import AppSettings, get_settings
from circulation.errors import AuthError, CirculationError, PersistenceError
from circulation.ids import (
    BOOK_PREFIX,
    MEMBER_PREFIX,
    TRANSACTION_PREFIX,
    IdGenerator,
    id_sort_key,
)
from circulation.ledger import TransactionLedger
from circulation.locking import EntityLocks, ResyncGate, book_key, member_key
from circulation.models.circulation import (
    Book,
    BookSpec,
    CapacityInfo,
    LibraryStatistics,
    LoanView,
    Member,
    MemberSpec,
    ResyncReport,
    Transaction,
)
from circulation.permissions import (
    Capability,
    current_actor,
    require_capability,
    require_loan_access,
    require_view_access,
)
from circulation.queries import CirculationQueries
from circulation.registry import MemberRegistry
from circulation.sample_data import seed_sample_data
from circulation.services.storage import (
    CirculationStoreInterface,
    InMemoryAuditStorage,
    InMemoryCirculationStore,
    SQLiteAuditStorage,
    SQLiteCirculationStore,
    SQLiteClient,
    StorageError,
    StoreSnapshot,
    WriteBatch,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def username_key(username: str) -> str:
    return f"username:{username}"


class CirculationCoordinator:
    """
    Orchestrates every circulation operation.

    Construct one per store; there is no global instance. Call
    initialize() before use so the cache and identifier counters are
    loaded from the store.
    """

    def __init__(
        self,
        store: CirculationStoreInterface,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[CirculationCache] = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings().app
        self._audit = audit_logger or AuditLogger()
        self._cache = cache or CirculationCache()

        self._catalog = BookCatalog(store)
        self._registry = MemberRegistry(store)
        self._ledger = TransactionLedger(store, self._catalog, self._registry, self._clock)
        self._queries = CirculationQueries(store, self._ledger, self._clock)

        self._locks = EntityLocks()
        self._gate = ResyncGate()

        self._book_ids = IdGenerator(BOOK_PREFIX)
        self._member_ids = IdGenerator(MEMBER_PREFIX)
        self._transaction_ids = IdGenerator(TRANSACTION_PREFIX)

        self._resync_task: Optional[asyncio.Task] = None

    @property
    def cache(self) -> CirculationCache:
        return self._cache

    @property
    def store(self) -> CirculationStoreInterface:
        return self._store

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def ledger(self) -> TransactionLedger:
        return self._ledger

    # =========================================================================
    # PROTOCOL
    # =========================================================================

    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        """Run a store-touching step under the store timeout."""
        timeout = self._settings.store_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Store did not answer within {timeout}s during {operation}",
                {"operation": operation, "timeout_seconds": timeout},
            ) from e
        except StorageError as e:
            raise PersistenceError(
                f"Store failure during {operation}: {e}",
                {"operation": operation},
            ) from e

    async def _commit(self, batch: WriteBatch, operation: str) -> None:
        """
        Commit under the store timeout without letting a write land unseen.

        The store gets the same deadline and rolls back a late batch. On
        timeout the caller still waits for the store's verdict while
        holding its locks: a batch that made it is treated as committed,
        one that did not becomes a PersistenceError.
        """
        timeout = self._settings.store_timeout_seconds
        pending = asyncio.ensure_future(self._store.commit(batch, timeout=timeout))
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout=timeout)
            return
        except asyncio.TimeoutError:
            pass
        except StorageError as e:
            raise PersistenceError(
                f"Store failure during {operation}: {e}",
                {"operation": operation},
            ) from e

        try:
            await pending
        except StorageError as e:
            raise PersistenceError(
                f"Store did not commit within {timeout}s during {operation}: {e}",
                {"operation": operation, "timeout_seconds": timeout},
            ) from e
        logger.warning("late_commit_landed", operation=operation, timeout_seconds=timeout)

    async def _current_actor(self, actor: Optional[Member]) -> Optional[Member]:
        if actor is None:
            return None
        stored = await self._bounded(self._store.get_member(actor.id), "resolve_actor")
        return current_actor(actor, stored)

    def _cached_actor(self, actor: Optional[Member]) -> Optional[Member]:
        if actor is None:
            return None
        return current_actor(actor, self._cache.get_member(actor.id))

    @asynccontextmanager
    async def _audited(
        self,
        operation: str,
        correlation_id: UUID,
        actor: Optional[Member],
    ) -> AsyncIterator[None]:
        """Audit every rejection with its code, then let it propagate."""
        actor_id = actor.id if actor else None
        try:
            yield
        except PersistenceError as e:
            logger.error("mutation_failed", operation=operation, error=e.message)
            await self._audit.log_persistence_failed(operation, e.message, correlation_id)
            raise
        except CirculationError as e:
            logger.info("mutation_rejected", operation=operation, code=e.code)
            await self._audit.log_operation_rejected(
                operation=operation,
                error_code=e.code,
                error_message=e.message,
                correlation_id=correlation_id,
                actor_id=actor_id,
            )
            raise

    async def _apply(
        self,
        operation: str,
        lock_keys: list[str],
        plan: Callable[[], Awaitable[WriteBatch]],
    ) -> WriteBatch:
        """
        Validate, commit, mirror, reconcile.

        plan() runs under the locks and must read the store, not the cache.
        """
        async with self._gate.shared():
            async with self._locks.hold(*lock_keys):
                batch = await self._bounded(plan(), operation)
                await self._commit(batch, operation)
                self._cache.apply(batch)
                await self._reconcile(batch, operation)
        return batch

    async def _reconcile(self, batch: WriteBatch, operation: str) -> None:
        """Replace cached books touched by the batch with store-derived counts."""
        written = {book.id: book for book in batch.books}
        book_ids = set(written) | {t.book_id for t in batch.transactions}

        for book_id in sorted(book_ids, key=id_sort_key):
            try:
                book = await self._bounded(self._catalog.reconcile(book_id), operation)
            except PersistenceError as e:
                # The write is durable; the next resync will refresh this book.
                logger.warning("reconcile_failed", operation=operation, book_id=book_id, error=e.message)
                continue
            if book is None:
                continue
            expected = written.get(book_id)
            if expected is not None and expected.borrowed_copies != book.borrowed_copies:
                logger.warning(
                    "reconcile_corrected",
                    operation=operation,
                    book_id=book_id,
                    written=expected.borrowed_copies,
                    derived=book.borrowed_copies,
                )
            self._cache.put_book(book)

    # =========================================================================
    # STARTUP AND RESYNC
    # =========================================================================

    async def initialize(self, seed_sample_data_if_empty: Optional[bool] = None) -> ResyncReport:
        """
        Create the schema, optionally seed an empty store, and load the cache.
        """
        seed = (
            self._settings.seed_sample_data
            if seed_sample_data_if_empty is None
            else seed_sample_data_if_empty
        )
        await self._bounded(self._store.initialize(), "initialize")
        if seed:
            await self._bounded(
                seed_sample_data(self._store, self._clock, self._audit),
                "seed_sample_data",
            )
        return await self.resync()

    async def resync(self) -> ResyncReport:
        """
        Rebuild the cache from one store snapshot.

        Every book's borrowed count is re-derived from its ACTIVE
        transactions. Persisted counts that disagree are written back when
        repair_drift is on. Idempotent; never overlaps a mutation or another
        resync.
        """
        correlation_id = create_correlation_id()

        async with self._gate.exclusive():
            try:
                snapshot = await self._bounded(self._store.snapshot(), "resync")

                on_loan = Counter(t.book_id for t in snapshot.transactions if t.is_open)
                books = []
                drifted: list[tuple[Book, Book]] = []
                for stored in snapshot.books:
                    derived = stored.model_copy(update={"borrowed_copies": on_loan.get(stored.id, 0)})
                    stored_available = snapshot.stored_availability.get(stored.id, stored.available_copies)
                    if (
                        derived.borrowed_copies != stored.borrowed_copies
                        or derived.available_copies != stored_available
                    ):
                        drifted.append((stored, derived))
                    books.append(derived)

                repaired: list[str] = []
                if drifted and self._settings.repair_drift:
                    batch = WriteBatch(update_books=[derived for _, derived in drifted])
                    await self._commit(batch, "resync")
                    repaired = [derived.id for _, derived in drifted]
            except PersistenceError as e:
                logger.error("resync_failed", error=e.message)
                await self._audit.log_persistence_failed("resync", e.message, correlation_id)
                raise

            self._cache.replace(StoreSnapshot(
                books=books,
                members=snapshot.members,
                transactions=snapshot.transactions,
            ))
            self._book_ids.observe_all(book.id for book in snapshot.books)
            self._member_ids.observe_all(member.id for member in snapshot.members)
            self._transaction_ids.observe_all(t.id for t in snapshot.transactions)

        for stored, derived in drifted:
            if stored.id in repaired:
                await self._audit.log_drift_repaired(
                    book_id=stored.id,
                    stored_borrowed=stored.borrowed_copies,
                    derived_borrowed=derived.borrowed_copies,
                    correlation_id=correlation_id,
                )
            else:
                logger.warning(
                    "drift_detected",
                    book_id=stored.id,
                    stored_borrowed=stored.borrowed_copies,
                    derived_borrowed=derived.borrowed_copies,
                )

        report = ResyncReport(
            books=len(snapshot.books),
            members=len(snapshot.members),
            transactions=len(snapshot.transactions),
            repaired_book_ids=repaired,
            completed_at=self._clock.now(),
        )
        await self._audit.log_resync_completed(
            books=report.books,
            members=report.members,
            transactions=report.transactions,
            repaired=len(report.repaired_book_ids),
            correlation_id=correlation_id,
        )
        return report

    def start_periodic_resync(self, interval_seconds: Optional[float] = None) -> asyncio.Task:
        """
        Launch the background resync loop. Returns the running task if one
        is already active.
        """
        interval = (
            self._settings.resync_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        if interval <= 0:
            raise ValueError("Resync interval must be positive")

        if self._resync_task is not None and not self._resync_task.done():
            return self._resync_task

        self._resync_task = asyncio.create_task(
            self._resync_loop(interval),
            name="circulation-periodic-resync",
        )
        logger.info("periodic_resync_started", interval_seconds=interval)
        return self._resync_task

    async def _resync_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.resync()
            except PersistenceError as e:
                # Already audited by resync(); try again next interval.
                logger.warning("periodic_resync_failed", error=e.message)

    async def stop_periodic_resync(self) -> None:
        task, self._resync_task = self._resync_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("periodic_resync_stopped")

    @property
    def periodic_resync_running(self) -> bool:
        return self._resync_task is not None and not self._resync_task.done()

    async def close(self) -> None:
        await self.stop_periodic_resync()

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def add_book(self, spec: BookSpec, actor: Optional[Member] = None) -> Book:
        correlation_id = create_correlation_id()
        async with self._audited("add_book", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_CATALOG)

            async def plan() -> WriteBatch:
                book = self._catalog.plan_add(spec, self._clock.now(), self._book_ids.next)
                return WriteBatch().insert(book)

            batch = await self._apply("add_book", [], plan)

        book = self._cache.get_book(batch.insert_books[0].id) or batch.insert_books[0]
        await self._audit.log_book_added(
            book_id=book.id,
            title=book.title,
            total_copies=book.total_copies,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return book

    async def update_book(
        self,
        book_id: str,
        spec: BookSpec,
        actor: Optional[Member] = None,
    ) -> Book:
        correlation_id = create_correlation_id()
        async with self._audited("update_book", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_CATALOG)

            async def plan() -> WriteBatch:
                book = await self._catalog.plan_update(book_id, spec, self._clock.now())
                return WriteBatch().update(book)

            batch = await self._apply("update_book", [book_key(book_id)], plan)

        await self._audit.log_book_updated(
            book_id=book_id,
            changes=spec.model_dump(),
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return self._cache.get_book(book_id) or batch.update_books[0]

    async def delete_book(self, book_id: str, actor: Optional[Member] = None) -> None:
        correlation_id = create_correlation_id()
        async with self._audited("delete_book", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_CATALOG)

            async def plan() -> WriteBatch:
                return WriteBatch().update(await self._catalog.plan_delete(book_id))

            await self._apply("delete_book", [book_key(book_id)], plan)

        await self._audit.log_book_deleted(
            book_id=book_id,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )

    def get_book(self, book_id: str) -> Optional[Book]:
        return self._cache.get_book(book_id)

    def list_books(self, include_inactive: bool = False) -> list[Book]:
        books = [b for b in self._cache.books() if include_inactive or b.is_active]
        return sorted(books, key=lambda b: id_sort_key(b.id))

    def search_books(self, term: Optional[str]) -> list[Book]:
        return self._catalog.search(self._cache.books(), term)

    def available_books(self) -> list[Book]:
        return self._catalog.available(self._cache.books())

    # =========================================================================
    # REGISTRY
    # =========================================================================

    async def add_member(self, spec: MemberSpec, actor: Optional[Member] = None) -> Member:
        correlation_id = create_correlation_id()
        async with self._audited("add_member", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_MEMBERS)

            async def plan() -> WriteBatch:
                member = await self._registry.plan_add(spec, self._clock.now(), self._member_ids.next)
                return WriteBatch().insert(member)

            batch = await self._apply("add_member", [username_key(spec.username)], plan)

        member = batch.insert_members[0]
        await self._audit.log_member_added(
            member_id=member.id,
            username=member.username,
            role=member.role.value,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return member

    async def update_member(
        self,
        member_id: str,
        spec: MemberSpec,
        actor: Optional[Member] = None,
    ) -> Member:
        correlation_id = create_correlation_id()
        async with self._audited("update_member", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_MEMBERS)

            async def plan() -> WriteBatch:
                return WriteBatch().update(await self._registry.plan_update(member_id, spec))

            batch = await self._apply(
                "update_member",
                [member_key(member_id), username_key(spec.username)],
                plan,
            )

        await self._audit.log_member_updated(
            member_id=member_id,
            changes=spec.model_dump(exclude={"password"}),
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return batch.update_members[0]

    async def delete_member(self, member_id: str, actor: Optional[Member] = None) -> None:
        correlation_id = create_correlation_id()
        async with self._audited("delete_member", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_MEMBERS)

            async def plan() -> WriteBatch:
                return WriteBatch().update(await self._registry.plan_delete(member_id))

            await self._apply("delete_member", [member_key(member_id)], plan)

        await self._audit.log_member_deleted(
            member_id=member_id,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )

    async def set_capacity(
        self,
        member_id: str,
        new_capacity: int,
        actor: Optional[Member] = None,
    ) -> Member:
        correlation_id = create_correlation_id()
        previous: dict[str, int] = {}
        async with self._audited("set_capacity", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.MANAGE_MEMBERS)

            async def plan() -> WriteBatch:
                current = await self._registry.require_member(member_id)
                previous["capacity"] = current.book_capacity
                return WriteBatch().update(
                    await self._registry.plan_capacity_change(member_id, new_capacity)
                )

            batch = await self._apply("set_capacity", [member_key(member_id)], plan)

        await self._audit.log_capacity_changed(
            member_id=member_id,
            old_capacity=previous.get("capacity", new_capacity),
            new_capacity=new_capacity,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return batch.update_members[0]

    async def authenticate(self, username: str, password: str) -> Member:
        try:
            return await self._bounded(
                self._registry.authenticate(username, password),
                "authenticate",
            )
        except AuthError:
            await self._audit.log_auth_failed(username)
            raise

    def get_member(self, member_id: str) -> Optional[Member]:
        return self._cache.get_member(member_id)

    def list_members(
        self,
        include_inactive: bool = False,
        actor: Optional[Member] = None,
    ) -> list[Member]:
        require_view_access(self._cached_actor(actor))
        members = [m for m in self._cache.members() if include_inactive or m.is_active]
        return sorted(members, key=lambda m: id_sort_key(m.id))

    async def active_loan_count(self, member_id: str) -> int:
        return await self._bounded(self._registry.active_loan_count(member_id), "active_loan_count")

    async def remaining_slots(self, member_id: str) -> int:
        return await self._bounded(self._registry.remaining_slots(member_id), "remaining_slots")

    async def can_borrow(self, member_id: str) -> bool:
        return await self._bounded(self._registry.can_borrow(member_id), "can_borrow")

    async def capacity_info(self, member_id: str) -> CapacityInfo:
        return await self._bounded(self._registry.capacity_info(member_id), "capacity_info")

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def borrow(
        self,
        book_id: str,
        member_id: str,
        actor: Optional[Member] = None,
    ) -> Transaction:
        """
        Lend one copy of a book to a member.

        Raises:
            NotAvailableError: No copy on the shelf
            CapacityError: Member has no free slot
            PersistenceError: The store failed; nothing changed
        """
        correlation_id = create_correlation_id()
        async with self._audited("borrow", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_loan_access(actor, member_id)

            async def plan() -> WriteBatch:
                return await self._ledger.plan_borrow(book_id, member_id, self._transaction_ids.next)

            batch = await self._apply(
                "borrow",
                [book_key(book_id), member_key(member_id)],
                plan,
            )

        transaction = batch.insert_transactions[0]
        await self._audit.log_loan_borrowed(
            transaction_id=transaction.id,
            book_id=book_id,
            member_id=member_id,
            due_date=transaction.due_date,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return transaction

    async def return_book(
        self,
        transaction_id: str,
        actor: Optional[Member] = None,
    ) -> Transaction:
        """
        Close a loan and freeze its fine.

        Raises:
            AlreadyReturnedError: The loan is not ACTIVE; nothing changed
        """
        correlation_id = create_correlation_id()
        async with self._audited("return_book", correlation_id, actor):
            actor = await self._current_actor(actor)
            current = await self._bounded(
                self._ledger.require_transaction(transaction_id),
                "return_book",
            )
            require_loan_access(actor, current.member_id)

            async def plan() -> WriteBatch:
                return await self._ledger.plan_return(transaction_id)

            batch = await self._apply(
                "return_book",
                [book_key(current.book_id), member_key(current.member_id)],
                plan,
            )

        closed = batch.update_transactions[0]
        await self._audit.log_loan_returned(
            transaction_id=closed.id,
            book_id=closed.book_id,
            fine_amount=closed.fine_amount,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return closed

    async def cancel_transaction(
        self,
        transaction_id: str,
        reason: str = "",
        actor: Optional[Member] = None,
    ) -> Transaction:
        """Administrative cancel of an ACTIVE loan."""
        correlation_id = create_correlation_id()
        async with self._audited("cancel_transaction", correlation_id, actor):
            actor = await self._current_actor(actor)
            require_capability(actor, Capability.CANCEL_LOAN)
            current = await self._bounded(
                self._ledger.require_transaction(transaction_id),
                "cancel_transaction",
            )

            async def plan() -> WriteBatch:
                return await self._ledger.plan_cancel(transaction_id, reason)

            batch = await self._apply(
                "cancel_transaction",
                [book_key(current.book_id), member_key(current.member_id)],
                plan,
            )

        cancelled = batch.update_transactions[0]
        await self._audit.log_loan_cancelled(
            transaction_id=cancelled.id,
            reason=reason,
            correlation_id=correlation_id,
            actor_id=actor.id if actor else None,
        )
        return cancelled

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._cache.get_transaction(transaction_id)

    def calculate_fine(self, transaction: Transaction) -> Decimal:
        return self._ledger.calculate_fine(transaction)

    def loan_view(self, transaction: Transaction) -> LoanView:
        return self._ledger.to_view(
            transaction,
            book=self._cache.get_book(transaction.book_id),
            member=self._cache.get_member(transaction.member_id),
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def member_transactions(
        self,
        member_id: str,
        actor: Optional[Member] = None,
    ) -> list[LoanView]:
        """A member's loans, newest first."""
        actor = await self._current_actor(actor)
        require_view_access(actor, member_id)
        return await self._bounded(self._queries.member_history(member_id), "member_transactions")

    async def active_loans(
        self,
        member_id: Optional[str] = None,
        actor: Optional[Member] = None,
    ) -> list[LoanView]:
        actor = await self._current_actor(actor)
        require_view_access(actor, member_id)
        return await self._bounded(self._queries.active_loans(member_id), "active_loans")

    async def overdue_loans(
        self,
        member_id: Optional[str] = None,
        actor: Optional[Member] = None,
    ) -> list[LoanView]:
        actor = await self._current_actor(actor)
        require_view_access(actor, member_id)
        return await self._bounded(self._queries.overdue_loans(member_id), "overdue_loans")

    async def all_transactions(self, actor: Optional[Member] = None) -> list[LoanView]:
        actor = await self._current_actor(actor)
        require_view_access(actor)
        return await self._bounded(self._queries.all_transactions(), "all_transactions")

    async def statistics(self, actor: Optional[Member] = None) -> LibraryStatistics:
        actor = await self._current_actor(actor)
        require_view_access(actor)
        return await self._bounded(self._queries.statistics(), "statistics")


def create_coordinator(
    use_sqlite: bool = True,
    clock: Optional[Clock] = None,
) -> CirculationCoordinator:
    """
    Factory function to create a coordinator wired from settings.

    Args:
        use_sqlite: Use the SQLite store at LIBRARY_DB_PATH.
                    Set to False for an in-memory store.

    Call `await coordinator.initialize()` before use.
    """
    settings = get_settings()
    app = settings.app
    configure_logging(app.log_level, app.log_json)

    if use_sqlite:
        client = SQLiteClient(settings.store)
        store = SQLiteCirculationStore(client)
        audit_logger = AuditLogger(SQLiteAuditStorage(client))
    else:
        store = InMemoryCirculationStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    return CirculationCoordinator(
        store=store,
        clock=clock,
        settings=app,
        audit_logger=audit_logger,
    )
