"""
Tests for the supporting pieces: identifiers, clock, locks, cache,
permissions, audit logging and settings.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from circulation.audit import AuditLogger
from circulation.cache import CirculationCache
from circulation.clock import FixedClock
from circulation.config import AppSettings, get_settings, validate_all_settings
from circulation.coordinator import create_coordinator
from circulation.errors import PermissionDeniedError
from circulation.ids import IdGenerator, id_sort_key
from circulation.locking import EntityLocks, ResyncGate, book_key
from circulation.models.audit import AuditEventBuilder
from circulation.models.circulation import Book, Member, MemberRole
from circulation.permissions import (
    Capability,
    has_capability,
    require_capability,
    require_loan_access,
    require_view_access,
)
from circulation.services.storage import (
    AuditStorageInterface,
    InMemoryCirculationStore,
    StoreSnapshot,
    WriteBatch,
)


class TestIds:
    """Identifier generation."""

    def test_sequence(self):
        """Test zero-padded sequential ids."""
        ids = IdGenerator("B")
        assert [ids.next(), ids.next()] == ["B001", "B002"]

    def test_seeded_from_existing(self):
        """Test that observed ids move the counter forward only."""
        ids = IdGenerator("T")
        ids.observe_all(["T007", "T003", "B999", "garbage"])
        assert ids.next() == "T008"

    def test_natural_order(self):
        """Test that B10 sorts after B9."""
        assert sorted(["B10", "B9", "B100"], key=id_sort_key) == ["B9", "B10", "B100"]


class TestClock:
    """The injectable clock."""

    def test_fixed_clock_advances(self):
        """Test that a fixed clock moves only when told."""
        clock = FixedClock(datetime(2024, 1, 1))
        assert clock.now().tzinfo == timezone.utc

        clock.advance(days=2, hours=1)

        assert clock.now() == datetime(2024, 1, 3, 1, tzinfo=timezone.utc)


class TestLocks:
    """Per-entity locks and the resync gate."""

    async def test_same_key_serializes(self):
        """Test that two holders of one key never overlap."""
        locks = EntityLocks()
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            async with locks.hold(book_key("B001")):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1
        assert not locks.is_locked(book_key("B001"))

    async def test_released_on_error(self):
        """Test that locks are released when the block raises."""
        locks = EntityLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("book:B001", "member:U001"):
                raise RuntimeError("boom")

        assert not locks.is_locked("book:B001")
        assert not locks.is_locked("member:U001")

    async def test_idle_locks_are_dropped(self):
        """Test that a lock leaves the table once nobody holds or waits for it."""
        locks = EntityLocks()
        sizes = []

        async def worker(book_id):
            async with locks.hold(book_key(book_id), "member:U001"):
                sizes.append(len(locks))
                await asyncio.sleep(0.005)

        await asyncio.gather(*(worker(f"B{n:03d}") for n in range(1, 6)))

        assert max(sizes) >= 2
        assert len(locks) == 0

    async def test_exclusive_waits_for_shared(self):
        """Test that resync waits for in-flight mutations to finish."""
        gate = ResyncGate()
        order = []

        async def mutation():
            async with gate.shared():
                await asyncio.sleep(0.02)
                order.append("mutation")

        async def resync():
            await asyncio.sleep(0.005)
            async with gate.exclusive():
                order.append("resync")

        await asyncio.gather(mutation(), resync())

        assert order == ["mutation", "resync"]

    async def test_waiting_exclusive_blocks_new_shared(self):
        """Test that a queued resync is not starved by later mutations."""
        gate = ResyncGate()
        order = []

        async def first_mutation():
            async with gate.shared():
                await asyncio.sleep(0.02)
                order.append("first")

        async def resync():
            await asyncio.sleep(0.005)
            async with gate.exclusive():
                order.append("resync")

        async def late_mutation():
            await asyncio.sleep(0.01)
            async with gate.shared():
                order.append("late")

        await asyncio.gather(first_mutation(), resync(), late_mutation())

        assert order == ["first", "resync", "late"]


class TestCache:
    """The read cache."""

    def test_apply_and_replace(self):
        """Test that batches are mirrored and snapshots replace everything."""
        cache = CirculationCache()
        book = Book(id="B001", title="Dune", author="Herbert", isbn="1", total_copies=1)
        cache.apply(WriteBatch().insert(book))
        assert cache.get_book("B001") == book

        cache.replace(StoreSnapshot())

        assert cache.get_book("B001") is None
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["resyncs"] == 1


class TestPermissions:
    """Role capabilities."""

    ADMIN = Member(id="U001", username="root", password="x", role=MemberRole.ADMIN)
    LIBRARIAN = Member(id="U002", username="lib", password="x", role=MemberRole.LIBRARIAN)
    MEMBER = Member(id="U003", username="alice", password="x")

    def test_role_table(self):
        """Test the capability split between roles."""
        assert has_capability(self.ADMIN, Capability.CANCEL_LOAN)
        assert has_capability(self.LIBRARIAN, Capability.MANAGE_CATALOG)
        assert not has_capability(self.LIBRARIAN, Capability.MANAGE_MEMBERS)
        assert not has_capability(self.MEMBER, Capability.VIEW_ALL)

    def test_inactive_actor_has_nothing(self):
        """Test that a deactivated admin is refused."""
        retired = self.ADMIN.model_copy(update={"is_active": False})
        with pytest.raises(PermissionDeniedError):
            require_capability(retired, Capability.MANAGE_CATALOG)

    def test_system_calls_are_trusted(self):
        """Test that a missing actor passes every check."""
        require_capability(None, Capability.CANCEL_LOAN)
        require_loan_access(None, "U003")
        require_view_access(None)

    def test_member_scope(self):
        """Test that members act only on their own records."""
        require_loan_access(self.MEMBER, "U003")
        require_view_access(self.MEMBER, "U003")
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_view_access(self.MEMBER)
        assert exc_info.value.code == "permission_denied"


class BrokenAuditStorage(AuditStorageInterface):
    async def append_event(self, event):
        raise OSError("disk full")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_events_by_entity(self, entity_type, entity_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:
    """Audit logging never breaks the operation it records."""

    async def test_local_only(self):
        """Test that a logger without storage reports success."""
        logger = AuditLogger()
        assert await logger.log(AuditEventBuilder.auth_failed("mallory"))

    async def test_storage_failure_is_contained(self):
        """Test that a failing audit store returns False instead of raising."""
        logger = AuditLogger(BrokenAuditStorage())
        assert await logger.log(AuditEventBuilder.auth_failed("mallory")) is False


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        """Test the shipped defaults."""
        settings = AppSettings()
        assert settings.store_timeout_seconds > 0
        assert settings.repair_drift is True

    def test_env_override(self, monkeypatch):
        """Test that environment variables override defaults."""
        monkeypatch.setenv("RESYNC_INTERVAL_SECONDS", "0")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = AppSettings()

        assert not settings.periodic_resync_enabled
        assert settings.log_level == "DEBUG"

    def test_rejects_unknown_level(self):
        """Test that an unknown log level fails validation."""
        with pytest.raises(ValueError):
            AppSettings(log_level="LOUD")

    def test_validate_all_settings(self):
        """Test that every section reports as loadable."""
        get_settings.cache_clear()
        results = validate_all_settings()
        assert results == {"store": True, "app": True}

    def test_factory_builds_in_memory_engine(self, monkeypatch):
        """Test that the factory wires an in-memory engine from settings."""
        monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "2.5")
        get_settings.cache_clear()

        coordinator = create_coordinator(use_sqlite=False)

        assert isinstance(coordinator.store, InMemoryCirculationStore)
        assert coordinator.settings.store_timeout_seconds == 2.5
        get_settings.cache_clear()
