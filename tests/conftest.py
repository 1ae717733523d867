"""
Shared fixtures.

Every engine under test runs against a fixed clock so loan periods and
fines are deterministic.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from circulation.audit import AuditLogger
from circulation.clock import FixedClock
from circulation.config import AppSettings, StoreSettings
from circulation.coordinator import CirculationCoordinator
from circulation.models.circulation import BookSpec, MemberRole, MemberSpec
from circulation.services.storage import (
    InMemoryAuditStorage,
    InMemoryCirculationStore,
    SQLiteCirculationStore,
    SQLiteClient,
    StorageError,
    StoreTimeoutError,
    WriteBatch,
)


START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FlakyStore(InMemoryCirculationStore):
    """In-memory store that can be told to fail or stall its next commit."""

    def __init__(self):
        super().__init__()
        self.fail_next_commit = False
        self.commit_delay = 0.0
        self.land_late = False
        self.commits = 0

    async def commit(self, batch: WriteBatch, timeout=None) -> None:
        if self.commit_delay:
            await asyncio.sleep(self.commit_delay)
            if not self.land_late and timeout is not None and self.commit_delay >= timeout:
                raise StoreTimeoutError("commit deadline passed")
        if self.fail_next_commit:
            self.fail_next_commit = False
            raise StorageError("disk unavailable")
        await super().commit(batch)
        self.commits += 1


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def settings():
    return AppSettings(
        store_timeout_seconds=0.5,
        resync_interval_seconds=0,
        seed_sample_data=False,
        log_json=False,
    )


@pytest.fixture
def sqlite_client(tmp_path):
    return SQLiteClient(StoreSettings(path=str(tmp_path / "library.db")))


@pytest.fixture
def sqlite_store(sqlite_client):
    return SQLiteCirculationStore(sqlite_client)


@pytest.fixture
async def coordinator(store, clock, settings, audit_storage):
    engine = CirculationCoordinator(
        store=store,
        clock=clock,
        settings=settings,
        audit_logger=AuditLogger(audit_storage),
    )
    await engine.initialize(seed_sample_data_if_empty=False)
    yield engine
    await engine.close()


def book_spec(title="Dune", copies=1, **overrides) -> BookSpec:
    fields = {
        "title": title,
        "author": "Frank Herbert",
        "isbn": "978-0-441-17271-9",
        "genre": "Science Fiction",
        "total_copies": copies,
    }
    fields.update(overrides)
    return BookSpec(**fields)


def member_spec(username="alice", role=MemberRole.MEMBER, capacity=None, **overrides) -> MemberSpec:
    fields = {
        "username": username,
        "password": "secret",
        "full_name": username.title(),
        "email": f"{username}@example.com",
        "role": role,
        "book_capacity": capacity,
    }
    fields.update(overrides)
    return MemberSpec(**fields)


@pytest.fixture(name="book_spec")
def book_spec_factory():
    return book_spec


@pytest.fixture(name="member_spec")
def member_spec_factory():
    return member_spec
