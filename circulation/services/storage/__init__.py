"""
Storage Services Package

Provides the abstract store interface and its concrete implementations.
SQLite is the durable backend; the in-memory store mirrors its semantics
for tests and embedding.
"""

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
from circulation.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryCirculationStore,
)
from circulation.services.storage.sqlite_store import (
    SQLiteAuditStorage,
    SQLiteCirculationStore,
    SQLiteClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CirculationStoreInterface",
    "StoreSnapshot",
    "WriteBatch",
    # Exceptions
    "DuplicateRecordError",
    "RecordNotFoundError",
    "StorageError",
    "StoreConnectionError",
    "StoreTimeoutError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryCirculationStore",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteCirculationStore",
    "SQLiteClient",
]
