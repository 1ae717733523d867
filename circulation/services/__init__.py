"""Services package."""

from circulation.services.storage import (
    AuditStorageInterface,
    CirculationStoreInterface,
    DuplicateRecordError,
    InMemoryAuditStorage,
    InMemoryCirculationStore,
    RecordNotFoundError,
    SQLiteAuditStorage,
    SQLiteCirculationStore,
    SQLiteClient,
    StorageError,
    StoreConnectionError,
    StoreSnapshot,
    StoreTimeoutError,
    WriteBatch,
)

__all__ = [
    "AuditStorageInterface",
    "CirculationStoreInterface",
    "DuplicateRecordError",
    "InMemoryAuditStorage",
    "InMemoryCirculationStore",
    "RecordNotFoundError",
    "SQLiteAuditStorage",
    "SQLiteCirculationStore",
    "SQLiteClient",
    "StorageError",
    "StoreConnectionError",
    "StoreSnapshot",
    "StoreTimeoutError",
    "WriteBatch",
]
