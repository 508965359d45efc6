"""Database module for local SQLite storage."""

from .cache import CachedRecord, RecordCache
from .models import (
    PendingDeletion,
    PoemGroup,
    PoemRequest,
    PoemResponse,
    PoemRevision,
    SyncableRecord,
)
from .schemas import (
    ChangeSet,
    ChangeType,
    ConflictStrategy,
    RecordType,
    RemoteRecord,
    SyncStatus,
)
from .sqlite import Database, StoreError, get_db

__all__ = [
    "CachedRecord",
    "RecordCache",
    "PendingDeletion",
    "PoemGroup",
    "PoemRequest",
    "PoemResponse",
    "PoemRevision",
    "SyncableRecord",
    "ChangeSet",
    "ChangeType",
    "ConflictStrategy",
    "RecordType",
    "RemoteRecord",
    "SyncStatus",
    "Database",
    "StoreError",
    "get_db",
]
