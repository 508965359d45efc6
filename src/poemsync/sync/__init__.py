"""Sync module for the remote record store.

Handles push/pull sync between the local SQLite database and the remote
store, including conflict resolution and change token bookkeeping.
"""

from .clock import Clock, FixedClock, SystemClock
from .conflict import (
    ConflictResolver,
    ResolutionOutcome,
    SyncConflict,
    merge_records,
    resolve_conflict_interactive,
)
from .engine import SyncEngine, SyncResult, SyncState
from .errors import (
    ConflictResolutionError,
    SyncError,
    SyncErrorKind,
    SyncErrorLog,
    TokenPersistenceError,
)
from .network import ConnectivityStatus, NetworkMonitor
from .token_store import ChangeTokenStore

__all__ = [
    # Time
    "Clock",
    "FixedClock",
    "SystemClock",
    # Conflict handling
    "ConflictResolver",
    "ResolutionOutcome",
    "SyncConflict",
    "merge_records",
    "resolve_conflict_interactive",
    # Engine
    "SyncEngine",
    "SyncResult",
    "SyncState",
    # Errors
    "ConflictResolutionError",
    "SyncError",
    "SyncErrorKind",
    "SyncErrorLog",
    "TokenPersistenceError",
    # Collaborators
    "ConnectivityStatus",
    "NetworkMonitor",
    "ChangeTokenStore",
]
