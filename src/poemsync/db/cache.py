"""Read-through cache of syncable records.

Entries are detached snapshots keyed by record id. The database fills
the cache on load and invalidates entries whenever a session flushes,
commits or rolls back changes to a record.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .schemas import RecordType, RemoteRecord, SyncStatus


@dataclass(frozen=True)
class CachedRecord:
    """Immutable snapshot of a local record."""

    remote: RemoteRecord
    sync_status: SyncStatus
    last_sync_error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.remote.id

    @property
    def record_type(self) -> RecordType:
        return self.remote.record_type


class RecordCache:
    """Thread-safe id -> snapshot map with a loader for misses."""

    def __init__(self, loader: Callable[[str], Optional[CachedRecord]]):
        self._loader = loader
        self._entries: dict[str, CachedRecord] = {}
        self._lock = threading.RLock()
        self._generation = 0
        self.hits = 0
        self.misses = 0

    def get(self, record_id: str) -> Optional[CachedRecord]:
        """Return the cached snapshot, loading it from the store on a miss.

        Missing records are not cached.
        """
        with self._lock:
            entry = self._entries.get(record_id)
            if entry is not None:
                self.hits += 1
                return entry
            self.misses += 1
            generation = self._generation

        entry = self._loader(record_id)
        if entry is not None:
            with self._lock:
                # Skip the store if a write landed while loading
                if generation == self._generation:
                    self._entries[record_id] = entry
        return entry

    def rebuild(self, entries: Iterable[CachedRecord]) -> None:
        """Replace the whole cache."""
        with self._lock:
            self._entries = {entry.id: entry for entry in entries}

    def invalidate(self, record_ids: Iterable[str]) -> None:
        with self._lock:
            self._generation += 1
            for record_id in record_ids:
                self._entries.pop(record_id, None)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def __contains__(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
