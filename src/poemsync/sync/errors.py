"""Sync error taxonomy and the bounded recent-errors log."""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional

from ..db.sqlite import StoreError
from ..gateway.base import (
    ChangeTokenExpiredError,
    GatewayError,
    RecordNotFoundError,
    RemoteUnavailableError,
    TransportError,
)

__all__ = [
    "SyncErrorKind",
    "SyncError",
    "SyncErrorLog",
    "ConflictResolutionError",
    "TokenPersistenceError",
    "StoreError",
    "GatewayError",
    "RemoteUnavailableError",
    "TransportError",
    "RecordNotFoundError",
    "ChangeTokenExpiredError",
]


class ConflictResolutionError(Exception):
    """Raised when a conflict could not be resolved."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message)


class TokenPersistenceError(Exception):
    """Raised when the change token cannot be read or written."""

    pass


class SyncErrorKind(str, Enum):
    """Kinds of errors recorded during sync."""

    NO_NETWORK = "no_network"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    PUSH_FAILED = "push_failed"
    PULL_FAILED = "pull_failed"
    RECORD_PROCESSING_FAILED = "record_processing_failed"
    CONFLICT_RESOLUTION_FAILED = "conflict_resolution_failed"
    TOKEN_PERSISTENCE_FAILED = "token_persistence_failed"


@dataclass
class SyncError:
    """One entry in the recent-errors log."""

    kind: SyncErrorKind
    message: str = ""
    record_id: Optional[str] = None
    cause: Optional[BaseException] = field(default=None, repr=False)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exception(
        cls,
        kind: SyncErrorKind,
        cause: BaseException,
        record_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "SyncError":
        error = cls(kind=kind, message=str(cause), record_id=record_id, cause=cause)
        if occurred_at is not None:
            error.occurred_at = occurred_at
        return error

    def describe(self) -> str:
        """Human-readable description."""
        if self.kind == SyncErrorKind.NO_NETWORK:
            return "No network connection available"
        if self.kind == SyncErrorKind.REMOTE_UNAVAILABLE:
            text = "Remote store is currently unavailable"
        elif self.kind == SyncErrorKind.PUSH_FAILED:
            if self.record_id:
                text = f"Failed to save record {self.record_id}"
            else:
                text = "Failed to push changes"
        elif self.kind == SyncErrorKind.PULL_FAILED:
            text = "Failed to fetch changes"
        elif self.kind == SyncErrorKind.RECORD_PROCESSING_FAILED:
            text = f"Failed to process record {self.record_id}"
        elif self.kind == SyncErrorKind.CONFLICT_RESOLUTION_FAILED:
            text = "Failed to resolve conflict"
        else:
            text = "Failed to save change token"
        if self.message:
            return f"{text}: {self.message}"
        return text

    def __str__(self) -> str:
        return self.describe()


class SyncErrorLog:
    """Most-recent-first log that keeps at most ``capacity`` entries."""

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: deque[SyncError] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, error: SyncError) -> None:
        with self._lock:
            # appendleft on a full deque drops the oldest (rightmost) entry
            self._entries.appendleft(error)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> list[SyncError]:
        with self._lock:
            return list(self._entries)

    @property
    def latest(self) -> Optional[SyncError]:
        with self._lock:
            return self._entries[0] if self._entries else None

    def __iter__(self) -> Iterator[SyncError]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
