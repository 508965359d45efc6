"""Remote store interface.

The sync engine talks to the remote store only through ``RemoteGateway``.
Implementations translate their own failures into the exceptions below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..db.schemas import ChangeSet, RemoteRecord


class GatewayError(Exception):
    """Base exception for remote store errors."""

    pass


class RemoteUnavailableError(GatewayError):
    """Raised when the remote account or service cannot be used at all."""

    pass


class TransportError(GatewayError):
    """Raised when a request fails in transit (timeout, connection, 5xx)."""

    pass


class RecordNotFoundError(GatewayError):
    """Raised when the remote store has no record with the requested id."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class ChangeTokenExpiredError(GatewayError):
    """Raised when the remote store no longer accepts a change token."""

    pass


@dataclass(frozen=True)
class PushOutcome:
    """Per-record result of a push."""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "PushOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "PushOutcome":
        return cls(ok=False, error=error)


class RemoteGateway(ABC):
    """Push, pull and fetch operations against a remote record store."""

    @abstractmethod
    def push_batch(
        self, records: list[RemoteRecord], force: bool = False
    ) -> dict[str, PushOutcome]:
        """Save records remotely.

        Args:
            records: Records to save
            force: Overwrite remote versions even if they are newer

        Returns:
            Outcome per record id. Every submitted id is present.

        Raises:
            GatewayError: If the whole batch could not be submitted
        """

    @abstractmethod
    def pull_changes(self, since: Optional[str]) -> ChangeSet:
        """Get all changes after ``since`` (everything when None).

        Raises:
            ChangeTokenExpiredError: If ``since`` is no longer valid
            GatewayError: On any other failure
        """

    @abstractmethod
    def fetch_one(self, record_id: str) -> RemoteRecord:
        """Get the current remote version of one record.

        Raises:
            RecordNotFoundError: If the record does not exist remotely
        """

    @abstractmethod
    def delete(self, record_ids: list[str]) -> dict[str, PushOutcome]:
        """Delete records remotely. Unknown ids count as deleted."""

    @abstractmethod
    def check_availability(self) -> None:
        """Raise ``RemoteUnavailableError`` if the remote store can't be used."""
