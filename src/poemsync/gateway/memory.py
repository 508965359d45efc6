"""In-process remote store.

``InMemoryRemoteGateway`` keeps records and an ordered change log in memory
and hands out opaque ``v1:<seq>`` change tokens. ``FileRemoteGateway``
persists the same state to a JSON file so that the CLI can sync between
separate runs (or separate local databases) without a server.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from ..db.schemas import ChangeSet, RemoteRecord
from .base import (
    ChangeTokenExpiredError,
    PushOutcome,
    RecordNotFoundError,
    RemoteGateway,
    RemoteUnavailableError,
)

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "v1:"


class InMemoryRemoteGateway(RemoteGateway):
    """Remote store living in this process."""

    def __init__(self):
        self._records: dict[str, RemoteRecord] = {}
        self._log: list[tuple[int, str, bool]] = []  # (seq, record_id, deleted)
        self._seq = 0
        self._min_seq = 0
        self._lock = threading.RLock()
        self.available = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_available(self) -> None:
        if not self.available:
            raise RemoteUnavailableError("Remote store is unavailable")

    def _token(self) -> str:
        return f"{TOKEN_PREFIX}{self._seq}"

    def _parse_token(self, token: Optional[str]) -> int:
        if token is None:
            return 0
        if not token.startswith(TOKEN_PREFIX):
            raise ChangeTokenExpiredError(f"Unrecognized change token: {token!r}")
        try:
            seq = int(token[len(TOKEN_PREFIX):])
        except ValueError:
            raise ChangeTokenExpiredError(f"Unrecognized change token: {token!r}")
        if seq < self._min_seq or seq > self._seq:
            raise ChangeTokenExpiredError(f"Change token expired: {token!r}")
        return seq

    def _append_change(self, record_id: str, deleted: bool) -> None:
        self._seq += 1
        self._log.append((self._seq, record_id, deleted))

    def _changed(self) -> None:
        """Hook called after every mutation."""

    # ------------------------------------------------------------------
    # RemoteGateway
    # ------------------------------------------------------------------

    def push_batch(
        self, records: list[RemoteRecord], force: bool = False
    ) -> dict[str, PushOutcome]:
        self._require_available()
        outcomes: dict[str, PushOutcome] = {}
        with self._lock:
            for record in records:
                current = self._records.get(record.id)
                if current is not None and current == record:
                    # Same version already stored
                    outcomes[record.id] = PushOutcome.success()
                    continue
                if (
                    current is not None
                    and not force
                    and current.last_modified > record.last_modified
                ):
                    outcomes[record.id] = PushOutcome.failure(
                        "Remote version is newer than pushed version"
                    )
                    continue
                self._records[record.id] = record.model_copy(deep=True)
                self._append_change(record.id, deleted=False)
                outcomes[record.id] = PushOutcome.success()
            self._changed()
        logger.debug("Accepted push of %d records (force=%s)", len(records), force)
        return outcomes

    def pull_changes(self, since: Optional[str]) -> ChangeSet:
        self._require_available()
        with self._lock:
            since_seq = self._parse_token(since)
            latest: dict[str, bool] = {}
            for seq, record_id, deleted in self._log:
                if seq > since_seq:
                    # Keep log order but only the last operation per id
                    latest.pop(record_id, None)
                    latest[record_id] = deleted

            changes = ChangeSet(new_token=self._token())
            for record_id, deleted in latest.items():
                if deleted or record_id not in self._records:
                    changes.deleted.append(record_id)
                else:
                    changes.changed.append(self._records[record_id].model_copy(deep=True))
            return changes

    def fetch_one(self, record_id: str) -> RemoteRecord:
        self._require_available()
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            return record.model_copy(deep=True)

    def delete(self, record_ids: list[str]) -> dict[str, PushOutcome]:
        self._require_available()
        outcomes: dict[str, PushOutcome] = {}
        with self._lock:
            for record_id in record_ids:
                if self._records.pop(record_id, None) is not None:
                    self._append_change(record_id, deleted=True)
                outcomes[record_id] = PushOutcome.success()
            self._changed()
        return outcomes

    def check_availability(self) -> None:
        self._require_available()

    # ------------------------------------------------------------------
    # Direct access (other devices, tests, CLI)
    # ------------------------------------------------------------------

    def put(self, record: RemoteRecord) -> None:
        """Store a record as if another device had saved it."""
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
            self._append_change(record.id, deleted=False)
            self._changed()

    def remove(self, record_id: str) -> None:
        """Delete a record as if another device had deleted it."""
        self.delete([record_id])

    def get(self, record_id: str) -> Optional[RemoteRecord]:
        with self._lock:
            return self._records.get(record_id)

    def expire_tokens(self) -> None:
        """Invalidate every change token issued so far except the latest."""
        with self._lock:
            self._min_seq = self._seq
            self._changed()

    @property
    def current_token(self) -> str:
        with self._lock:
            return self._token()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileRemoteGateway(InMemoryRemoteGateway):
    """In-process remote store persisted to a JSON file."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        self._seq = data.get("seq", 0)
        self._min_seq = data.get("min_seq", 0)
        self._log = [tuple(entry) for entry in data.get("log", [])]
        self._records = {
            item["id"]: RemoteRecord.model_validate(item)
            for item in data.get("records", [])
        }

    def _changed(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "seq": self._seq,
            "min_seq": self._min_seq,
            "log": [list(entry) for entry in self._log],
            "records": [r.model_dump(mode="json") for r in self._records.values()],
        }
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)
