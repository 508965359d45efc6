"""Persistence for the remote change token.

The token lives in a small JSON state file next to (but independent of)
the SQLite database:

    {"serverChangeToken": "<base64 of the opaque token>",
     "lastSyncDate": "2025-01-01T12:00:00+00:00"}
"""

import base64
import binascii
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..db.schemas import ensure_utc
from .errors import TokenPersistenceError

logger = logging.getLogger(__name__)

TOKEN_KEY = "serverChangeToken"
LAST_SYNC_KEY = "lastSyncDate"


class ChangeTokenStore:
    """Reads and writes the change token state file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise TokenPersistenceError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise TokenPersistenceError(f"Unexpected state file contents in {self.path}")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise TokenPersistenceError(f"Cannot write {self.path}: {e}") from e

    # ========================================================================
    # Change token
    # ========================================================================

    def load(self) -> Optional[str]:
        """Get the stored token, or None before the first sync."""
        with self._lock:
            encoded = self._read().get(TOKEN_KEY)
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise TokenPersistenceError(f"Corrupt change token in {self.path}") from e

    def save(self, token: str) -> None:
        """Persist a new token."""
        encoded = base64.b64encode(token.encode("utf-8")).decode("ascii")
        with self._lock:
            data = self._read()
            data[TOKEN_KEY] = encoded
            self._write(data)
        logger.debug("Saved change token")

    def reset(self) -> None:
        """Forget the token so the next pull fetches everything."""
        with self._lock:
            data = self._read()
            if data.pop(TOKEN_KEY, None) is not None:
                self._write(data)
        logger.info("Change token reset, next sync will fetch all changes")

    # ========================================================================
    # Last successful sync
    # ========================================================================

    def load_last_sync(self) -> Optional[datetime]:
        with self._lock:
            value = self._read().get(LAST_SYNC_KEY)
        if not value:
            return None
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except (TypeError, ValueError) as e:
            raise TokenPersistenceError(f"Corrupt last sync date in {self.path}") from e

    def save_last_sync(self, when: datetime) -> None:
        with self._lock:
            data = self._read()
            data[LAST_SYNC_KEY] = ensure_utc(when).isoformat()
            self._write(data)
