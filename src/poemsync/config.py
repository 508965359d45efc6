"""Configuration management for poemsync.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_HOME = Path.home() / ".poemsync"

VALID_STRATEGIES = ("keep_local", "keep_remote", "merge", "manual")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Storage
    db_path: Path
    state_file: Path

    # Remote store
    remote_url: Optional[str]
    remote_token: Optional[str]
    request_timeout: float  # seconds

    # Sync
    sync_batch_size: int
    lifecycle_sync_interval: float  # seconds
    periodic_sync_interval: float  # seconds
    max_recent_errors: int
    conflict_strategy: str

    # Features
    enable_revision_history: bool
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path = Path(
            os.environ.get("POEMSYNC_DB_PATH", str(DEFAULT_HOME / "poems.db"))
        ).expanduser()
        state_file = Path(
            os.environ.get("POEMSYNC_STATE_FILE", str(DEFAULT_HOME / "sync_state.json"))
        ).expanduser()

        return cls(
            db_path=db_path,
            state_file=state_file,
            remote_url=os.environ.get("POEMSYNC_REMOTE_URL") or None,
            remote_token=os.environ.get("POEMSYNC_REMOTE_TOKEN") or None,
            request_timeout=float(os.environ.get("POEMSYNC_REQUEST_TIMEOUT", "30")),
            sync_batch_size=int(os.environ.get("POEMSYNC_SYNC_BATCH_SIZE", "50")),
            lifecycle_sync_interval=float(
                os.environ.get("POEMSYNC_LIFECYCLE_SYNC_INTERVAL", "300")
            ),
            periodic_sync_interval=float(
                os.environ.get("POEMSYNC_PERIODIC_SYNC_INTERVAL", "900")
            ),
            max_recent_errors=int(os.environ.get("POEMSYNC_MAX_RECENT_ERRORS", "10")),
            conflict_strategy=os.environ.get("POEMSYNC_CONFLICT_STRATEGY", "merge"),
            enable_revision_history=_env_bool("POEMSYNC_ENABLE_REVISION_HISTORY", True),
            log_level=os.environ.get("POEMSYNC_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        for path in (self.db_path, self.state_file):
            if str(path) == ":memory:" or path.parent.exists():
                continue
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create directory: {path.parent}")

        if self.sync_batch_size < 1:
            errors.append("POEMSYNC_SYNC_BATCH_SIZE must be at least 1")
        if self.max_recent_errors < 1:
            errors.append("POEMSYNC_MAX_RECENT_ERRORS must be at least 1")
        if self.conflict_strategy not in VALID_STRATEGIES:
            errors.append(
                f"POEMSYNC_CONFLICT_STRATEGY must be one of {', '.join(VALID_STRATEGIES)}"
            )

        return errors

    def has_remote_config(self) -> bool:
        """Check if a remote store is configured."""
        return bool(self.remote_url)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
