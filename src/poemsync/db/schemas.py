"""Pydantic schemas for data validation.

These schemas define the wire representation shared with the remote
store and the inputs accepted by the poem manager.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class SyncStatus(str, Enum):
    """Sync state of a local record."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"
    ERROR = "error"


class RecordType(str, Enum):
    """Kinds of syncable records."""

    REQUEST = "request"
    RESPONSE = "response"
    GROUP = "group"


class ConflictStrategy(str, Enum):
    """Strategy for reconciling a local and remote version of a record."""

    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    MERGE = "merge"
    MANUAL = "manual"  # Leave in conflict for the user to decide


class ChangeType(str, Enum):
    """Why a revision was created."""

    INITIAL = "initial"
    MINOR = "minor"  # Small edits, word changes
    MAJOR = "major"  # Structural changes, new stanzas
    REGENERATION = "regeneration"  # AI regeneration
    MANUAL = "manual"  # User manual edit
    RESTORE = "restore"  # Restored from an earlier revision
    SYNC = "sync"  # Content arrived from the remote store


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Wire Schemas
# ============================================================================


class RemoteRecord(BaseModel):
    """A record as exchanged with the remote store."""

    id: str = Field(..., min_length=1)
    record_type: RecordType
    last_modified: datetime
    fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("last_modified")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store all timestamps as aware UTC."""
        return ensure_utc(v)

    def same_payload(self, other: "RemoteRecord") -> bool:
        """Whether both records carry identical fields."""
        return self.record_type == other.record_type and self.fields == other.fields


class ChangeSet(BaseModel):
    """Remote changes since a change token."""

    changed: list[RemoteRecord] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    new_token: Optional[str] = None


# ============================================================================
# Create Schemas
# ============================================================================


class RequestCreate(BaseModel):
    """Schema for creating a poem request."""

    user_input: str = Field(..., min_length=1)
    user_topic: Optional[str] = None
    poem_type: Optional[str] = None
    poem_variation_id: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    parent_request_id: Optional[str] = None
    group_id: Optional[str] = None
    is_original: bool = True
    variation_note: Optional[str] = None


class ResponseCreate(BaseModel):
    """Schema for saving a generated poem."""

    request_id: str
    content: str
    user_id: str = "local"
    role: str = "assistant"
    is_favorite: bool = False


class GroupCreate(BaseModel):
    """Schema for creating a poem group."""

    original_topic: Optional[str] = None
    request_ids: list[str] = Field(default_factory=list)
