"""SQLAlchemy ORM models for local SQLite database.

Tables:
- poem_requests: What the user asked for (topic, poem type, temperature)
- poem_responses: Generated poem text, favorite flag
- poem_groups: Sets of related requests
- poem_revisions: Append-only content history per document
- pending_deletions: Local deletions not yet sent to the remote store
"""

import json
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from .schemas import RecordType, RemoteRecord, SyncStatus, ensure_utc


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC in SQLite, always returns aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class SyncableRecord:
    """Sync metadata and wire conversion shared by every syncable entity.

    Subclasses declare which payload fields they carry and how each one
    merges:

    - ``content_fields``: scalars, the newer version wins
    - ``favorite_fields``: booleans, ``True`` on either side wins
    - ``collection_fields``: JSON-encoded id sets, merged by union
    """

    record_type: ClassVar[RecordType]
    content_fields: ClassVar[tuple[str, ...]] = ()
    favorite_fields: ClassVar[tuple[str, ...]] = ()
    collection_fields: ClassVar[tuple[str, ...]] = ()

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    last_modified: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False, index=True
    )
    sync_status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.PENDING.value, index=True
    )
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text)

    # ------------------------------------------------------------------
    # Payload access
    # ------------------------------------------------------------------

    @classmethod
    def payload_field_names(cls) -> tuple[str, ...]:
        return cls.content_fields + cls.favorite_fields + cls.collection_fields

    def get_collection(self, name: str) -> list[str]:
        """Get a collection field as a sorted list."""
        raw = getattr(self, name)
        if raw:
            return sorted(set(json.loads(raw)))
        return []

    def set_collection(self, name: str, values) -> None:
        """Set a collection field from any iterable of ids."""
        members = sorted(set(values or []))
        setattr(self, name, json.dumps(members) if members else None)

    def get_payload(self) -> dict[str, Any]:
        """Get all payload fields as a JSON-friendly dict."""
        payload: dict[str, Any] = {}
        for name in self.content_fields:
            payload[name] = getattr(self, name)
        for name in self.favorite_fields:
            payload[name] = bool(getattr(self, name))
        for name in self.collection_fields:
            payload[name] = self.get_collection(name)
        return payload

    def apply_payload(self, fields: dict[str, Any]) -> None:
        """Overwrite payload fields present in ``fields``."""
        for name in self.content_fields:
            if name in fields:
                setattr(self, name, fields[name])
        for name in self.favorite_fields:
            if name in fields:
                setattr(self, name, bool(fields[name]))
        for name in self.collection_fields:
            if name in fields:
                self.set_collection(name, fields[name])

    # ------------------------------------------------------------------
    # Wire conversion
    # ------------------------------------------------------------------

    def to_remote(self) -> RemoteRecord:
        """Convert to the remote wire representation."""
        return RemoteRecord(
            id=self.id,
            record_type=self.record_type,
            last_modified=self.last_modified,
            fields=self.get_payload(),
        )

    def apply_remote(self, remote: RemoteRecord) -> None:
        """Overwrite payload and timestamp from a remote version."""
        self.apply_payload(remote.fields)
        self.last_modified = remote.last_modified

    @classmethod
    def from_remote(cls, remote: RemoteRecord) -> "SyncableRecord":
        """Build a new local record from a remote version."""
        record = cls(id=remote.id)
        record.apply_remote(remote)
        return record

    # ------------------------------------------------------------------
    # Local mutation
    # ------------------------------------------------------------------

    def mark_modified(self, now: datetime) -> None:
        """Record a local mutation: bump the timestamp and mark pending.

        The timestamp never moves backwards, even if the clock does.
        """
        now = ensure_utc(now)
        if self.last_modified is None or now > self.last_modified:
            self.last_modified = now
        self.sync_status = SyncStatus.PENDING.value
        self.last_sync_error = None

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(self.sync_status or SyncStatus.PENDING.value)

    # ------------------------------------------------------------------
    # Revision hooks
    # ------------------------------------------------------------------

    def revision_document_id(self) -> Optional[str]:
        """Document whose revision history this record's content feeds."""
        return None

    def revision_content(self) -> Optional[str]:
        return None


class PoemRequest(SyncableRecord, Base):
    """A poem request - what the user asked for."""

    __tablename__ = "poem_requests"

    record_type = RecordType.REQUEST
    content_fields = (
        "user_input",
        "user_topic",
        "poem_type",
        "poem_variation_id",
        "temperature",
        "response_id",
        "group_id",
        "parent_request_id",
        "is_original",
        "variation_note",
        "created_at",
    )

    user_input: Mapped[Optional[str]] = mapped_column(Text)
    user_topic: Mapped[Optional[str]] = mapped_column(String(500), index=True)
    poem_type: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    poem_variation_id: Mapped[Optional[str]] = mapped_column(String(100))
    temperature: Mapped[Optional[float]] = mapped_column(Float)

    # ID references
    response_id: Mapped[Optional[str]] = mapped_column(String(36))
    group_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    parent_request_id: Mapped[Optional[str]] = mapped_column(String(36))

    # Metadata
    is_original: Mapped[Optional[bool]] = mapped_column(Boolean, default=True)
    variation_note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[str]] = mapped_column(
        String(32), default=lambda: utc_now().isoformat()
    )

    def __repr__(self) -> str:
        return f"<PoemRequest(id={self.id}, topic='{self.user_topic}', status={self.sync_status})>"


class PoemResponse(SyncableRecord, Base):
    """A generated poem - the content whose history is tracked."""

    __tablename__ = "poem_responses"

    record_type = RecordType.RESPONSE
    content_fields = ("request_id", "user_id", "content", "role", "date_created")
    favorite_fields = ("is_favorite",)

    request_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(100))
    content: Mapped[Optional[str]] = mapped_column(Text)
    role: Mapped[Optional[str]] = mapped_column(String(20))
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    date_created: Mapped[Optional[str]] = mapped_column(
        String(32), default=lambda: utc_now().isoformat()
    )

    def __repr__(self) -> str:
        return f"<PoemResponse(id={self.id}, request_id={self.request_id}, status={self.sync_status})>"

    def revision_document_id(self) -> Optional[str]:
        # History is kept per poem, i.e. per request
        return self.request_id or self.id

    def revision_content(self) -> Optional[str]:
        return self.content


class PoemGroup(SyncableRecord, Base):
    """A group of related poem requests (variations on one topic)."""

    __tablename__ = "poem_groups"

    record_type = RecordType.GROUP
    content_fields = ("original_topic", "created_at")
    collection_fields = ("request_ids",)

    original_topic: Mapped[Optional[str]] = mapped_column(String(500))
    request_ids: Mapped[Optional[str]] = mapped_column(Text)  # JSON array
    created_at: Mapped[Optional[str]] = mapped_column(
        String(32), default=lambda: utc_now().isoformat()
    )

    def __repr__(self) -> str:
        return f"<PoemGroup(id={self.id}, topic='{self.original_topic}', status={self.sync_status})>"

    def get_request_ids(self) -> list[str]:
        """Get request_ids as list."""
        return self.get_collection("request_ids")

    def set_request_ids(self, request_ids: list[str]) -> None:
        """Set request_ids from list."""
        self.set_collection("request_ids", request_ids)


class PoemRevision(Base):
    """Immutable content snapshot in a document's revision chain.

    Only ``is_current_version`` changes after insert.
    """

    __tablename__ = "poem_revisions"
    __table_args__ = (
        # At most one current revision per document
        Index(
            "ix_poem_revisions_current",
            "document_id",
            unique=True,
            sqlite_where=text("is_current_version = 1"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_revision_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_current_version: Mapped[bool] = mapped_column(Boolean, default=True)

    # Change metadata
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_note: Mapped[Optional[str]] = mapped_column(Text)
    lines_added: Mapped[int] = mapped_column(Integer, default=0)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0)
    lines_modified: Mapped[int] = mapped_column(Integer, default=0)
    word_count: Mapped[int] = mapped_column(Integer, default=0)
    line_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    def __repr__(self) -> str:
        current = " current" if self.is_current_version else ""
        return f"<PoemRevision(document={self.document_id}, #{self.revision_number}{current})>"


class PendingDeletion(Base):
    """Tombstone for a local deletion not yet acknowledged by the remote store."""

    __tablename__ = "pending_deletions"

    record_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    record_type: Mapped[str] = mapped_column(String(20), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<PendingDeletion(record_id={self.record_id}, type={self.record_type})>"


SYNCABLE_MODELS: tuple[type[SyncableRecord], ...] = (PoemRequest, PoemResponse, PoemGroup)

RECORD_MODELS: dict[RecordType, type[SyncableRecord]] = {
    model.record_type: model for model in SYNCABLE_MODELS
}


def model_for(record_type: RecordType) -> type[SyncableRecord]:
    """Get the ORM model for a wire record type."""
    return RECORD_MODELS[RecordType(record_type)]
