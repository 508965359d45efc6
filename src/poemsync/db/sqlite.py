"""SQLite database operations.

Handles database connection, session management, and record operations
for the sync engine and the poem manager.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Optional

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .cache import CachedRecord, RecordCache
from .models import (
    SYNCABLE_MODELS,
    Base,
    PendingDeletion,
    SyncableRecord,
    model_for,
)
from .schemas import RecordType, SyncStatus

logger = logging.getLogger(__name__)

# Statuses the push phase picks up
PUSHABLE_STATUSES = (SyncStatus.PENDING, SyncStatus.ERROR)

_TOUCHED_KEY = "poemsync_touched_ids"


class StoreError(Exception):
    """Raised when the local store cannot read or save."""

    pass


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     POEMSYNC_DB_PATH via the global config.
        """
        if db_path is None:
            from ..config import get_config

            db_path = str(get_config().db_path)

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        self.cache = RecordCache(self._load_snapshot)
        event.listen(self.SessionLocal, "after_flush", self._track_flushed)
        event.listen(self.SessionLocal, "after_commit", self._invalidate_touched)
        event.listen(self.SessionLocal, "after_rollback", self._invalidate_touched)

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables and warm the record cache."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot create tables: {e}") from e
        self.load_cache()

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)
        self.cache.clear()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager.

        Everything done inside the block is committed as one unit, or
        rolled back if the block raises.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Cache maintenance
    # ========================================================================

    def _track_flushed(self, session: Session, flush_context) -> None:
        touched = session.info.setdefault(_TOUCHED_KEY, set())
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            if isinstance(obj, SyncableRecord) and obj.id:
                touched.add(obj.id)
        self.cache.invalidate(touched)

    def _invalidate_touched(self, session: Session) -> None:
        touched = session.info.pop(_TOUCHED_KEY, None)
        if touched:
            self.cache.invalidate(touched)

    def _load_snapshot(self, record_id: str) -> Optional[CachedRecord]:
        record = self.get_record(record_id)
        if record is None:
            return None
        return _snapshot(record)

    def load_cache(self) -> None:
        """Rebuild the record cache from the store."""
        with self.get_session() as s:
            snapshots = [_snapshot(r) for r in self.fetch_records(session=s)]
        self.cache.rebuild(snapshots)
        logger.debug("Loaded %d records into cache", len(snapshots))

    def get_snapshot(self, record_id: str) -> Optional[CachedRecord]:
        """Get a detached snapshot of a record through the cache."""
        return self.cache.get(record_id)

    # ========================================================================
    # Record Operations
    # ========================================================================

    def fetch_records(
        self,
        statuses: Optional[Iterable[SyncStatus]] = None,
        record_type: Optional[RecordType] = None,
        session: Optional[Session] = None,
    ) -> list[SyncableRecord]:
        """Get records, optionally filtered by sync status and type.

        Results are ordered oldest modification first.
        """
        status_values = [SyncStatus(st).value for st in statuses] if statuses else None
        models = [model_for(record_type)] if record_type else list(SYNCABLE_MODELS)

        def _get(s: Session) -> list[SyncableRecord]:
            records: list[SyncableRecord] = []
            for model in models:
                stmt = select(model)
                if status_values:
                    stmt = stmt.where(model.sync_status.in_(status_values))
                records.extend(s.execute(stmt).scalars().all())
            records.sort(key=lambda r: (r.last_modified, r.id))
            return records

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                records = _get(s)
                for record in records:
                    s.expunge(record)
                return records

    def get_record(
        self,
        record_id: str,
        record_type: Optional[RecordType] = None,
        session: Optional[Session] = None,
    ) -> Optional[SyncableRecord]:
        """Get a record by ID from whichever table holds it."""
        models = [model_for(record_type)] if record_type else list(SYNCABLE_MODELS)

        def _get(s: Session) -> Optional[SyncableRecord]:
            for model in models:
                record = s.get(model, record_id)
                if record is not None:
                    return record
            return None

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                record = _get(s)
                if record:
                    s.expunge(record)
                return record

    def insert_record(
        self, record: SyncableRecord, session: Optional[Session] = None
    ) -> SyncableRecord:
        """Insert a new record."""

        def _insert(s: Session) -> SyncableRecord:
            s.add(record)
            s.flush()
            return record

        if session:
            return _insert(session)
        else:
            with self.get_session() as s:
                inserted = _insert(s)
                s.expunge(inserted)
                return inserted

    def delete_record(
        self,
        record_id: str,
        tombstone: bool = False,
        session: Optional[Session] = None,
    ) -> bool:
        """Delete a record.

        Args:
            record_id: Record to delete
            tombstone: Remember the deletion so the next sync pass sends
                it to the remote store

        Returns:
            True if a record was deleted
        """

        def _delete(s: Session) -> bool:
            record = self.get_record(record_id, session=s)
            if record is None:
                return False
            if tombstone and s.get(PendingDeletion, record_id) is None:
                s.add(
                    PendingDeletion(
                        record_id=record_id, record_type=record.record_type.value
                    )
                )
            s.delete(record)
            return True

        if session:
            return _delete(session)
        else:
            with self.get_session() as s:
                return _delete(s)

    def count_pending(self, session: Optional[Session] = None) -> int:
        """Count records waiting to be pushed (pending or error)."""
        status_values = [st.value for st in PUSHABLE_STATUSES]

        def _count(s: Session) -> int:
            total = 0
            for model in SYNCABLE_MODELS:
                stmt = select(func.count()).select_from(model).where(
                    model.sync_status.in_(status_values)
                )
                total += s.execute(stmt).scalar_one()
            return total

        if session:
            return _count(session)
        else:
            with self.get_session() as s:
                return _count(s)

    def count_by_status(self, session: Optional[Session] = None) -> dict[str, int]:
        """Count records per sync status across all tables."""

        def _count(s: Session) -> dict[str, int]:
            counts = {st.value: 0 for st in SyncStatus}
            for model in SYNCABLE_MODELS:
                stmt = select(model.sync_status, func.count()).group_by(model.sync_status)
                for status, count in s.execute(stmt).all():
                    counts[status] = counts.get(status, 0) + count
            return counts

        if session:
            return _count(session)
        else:
            with self.get_session() as s:
                return _count(s)

    # ========================================================================
    # Deletion Tombstones
    # ========================================================================

    def get_pending_deletions(
        self, session: Optional[Session] = None
    ) -> list[PendingDeletion]:
        """Get tombstones not yet acknowledged by the remote store."""

        def _get(s: Session) -> list[PendingDeletion]:
            stmt = select(PendingDeletion).order_by(PendingDeletion.deleted_at)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                items = _get(s)
                for item in items:
                    s.expunge(item)
                return items

    def has_pending_deletion(self, record_id: str, session: Optional[Session] = None) -> bool:
        def _has(s: Session) -> bool:
            return s.get(PendingDeletion, record_id) is not None

        if session:
            return _has(session)
        else:
            with self.get_session() as s:
                return _has(s)

    def clear_pending_deletions(
        self, record_ids: Iterable[str], session: Optional[Session] = None
    ) -> None:
        """Drop tombstones the remote store has acknowledged."""
        ids = list(record_ids)

        def _clear(s: Session) -> None:
            for record_id in ids:
                item = s.get(PendingDeletion, record_id)
                if item:
                    s.delete(item)

        if session:
            _clear(session)
        else:
            with self.get_session() as s:
                _clear(s)

    def mark_deletions_failed(
        self, record_ids: Iterable[str], error: str, session: Optional[Session] = None
    ) -> None:
        """Record a failed attempt to send tombstones."""
        ids = list(record_ids)

        def _mark(s: Session) -> None:
            for record_id in ids:
                item = s.get(PendingDeletion, record_id)
                if item:
                    item.last_error = error
                    item.retry_count += 1

        if session:
            _mark(session)
        else:
            with self.get_session() as s:
                _mark(s)


def _snapshot(record: SyncableRecord) -> CachedRecord:
    return CachedRecord(
        remote=record.to_remote(),
        sync_status=record.status,
        last_sync_error=record.last_sync_error,
    )


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
