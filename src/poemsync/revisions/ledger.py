"""Append-only revision history per document.

Each document (a poem, keyed by its request id) has a chain of revisions
linked through ``parent_revision_id``. Exactly one revision per document
is current. Creating a revision flips the old current flag and inserts the
new revision in the same transaction.
"""

import logging
import threading
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import PoemRevision
from ..db.schemas import ChangeType
from ..db.sqlite import Database, StoreError, get_db
from ..sync.clock import Clock, SystemClock
from .diff import (
    DiffSegment,
    compute_line_changes,
    count_lines,
    count_words,
    diff_segments,
)

logger = logging.getLogger(__name__)


class RevisionError(Exception):
    """Raised when a revision cannot be created or restored."""

    pass


class RevisionLedger:
    """Creates and reads poem revisions."""

    def __init__(self, db: Optional[Database] = None, clock: Optional[Clock] = None):
        """Initialize revision ledger.

        Args:
            db: Database instance
            clock: Time source for revision timestamps
        """
        self.db = db or get_db()
        self.clock = clock or SystemClock()
        # Serializes read-current/flip/insert within this process
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def create_revision(
        self,
        document_id: str,
        content: str,
        change_note: Optional[str] = None,
        change_type: Optional[ChangeType] = None,
    ) -> PoemRevision:
        """Append a new current revision.

        Args:
            document_id: Document the revision belongs to
            content: Full content of the new revision
            change_note: Optional note describing the change
            change_type: Kind of change. Defaults to ``initial`` for a
                document without revisions and ``manual`` otherwise.

        Returns:
            The new current revision (detached)

        Raises:
            RevisionError: If the revision could not be saved
        """
        if not document_id:
            raise RevisionError("document_id is required")
        if content is None:
            raise RevisionError("content is required")

        with self._lock:
            try:
                with self.db.get_session() as session:
                    current = self._current(session, document_id)

                    if current is None:
                        number = 1
                        changes = compute_line_changes(None, content)
                        kind = ChangeType(change_type or ChangeType.INITIAL)
                    else:
                        number = current.revision_number + 1
                        changes = compute_line_changes(current.content, content)
                        kind = ChangeType(change_type or ChangeType.MANUAL)
                        current.is_current_version = False
                        # Flip must hit the unique index before the insert
                        session.flush()

                    revision = PoemRevision(
                        document_id=document_id,
                        revision_number=number,
                        content=content,
                        parent_revision_id=current.id if current else None,
                        is_current_version=True,
                        change_type=kind.value,
                        change_note=change_note,
                        lines_added=changes.added,
                        lines_removed=changes.removed,
                        lines_modified=changes.modified,
                        word_count=count_words(content),
                        line_count=count_lines(content),
                        created_at=self.clock.now(),
                    )
                    session.add(revision)
                    session.flush()
                    session.expunge(revision)
            except StoreError as e:
                raise RevisionError(f"Cannot save revision for {document_id}: {e}") from e

        logger.debug(
            "Revision #%d (%s) created for %s", revision.revision_number, kind.value, document_id
        )
        return revision

    def restore_revision(
        self, revision: Union[PoemRevision, str], document_id: str
    ) -> PoemRevision:
        """Make an earlier revision's content current again.

        The earlier revision is left untouched; a new current revision with
        the same content is appended.
        """
        if isinstance(revision, str):
            found = self.get_revision(revision)
            if found is None:
                raise RevisionError(f"Revision not found: {revision}")
            revision = found

        if revision.document_id != document_id:
            raise RevisionError(
                f"Revision {revision.id} belongs to {revision.document_id}, not {document_id}"
            )

        return self.create_revision(
            document_id,
            revision.content,
            change_note=f"Restored from revision #{revision.revision_number}",
            change_type=ChangeType.RESTORE,
        )

    def append_if_changed(
        self,
        document_id: Optional[str],
        content: Optional[str],
        change_type: ChangeType,
        change_note: Optional[str] = None,
    ) -> Optional[PoemRevision]:
        """Append a revision unless content matches the current one.

        Failures are logged and swallowed so that callers saving content
        are never blocked by history bookkeeping.
        """
        if not document_id or content is None:
            return None
        try:
            current = self.get_current_revision(document_id)
            if current is not None and current.content == content:
                return None
            kind = change_type if current is not None else ChangeType.INITIAL
            return self.create_revision(document_id, content, change_note, kind)
        except (RevisionError, StoreError) as e:
            logger.warning("Revision for %s not recorded: %s", document_id, e)
            return None

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @staticmethod
    def _current(session: Session, document_id: str) -> Optional[PoemRevision]:
        stmt = select(PoemRevision).where(
            PoemRevision.document_id == document_id,
            PoemRevision.is_current_version.is_(True),
        )
        return session.execute(stmt).scalar_one_or_none()

    def get_current_revision(self, document_id: str) -> Optional[PoemRevision]:
        with self.db.get_session() as session:
            revision = self._current(session, document_id)
            if revision:
                session.expunge(revision)
            return revision

    def get_revision(self, revision_id: str) -> Optional[PoemRevision]:
        with self.db.get_session() as session:
            revision = session.get(PoemRevision, revision_id)
            if revision:
                session.expunge(revision)
            return revision

    def get_revisions(self, document_id: str) -> list[PoemRevision]:
        """Get all revisions of a document, newest first."""
        with self.db.get_session() as session:
            stmt = (
                select(PoemRevision)
                .where(PoemRevision.document_id == document_id)
                .order_by(PoemRevision.revision_number.desc())
            )
            revisions = list(session.execute(stmt).scalars().all())
            for revision in revisions:
                session.expunge(revision)
            return revisions

    def get_lineage(self, document_id: str) -> list[PoemRevision]:
        """Follow parent links from the current revision back to the root."""
        with self.db.get_session() as session:
            lineage: list[PoemRevision] = []
            seen: set[str] = set()
            revision = self._current(session, document_id)
            while revision is not None and revision.id not in seen:
                seen.add(revision.id)
                lineage.append(revision)
                if revision.parent_revision_id is None:
                    break
                revision = session.get(PoemRevision, revision.parent_revision_id)
            for item in lineage:
                session.expunge(item)
            return lineage

    def count_revisions(self, document_id: str) -> int:
        return len(self.get_revisions(document_id))

    # -------------------------------------------------------------------------
    # Diffs
    # -------------------------------------------------------------------------

    def diff_segments(self, old: str, new: str) -> list[DiffSegment]:
        return diff_segments(old, new)

    def diff_revisions(self, old_id: str, new_id: str) -> list[DiffSegment]:
        """Diff the content of two stored revisions."""
        old = self.get_revision(old_id)
        new = self.get_revision(new_id)
        if old is None or new is None:
            missing = old_id if old is None else new_id
            raise RevisionError(f"Revision not found: {missing}")
        return diff_segments(old.content, new.content)
