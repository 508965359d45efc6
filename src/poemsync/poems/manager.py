"""Poem manager for local content operations.

Every mutation stamps the touched records with the current time (never
moving ``last_modified`` backwards) and marks them ``pending`` so the next
sync pass pushes them. Content saves also append a revision; a failed
revision never blocks the save itself.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db.models import PoemGroup, PoemRequest, PoemResponse, PoemRevision
from ..db.schemas import ChangeType, GroupCreate, RequestCreate, ResponseCreate
from ..db.sqlite import Database, get_db
from ..revisions.ledger import RevisionError, RevisionLedger
from ..sync.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """A saved response plus what happened to its history."""

    response: PoemResponse
    revision: Optional[PoemRevision] = None
    revision_error: Optional[str] = None

    @property
    def revision_recorded(self) -> bool:
        return self.revision is not None


class PoemManager:
    """Manages poem requests, responses and groups."""

    def __init__(
        self,
        db: Optional[Database] = None,
        ledger: Optional[RevisionLedger] = None,
        clock: Optional[Clock] = None,
        enable_revisions: bool = True,
    ):
        """Initialize poem manager.

        Args:
            db: Database instance
            ledger: Revision ledger (created on the same database if omitted)
            clock: Time source for modification timestamps
            enable_revisions: Record a revision for every content change
        """
        self.db = db or get_db()
        self.clock = clock or SystemClock()
        self.ledger = ledger or RevisionLedger(self.db, self.clock)
        self.enable_revisions = enable_revisions

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _get(session: Session, model, record_id: str, label: str):
        record = session.get(model, record_id)
        if record is None:
            raise ValueError(f"{label} not found: {record_id}")
        return record

    def _touch(self, *records) -> None:
        now = self.clock.now()
        for record in records:
            record.mark_modified(now)

    def _record_revision(
        self,
        response: PoemResponse,
        change_type: ChangeType,
        change_note: Optional[str],
    ) -> SaveResult:
        result = SaveResult(response=response)
        if not self.enable_revisions:
            return result
        try:
            result.revision = self.ledger.create_revision(
                response.revision_document_id(),
                response.content or "",
                change_note=change_note,
                change_type=change_type,
            )
        except RevisionError as e:
            logger.warning("Saved response %s without revision: %s", response.id, e)
            result.revision_error = str(e)
        return result

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def create_request(self, data: RequestCreate) -> PoemRequest:
        """Create a new poem request.

        Args:
            data: Request creation data

        Returns:
            Created request
        """
        with self.db.get_session() as session:
            request = PoemRequest(
                user_input=data.user_input,
                user_topic=data.user_topic,
                poem_type=data.poem_type,
                poem_variation_id=data.poem_variation_id,
                temperature=data.temperature,
                group_id=data.group_id,
                parent_request_id=data.parent_request_id,
                is_original=data.is_original,
                variation_note=data.variation_note,
                created_at=self.clock.now().isoformat(),
            )
            self._touch(request)
            session.add(request)
            session.flush()

            if data.group_id:
                group = self._get(session, PoemGroup, data.group_id, "Group")
                group.set_request_ids(group.get_request_ids() + [request.id])
                self._touch(group)
                session.flush()

            session.expunge(request)
            return request

    def get_request(self, request_id: str) -> Optional[PoemRequest]:
        return self.db.get_record(request_id, record_type=PoemRequest.record_type)

    def list_requests(
        self, poem_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[PoemRequest]:
        """List requests, newest first."""
        with self.db.get_session() as session:
            stmt = select(PoemRequest).order_by(PoemRequest.created_at.desc())
            if poem_type:
                stmt = stmt.where(PoemRequest.poem_type == poem_type)
            if limit:
                stmt = stmt.limit(limit)
            requests = list(session.execute(stmt).scalars().all())
            for request in requests:
                session.expunge(request)
            return requests

    def request_count(self, poem_type: Optional[str] = None) -> int:
        with self.db.get_session() as session:
            stmt = select(func.count()).select_from(PoemRequest)
            if poem_type:
                stmt = stmt.where(PoemRequest.poem_type == poem_type)
            return session.execute(stmt).scalar_one()

    def most_recent_request(self, poem_type: Optional[str] = None) -> Optional[PoemRequest]:
        requests = self.list_requests(poem_type=poem_type, limit=1)
        return requests[0] if requests else None

    def delete_request(self, request_id: str) -> bool:
        """Delete a request together with its response.

        Returns:
            True if deleted, False if not found
        """
        with self.db.get_session() as session:
            request = session.get(PoemRequest, request_id)
            if request is None:
                return False

            if request.response_id:
                self.db.delete_record(request.response_id, tombstone=True, session=session)
            if request.group_id:
                group = session.get(PoemGroup, request.group_id)
                if group and request_id in group.get_request_ids():
                    group.set_request_ids(
                        [i for i in group.get_request_ids() if i != request_id]
                    )
                    self._touch(group)

            self.db.delete_record(request_id, tombstone=True, session=session)
            return True

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    def save_response(self, data: ResponseCreate) -> SaveResult:
        """Save a generated poem for a request and start its history."""
        with self.db.get_session() as session:
            request = self._get(session, PoemRequest, data.request_id, "Request")
            response = PoemResponse(
                request_id=request.id,
                user_id=data.user_id,
                content=data.content,
                role=data.role,
                is_favorite=data.is_favorite,
                date_created=self.clock.now().isoformat(),
            )
            self._touch(response)
            session.add(response)
            session.flush()

            if request.response_id != response.id:
                request.response_id = response.id
                self._touch(request)

            session.flush()
            session.expunge(response)

        return self._record_revision(response, ChangeType.INITIAL, "Initial version")

    def get_response(self, response_id: str) -> Optional[PoemResponse]:
        return self.db.get_record(response_id, record_type=PoemResponse.record_type)

    def response_for_request(self, request_id: str) -> Optional[PoemResponse]:
        request = self.get_request(request_id)
        if request is None or not request.response_id:
            return None
        return self.get_response(request.response_id)

    def request_for_response(self, response_id: str) -> Optional[PoemRequest]:
        response = self.get_response(response_id)
        if response is None or not response.request_id:
            return None
        return self.get_request(response.request_id)

    def _update_content(
        self,
        response_id: str,
        content: str,
        change_type: ChangeType,
        change_note: Optional[str],
    ) -> SaveResult:
        with self.db.get_session() as session:
            response = self._get(session, PoemResponse, response_id, "Response")
            unchanged = response.content == content
            if not unchanged:
                response.content = content
                self._touch(response)
                session.flush()
            session.expunge(response)

        if unchanged:
            return SaveResult(response=response)
        return self._record_revision(response, change_type, change_note)

    def edit_response_content(
        self, response_id: str, content: str, change_note: Optional[str] = None
    ) -> SaveResult:
        """Replace a poem's text with a manual edit."""
        return self._update_content(response_id, content, ChangeType.MANUAL, change_note)

    def regenerate_response(
        self, response_id: str, content: str, change_note: Optional[str] = None
    ) -> SaveResult:
        """Replace a poem's text with a newly generated version."""
        return self._update_content(
            response_id, content, ChangeType.REGENERATION, change_note or "Regenerated"
        )

    def restore_revision(self, revision_id: str) -> SaveResult:
        """Put an earlier revision's text back on its poem.

        Raises:
            ValueError: If the revision or its poem does not exist
        """
        revision = self.ledger.get_revision(revision_id)
        if revision is None:
            raise ValueError(f"Revision not found: {revision_id}")
        response = self.response_for_request(revision.document_id)
        if response is None:
            # Responses without a request use their own id as document
            response = self.get_response(revision.document_id)
        if response is None:
            raise ValueError(f"No poem found for document {revision.document_id}")

        with self.db.get_session() as session:
            current = self._get(session, PoemResponse, response.id, "Response")
            if current.content != revision.content:
                current.content = revision.content
                self._touch(current)
                session.flush()
            session.expunge(current)

        result = SaveResult(response=current)
        try:
            result.revision = self.ledger.restore_revision(revision, revision.document_id)
        except RevisionError as e:
            logger.warning("Restored %s without revision: %s", response.id, e)
            result.revision_error = str(e)
        return result

    def toggle_favorite(self, response_id: str) -> PoemResponse:
        with self.db.get_session() as session:
            response = self._get(session, PoemResponse, response_id, "Response")
            response.is_favorite = not response.is_favorite
            self._touch(response)
            session.flush()
            session.expunge(response)
            return response

    def favorite_responses(self) -> list[PoemResponse]:
        with self.db.get_session() as session:
            stmt = (
                select(PoemResponse)
                .where(PoemResponse.is_favorite.is_(True))
                .order_by(PoemResponse.date_created.desc())
            )
            responses = list(session.execute(stmt).scalars().all())
            for response in responses:
                session.expunge(response)
            return responses

    def delete_response(self, response_id: str) -> bool:
        """Delete a response and unlink it from its request."""
        with self.db.get_session() as session:
            response = session.get(PoemResponse, response_id)
            if response is None:
                return False
            stmt = select(PoemRequest).where(PoemRequest.response_id == response_id)
            for request in session.execute(stmt).scalars().all():
                request.response_id = None
                self._touch(request)
            self.db.delete_record(response_id, tombstone=True, session=session)
            return True

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def create_group(self, data: GroupCreate) -> PoemGroup:
        with self.db.get_session() as session:
            group = PoemGroup(
                original_topic=data.original_topic,
                created_at=self.clock.now().isoformat(),
            )
            group.set_request_ids(data.request_ids)
            self._touch(group)
            session.add(group)
            session.flush()

            for request_id in data.request_ids:
                request = self._get(session, PoemRequest, request_id, "Request")
                request.group_id = group.id
                self._touch(request)

            session.flush()
            session.expunge(group)
            return group

    def get_group(self, group_id: str) -> Optional[PoemGroup]:
        return self.db.get_record(group_id, record_type=PoemGroup.record_type)

    def add_request_to_group(self, group_id: str, request_id: str) -> PoemGroup:
        with self.db.get_session() as session:
            group = self._get(session, PoemGroup, group_id, "Group")
            request = self._get(session, PoemRequest, request_id, "Request")

            if request_id not in group.get_request_ids():
                group.set_request_ids(group.get_request_ids() + [request_id])
                self._touch(group)
            if request.group_id != group_id:
                request.group_id = group_id
                self._touch(request)

            session.flush()
            session.expunge(group)
            return group

    def delete_group(self, group_id: str) -> bool:
        """Delete a group; its requests are kept but unlinked."""
        with self.db.get_session() as session:
            group = session.get(PoemGroup, group_id)
            if group is None:
                return False
            stmt = select(PoemRequest).where(PoemRequest.group_id == group_id)
            for request in session.execute(stmt).scalars().all():
                request.group_id = None
                self._touch(request)
            self.db.delete_record(group_id, tombstone=True, session=session)
            return True

    # -------------------------------------------------------------------------
    # Sync bookkeeping
    # -------------------------------------------------------------------------

    def pending_count(self) -> int:
        """Records not yet pushed to the remote store."""
        return self.db.count_pending()
