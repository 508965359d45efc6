"""Conflict resolution between local and remote versions of a record.

Strategies:
- keep_local: force-push the local version with a fresh timestamp
- keep_remote: overwrite local fields with the remote version
- merge: combine both field by field (see ``merge_records``)
- manual: leave the record in ``conflict`` for the user
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from ..db.models import SyncableRecord, model_for
from ..db.schemas import ChangeType, ConflictStrategy, RemoteRecord, SyncStatus
from ..db.sqlite import Database, StoreError
from ..gateway.base import GatewayError, RemoteGateway
from .clock import Clock, SystemClock
from .errors import ConflictResolutionError

if TYPE_CHECKING:
    from ..revisions.ledger import RevisionLedger

logger = logging.getLogger(__name__)

SYNC_NOTE = "Synced from remote"


@dataclass
class ResolutionOutcome:
    """What resolving one record did."""

    record_id: str
    strategy: ConflictStrategy
    status: SyncStatus
    pushed: bool = False
    content_changed: bool = False


@dataclass
class SyncConflict:
    """A local record in conflict with its remote version."""

    record_id: str
    local: RemoteRecord
    remote: Optional[RemoteRecord]

    @property
    def local_modified(self) -> datetime:
        return self.local.last_modified

    @property
    def remote_modified(self) -> Optional[datetime]:
        return self.remote.last_modified if self.remote else None

    def differing_fields(self) -> list[str]:
        """Payload fields whose values differ between the two versions."""
        if self.remote is None:
            return sorted(self.local.fields)
        names = set(self.local.fields) | set(self.remote.fields)
        return sorted(
            name for name in names
            if self.local.fields.get(name) != self.remote.fields.get(name)
        )

    def __repr__(self) -> str:
        return f"SyncConflict({self.record_id!r}, type={self.local.record_type.value})"


def merge_records(
    local: RemoteRecord, remote: RemoteRecord, now: Optional[datetime] = None
) -> RemoteRecord:
    """Merge two versions of the same record.

    - content fields: the version with the greater ``last_modified`` wins,
      ties go to local
    - favorite fields: true if either side is true
    - collection fields: union of both sides, sorted

    If the result differs from ``remote`` (local contributed something)
    its ``last_modified`` is bumped to ``now`` (never below either input);
    otherwise it keeps the remote timestamp so no push is needed.
    """
    if local.id != remote.id:
        raise ValueError(f"Cannot merge different records: {local.id} and {remote.id}")

    model = model_for(local.record_type)
    remote_newer = remote.last_modified > local.last_modified

    # Fields the model doesn't know about are carried over from remote
    fields: dict[str, Any] = dict(remote.fields)
    for name in model.content_fields:
        if name not in local.fields:
            continue
        if remote_newer and name in remote.fields:
            fields[name] = remote.fields[name]
        else:
            fields[name] = local.fields[name]
    for name in model.favorite_fields:
        fields[name] = bool(local.fields.get(name)) or bool(remote.fields.get(name))
    for name in model.collection_fields:
        union = set(local.fields.get(name) or []) | set(remote.fields.get(name) or [])
        fields[name] = sorted(union)

    if fields == remote.fields:
        last_modified = remote.last_modified
    else:
        last_modified = max(local.last_modified, remote.last_modified)
        if now is not None and now > last_modified:
            last_modified = now

    return RemoteRecord(
        id=remote.id,
        record_type=remote.record_type,
        last_modified=last_modified,
        fields=fields,
    )


class ConflictResolver:
    """Applies a conflict strategy to one record."""

    def __init__(
        self,
        db: Database,
        gateway: RemoteGateway,
        clock: Optional[Clock] = None,
        ledger: Optional[RevisionLedger] = None,
    ):
        """Initialize resolver.

        Args:
            db: Database instance
            gateway: Remote store
            clock: Time source for local-win timestamps
            ledger: If given, content changes are recorded as revisions
        """
        self.db = db
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.ledger = ledger

    def resolve(
        self,
        record_id: str,
        strategy: ConflictStrategy,
        remote: Optional[RemoteRecord] = None,
    ) -> ResolutionOutcome:
        """Resolve a conflict for one record.

        Args:
            record_id: Local record id
            strategy: Strategy to apply
            remote: Remote version if already known; fetched otherwise

        Raises:
            ConflictResolutionError: If the record can't be resolved
        """
        try:
            strategy = ConflictStrategy(strategy)
        except ValueError:
            raise ConflictResolutionError(f"Unknown strategy: {strategy}", record_id)

        logger.debug("Resolving %s with %s", record_id, strategy.value)
        try:
            if strategy == ConflictStrategy.MANUAL:
                return self._mark_conflict(record_id)
            if strategy == ConflictStrategy.KEEP_LOCAL:
                return self._keep_local(record_id, remote)

            if remote is None:
                remote = self.gateway.fetch_one(record_id)
            if strategy == ConflictStrategy.KEEP_REMOTE:
                return self._keep_remote(record_id, remote)
            return self._merge(record_id, remote)
        except GatewayError as e:
            raise ConflictResolutionError(f"Remote store error: {e}", record_id) from e
        except StoreError as e:
            raise ConflictResolutionError(f"Local store error: {e}", record_id) from e

    def describe_conflict(self, record_id: str) -> SyncConflict:
        """Build a local/remote comparison for a record."""
        local = self._require(record_id)
        try:
            remote: Optional[RemoteRecord] = self.gateway.fetch_one(record_id)
        except GatewayError as e:
            logger.warning("Remote version of %s unavailable: %s", record_id, e)
            remote = None
        return SyncConflict(record_id=record_id, local=local.to_remote(), remote=remote)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _require(self, record_id: str, session=None) -> SyncableRecord:
        record = self.db.get_record(record_id, session=session)
        if record is None:
            raise ConflictResolutionError(f"Local record not found: {record_id}", record_id)
        return record

    def _mark_conflict(self, record_id: str) -> ResolutionOutcome:
        with self.db.get_session() as session:
            record = self._require(record_id, session)
            record.sync_status = SyncStatus.CONFLICT.value
        return ResolutionOutcome(record_id, ConflictStrategy.MANUAL, SyncStatus.CONFLICT)

    def _keep_local(
        self, record_id: str, remote: Optional[RemoteRecord]
    ) -> ResolutionOutcome:
        with self.db.get_session() as session:
            record = self._require(record_id, session)
            floor = remote.last_modified if remote else record.last_modified
            record.last_modified = max(self.clock.now(), record.last_modified, floor)
            record.sync_status = SyncStatus.SYNCING.value
            snapshot = record.to_remote()

        status = self._force_push(snapshot)
        return ResolutionOutcome(record_id, ConflictStrategy.KEEP_LOCAL, status, pushed=True)

    def _keep_remote(self, record_id: str, remote: RemoteRecord) -> ResolutionOutcome:
        with self.db.get_session() as session:
            record = self._require(record_id, session)
            before = record.revision_content()
            record.apply_remote(remote)
            record.sync_status = SyncStatus.SYNCED.value
            record.last_sync_error = None
            after = record.revision_content()
            document_id = record.revision_document_id()

        changed = before != after
        if changed:
            self._record_revision(document_id, after)
        return ResolutionOutcome(
            record_id, ConflictStrategy.KEEP_REMOTE, SyncStatus.SYNCED, content_changed=changed
        )

    def _merge(self, record_id: str, remote: RemoteRecord) -> ResolutionOutcome:
        with self.db.get_session() as session:
            record = self._require(record_id, session)
            before = record.revision_content()
            merged = merge_records(record.to_remote(), remote, self.clock.now())
            record.apply_remote(merged)
            local_contributed = merged.fields != remote.fields
            if local_contributed:
                record.sync_status = SyncStatus.SYNCING.value
            else:
                record.sync_status = SyncStatus.SYNCED.value
                record.last_sync_error = None
            after = record.revision_content()
            document_id = record.revision_document_id()

        changed = before != after
        if changed:
            self._record_revision(document_id, after)

        if not local_contributed:
            return ResolutionOutcome(
                record_id, ConflictStrategy.MERGE, SyncStatus.SYNCED, content_changed=changed
            )
        status = self._force_push(merged)
        return ResolutionOutcome(
            record_id, ConflictStrategy.MERGE, status, pushed=True, content_changed=changed
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _force_push(self, snapshot: RemoteRecord) -> SyncStatus:
        """Push ``snapshot`` over the remote version and settle local status."""
        try:
            outcome = self.gateway.push_batch([snapshot], force=True).get(snapshot.id)
            error = None if outcome and outcome.ok else (
                outcome.error if outcome else "No result returned for record"
            )
        except GatewayError as e:
            error = str(e)

        with self.db.get_session() as session:
            record = self.db.get_record(snapshot.id, session=session)
            if record is None:
                raise ConflictResolutionError(
                    f"Record {snapshot.id} deleted during resolution", snapshot.id
                )
            if record.last_modified != snapshot.last_modified:
                # Edited again while pushing; leave it for the next pass
                return record.status
            if error is None:
                record.sync_status = SyncStatus.SYNCED.value
                record.last_sync_error = None
                return SyncStatus.SYNCED
            record.sync_status = SyncStatus.ERROR.value
            record.last_sync_error = error

        raise ConflictResolutionError(f"Push of resolved record failed: {error}", snapshot.id)

    def _record_revision(self, document_id: Optional[str], content: Optional[str]) -> None:
        if self.ledger is None or document_id is None:
            return
        self.ledger.append_if_changed(document_id, content, ChangeType.SYNC, SYNC_NOTE)


console = Console()


def resolve_conflict_interactive(conflict: SyncConflict) -> ConflictStrategy:
    """Interactively choose how to resolve a conflict.

    Args:
        conflict: The conflict to resolve

    Returns:
        User's chosen strategy
    """
    console.print("\n" + "=" * 60)
    console.print(
        f"[bold yellow]SYNC CONFLICT: {conflict.local.record_type.value} "
        f"{conflict.record_id}[/bold yellow]"
    )
    console.print("=" * 60 + "\n")

    if conflict.remote is None:
        console.print("[red]The remote version could not be fetched.[/red]")
    else:
        _show_comparison(conflict)

    console.print("\n[bold]Resolution Options:[/bold]")
    console.print("  [cyan]1[/cyan] - Merge both versions")
    console.print("  [cyan]2[/cyan] - Keep local version")
    console.print("  [cyan]3[/cyan] - Keep remote version")
    console.print("  [cyan]4[/cyan] - Skip (resolve later)")

    choice = Prompt.ask(
        "\nYour choice",
        choices=["1", "2", "3", "4"],
        default="1",
    )

    strategy_map = {
        "1": ConflictStrategy.MERGE,
        "2": ConflictStrategy.KEEP_LOCAL,
        "3": ConflictStrategy.KEEP_REMOTE,
        "4": ConflictStrategy.MANUAL,
    }

    strategy = strategy_map[choice]
    console.print(f"\n[green]Resolution: {strategy.value}[/green]")
    return strategy


def _show_comparison(conflict: SyncConflict) -> None:
    """Display side-by-side comparison of differing fields."""
    table = Table(title="Version Comparison", show_header=True)
    table.add_column("Field", style="cyan", width=18)
    table.add_column("Local", width=30)
    table.add_column("Remote", width=30)

    for name in conflict.differing_fields():
        local_val = _short(conflict.local.fields.get(name))
        remote_val = _short(conflict.remote.fields.get(name))
        table.add_row(name, f"[yellow]{local_val}[/yellow]", f"[cyan]{remote_val}[/cyan]")

    table.add_row(
        "modified",
        conflict.local_modified.isoformat(),
        conflict.remote_modified.isoformat() if conflict.remote_modified else "-",
    )
    console.print(table)


def _short(value: Any, width: int = 60) -> str:
    if value is None:
        return "-"
    text = str(value).replace("\n", " / ")
    return text if len(text) <= width else text[: width - 3] + "..."
