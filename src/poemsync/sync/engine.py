"""Sync engine: push local changes, then pull remote changes.

A pass runs in two phases:

1. Push: every pending/error record is marked ``syncing`` and sent in
   batches. Each record settles as ``synced`` or ``error`` on its own.
   Local deletions are then sent as tombstones.
2. Pull: all remote changes since the stored change token are applied.
   Remote-newer versions overwrite local ones, unsynced local records go
   through the conflict resolver, remote deletions are applied locally.
   The token advances only when the pull completed.

Errors never escape a pass; they are collected in a bounded log.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

from tqdm import tqdm

from ..config import Config, get_config
from ..db.models import SyncableRecord, model_for
from ..db.schemas import ChangeSet, ChangeType, ConflictStrategy, RemoteRecord, SyncStatus
from ..db.sqlite import PUSHABLE_STATUSES, Database, StoreError
from ..gateway.base import (
    ChangeTokenExpiredError,
    GatewayError,
    PushOutcome,
    RemoteGateway,
    RemoteUnavailableError,
)
from .clock import Clock, SystemClock
from .conflict import SYNC_NOTE, ConflictResolver, ResolutionOutcome
from .errors import (
    ConflictResolutionError,
    SyncError,
    SyncErrorKind,
    SyncErrorLog,
    TokenPersistenceError,
)
from .network import ConnectivityStatus, NetworkMonitor
from .token_store import ChangeTokenStore

if TYPE_CHECKING:
    from ..revisions.ledger import RevisionLedger

logger = logging.getLogger(__name__)

# Local statuses that mean "not yet agreed with the remote store"
UNSYNCED_STATUSES = (
    SyncStatus.PENDING,
    SyncStatus.ERROR,
    SyncStatus.CONFLICT,
    SyncStatus.SYNCING,
)

# Errors that stop a phase rather than a single record
PASS_LEVEL_KINDS = (
    SyncErrorKind.NO_NETWORK,
    SyncErrorKind.REMOTE_UNAVAILABLE,
    SyncErrorKind.PULL_FAILED,
    SyncErrorKind.TOKEN_PERSISTENCE_FAILED,
)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    RESOLVING_CONFLICTS = "resolving_conflicts"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of a sync pass."""

    pushed: int = 0
    push_failed: int = 0
    remote_deleted: int = 0
    pulled: int = 0
    local_deleted: int = 0
    conflicts: int = 0
    unresolved: int = 0
    skipped_in_progress: bool = False
    skipped_no_network: bool = False
    completed: bool = False
    errors: list[SyncError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.completed and not self.errors


class SyncEngine:
    """Keeps the local store and the remote store eventually consistent."""

    def __init__(
        self,
        db: Database,
        gateway: RemoteGateway,
        token_store: ChangeTokenStore,
        clock: Optional[Clock] = None,
        network: Optional[NetworkMonitor] = None,
        config: Optional[Config] = None,
        ledger: Optional["RevisionLedger"] = None,
    ):
        """Initialize sync engine.

        Args:
            db: Local store
            gateway: Remote store
            token_store: Change token persistence
            clock: Time source
            network: Connectivity source; None means always connected
            config: Settings (uses global config if not provided)
            ledger: Revision ledger for content arriving from remote
        """
        self.db = db
        self.gateway = gateway
        self.token_store = token_store
        self.clock = clock or SystemClock()
        self.network = network
        self.config = config or get_config()
        self.ledger = ledger
        self.resolver = ConflictResolver(db, gateway, self.clock, ledger)

        self._errors = SyncErrorLog(self.config.max_recent_errors)
        self._sync_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState.IDLE
        self._last_sync_date = self._load_last_sync()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._periodic_interval: Optional[float] = None

        if self.network is not None:
            self.network.add_listener(self._on_network_change)

    # ========================================================================
    # Observability
    # ========================================================================

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SyncState) -> None:
        with self._state_lock:
            self._state = state

    @property
    def last_sync_date(self) -> Optional[datetime]:
        with self._state_lock:
            return self._last_sync_date

    @property
    def is_connected(self) -> bool:
        return self.network is None or self.network.is_connected

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    @property
    def pending_changes_count(self) -> int:
        """Records and deletions waiting to be pushed."""
        try:
            return self.db.count_pending() + len(self.db.get_pending_deletions())
        except StoreError as e:
            logger.warning("Cannot count pending changes: %s", e)
            return 0

    @property
    def errors(self) -> list[SyncError]:
        """Recent errors, newest first."""
        return self._errors.snapshot()

    def clear_errors(self) -> None:
        self._errors.clear()

    def _load_last_sync(self) -> Optional[datetime]:
        try:
            return self.token_store.load_last_sync()
        except TokenPersistenceError as e:
            logger.warning("Cannot read last sync date: %s", e)
            return None

    def _record_error(
        self,
        result: Optional[SyncResult],
        kind: SyncErrorKind,
        cause: Optional[BaseException] = None,
        record_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> SyncError:
        now = self.clock.now()
        if cause is not None and message is None:
            error = SyncError.from_exception(kind, cause, record_id, occurred_at=now)
        else:
            error = SyncError(
                kind=kind,
                message=message or "",
                record_id=record_id,
                cause=cause,
                occurred_at=now,
            )
        self._errors.append(error)
        if result is not None:
            result.errors.append(error)
        level = logging.ERROR if kind in PASS_LEVEL_KINDS else logging.WARNING
        logger.log(level, "%s", error.describe())
        return error

    # ========================================================================
    # Sync pass
    # ========================================================================

    def sync_now(self, show_progress: bool = False) -> SyncResult:
        """Run one push-then-pull pass.

        Returns immediately with ``skipped_in_progress`` if another pass is
        running, and with ``skipped_no_network`` when disconnected.
        """
        result = SyncResult()
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress, skipping")
            result.skipped_in_progress = True
            return result

        try:
            if not self.is_connected:
                self._record_error(result, SyncErrorKind.NO_NETWORK)
                result.skipped_no_network = True
                return result

            self._set_state(SyncState.SYNCING)
            logger.info("Sync pass started")

            push_ok = self._push_phase(result, show_progress)
            pull_ok = self._pull_phase(result)
            result.completed = push_ok and pull_ok

            if result.completed:
                now = self.clock.now()
                with self._state_lock:
                    self._last_sync_date = now
                try:
                    self.token_store.save_last_sync(now)
                except TokenPersistenceError as e:
                    self._record_error(result, SyncErrorKind.TOKEN_PERSISTENCE_FAILED, e)

            self._set_state(SyncState.IDLE if result.completed else SyncState.ERROR)
            logger.info(
                "Sync pass finished: %d pushed, %d pulled, %d conflicts, %d errors",
                result.pushed,
                result.pulled,
                result.conflicts,
                len(result.errors),
            )
            return result
        finally:
            self._sync_lock.release()

    # ------------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------------

    def _push_phase(self, result: SyncResult, show_progress: bool = False) -> bool:
        """Push pending records then deletions. False on a pass-level failure."""
        try:
            snapshots = self._claim_pending()
        except Exception as e:
            logger.exception("Cannot read pending records")
            self._record_error(result, SyncErrorKind.PUSH_FAILED, e)
            return False

        batch_size = max(1, self.config.sync_batch_size)
        batches = [
            snapshots[i : i + batch_size] for i in range(0, len(snapshots), batch_size)
        ]

        for index, batch in enumerate(
            tqdm(batches, desc="Pushing", unit="batch", disable=not show_progress)
        ):
            try:
                outcomes = self.gateway.push_batch(batch)
            except Exception as e:
                if not isinstance(e, GatewayError):
                    logger.exception("Unexpected error pushing batch")
                remaining = [snap for later in batches[index:] for snap in later]
                self._revert_to_error(remaining, str(e))
                result.push_failed += len(remaining)
                kind = (
                    SyncErrorKind.REMOTE_UNAVAILABLE
                    if isinstance(e, RemoteUnavailableError)
                    else SyncErrorKind.PUSH_FAILED
                )
                self._record_error(result, kind, e)
                return False

            try:
                self._settle_batch(batch, outcomes, result)
            except Exception as e:
                logger.exception("Cannot save push results")
                self._record_error(result, SyncErrorKind.PUSH_FAILED, e)
                return False

        try:
            return self._push_deletions(result)
        except StoreError as e:
            self._record_error(result, SyncErrorKind.PUSH_FAILED, e)
            return False

    def _claim_pending(self) -> list[RemoteRecord]:
        """Mark pushable records as syncing and snapshot them, atomically.

        Records left in ``syncing`` by an interrupted pass are picked up
        again as well.
        """
        statuses = list(PUSHABLE_STATUSES) + [SyncStatus.SYNCING]
        with self.db.get_session() as session:
            records = self.db.fetch_records(statuses, session=session)
            snapshots = []
            for record in records:
                record.sync_status = SyncStatus.SYNCING.value
                snapshots.append(record.to_remote())
        if snapshots:
            logger.debug("Claimed %d records for push", len(snapshots))
        return snapshots

    def _revert_to_error(self, snapshots: list[RemoteRecord], error: str) -> None:
        try:
            with self.db.get_session() as session:
                for snap in snapshots:
                    record = self.db.get_record(snap.id, session=session)
                    if record is not None and record.status == SyncStatus.SYNCING:
                        record.sync_status = SyncStatus.ERROR.value
                        record.last_sync_error = error
        except StoreError as e:
            logger.error("Cannot revert records to error: %s", e)

    def _settle_batch(
        self,
        batch: list[RemoteRecord],
        outcomes: dict[str, PushOutcome],
        result: SyncResult,
    ) -> None:
        failures: list[tuple[str, str]] = []
        with self.db.get_session() as session:
            for snap in batch:
                outcome = outcomes.get(snap.id) or PushOutcome.failure(
                    "No result returned for record"
                )
                record = self.db.get_record(snap.id, session=session)
                if record is None:
                    # Deleted locally while the push was in flight
                    continue
                unchanged = (
                    record.status == SyncStatus.SYNCING
                    and record.last_modified == snap.last_modified
                )
                if outcome.ok:
                    result.pushed += 1
                    if unchanged:
                        record.sync_status = SyncStatus.SYNCED.value
                        record.last_sync_error = None
                else:
                    result.push_failed += 1
                    if record.status == SyncStatus.SYNCING:
                        record.sync_status = SyncStatus.ERROR.value
                        record.last_sync_error = outcome.error
                    failures.append((snap.id, outcome.error or "Push rejected"))

        for record_id, error in failures:
            self._record_error(
                result, SyncErrorKind.PUSH_FAILED, record_id=record_id, message=error
            )

    def _push_deletions(self, result: SyncResult) -> bool:
        try:
            tombstones = self.db.get_pending_deletions()
        except StoreError as e:
            self._record_error(result, SyncErrorKind.PUSH_FAILED, e)
            return False
        if not tombstones:
            return True

        ids = [t.record_id for t in tombstones]
        try:
            outcomes = self.gateway.delete(ids)
        except Exception as e:
            if not isinstance(e, GatewayError):
                logger.exception("Unexpected error pushing deletions")
            self.db.mark_deletions_failed(ids, str(e))
            kind = (
                SyncErrorKind.REMOTE_UNAVAILABLE
                if isinstance(e, RemoteUnavailableError)
                else SyncErrorKind.PUSH_FAILED
            )
            self._record_error(result, kind, e)
            return False

        acknowledged = [i for i in ids if outcomes.get(i) and outcomes[i].ok]
        self.db.clear_pending_deletions(acknowledged)
        result.remote_deleted += len(acknowledged)
        for record_id in ids:
            outcome = outcomes.get(record_id)
            if outcome is None or not outcome.ok:
                error = outcome.error if outcome else "No result returned for record"
                self.db.mark_deletions_failed([record_id], error)
                self._record_error(
                    result, SyncErrorKind.PUSH_FAILED, record_id=record_id, message=error
                )
        return True

    # ------------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------------

    def _pull_phase(self, result: SyncResult) -> bool:
        """Apply remote changes. False if the pull did not complete."""
        try:
            token = self.token_store.load()
        except TokenPersistenceError as e:
            self._record_error(result, SyncErrorKind.TOKEN_PERSISTENCE_FAILED, e)
            return False

        changes = self._fetch_changes(token, result)
        if changes is None:
            return False

        for remote in changes.changed:
            try:
                self._apply_remote(remote, result)
            except Exception as e:
                self._record_error(
                    result, SyncErrorKind.RECORD_PROCESSING_FAILED, e, record_id=remote.id
                )

        for record_id in changes.deleted:
            try:
                if self.db.delete_record(record_id):
                    result.local_deleted += 1
                self.db.clear_pending_deletions([record_id])
            except Exception as e:
                self._record_error(
                    result, SyncErrorKind.RECORD_PROCESSING_FAILED, e, record_id=record_id
                )

        if changes.new_token:
            try:
                self.token_store.save(changes.new_token)
            except TokenPersistenceError as e:
                self._record_error(result, SyncErrorKind.TOKEN_PERSISTENCE_FAILED, e)
                return False
        return True

    def _fetch_changes(self, token: Optional[str], result: SyncResult) -> Optional[ChangeSet]:
        try:
            try:
                return self.gateway.pull_changes(token)
            except ChangeTokenExpiredError as e:
                if token is None:
                    raise
                logger.warning("Change token expired (%s), fetching all changes", e)
                return self.gateway.pull_changes(None)
        except RemoteUnavailableError as e:
            self._record_error(result, SyncErrorKind.REMOTE_UNAVAILABLE, e)
        except GatewayError as e:
            self._record_error(result, SyncErrorKind.PULL_FAILED, e)
        except Exception as e:
            logger.exception("Unexpected error pulling changes")
            self._record_error(result, SyncErrorKind.PULL_FAILED, e)
        return None

    def _apply_remote(self, remote: RemoteRecord, result: SyncResult) -> None:
        if self.db.has_pending_deletion(remote.id):
            logger.debug("Ignoring remote change to locally deleted %s", remote.id)
            return

        model = model_for(remote.record_type)
        needs_resolution = False
        changed_content = False
        document_id: Optional[str] = None
        content: Optional[str] = None

        with self.db.get_session() as session:
            local: Optional[SyncableRecord] = self.db.get_record(remote.id, session=session)
            if local is None:
                local = model.from_remote(remote)
                local.sync_status = SyncStatus.SYNCED.value
                session.add(local)
                result.pulled += 1
                changed_content = local.revision_content() is not None
            elif local.record_type != remote.record_type:
                raise ValueError(
                    f"Type mismatch: local {local.record_type.value}, "
                    f"remote {remote.record_type.value}"
                )
            elif remote.last_modified > local.last_modified:
                before = local.revision_content()
                local.apply_remote(remote)
                local.sync_status = SyncStatus.SYNCED.value
                local.last_sync_error = None
                result.pulled += 1
                changed_content = local.revision_content() != before
            elif local.status in UNSYNCED_STATUSES:
                needs_resolution = True
            document_id = local.revision_document_id()
            content = local.revision_content()

        if needs_resolution:
            self._resolve(remote, result)
        elif changed_content and self.ledger is not None:
            self.ledger.append_if_changed(document_id, content, ChangeType.SYNC, SYNC_NOTE)

    def _resolve(self, remote: RemoteRecord, result: SyncResult) -> None:
        strategy = ConflictStrategy(self.config.conflict_strategy)
        self._set_state(SyncState.RESOLVING_CONFLICTS)
        try:
            outcome = self.resolver.resolve(remote.id, strategy, remote=remote)
            result.conflicts += 1
            if outcome.status == SyncStatus.CONFLICT:
                result.unresolved += 1
        except ConflictResolutionError as e:
            self._record_error(
                result, SyncErrorKind.CONFLICT_RESOLUTION_FAILED, e, record_id=remote.id
            )
        finally:
            self._set_state(SyncState.SYNCING)

    # ========================================================================
    # Manual resolution
    # ========================================================================

    def resolve_conflict(
        self, record_id: str, strategy: ConflictStrategy
    ) -> Optional[ResolutionOutcome]:
        """Resolve one record on request. Failures are logged, not raised."""
        if not self.is_connected and ConflictStrategy(strategy) != ConflictStrategy.MANUAL:
            self._record_error(None, SyncErrorKind.NO_NETWORK)
            return None
        try:
            return self.resolver.resolve(record_id, strategy)
        except ConflictResolutionError as e:
            self._record_error(
                None, SyncErrorKind.CONFLICT_RESOLUTION_FAILED, e, record_id=record_id
            )
            return None

    def list_conflicts(self) -> list[SyncableRecord]:
        return self.db.fetch_records([SyncStatus.CONFLICT])

    # ========================================================================
    # Triggers
    # ========================================================================

    def _on_network_change(
        self, previous: ConnectivityStatus, current: ConnectivityStatus
    ) -> None:
        if (
            previous == ConnectivityStatus.UNSATISFIED
            and current == ConnectivityStatus.SATISFIED
        ):
            logger.info("Network restored, syncing")
            self.sync_now()

    def perform_app_lifecycle_sync(self) -> Optional[SyncResult]:
        """Sync on app activation if there is something worth syncing.

        Runs when connected and there are pending changes, no successful
        sync yet, or the last one is older than the lifecycle interval.
        """
        if not self.is_connected:
            return None

        last = self.last_sync_date
        stale = last is None or (
            self.clock.now() - last
            > timedelta(seconds=self.config.lifecycle_sync_interval)
        )
        if self.pending_changes_count > 0 or stale:
            return self.sync_now()
        logger.debug("Lifecycle sync not needed")
        return None

    def check_remote_availability(self) -> bool:
        try:
            self.gateway.check_availability()
            return True
        except GatewayError as e:
            self._record_error(None, SyncErrorKind.REMOTE_UNAVAILABLE, e)
            return False

    def sync_in_background(self) -> "Future[SyncResult]":
        """Run ``sync_now`` on the engine's worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="poemsync-sync"
            )
        return self._executor.submit(self.sync_now)

    def start_periodic_sync(self, interval: Optional[float] = None) -> None:
        """Schedule a sync every ``interval`` seconds until stopped."""
        self.stop_periodic_sync()
        with self._timer_lock:
            self._periodic_interval = interval or self.config.periodic_sync_interval
            self._schedule_locked()
        logger.info("Periodic sync every %ss", self._periodic_interval)

    def stop_periodic_sync(self) -> None:
        with self._timer_lock:
            self._periodic_interval = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def periodic_sync_active(self) -> bool:
        with self._timer_lock:
            return self._periodic_interval is not None

    def _schedule_locked(self) -> None:
        timer = threading.Timer(self._periodic_interval, self._periodic_tick)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _periodic_tick(self) -> None:
        with self._timer_lock:
            if self._periodic_interval is None:
                return
        if self.is_connected:
            self.sync_now()
        with self._timer_lock:
            if self._periodic_interval is not None:
                self._schedule_locked()

    def shutdown(self) -> None:
        """Stop timers and background work."""
        self.stop_periodic_sync()
        if self.network is not None:
            self.network.remove_listener(self._on_network_change)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
