"""Pytest configuration and shared fixtures.

This module provides fixtures for testing poemsync: temporary databases,
a controllable clock, in-process remote stores and sample poems.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from poemsync.config import Config, reset_config
from poemsync.db.schemas import RecordType, RemoteRecord, RequestCreate, ResponseCreate
from poemsync.db.sqlite import Database, reset_db
from poemsync.gateway.base import PushOutcome
from poemsync.gateway.memory import InMemoryRemoteGateway
from poemsync.poems.manager import PoemManager
from poemsync.revisions.ledger import RevisionLedger
from poemsync.sync.clock import FixedClock
from poemsync.sync.engine import SyncEngine
from poemsync.sync.network import NetworkMonitor
from poemsync.sync.token_store import ChangeTokenStore

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Helpers
# ============================================================================


def make_config(tmp_path: Path, **overrides) -> Config:
    """Build a config rooted in a temporary directory."""
    values = dict(
        db_path=tmp_path / "poems.db",
        state_file=tmp_path / "sync_state.json",
        remote_url=None,
        remote_token=None,
        request_timeout=5,
        sync_batch_size=50,
        lifecycle_sync_interval=300,
        periodic_sync_interval=900,
        max_recent_errors=10,
        conflict_strategy="merge",
        enable_revision_history=True,
        log_level="WARNING",
    )
    values.update(overrides)
    return Config(**values)


def remote_record(
    record_id: str,
    record_type: RecordType = RecordType.RESPONSE,
    last_modified: Optional[datetime] = None,
    **fields,
) -> RemoteRecord:
    """Build a wire record for tests."""
    return RemoteRecord(
        id=record_id,
        record_type=record_type,
        last_modified=last_modified or START,
        fields=fields,
    )


class FlakyGateway(InMemoryRemoteGateway):
    """In-memory remote store with failure injection."""

    def __init__(self):
        super().__init__()
        # Rejections for normal pushes and for forced pushes, id -> error
        self.reject_ids: dict[str, str] = {}
        self.reject_forced_ids: dict[str, str] = {}
        self.push_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.delete_reject_ids: dict[str, str] = {}
        self.push_calls: list[list[str]] = []
        self.force_pushes: list[str] = []
        self.pull_tokens: list[Optional[str]] = []
        # Called with (records, force) before a push is handled
        self.on_push: Optional[Callable] = None

    def push_batch(self, records, force=False):
        self.push_calls.append([r.id for r in records])
        if force:
            self.force_pushes.extend(r.id for r in records)
        if self.on_push is not None:
            self.on_push(records, force)
        if self.push_error is not None:
            raise self.push_error
        rejected = self.reject_forced_ids if force else self.reject_ids
        accepted = [r for r in records if r.id not in rejected]
        outcomes = super().push_batch(accepted, force=force)
        for record in records:
            if record.id in rejected:
                outcomes[record.id] = PushOutcome.failure(rejected[record.id])
        return outcomes

    def pull_changes(self, since):
        self.pull_tokens.append(since)
        if self.pull_error is not None:
            raise self.pull_error
        return super().pull_changes(since)

    def delete(self, record_ids):
        if self.delete_error is not None:
            raise self.delete_error
        outcomes = super().delete([i for i in record_ids if i not in self.delete_reject_ids])
        for record_id in record_ids:
            if record_id in self.delete_reject_ids:
                outcomes[record_id] = PushOutcome.failure(self.delete_reject_ids[record_id])
        return outcomes


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset global config, database and CLI logging between tests."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()
    package_logger = logging.getLogger("poemsync")
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_remote():
    """Factory for wire records."""
    return remote_record


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return make_config(tmp_path)


@pytest.fixture
def config_factory(tmp_path: Path):
    """Build configs in the test's temporary directory with overrides."""

    def _make(**overrides) -> Config:
        return make_config(tmp_path, **overrides)

    return _make


@pytest.fixture
def db(config: Config) -> Database:
    """Create a test database in a temporary file."""
    database = Database(str(config.db_path))
    database.create_tables()
    return database


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def gateway() -> FlakyGateway:
    return FlakyGateway()


@pytest.fixture
def token_store(config: Config) -> ChangeTokenStore:
    return ChangeTokenStore(config.state_file)


@pytest.fixture
def network() -> NetworkMonitor:
    return NetworkMonitor()


@pytest.fixture
def ledger(db: Database, clock: FixedClock) -> RevisionLedger:
    return RevisionLedger(db, clock)


@pytest.fixture
def manager(db: Database, ledger: RevisionLedger, clock: FixedClock) -> PoemManager:
    return PoemManager(db, ledger, clock)


@pytest.fixture
def engine(
    db: Database,
    gateway: FlakyGateway,
    token_store: ChangeTokenStore,
    clock: FixedClock,
    network: NetworkMonitor,
    config: Config,
    ledger: RevisionLedger,
) -> Generator[SyncEngine, None, None]:
    sync_engine = SyncEngine(
        db=db,
        gateway=gateway,
        token_store=token_store,
        clock=clock,
        network=network,
        config=config,
        ledger=ledger,
    )
    yield sync_engine
    sync_engine.shutdown()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_request_data() -> RequestCreate:
    return RequestCreate(
        user_input="Write about autumn rain",
        user_topic="autumn rain",
        poem_type="haiku",
        temperature=0.7,
    )


@pytest.fixture
def sample_poem(manager: PoemManager, sample_request_data: RequestCreate):
    """Create a request with a saved poem; returns (request, response)."""
    request = manager.create_request(sample_request_data)
    result = manager.save_response(
        ResponseCreate(
            request_id=request.id,
            content="Cold rain on the roof\nleaves fall without a sound\nthe kettle whistles",
        )
    )
    return manager.get_request(request.id), result.response


@pytest.fixture
def later(clock: FixedClock):
    """Return a function giving a time ``seconds`` after the clock's now."""

    def _later(seconds: float = 60) -> datetime:
        return clock.now() + timedelta(seconds=seconds)

    return _later
