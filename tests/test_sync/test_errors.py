"""Tests for sync errors and the recent-errors log."""

from datetime import datetime, timedelta, timezone

import pytest

from poemsync.gateway.base import TransportError
from poemsync.sync.errors import SyncError, SyncErrorKind, SyncErrorLog

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _error(n: int, kind: SyncErrorKind = SyncErrorKind.PUSH_FAILED) -> SyncError:
    return SyncError(kind=kind, message=f"error {n}", occurred_at=T0 + timedelta(seconds=n))


class TestSyncError:
    """Tests for error descriptions."""

    def test_no_network(self):
        error = SyncError(kind=SyncErrorKind.NO_NETWORK, message="ignored")
        assert error.describe() == "No network connection available"

    def test_push_failed_for_record(self):
        error = SyncError(SyncErrorKind.PUSH_FAILED, "quota", record_id="p1")
        assert error.describe() == "Failed to save record p1: quota"

    def test_push_failed_pass(self):
        assert SyncError(SyncErrorKind.PUSH_FAILED).describe() == "Failed to push changes"

    @pytest.mark.parametrize(
        "kind,prefix",
        [
            (SyncErrorKind.REMOTE_UNAVAILABLE, "Remote store is currently unavailable"),
            (SyncErrorKind.PULL_FAILED, "Failed to fetch changes"),
            (SyncErrorKind.CONFLICT_RESOLUTION_FAILED, "Failed to resolve conflict"),
            (SyncErrorKind.TOKEN_PERSISTENCE_FAILED, "Failed to save change token"),
        ],
    )
    def test_descriptions(self, kind, prefix):
        assert SyncError(kind, "details").describe() == f"{prefix}: details"

    def test_record_processing(self):
        error = SyncError(SyncErrorKind.RECORD_PROCESSING_FAILED, "bad type", record_id="x")
        assert str(error) == "Failed to process record x: bad type"

    def test_from_exception(self):
        cause = TransportError("Request timed out")
        error = SyncError.from_exception(SyncErrorKind.PULL_FAILED, cause, occurred_at=T0)
        assert error.cause is cause
        assert error.message == "Request timed out"
        assert error.occurred_at == T0

    def test_kind_values(self):
        assert SyncErrorKind.TOKEN_PERSISTENCE_FAILED.value == "token_persistence_failed"


class TestSyncErrorLog:
    """Tests for the bounded log."""

    def test_newest_first(self):
        log = SyncErrorLog()
        log.append(_error(1))
        log.append(_error(2))
        assert [e.message for e in log] == ["error 2", "error 1"]
        assert log.latest.message == "error 2"

    def test_bounded(self):
        log = SyncErrorLog(capacity=3)
        for n in range(5):
            log.append(_error(n))
        assert len(log) == 3
        assert [e.message for e in log.snapshot()] == ["error 4", "error 3", "error 2"]

    def test_clear(self):
        log = SyncErrorLog()
        log.append(_error(1))
        log.clear()
        assert len(log) == 0
        assert log.latest is None

    def test_snapshot_is_copy(self):
        log = SyncErrorLog()
        log.append(_error(1))
        snapshot = log.snapshot()
        log.append(_error(2))
        assert len(snapshot) == 1

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            SyncErrorLog(capacity=0)
