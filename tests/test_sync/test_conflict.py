"""Tests for conflict detection and resolution."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from poemsync.db.models import PoemGroup, PoemResponse
from poemsync.db.schemas import ChangeType, ConflictStrategy, RecordType, SyncStatus
from poemsync.sync.conflict import (
    SYNC_NOTE,
    ConflictResolver,
    SyncConflict,
    merge_records,
    resolve_conflict_interactive,
)
from poemsync.sync.errors import ConflictResolutionError

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def minutes(n: float) -> datetime:
    return T0 + timedelta(minutes=n)


@pytest.fixture
def resolver(db, gateway, clock, ledger):
    return ConflictResolver(db, gateway, clock, ledger)


@pytest.fixture
def local_poem(db):
    """A locally edited poem that has not been pushed."""
    return db.insert_record(PoemResponse(
        id="p1",
        request_id="r1",
        content="local text",
        role="assistant",
        is_favorite=False,
        last_modified=minutes(1),
        sync_status=SyncStatus.PENDING.value,
    ))


class TestMergeRecords:
    """Tests for field-by-field merging."""

    def test_newer_local_content_wins(self, make_remote):
        local = make_remote("p1", last_modified=minutes(5), content="local", is_favorite=False)
        remote = make_remote("p1", last_modified=minutes(1), content="remote", is_favorite=False)

        merged = merge_records(local, remote)
        assert merged.fields["content"] == "local"

    def test_newer_remote_content_wins(self, make_remote):
        local = make_remote("p1", last_modified=minutes(1), content="local")
        remote = make_remote("p1", last_modified=minutes(5), content="remote")

        merged = merge_records(local, remote)
        assert merged.fields["content"] == "remote"

    def test_tie_goes_to_local(self, make_remote):
        local = make_remote("p1", last_modified=minutes(1), content="local")
        remote = make_remote("p1", last_modified=minutes(1), content="remote")
        assert merge_records(local, remote).fields["content"] == "local"

    def test_favorite_either_side(self, make_remote):
        """Test that a favorite on either side survives the merge."""
        local = make_remote("p1", last_modified=minutes(1), content="x", is_favorite=True)
        remote = make_remote("p1", last_modified=minutes(5), content="x", is_favorite=False)
        assert merge_records(local, remote).fields["is_favorite"] is True
        assert merge_records(remote, local).fields["is_favorite"] is True

    def test_collections_union(self, make_remote):
        local = make_remote(
            "g1", RecordType.GROUP, minutes(1), original_topic="sea", request_ids=["a", "c"]
        )
        remote = make_remote(
            "g1", RecordType.GROUP, minutes(5), original_topic="sea", request_ids=["b", "a"]
        )
        assert merge_records(local, remote).fields["request_ids"] == ["a", "b", "c"]

    def test_unknown_remote_fields_kept(self, make_remote):
        local = make_remote("p1", last_modified=minutes(5), content="local")
        remote = make_remote("p1", last_modified=minutes(1), content="remote", mood="calm")
        assert merge_records(local, remote).fields["mood"] == "calm"

    def test_no_local_contribution_keeps_remote_timestamp(self, make_remote):
        local = make_remote("p1", last_modified=minutes(1), content="old", is_favorite=False)
        remote = make_remote("p1", last_modified=minutes(5), content="new", is_favorite=False)

        merged = merge_records(local, remote, now=minutes(30))
        assert merged.fields == remote.fields
        assert merged.last_modified == minutes(5)

    def test_local_contribution_bumps_timestamp(self, make_remote):
        local = make_remote("p1", last_modified=minutes(5), content="local")
        remote = make_remote("p1", last_modified=minutes(1), content="remote")

        assert merge_records(local, remote).last_modified == minutes(5)
        assert merge_records(local, remote, now=minutes(30)).last_modified == minutes(30)
        assert merge_records(local, remote, now=minutes(0)).last_modified == minutes(5)

    def test_different_ids(self, make_remote):
        with pytest.raises(ValueError):
            merge_records(make_remote("a"), make_remote("b"))


class TestSyncConflict:
    """Tests for the conflict comparison."""

    def test_differing_fields(self, make_remote):
        conflict = SyncConflict(
            record_id="p1",
            local=make_remote("p1", last_modified=minutes(1), content="a", role="assistant"),
            remote=make_remote("p1", last_modified=minutes(2), content="b", role="assistant"),
        )
        assert conflict.differing_fields() == ["content"]
        assert conflict.local_modified == minutes(1)
        assert conflict.remote_modified == minutes(2)

    def test_without_remote(self, make_remote):
        conflict = SyncConflict("p1", make_remote("p1", content="a"), None)
        assert conflict.remote_modified is None
        assert conflict.differing_fields() == ["content"]


class TestResolveManual:
    """Tests for leaving a record for the user."""

    def test_marks_conflict(self, resolver, local_poem, gateway, db):
        outcome = resolver.resolve("p1", ConflictStrategy.MANUAL)

        assert outcome.status == SyncStatus.CONFLICT
        assert not outcome.pushed
        assert db.get_record("p1").status == SyncStatus.CONFLICT
        assert gateway.push_calls == []


class TestResolveKeepLocal:
    """Tests for forcing the local version."""

    def test_force_pushes_local(self, resolver, local_poem, gateway, db, make_remote):
        remote = make_remote("p1", last_modified=minutes(2), content="remote text")
        gateway.put(remote)

        outcome = resolver.resolve("p1", ConflictStrategy.KEEP_LOCAL, remote=remote)

        assert outcome.pushed
        assert outcome.status == SyncStatus.SYNCED
        assert gateway.force_pushes == ["p1"]
        assert gateway.get("p1").fields["content"] == "local text"

        local = db.get_record("p1")
        assert local.status == SyncStatus.SYNCED
        # Never older than the version it replaced
        assert local.last_modified >= minutes(2)
        assert gateway.get("p1").last_modified == local.last_modified

    def test_uses_clock_when_later(self, resolver, local_poem, clock):
        clock.set(minutes(60))
        resolver.resolve("p1", ConflictStrategy.KEEP_LOCAL)
        assert resolver.db.get_record("p1").last_modified == minutes(60)

    def test_push_failure(self, resolver, local_poem, gateway, db):
        gateway.reject_forced_ids["p1"] = "quota exceeded"

        with pytest.raises(ConflictResolutionError) as exc:
            resolver.resolve("p1", ConflictStrategy.KEEP_LOCAL)

        assert exc.value.record_id == "p1"
        local = db.get_record("p1")
        assert local.status == SyncStatus.ERROR
        assert local.last_sync_error == "quota exceeded"


class TestResolveKeepRemote:
    """Tests for accepting the remote version."""

    def test_overwrites_local(self, resolver, local_poem, db, make_remote, gateway):
        remote = make_remote("p1", last_modified=minutes(0), content="remote text",
                             request_id="r1", is_favorite=True)

        outcome = resolver.resolve("p1", ConflictStrategy.KEEP_REMOTE, remote=remote)

        assert outcome.status == SyncStatus.SYNCED
        assert outcome.content_changed
        local = db.get_record("p1")
        assert local.content == "remote text"
        assert local.is_favorite is True
        assert local.last_modified == minutes(0)
        assert gateway.push_calls == []

    def test_records_sync_revision(self, resolver, local_poem, ledger, make_remote):
        ledger.create_revision("r1", "local text")
        remote = make_remote("p1", last_modified=minutes(0), content="remote text")

        resolver.resolve("p1", ConflictStrategy.KEEP_REMOTE, remote=remote)

        current = ledger.get_current_revision("r1")
        assert current.content == "remote text"
        assert current.change_type == ChangeType.SYNC.value
        assert current.change_note == SYNC_NOTE

    def test_fetches_remote_when_not_given(self, resolver, local_poem, gateway, make_remote):
        gateway.put(make_remote("p1", last_modified=minutes(0), content="fetched"))
        resolver.resolve("p1", ConflictStrategy.KEEP_REMOTE)
        assert resolver.db.get_record("p1").content == "fetched"

    def test_missing_remote(self, resolver, local_poem):
        with pytest.raises(ConflictResolutionError, match="Remote store error"):
            resolver.resolve("p1", ConflictStrategy.KEEP_REMOTE)


class TestResolveMerge:
    """Tests for merging both versions."""

    def test_merge_pushes_local_contribution(self, resolver, local_poem, gateway, db, make_remote):
        remote = make_remote("p1", last_modified=minutes(0), content="remote text",
                             request_id="r1", role="assistant", is_favorite=True)
        gateway.put(remote)

        outcome = resolver.resolve("p1", ConflictStrategy.MERGE, remote=remote)

        assert outcome.pushed
        assert outcome.status == SyncStatus.SYNCED
        local = db.get_record("p1")
        assert local.content == "local text"
        assert local.is_favorite is True
        assert gateway.get("p1").fields["content"] == "local text"
        assert gateway.get("p1").fields["is_favorite"] is True

    def test_merge_without_local_contribution(self, resolver, local_poem, gateway, db, make_remote):
        remote_fields = dict(db.get_record("p1").get_payload(), content="newer remote")
        remote = make_remote("p1", last_modified=minutes(3), **remote_fields)

        outcome = resolver.resolve("p1", ConflictStrategy.MERGE, remote=remote)

        assert not outcome.pushed
        assert outcome.status == SyncStatus.SYNCED
        assert gateway.force_pushes == []
        local = db.get_record("p1")
        assert local.content == "newer remote"
        assert local.last_modified == minutes(3)

    def test_merge_groups(self, resolver, db, gateway, make_remote):
        group = PoemGroup(id="g1", original_topic="sea", last_modified=minutes(1))
        group.set_request_ids(["a"])
        db.insert_record(group)
        remote = make_remote("g1", RecordType.GROUP, minutes(0),
                             original_topic="sea", request_ids=["b"])

        resolver.resolve("g1", ConflictStrategy.MERGE, remote=remote)

        assert db.get_record("g1").get_request_ids() == ["a", "b"]
        assert gateway.get("g1").fields["request_ids"] == ["a", "b"]


class TestResolveErrors:
    """Tests for resolution failures."""

    def test_unknown_strategy(self, resolver, local_poem):
        with pytest.raises(ConflictResolutionError, match="Unknown strategy"):
            resolver.resolve("p1", "newest")

    def test_missing_local_record(self, resolver):
        with pytest.raises(ConflictResolutionError, match="not found"):
            resolver.resolve("ghost", ConflictStrategy.MANUAL)

    def test_describe_conflict(self, resolver, local_poem, gateway, make_remote):
        gateway.put(make_remote("p1", last_modified=minutes(2), content="remote text",
                                request_id="r1", role="assistant", is_favorite=False))

        conflict = resolver.describe_conflict("p1")
        assert conflict.remote is not None
        assert "content" in conflict.differing_fields()

    def test_describe_conflict_remote_missing(self, resolver, local_poem):
        assert resolver.describe_conflict("p1").remote is None


class TestInteractive:
    """Tests for the interactive strategy prompt."""

    @pytest.mark.parametrize(
        "choice,expected",
        [
            ("1", ConflictStrategy.MERGE),
            ("2", ConflictStrategy.KEEP_LOCAL),
            ("3", ConflictStrategy.KEEP_REMOTE),
            ("4", ConflictStrategy.MANUAL),
        ],
    )
    def test_choice(self, make_remote, choice, expected):
        conflict = SyncConflict(
            "p1",
            make_remote("p1", content="a"),
            make_remote("p1", content="b"),
        )
        with patch("poemsync.sync.conflict.Prompt.ask", return_value=choice):
            assert resolve_conflict_interactive(conflict) == expected
