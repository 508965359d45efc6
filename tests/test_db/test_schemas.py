"""Tests for Pydantic schemas."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from poemsync.db.schemas import (
    ChangeSet,
    ConflictStrategy,
    GroupCreate,
    RecordType,
    RemoteRecord,
    RequestCreate,
    ResponseCreate,
    SyncStatus,
    ensure_utc,
)


class TestEnsureUtc:
    """Tests for timestamp normalization."""

    def test_naive_is_treated_as_utc(self):
        """Test that naive datetimes are labelled UTC without shifting."""
        value = ensure_utc(datetime(2025, 3, 1, 8, 30))
        assert value.tzinfo == timezone.utc
        assert value.hour == 8

    def test_other_zone_is_converted(self):
        """Test that aware datetimes are converted to UTC."""
        plus_two = timezone(timedelta(hours=2))
        value = ensure_utc(datetime(2025, 3, 1, 10, 0, tzinfo=plus_two))
        assert value == datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
        assert value.tzinfo == timezone.utc


class TestRemoteRecord:
    """Tests for the wire record schema."""

    def test_valid_record(self):
        """Test creating a valid record."""
        record = RemoteRecord(
            id="abc",
            record_type="response",
            last_modified=datetime(2025, 1, 1, tzinfo=timezone.utc),
            fields={"content": "hello"},
        )
        assert record.record_type == RecordType.RESPONSE
        assert record.fields["content"] == "hello"

    def test_timestamp_normalized(self):
        """Test that naive timestamps become aware UTC."""
        record = RemoteRecord(
            id="abc", record_type=RecordType.GROUP, last_modified=datetime(2025, 1, 1)
        )
        assert record.last_modified.tzinfo == timezone.utc

    def test_iso_string_timestamp(self):
        """Test parsing a timestamp from JSON text."""
        record = RemoteRecord.model_validate(
            {"id": "abc", "record_type": "request", "last_modified": "2025-01-01T12:00:00Z"}
        )
        assert record.last_modified == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        assert record.fields == {}

    def test_empty_id_rejected(self):
        """Test that empty ids are rejected."""
        with pytest.raises(ValidationError):
            RemoteRecord(id="", record_type="request", last_modified=datetime.now())

    def test_unknown_type_rejected(self):
        """Test that unknown record types are rejected."""
        with pytest.raises(ValidationError):
            RemoteRecord(id="x", record_type="poem", last_modified=datetime.now())

    def test_same_payload_ignores_timestamp(self):
        """Test payload comparison."""
        a = RemoteRecord(
            id="x", record_type="response", last_modified=datetime(2025, 1, 1),
            fields={"content": "a"},
        )
        b = a.model_copy(update={"last_modified": datetime(2025, 2, 1, tzinfo=timezone.utc)})
        c = a.model_copy(update={"fields": {"content": "b"}})
        assert a.same_payload(b)
        assert not a.same_payload(c)


class TestChangeSet:
    """Tests for change sets."""

    def test_defaults(self):
        """Test empty change set."""
        changes = ChangeSet()
        assert changes.changed == []
        assert changes.deleted == []
        assert changes.new_token is None

    def test_from_json(self):
        """Test parsing a change set from a response body."""
        changes = ChangeSet.model_validate({
            "changed": [
                {"id": "a", "record_type": "group", "last_modified": "2025-01-01T00:00:00+00:00"}
            ],
            "deleted": ["b"],
            "new_token": "v1:9",
        })
        assert changes.changed[0].id == "a"
        assert changes.deleted == ["b"]
        assert changes.new_token == "v1:9"


class TestCreateSchemas:
    """Tests for manager input schemas."""

    def test_request_create_minimal(self):
        """Test creating request data with only the prompt."""
        data = RequestCreate(user_input="Write about the sea")
        assert data.is_original is True
        assert data.temperature is None

    def test_request_create_empty_input(self):
        """Test that an empty prompt is rejected."""
        with pytest.raises(ValidationError):
            RequestCreate(user_input="")

    def test_request_create_temperature_range(self):
        """Test temperature validation."""
        RequestCreate(user_input="x", temperature=0.0)
        RequestCreate(user_input="x", temperature=2.0)
        with pytest.raises(ValidationError):
            RequestCreate(user_input="x", temperature=2.5)
        with pytest.raises(ValidationError):
            RequestCreate(user_input="x", temperature=-0.1)

    def test_response_create_defaults(self):
        """Test response defaults."""
        data = ResponseCreate(request_id="r1", content="A poem")
        assert data.user_id == "local"
        assert data.role == "assistant"
        assert data.is_favorite is False

    def test_group_create_defaults(self):
        """Test group defaults."""
        data = GroupCreate()
        assert data.request_ids == []
        assert data.original_topic is None


class TestEnums:
    """Tests for enum values shared with the remote store."""

    def test_status_values(self):
        assert [s.value for s in SyncStatus] == [
            "pending", "syncing", "synced", "conflict", "error",
        ]

    def test_strategy_from_string(self):
        assert ConflictStrategy("keep_remote") == ConflictStrategy.KEEP_REMOTE
        with pytest.raises(ValueError):
            ConflictStrategy("newest")
