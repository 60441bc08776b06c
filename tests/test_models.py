"""Tests for the snapshot data model."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from collection_sync.exceptions import ValidationError
from collection_sync.models import (
    CollectionSnapshot,
    Item,
    SyncMetadata,
    SyncStatus,
    is_empty_document,
    normalize_metadata_keys,
)
from collection_sync.utils import EPOCH_MIN, format_timestamp, parse_timestamp

from .conftest import T0, make_item, make_snapshot


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_format_uses_milliseconds_and_z(self):
        assert format_timestamp(T0) == "2024-01-01T10:00:00.000Z"

    def test_parse_round_trip(self):
        assert parse_timestamp("2024-01-01T10:00:00.000Z") == T0

    def test_parse_offset_is_converted_to_utc(self):
        parsed = parse_timestamp("2024-01-01T12:00:00+02:00")
        assert parsed == T0
        assert parsed.tzinfo is not None

    def test_parse_garbage_returns_none(self):
        assert parse_timestamp("not a date") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None


class TestItem:
    """Tests for Item."""

    def test_unknown_keys_survive_round_trip(self):
        item = Item.from_dict({"id": "a", "title": "Dune", "series": "Dune Chronicles"})

        assert item.extra == {"series": "Dune Chronicles"}
        assert item.to_dict()["series"] == "Dune Chronicles"

    def test_to_dict_uses_document_keys(self):
        item = make_item("a", release_date="1965", last_modified=T0)
        data = item.to_dict()

        assert data["releaseDate"] == "1965"
        assert data["lastModified"] == "2024-01-01T10:00:00.000Z"
        assert "dateAdded" not in data

    def test_modified_at_falls_back_to_date_added(self):
        item = Item(id="a", title="Dune", date_added="2023-05-01T00:00:00Z")
        assert item.modified_at() == datetime(2023, 5, 1, tzinfo=UTC)

    def test_modified_at_without_timestamps_is_minimum(self):
        assert Item(id="a", title="Dune").modified_at() == EPOCH_MIN

    def test_non_list_genres_are_dropped(self):
        item = Item.from_dict({"id": "a", "title": "Dune", "genres": "sci-fi"})
        assert item.genres == []


class TestSyncMetadata:
    """Tests for SyncMetadata."""

    def test_round_trip(self):
        metadata = SyncMetadata("1.0", T0, "device-a", "2.0.0", SyncStatus.SYNCED)
        assert SyncMetadata.from_dict(metadata.to_dict()) == metadata

    def test_legacy_keys_are_accepted(self):
        metadata = SyncMetadata.from_dict(
            {
                "version": "1.0",
                "lastModified": "2024-01-01T10:00:00.000Z",
                "deviceId": "device-old",
                "appVersion": "0.9.0",
            }
        )

        assert metadata.schema_version == "1.0"
        assert metadata.origin_device_id == "device-old"
        assert metadata.client_version == "0.9.0"

    def test_current_keys_win_over_legacy(self):
        normalized = normalize_metadata_keys({"deviceId": "old", "originDeviceId": "new"})
        assert normalized == {"originDeviceId": "new"}

    def test_missing_field_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            SyncMetadata.from_dict({"schemaVersion": "1.0", "lastModified": "2024-01-01T10:00:00Z"})
        assert exc_info.value.field == "metadata.originDeviceId"

    def test_bad_timestamp_raises(self):
        with pytest.raises(ValidationError):
            SyncMetadata.from_dict(
                {"schemaVersion": "1.0", "lastModified": "yesterday", "originDeviceId": "d"}
            )

    def test_unknown_status_becomes_pending(self):
        metadata = SyncMetadata.from_dict(
            {
                "schemaVersion": "1.0",
                "lastModified": "2024-01-01T10:00:00Z",
                "originDeviceId": "d",
                "syncStatus": "exploded",
            }
        )
        assert metadata.sync_status is SyncStatus.PENDING


class TestCollectionSnapshot:
    """Tests for CollectionSnapshot."""

    def test_round_trip(self):
        snapshot = make_snapshot([make_item("a"), make_item("b")])
        restored = CollectionSnapshot.from_dict(snapshot.to_dict())

        assert restored.item_ids() == {"a", "b"}
        assert restored.metadata == snapshot.metadata

    def test_legacy_audiobooks_key(self):
        document = make_snapshot([make_item("a")]).to_dict()
        document["audiobooks"] = document.pop("items")

        restored = CollectionSnapshot.from_dict(document)
        assert restored.item_ids() == {"a"}
        assert "items" in restored.to_dict()

    def test_non_object_items_are_skipped(self):
        document = make_snapshot([make_item("a")]).to_dict()
        document["items"].append("garbage")

        assert CollectionSnapshot.from_dict(document).item_count == 1

    def test_duplicates_are_preserved(self):
        snapshot = make_snapshot([make_item("a"), make_item("a"), make_item("b")])
        restored = CollectionSnapshot.from_dict(snapshot.to_dict())

        assert restored.item_count == 3
        assert restored.duplicate_ids() == ["a"]

    def test_missing_metadata_raises(self):
        with pytest.raises(ValidationError):
            CollectionSnapshot.from_dict({"items": []})

    def test_items_not_a_list_raises(self):
        document = make_snapshot([]).to_dict()
        document["items"] = {"a": {}}
        with pytest.raises(ValidationError):
            CollectionSnapshot.from_dict(document)

    def test_empty_document_detection(self):
        assert is_empty_document({})
        assert not is_empty_document(make_snapshot([]).to_dict())
