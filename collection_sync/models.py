"""
Core data types for collection sync.

A ``CollectionSnapshot`` is the unit of synchronization: the full set of
items plus a metadata block naming who wrote it and when. Snapshots are
serialized to the JSON document shared by every device:

    {"metadata": {"schemaVersion", "lastModified", "originDeviceId",
                  "clientVersion", "syncStatus"},
     "items": [{"id", "title", "author", ...}]}
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .exceptions import ValidationError
from .utils import EPOCH_MIN, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Sync status recorded in snapshot metadata and local bookkeeping."""

    NEVER = "never"
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"
    OFFLINE = "offline"
    CLEARED = "cleared"
    REPAIRED = "repaired"


# Metadata keys a persisted snapshot must carry.
REQUIRED_METADATA_FIELDS = ("schemaVersion", "lastModified", "originDeviceId")

# Keys used by documents written before the collection was generalized.
_LEGACY_METADATA_KEYS = {
    "version": "schemaVersion",
    "deviceId": "originDeviceId",
    "appVersion": "clientVersion",
}

# Item fields mapped to their document keys.
_ITEM_FIELDS = {
    "id": "id",
    "title": "title",
    "author": "author",
    "narrator": "narrator",
    "url": "url",
    "image": "image",
    "length": "length",
    "release_date": "releaseDate",
    "rating": "rating",
    "price": "price",
    "genres": "genres",
    "moods": "moods",
    "date_added": "dateAdded",
    "last_modified": "lastModified",
}


@dataclass
class Item:
    """A single entry in the collection.

    Unknown document keys are kept in ``extra`` so that a device running an
    older client never strips fields written by a newer one.
    """

    id: str
    title: str
    author: str = ""
    narrator: str = ""
    url: str = ""
    image: str = ""
    length: str = ""
    release_date: str = ""
    rating: float = 0
    price: float = 0
    genres: list[str] = field(default_factory=list)
    moods: list[str] = field(default_factory=list)
    date_added: str | None = None
    last_modified: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def modified_at(self) -> datetime:
        """Timestamp used for merge comparisons.

        Falls back to the creation timestamp, then to the earliest possible
        datetime, so items without timestamps always lose a comparison.
        """
        return (
            parse_timestamp(self.last_modified)
            or parse_timestamp(self.date_added)
            or EPOCH_MIN
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the document representation."""
        data: dict[str, Any] = dict(self.extra)
        for attr, key in _ITEM_FIELDS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            data[key] = list(value) if isinstance(value, list) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Item:
        """Create from a document entry.

        Missing ids and titles are tolerated here (they become empty
        strings); the snapshot store and the repair pass decide what to do
        with them.
        """
        kwargs: dict[str, Any] = {}
        for attr, key in _ITEM_FIELDS.items():
            if key in data:
                kwargs[attr] = data[key]
        kwargs["id"] = str(kwargs.get("id") or "")
        kwargs["title"] = str(kwargs.get("title") or "")
        for list_attr in ("genres", "moods"):
            if not isinstance(kwargs.get(list_attr, []), list):
                kwargs[list_attr] = []
        kwargs["extra"] = {k: v for k, v in data.items() if k not in _ITEM_FIELDS.values()}
        return cls(**kwargs)


@dataclass
class SyncMetadata:
    """Metadata block carried by every persisted snapshot."""

    schema_version: str
    last_modified: datetime
    origin_device_id: str
    client_version: str = "1.0.0"
    sync_status: SyncStatus = SyncStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to the document representation."""
        return {
            "schemaVersion": self.schema_version,
            "lastModified": format_timestamp(self.last_modified),
            "originDeviceId": self.origin_device_id,
            "clientVersion": self.client_version,
            "syncStatus": self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncMetadata:
        """Create from a document metadata block.

        Raises:
            ValidationError: If a required field is missing or the
                timestamp cannot be parsed
        """
        normalized = normalize_metadata_keys(data)

        for key in REQUIRED_METADATA_FIELDS:
            if not normalized.get(key):
                raise ValidationError(f"metadata.{key}", "missing")

        last_modified = parse_timestamp(normalized["lastModified"])
        if last_modified is None:
            raise ValidationError(
                "metadata.lastModified", "invalid timestamp", str(normalized["lastModified"])
            )

        try:
            status = SyncStatus(normalized.get("syncStatus") or SyncStatus.PENDING.value)
        except ValueError:
            status = SyncStatus.PENDING

        return cls(
            schema_version=str(normalized["schemaVersion"]),
            last_modified=last_modified,
            origin_device_id=str(normalized["originDeviceId"]),
            client_version=str(normalized.get("clientVersion") or "1.0.0"),
            sync_status=status,
        )


@dataclass
class CollectionSnapshot:
    """The full collection plus its sync metadata."""

    items: list[Item]
    metadata: SyncMetadata

    @property
    def item_count(self) -> int:
        return len(self.items)

    def item_ids(self) -> set[str]:
        return {item.id for item in self.items}

    def duplicate_ids(self) -> list[str]:
        """Ids that appear more than once (a corruption condition)."""
        counts = Counter(item.id for item in self.items)
        return [item_id for item_id, count in counts.items() if count > 1]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the shared JSON document."""
        return {
            "metadata": self.metadata.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollectionSnapshot:
        """Create from a shared JSON document.

        Entries that are not objects are skipped with a warning. Duplicate
        ids are preserved; only the repair pass removes them.

        Raises:
            ValidationError: If metadata is missing or incomplete, or the
                item list is not a list
        """
        if not isinstance(data, dict):
            raise ValidationError("document", "not an object")

        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            raise ValidationError("metadata", "missing")

        raw_items = document_items(data)
        if not isinstance(raw_items, list):
            raise ValidationError("items", "not a list")

        items: list[Item] = []
        for index, entry in enumerate(raw_items):
            if not isinstance(entry, dict):
                logger.warning("Skipping invalid item at index %d: %r", index, entry)
                continue
            items.append(Item.from_dict(entry))

        return cls(items=items, metadata=SyncMetadata.from_dict(metadata))


def normalize_metadata_keys(metadata: dict[str, Any]) -> dict[str, Any]:
    """Map legacy metadata keys onto their current names.

    Current keys win when a document carries both.
    """
    normalized = dict(metadata)
    for legacy, current in _LEGACY_METADATA_KEYS.items():
        if legacy in normalized:
            value = normalized.pop(legacy)
            normalized.setdefault(current, value)
    return normalized


def document_items(document: dict[str, Any]) -> Any:
    """Return the raw item list of a document (``items`` or legacy ``audiobooks``)."""
    if "items" in document:
        return document["items"]
    return document.get("audiobooks", [])


def is_empty_document(document: Any) -> bool:
    """True for documents that hold no snapshot at all (e.g. ``{}``)."""
    return isinstance(document, dict) and not document.get("metadata") and not document_items(
        document
    )
