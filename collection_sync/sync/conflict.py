"""
Conflict detection and resolution for snapshot synchronization.

Two snapshots are in conflict only when they were written by different
devices within ``window`` seconds of each other and their item sets really
differ. Edits further apart than the window are treated as sequential: the
later one simply wins.

Strategies:
- keep-local: write the local snapshot to the remote unchanged
- keep-remote: overwrite local with the remote, keeping its timestamp
- merge: per-item newest wins, written to both sides
- manual: surface the conflict, change nothing
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..exceptions import UnknownStrategyError
from ..models import CollectionSnapshot, Item, SyncMetadata, SyncStatus
from ..utils import format_timestamp

DEFAULT_CONFLICT_WINDOW = 60.0  # seconds


class ConflictStrategy(Enum):
    """How to resolve a concurrent modification."""

    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"
    MERGE = "merge"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: ConflictStrategy | str) -> ConflictStrategy:
        """Parse a configured strategy name.

        Raises:
            UnknownStrategyError: If the name is not recognized
        """
        if isinstance(value, cls):
            return value
        name = _STRATEGY_ALIASES.get(str(value), str(value))
        try:
            return cls(name)
        except ValueError:
            raise UnknownStrategyError(str(value)) from None


# Names written by older settings files.
_STRATEGY_ALIASES = {
    "auto-local": "keep-local",
    "auto-remote": "keep-remote",
}


@dataclass
class ConflictRecord:
    """A detected concurrent modification. Never persisted."""

    local_timestamp: datetime
    remote_timestamp: datetime
    local_device_id: str
    remote_device_id: str
    local_count: int
    remote_count: int
    type: str = "concurrent_modification"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "local_timestamp": format_timestamp(self.local_timestamp),
            "remote_timestamp": format_timestamp(self.remote_timestamp),
            "local_device_id": self.local_device_id,
            "remote_device_id": self.remote_device_id,
            "local_count": self.local_count,
            "remote_count": self.remote_count,
        }


def normalize_items(items: list[Item]) -> list[tuple[Any, ...]]:
    """Comparable form of an item set. Timestamps are left out.

    Entries are ordered by their repr, so duplicate ids with mixed field
    types (a null rating next to a number) still sort.
    """
    entries = [
        (
            item.id,
            item.title,
            item.author,
            item.rating,
            tuple(sorted(str(g) for g in item.genres)),
            tuple(sorted(str(m) for m in item.moods)),
        )
        for item in items
    ]
    return sorted(entries, key=repr)


def detect_conflict(
    local: CollectionSnapshot | None,
    remote: CollectionSnapshot | None,
    window: float = DEFAULT_CONFLICT_WINDOW,
) -> ConflictRecord | None:
    """Return a ConflictRecord if ``local`` and ``remote`` diverged concurrently."""
    if local is None or remote is None:
        return None
    if local.metadata.origin_device_id == remote.metadata.origin_device_id:
        return None

    local_time = local.metadata.last_modified
    remote_time = remote.metadata.last_modified
    if abs((local_time - remote_time).total_seconds()) > window:
        return None

    if normalize_items(local.items) == normalize_items(remote.items):
        return None

    return ConflictRecord(
        local_timestamp=local_time,
        remote_timestamp=remote_time,
        local_device_id=local.metadata.origin_device_id,
        remote_device_id=remote.metadata.origin_device_id,
        local_count=local.item_count,
        remote_count=remote.item_count,
    )


def _unique(items: list[Item]) -> dict[str, Item]:
    by_id: dict[str, Item] = {}
    for item in items:
        by_id.setdefault(item.id, item)
    return by_id


def merge_snapshots(
    local: CollectionSnapshot,
    remote: CollectionSnapshot,
    device_id: str,
    now: datetime,
) -> CollectionSnapshot:
    """Merge two snapshots item by item.

    For ids on both sides the item with the later ``modified_at`` wins, local
    on ties. Local items come first, then remote-only items, each in their
    original order. The result carries fresh metadata for ``device_id``.
    """
    local_items = _unique(local.items)
    remote_items = _unique(remote.items)

    merged: list[Item] = []
    for item_id, item in local_items.items():
        other = remote_items.get(item_id)
        if other is not None and other.modified_at() > item.modified_at():
            merged.append(other)
        else:
            merged.append(item)
    merged.extend(item for item_id, item in remote_items.items() if item_id not in local_items)

    metadata = SyncMetadata(
        schema_version=local.metadata.schema_version,
        last_modified=now,
        origin_device_id=device_id,
        client_version=local.metadata.client_version,
        sync_status=SyncStatus.SYNCED,
    )
    return CollectionSnapshot(items=merged, metadata=metadata)
