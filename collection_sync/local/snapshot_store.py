"""
Local snapshot store.

Owns the canonical on-device copy of the collection plus the bookkeeping
the sync engine needs between runs (last sync time, status, last error).
Everything lives in the device's key-value substrate under four keys:

    {prefix}-snapshot        serialized CollectionSnapshot
    {prefix}-sync-metadata   bookkeeping dict
    {prefix}-device-id       stable device identity
    {prefix}-offline-queue   owned by OfflineIntentQueue
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from typing import Any

from ..config import SyncConfig
from ..exceptions import QuotaExceededError, ValidationError
from ..models import CollectionSnapshot, SyncMetadata, SyncStatus
from ..utils import Clock, format_timestamp, utcnow
from .kv import KeyValueStore

logger = logging.getLogger(__name__)


class LocalSnapshotStore:
    """Sync-aware local cache for the collection snapshot.

    ``load`` never raises on corrupt data: the bad entry is deleted and
    None is returned, so callers always get a clean "no data" signal.
    ``save`` validates first and writes nothing when validation fails.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        config: SyncConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the snapshot store.

        Args:
            kv: Device-scoped key-value substrate
            config: Sync configuration (key prefix, size limit, versions)
            clock: Source of the current time
        """
        self.kv = kv
        self.config = config or SyncConfig()
        self.clock = clock

        self.snapshot_key = self.config.storage_key("snapshot")
        self.metadata_key = self.config.storage_key("sync-metadata")
        self.device_id_key = self.config.storage_key("device-id")

        self._device_id: str | None = None

    # =========================================================================
    # Device identity
    # =========================================================================

    async def get_device_id(self) -> str:
        """Get or create the persistent device id.

        Generated once, persisted, and cached for the life of the process.
        """
        if self._device_id is not None:
            return self._device_id

        stored = await self.kv.get(self.device_id_key)
        if stored:
            self._device_id = stored.strip()
            return self._device_id

        self._device_id = f"device-{uuid.uuid4()}"
        await self.kv.set(self.device_id_key, self._device_id)
        logger.info("Generated new device id %s", self._device_id)
        return self._device_id

    # =========================================================================
    # Snapshot
    # =========================================================================

    async def load(self) -> CollectionSnapshot | None:
        """Load the cached snapshot.

        Returns:
            The snapshot, or None if there is none or it was corrupt
        """
        try:
            raw = await self.kv.get(self.snapshot_key)
            if not raw:
                return None
            document = json.loads(raw)
            return CollectionSnapshot.from_dict(document)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Invalid local snapshot, clearing it: %s", e)
            await self.kv.remove(self.snapshot_key)
            return None

    async def save(self, snapshot: CollectionSnapshot, update_timestamp: bool = True) -> None:
        """Persist a snapshot.

        Args:
            snapshot: Snapshot to persist
            update_timestamp: Stamp a fresh ``lastModified`` and this device
                as origin. Pass False for snapshots pulled from the remote,
                whose timestamp is authoritative.

        Raises:
            ValidationError: If any item lacks an id or title
            QuotaExceededError: If the serialized snapshot is too large
        """
        self._validate_items(snapshot)

        if update_timestamp:
            metadata = SyncMetadata(
                schema_version=snapshot.metadata.schema_version or self.config.schema_version,
                last_modified=self.clock(),
                origin_device_id=await self.get_device_id(),
                client_version=snapshot.metadata.client_version or self.config.client_version,
                sync_status=snapshot.metadata.sync_status,
            )
        else:
            metadata = replace(
                snapshot.metadata,
                origin_device_id=snapshot.metadata.origin_device_id or await self.get_device_id(),
            )

        stored = CollectionSnapshot(items=list(snapshot.items), metadata=metadata)
        serialized = json.dumps(stored.to_dict())
        size = len(serialized.encode("utf-8"))
        if size > self.config.max_snapshot_bytes:
            raise QuotaExceededError(self.snapshot_key, size, self.config.max_snapshot_bytes)

        await self.kv.set(self.snapshot_key, serialized)

        await self.update_sync_metadata(
            {
                "last_cache_update": format_timestamp(self.clock()),
                "cache_size": size,
                "item_count": stored.item_count,
            }
        )

    async def read_raw(self) -> dict[str, Any] | None:
        """Read the snapshot document without validating it.

        Used by the repair pass, which needs to see the corrupt shapes that
        ``load`` would discard.

        Raises:
            ValidationError: If the stored value is not valid JSON
        """
        raw = await self.kv.get(self.snapshot_key)
        if not raw:
            return None
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError("snapshot", f"unreadable JSON: {e}") from e
        if not isinstance(document, dict):
            raise ValidationError("snapshot", "not an object")
        return document

    async def write_raw(self, document: dict[str, Any]) -> None:
        """Write a snapshot document as-is (repair pass only)."""
        serialized = json.dumps(document)
        size = len(serialized.encode("utf-8"))
        if size > self.config.max_snapshot_bytes:
            raise QuotaExceededError(self.snapshot_key, size, self.config.max_snapshot_bytes)
        await self.kv.set(self.snapshot_key, serialized)

    async def has_data(self) -> bool:
        return await self.kv.get(self.snapshot_key) is not None

    async def clear(self) -> None:
        """Remove the snapshot and bookkeeping. The device id is kept."""
        await self.kv.remove(self.snapshot_key)
        await self.kv.remove(self.metadata_key)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    async def get_sync_metadata(self) -> dict[str, Any]:
        """Get sync bookkeeping with defaults filled in."""
        defaults = await self._default_sync_metadata()
        raw = await self.kv.get(self.metadata_key)
        if not raw:
            return defaults

        try:
            stored = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Failed to load sync metadata, using defaults: %s", e)
            return defaults

        if not isinstance(stored, dict):
            return defaults
        return {**defaults, **stored}

    async def update_sync_metadata(self, patch: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge ``patch`` into the stored bookkeeping.

        Returns:
            The updated bookkeeping
        """
        current = await self.get_sync_metadata()
        updated = {**current, **patch, "last_updated": format_timestamp(self.clock())}
        if isinstance(updated.get("sync_status"), SyncStatus):
            updated["sync_status"] = updated["sync_status"].value
        await self.kv.set(self.metadata_key, json.dumps(updated, default=str))
        return updated

    async def get_last_sync_time(self) -> str | None:
        metadata = await self.get_sync_metadata()
        return metadata.get("last_sync_time")

    async def set_last_sync_time(self, timestamp: str) -> None:
        await self.update_sync_metadata({"last_sync_time": timestamp})

    async def stats(self) -> dict[str, Any]:
        """Summarize the cache for status displays."""
        raw = await self.kv.get(self.snapshot_key)
        metadata = await self.get_sync_metadata()
        return {
            "has_data": raw is not None,
            "size_bytes": len(raw.encode("utf-8")) if raw else 0,
            "item_count": metadata.get("item_count", 0),
            "device_id": await self.get_device_id(),
            "last_cache_update": metadata.get("last_cache_update"),
            "last_sync_time": metadata.get("last_sync_time"),
            "sync_status": metadata.get("sync_status"),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _default_sync_metadata(self) -> dict[str, Any]:
        return {
            "last_sync_time": None,
            "last_cache_update": None,
            "sync_status": SyncStatus.NEVER.value,
            "conflict_strategy": self.config.conflict_strategy,
            "remote_id": None,
            "cache_size": 0,
            "item_count": 0,
            "device_id": await self.get_device_id(),
            "last_updated": None,
        }

    @staticmethod
    def _validate_items(snapshot: CollectionSnapshot) -> None:
        for index, item in enumerate(snapshot.items):
            if not item.id or not str(item.id).strip():
                raise ValidationError(f"items[{index}].id", "required")
            if not item.title or not str(item.title).strip():
                raise ValidationError(f"items[{index}].title", "required", item.id)
