"""
Shared test configuration and fixtures.

Everything runs in memory: a fake clock the tests move by hand, a sleep
that records requested delays instead of waiting, an in-memory key-value
substrate and an in-memory remote store.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from collection_sync.config import SyncConfig
from collection_sync.local.kv import MemoryKeyValueStore
from collection_sync.local.snapshot_store import LocalSnapshotStore
from collection_sync.models import CollectionSnapshot, Item, SyncMetadata, SyncStatus
from collection_sync.remote.memory import InMemoryDocumentStore
from collection_sync.utils import format_timestamp

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
LOCAL_DEVICE = "device-local"
REMOTE_DEVICE = "device-remote"
REMOTE_ID = "remote-1"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep that records delays and only yields to the event loop."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


class FixedRandom:
    """Stand-in for random.Random returning a constant."""

    def __init__(self, value: float = 0.5):
        self.value = value

    def random(self) -> float:
        return self.value


def make_item(
    item_id: str,
    title: str | None = None,
    last_modified: datetime | None = None,
    **kwargs: Any,
) -> Item:
    return Item(
        id=item_id,
        title=title or f"Title {item_id}",
        author=kwargs.pop("author", "Author"),
        last_modified=format_timestamp(last_modified) if last_modified else None,
        **kwargs,
    )


def make_snapshot(
    items: list[Item],
    device_id: str = LOCAL_DEVICE,
    last_modified: datetime = T0,
    status: SyncStatus = SyncStatus.PENDING,
) -> CollectionSnapshot:
    return CollectionSnapshot(
        items=items,
        metadata=SyncMetadata(
            schema_version="1.0",
            last_modified=last_modified,
            origin_device_id=device_id,
            sync_status=status,
        ),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    store = MemoryKeyValueStore()
    # Deterministic device identity
    store._data["collection-device-id"] = LOCAL_DEVICE
    return store


@pytest.fixture
def local_store(kv: MemoryKeyValueStore, config: SyncConfig, clock: FakeClock) -> LocalSnapshotStore:
    return LocalSnapshotStore(kv, config, clock)


@pytest.fixture
def remote() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()
