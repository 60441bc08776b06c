"""Tests for the sync orchestrator."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from collection_sync.config import SyncConfig
from collection_sync.exceptions import (
    NotConfiguredError,
    RemoteNotFoundError,
    StorageConnectionError,
    SyncInProgressError,
    UnknownStrategyError,
    ValidationError,
)
from collection_sync.local.kv import MemoryKeyValueStore
from collection_sync.local.snapshot_store import LocalSnapshotStore
from collection_sync.models import CollectionSnapshot
from collection_sync.remote.memory import InMemoryDocumentStore
from collection_sync.sync.conflict import ConflictStrategy
from collection_sync.sync.engine import SyncDirection, SyncOrchestrator, SyncState
from collection_sync.sync.queue import IntentType

from .conftest import (
    LOCAL_DEVICE,
    REMOTE_DEVICE,
    REMOTE_ID,
    T0,
    FakeClock,
    RecordingSleep,
    make_item,
    make_snapshot,
)


class GatedDocumentStore(InMemoryDocumentStore):
    """Blocks every exists() call until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def exists(self, remote_id: str) -> bool:
        await self.gate.wait()
        return await super().exists(remote_id)


class FlakyDocumentStore(InMemoryDocumentStore):
    """Fails the first ``failures`` reads with a connection error."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    async def read(self, remote_id: str) -> dict:
        if self.failures:
            self.failures -= 1
            raise StorageConnectionError("https://remote.example")
        return await super().read(remote_id)


async def build(
    local_store: LocalSnapshotStore,
    remote: InMemoryDocumentStore,
    config: SyncConfig,
    clock: FakeClock,
    sleep: RecordingSleep,
) -> SyncOrchestrator:
    orchestrator = SyncOrchestrator(local_store, remote, config, clock=clock, sleep=sleep)
    await orchestrator.initialize()
    return orchestrator


@pytest.fixture
async def orchestrator(local_store, remote, config, clock, sleep):
    config.remote_id = REMOTE_ID
    orchestrator = await build(local_store, remote, config, clock, sleep)
    yield orchestrator
    await orchestrator.shutdown()


def record(orchestrator: SyncOrchestrator, event: str) -> list[dict]:
    received: list[dict] = []
    orchestrator.on(event, received.append)
    return received


def seed_remote(remote: InMemoryDocumentStore, snapshot: CollectionSnapshot) -> None:
    remote.create(REMOTE_ID, snapshot.to_dict())


def remote_ids(remote: InMemoryDocumentStore) -> set[str]:
    return {item["id"] for item in remote.get(REMOTE_ID)["items"]}


class TestPreconditions:
    """Tests for sync preconditions."""

    @pytest.mark.asyncio
    async def test_not_configured(self, local_store, remote, config, clock, sleep):
        orchestrator = await build(local_store, remote, config, clock, sleep)
        errors = record(orchestrator, "syncError")

        with pytest.raises(NotConfiguredError):
            await orchestrator.sync()

        assert orchestrator.state is SyncState.ERROR
        assert not orchestrator.in_progress
        assert len(errors) == 1
        assert errors[0]["can_retry"] is False

        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "error"
        assert metadata["last_error"] is not None

    @pytest.mark.asyncio
    async def test_missing_remote_leaves_local_untouched(
        self, orchestrator, local_store, kv: MemoryKeyValueStore, sleep: RecordingSleep
    ):
        await local_store.save(make_snapshot([make_item("a")]))
        before = await kv.get("collection-snapshot")
        errors = record(orchestrator, "syncError")

        with pytest.raises(RemoteNotFoundError):
            await orchestrator.sync()

        assert await kv.get("collection-snapshot") == before
        assert orchestrator.state is SyncState.ERROR
        assert not orchestrator.in_progress
        assert sleep.calls == []
        assert errors[0]["title"] == "Snapshot Not Found"
        assert errors[0]["can_retry"] is False

        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "error"
        assert metadata["last_error"]["category"] == "not_found"

    @pytest.mark.asyncio
    async def test_concurrent_sync_is_rejected(self, local_store, config, clock, sleep):
        config.remote_id = REMOTE_ID
        remote = GatedDocumentStore()
        remote.create(REMOTE_ID)
        orchestrator = await build(local_store, remote, config, clock, sleep)

        first = asyncio.create_task(orchestrator.sync())
        while not orchestrator.in_progress:
            await asyncio.sleep(0)

        with pytest.raises(SyncInProgressError):
            await orchestrator.sync()
        with pytest.raises(SyncInProgressError):
            await orchestrator.push()

        remote.gate.set()
        result = await first
        assert result.success
        assert not orchestrator.in_progress


class TestDirection:
    """Tests for direction selection without conflicts."""

    @pytest.mark.asyncio
    async def test_pull_when_local_is_empty(self, orchestrator, local_store, remote):
        snapshot = make_snapshot([make_item("a"), make_item("b")], device_id=REMOTE_DEVICE)
        seed_remote(remote, snapshot)

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PULL
        assert result.item_count == 2
        loaded = await local_store.load()
        assert loaded.item_ids() == {"a", "b"}
        assert loaded.metadata.origin_device_id == REMOTE_DEVICE
        assert loaded.metadata.last_modified == T0

    @pytest.mark.asyncio
    async def test_push_when_remote_is_empty(self, orchestrator, local_store, remote):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PUSH
        assert remote_ids(remote) == {"a"}
        assert remote.get(REMOTE_ID)["metadata"]["originDeviceId"] == LOCAL_DEVICE

    @pytest.mark.asyncio
    async def test_nothing_on_either_side(self, orchestrator, remote):
        remote.create(REMOTE_ID)

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.NONE
        assert remote.write_count == 0

    @pytest.mark.asyncio
    async def test_newer_local_is_pushed(self, orchestrator, local_store, remote):
        seed_remote(
            remote,
            make_snapshot(
                [make_item("old")], device_id=REMOTE_DEVICE, last_modified=T0 - timedelta(minutes=5)
            ),
        )
        await local_store.save(make_snapshot([make_item("new")]))

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PUSH
        assert remote_ids(remote) == {"new"}

    @pytest.mark.asyncio
    async def test_newer_remote_is_pulled(self, orchestrator, local_store, remote):
        await local_store.save(make_snapshot([make_item("old")]))
        seed_remote(
            remote,
            make_snapshot(
                [make_item("new")], device_id=REMOTE_DEVICE, last_modified=T0 + timedelta(minutes=5)
            ),
        )

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PULL
        loaded = await local_store.load()
        assert loaded.item_ids() == {"new"}
        assert loaded.metadata.last_modified == T0 + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_equal_timestamps_are_a_no_op(self, orchestrator, local_store, remote):
        await local_store.save(make_snapshot([make_item("a")]))
        seed_remote(remote, make_snapshot([make_item("a")]))

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.NONE
        assert remote.write_count == 0

    @pytest.mark.asyncio
    async def test_success_updates_bookkeeping(self, orchestrator, local_store, remote):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))
        started = record(orchestrator, "syncStarted")
        completed = record(orchestrator, "syncCompleted")

        await orchestrator.sync()

        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "synced"
        assert metadata["last_sync_time"] == "2024-01-01T10:00:00.000Z"
        assert metadata["last_push_time"] == "2024-01-01T10:00:00.000Z"
        assert metadata["last_error"] is None
        assert started == [{"force": False}]
        assert completed[0]["direction"] == "push"
        assert orchestrator.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_force_pushes_over_newer_remote(self, orchestrator, local_store, remote):
        await local_store.save(make_snapshot([make_item("mine")]))
        seed_remote(
            remote,
            make_snapshot(
                [make_item("theirs")], device_id=REMOTE_DEVICE, last_modified=T0 + timedelta(seconds=5)
            ),
        )
        conflicts = record(orchestrator, "conflictDetected")

        result = await orchestrator.sync(force=True)

        assert result.direction is SyncDirection.PUSH
        assert remote_ids(remote) == {"mine"}
        assert conflicts == []

    @pytest.mark.asyncio
    async def test_transient_read_failure_is_retried(self, local_store, config, clock, sleep):
        config.remote_id = REMOTE_ID
        remote = FlakyDocumentStore(failures=1)
        seed_remote(remote, make_snapshot([make_item("a")], device_id=REMOTE_DEVICE))
        orchestrator = await build(local_store, remote, config, clock, sleep)

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PULL
        assert len(sleep.calls) == 1
        assert 0.875 <= sleep.calls[0] <= 1.125


class TestConflicts:
    """Tests for conflict handling during sync."""

    @pytest.fixture
    async def diverged(self, local_store, remote):
        await local_store.save(make_snapshot([make_item("A")]))
        seed_remote(
            remote,
            make_snapshot(
                [make_item("B")], device_id=REMOTE_DEVICE, last_modified=T0 + timedelta(seconds=30)
            ),
        )

    @pytest.mark.asyncio
    async def test_manual_changes_nothing(self, orchestrator, local_store, remote, diverged):
        conflicts = record(orchestrator, "conflictDetected")

        result = await orchestrator.sync()

        assert result.success
        assert result.requires_manual_resolution
        assert result.conflict is not None
        assert remote.write_count == 0
        assert (await local_store.load()).item_ids() == {"A"}
        assert conflicts[0]["strategy"] == "manual"
        assert conflicts[0]["resolution_options"] == ["keep-local", "keep-remote", "merge"]

        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "pending"
        assert metadata["last_sync_time"] is None

    @pytest.mark.asyncio
    async def test_manual_resolution_round_trip(self, orchestrator, local_store, remote, diverged):
        conflicts = record(orchestrator, "conflictDetected")
        completed = record(orchestrator, "syncCompleted")
        await orchestrator.sync()

        payload = conflicts[0]
        assert {item["id"] for item in payload["local"]["items"]} == {"A"}
        assert {item["id"] for item in payload["remote"]["items"]} == {"B"}

        result = await orchestrator.resolve_pending_conflict(payload["resolution_options"][2])

        assert result.direction is SyncDirection.BOTH
        assert not result.requires_manual_resolution
        assert (await local_store.load()).item_ids() == {"A", "B"}
        assert remote_ids(remote) == {"A", "B"}
        assert completed[-1]["resolution"] == "merge"

        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "synced"
        assert metadata["last_conflict_resolution"] == "merge"

    @pytest.mark.asyncio
    async def test_resolve_pending_rejects_unknown_strategy(self, orchestrator, diverged):
        with pytest.raises(UnknownStrategyError):
            await orchestrator.resolve_pending_conflict("coin-flip")

    @pytest.mark.asyncio
    async def test_merge_writes_union_to_both_sides(
        self, orchestrator, local_store, remote, config, diverged
    ):
        config.conflict_strategy = "merge"
        conflicts = record(orchestrator, "conflictDetected")

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.BOTH
        assert result.resolution is ConflictStrategy.MERGE
        assert len(conflicts) == 1
        assert (await local_store.load()).item_ids() == {"A", "B"}
        assert remote_ids(remote) == {"A", "B"}
        assert remote.get(REMOTE_ID)["metadata"]["originDeviceId"] == LOCAL_DEVICE

        metadata = await local_store.get_sync_metadata()
        assert metadata["last_conflict_resolution"] == "merge"
        assert metadata["sync_status"] == "synced"

    @pytest.mark.asyncio
    async def test_keep_local(self, orchestrator, local_store, remote, diverged):
        await orchestrator.set_conflict_strategy("keep-local")

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PUSH
        assert remote_ids(remote) == {"A"}

    @pytest.mark.asyncio
    async def test_keep_remote(self, orchestrator, local_store, remote, diverged):
        await orchestrator.set_conflict_strategy(ConflictStrategy.KEEP_REMOTE)

        result = await orchestrator.sync()

        assert result.direction is SyncDirection.PULL
        loaded = await local_store.load()
        assert loaded.item_ids() == {"B"}
        assert loaded.metadata.origin_device_id == REMOTE_DEVICE

    @pytest.mark.asyncio
    async def test_legacy_strategy_name(self, orchestrator, remote, config, diverged):
        config.conflict_strategy = "auto-local"

        result = await orchestrator.sync()

        assert result.resolution is ConflictStrategy.KEEP_LOCAL
        assert remote_ids(remote) == {"A"}

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, orchestrator, config, diverged):
        with pytest.raises(UnknownStrategyError):
            await orchestrator.set_conflict_strategy("coin-flip")

        config.conflict_strategy = "coin-flip"
        with pytest.raises(UnknownStrategyError):
            await orchestrator.sync()

    @pytest.mark.asyncio
    async def test_resolve_requires_both_sides(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.resolve_conflict(
                "merge", make_snapshot([make_item("a")]), None
            )


class TestOffline:
    """Tests for offline queuing and reconnect."""

    @pytest.mark.asyncio
    async def test_sync_is_queued_while_offline(self, orchestrator, remote):
        await orchestrator.set_online(False)
        queued = record(orchestrator, "operationQueued")

        first = await orchestrator.sync()
        await orchestrator.sync()

        assert first.queued
        assert first.success
        assert remote.read_count == 0
        assert await orchestrator.queue.size() == 1
        assert queued[-1]["queue_size"] == 1
        assert queued[-1]["operation"]["type"] == "sync"

    @pytest.mark.asyncio
    async def test_network_change_is_emitted_once(self, orchestrator, local_store):
        changes = record(orchestrator, "networkStatusChanged")

        await orchestrator.set_online(False)
        await orchestrator.set_online(False)

        assert changes == [{"online": False}]
        assert not orchestrator.is_online
        assert (await local_store.get_sync_metadata())["sync_status"] == "offline"

    @pytest.mark.asyncio
    async def test_reconnect_replays_queue_then_syncs(
        self, orchestrator, local_store, remote, sleep: RecordingSleep
    ):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))
        await orchestrator.set_online(False)
        await orchestrator.sync()
        processed = record(orchestrator, "offlineQueueProcessed")

        await orchestrator.set_online(True)
        await orchestrator.wait_for_background()

        assert await orchestrator.queue.is_empty()
        assert remote_ids(remote) == {"a"}
        assert remote.write_count == 1
        assert processed[0]["succeeded"] == 1
        assert sleep.calls == [2.0]

    @pytest.mark.asyncio
    async def test_failed_replay_stays_queued(self, orchestrator):
        await orchestrator.set_online(False)
        await orchestrator.sync()

        await orchestrator.set_online(True)
        await orchestrator.wait_for_background()

        intents = await orchestrator.queue.get_queue()
        assert [intent.id for intent in intents] == ["sync"]
        assert intents[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_push_and_pull_are_queued_while_offline(self, orchestrator):
        await orchestrator.set_online(False)

        pushed = await orchestrator.push()
        pulled = await orchestrator.pull()

        assert pushed.queued and pushed.direction is SyncDirection.PUSH
        assert pulled.queued and pulled.direction is SyncDirection.PULL
        types = [intent.type for intent in await orchestrator.queue.get_queue()]
        assert types == [IntentType.PUSH, IntentType.PULL]

    @pytest.mark.asyncio
    async def test_draining_while_offline_replays_push(self, orchestrator, local_store, remote):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))
        await orchestrator.set_online(False)
        await orchestrator.push()

        result = await orchestrator.process_offline_queue()

        assert result.succeeded == 1
        assert await orchestrator.queue.is_empty()
        assert remote_ids(remote) == {"a"}

    @pytest.mark.asyncio
    async def test_draining_while_offline_replays_pull(self, orchestrator, local_store, remote):
        seed_remote(remote, make_snapshot([make_item("r")], device_id=REMOTE_DEVICE))
        await orchestrator.set_online(False)
        await orchestrator.pull()

        result = await orchestrator.process_offline_queue()

        assert result.succeeded == 1
        assert await orchestrator.queue.is_empty()
        assert (await local_store.load()).item_ids() == {"r"}

    @pytest.mark.asyncio
    async def test_clear_offline_queue(self, orchestrator):
        await orchestrator.set_online(False)
        await orchestrator.sync()
        cleared = record(orchestrator, "offlineQueueCleared")

        await orchestrator.clear_offline_queue()

        assert await orchestrator.queue.is_empty()
        assert cleared == [{}]


class TestPushPull:
    """Tests for the one-directional operations."""

    @pytest.mark.asyncio
    async def test_push(self, orchestrator, local_store, remote):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))

        result = await orchestrator.push()

        assert result.direction is SyncDirection.PUSH
        assert remote_ids(remote) == {"a"}
        assert (await local_store.get_sync_metadata())["sync_status"] == "synced"

    @pytest.mark.asyncio
    async def test_push_without_local_data(self, orchestrator, remote, sleep: RecordingSleep):
        remote.create(REMOTE_ID)

        with pytest.raises(ValidationError):
            await orchestrator.push()
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_pull(self, orchestrator, local_store, remote):
        await local_store.save(make_snapshot([make_item("mine")]))
        seed_remote(remote, make_snapshot([make_item("theirs")], device_id=REMOTE_DEVICE))

        result = await orchestrator.pull()

        assert result.direction is SyncDirection.PULL
        assert (await local_store.load()).item_ids() == {"theirs"}


class TestLocalChanges:
    """Tests for commit_local_changes and clear_all_data."""

    @pytest.mark.asyncio
    async def test_commit_online_queues_nothing(self, orchestrator, local_store):
        intents = await orchestrator.commit_local_changes(make_snapshot([make_item("a")]), ["a"])

        assert intents == []
        assert (await local_store.load()).item_ids() == {"a"}
        assert (await local_store.get_sync_metadata())["sync_status"] == "pending"

    @pytest.mark.asyncio
    async def test_commit_offline_queues_mutations(self, orchestrator):
        await orchestrator.set_online(False)

        intents = await orchestrator.commit_local_changes(
            make_snapshot([make_item("a"), make_item("b")]), ["a", "b", "a"]
        )

        assert [intent.id for intent in intents] == ["a", "b"]
        assert all(intent.type is IntentType.MUTATE for intent in intents)
        assert await orchestrator.queue.size() == 2

    @pytest.mark.asyncio
    async def test_clear_all_data(self, orchestrator, local_store):
        await local_store.save(make_snapshot([make_item("a")]))
        await orchestrator.set_online(False)
        await orchestrator.sync()
        cleared = record(orchestrator, "dataCleared")

        await orchestrator.clear_all_data()

        assert await local_store.load() is None
        assert await orchestrator.queue.is_empty()
        assert orchestrator.remote_id == REMOTE_ID
        assert await local_store.get_device_id() == LOCAL_DEVICE
        metadata = await local_store.get_sync_metadata()
        assert metadata["sync_status"] == "cleared"
        assert metadata["remote_id"] == REMOTE_ID
        assert cleared == [{"keep_remote_id": True}]

    @pytest.mark.asyncio
    async def test_clear_all_data_forgetting_remote(self, orchestrator, local_store):
        await orchestrator.clear_all_data(keep_remote_id=False)

        assert orchestrator.remote_id is None
        assert (await local_store.get_sync_metadata())["remote_id"] is None


class TestListeners:
    """Tests for event delivery."""

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_sync(self, orchestrator, remote):
        remote.create(REMOTE_ID)

        def broken(payload: dict) -> None:
            raise RuntimeError("listener bug")

        orchestrator.on("syncCompleted", broken)
        completed = record(orchestrator, "syncCompleted")

        result = await orchestrator.sync()

        assert result.success
        assert len(completed) == 1

    @pytest.mark.asyncio
    async def test_async_listener_and_off(self, orchestrator, remote):
        remote.create(REMOTE_ID)
        received = []

        async def listener(payload: dict) -> None:
            received.append(payload)

        orchestrator.on("syncCompleted", listener)
        await orchestrator.sync()
        assert orchestrator.off("syncCompleted", listener) is True
        await orchestrator.sync()

        assert len(received) == 1
        assert orchestrator.off("syncCompleted", listener) is False


class TestAutoSync:
    """Tests for the periodic timers."""

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, orchestrator):
        started = record(orchestrator, "autoSyncStarted")

        await orchestrator.start_auto_sync()
        task = orchestrator._auto_sync_task
        await orchestrator.start_auto_sync()

        assert orchestrator.auto_sync_enabled
        assert orchestrator._auto_sync_task is task
        assert started == [{"interval": 30.0}]

    @pytest.mark.asyncio
    async def test_new_interval_restarts(self, orchestrator):
        stopped = record(orchestrator, "autoSyncStopped")

        await orchestrator.start_auto_sync(60)
        task = orchestrator._auto_sync_task
        await orchestrator.start_auto_sync(120)

        assert orchestrator._auto_sync_task is not task
        assert task.cancelled()
        assert len(stopped) == 1
        assert (await orchestrator.get_sync_status()).sync_interval == 120

    @pytest.mark.asyncio
    async def test_stop(self, orchestrator):
        await orchestrator.start_auto_sync()
        await orchestrator.stop_auto_sync()
        await orchestrator.stop_auto_sync()

        assert not orchestrator.auto_sync_enabled
        assert orchestrator._auto_sync_task is None

    @pytest.mark.asyncio
    async def test_timer_runs_sync(self, orchestrator, local_store, remote):
        remote.create(REMOTE_ID)
        await local_store.save(make_snapshot([make_item("a")]))
        completed = record(orchestrator, "syncCompleted")

        await orchestrator.start_auto_sync(0.01)
        for _ in range(200):
            if completed:
                break
            await asyncio.sleep(0.01)
        await orchestrator.stop_auto_sync()

        assert completed
        assert remote_ids(remote) == {"a"}

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, orchestrator):
        orchestrator.on("syncCompleted", lambda payload: None)
        await orchestrator.start_auto_sync()

        await orchestrator.shutdown()

        assert not orchestrator.auto_sync_enabled
        assert orchestrator.events.listener_count("syncCompleted") == 0


class TestConnectivity:
    """Tests for connectivity checks and foreground syncs."""

    @pytest.mark.asyncio
    async def test_probe_result_is_applied(self, local_store, remote, config, clock, sleep):
        async def probe() -> bool:
            return False

        orchestrator = SyncOrchestrator(
            local_store, remote, config, clock=clock, sleep=sleep, connectivity_probe=probe
        )
        await orchestrator.initialize()

        assert await orchestrator.check_connectivity() is False
        assert not orchestrator.is_online

    @pytest.mark.asyncio
    async def test_failing_probe_means_offline(self, local_store, remote, config, clock, sleep):
        async def probe() -> bool:
            raise OSError("no route")

        orchestrator = SyncOrchestrator(
            local_store, remote, config, clock=clock, sleep=sleep, connectivity_probe=probe
        )

        assert await orchestrator.check_connectivity() is False

    @pytest.mark.asyncio
    async def test_without_probe_keeps_flag(self, orchestrator):
        assert await orchestrator.check_connectivity() is True

    @pytest.mark.asyncio
    async def test_foreground_schedules_deferred_sync(
        self, orchestrator, remote, sleep: RecordingSleep
    ):
        remote.create(REMOTE_ID)
        completed = record(orchestrator, "syncCompleted")

        orchestrator.notify_foreground()
        await orchestrator.wait_for_background()

        assert sleep.calls == [2.0]
        assert len(completed) == 1

    @pytest.mark.asyncio
    async def test_foreground_while_offline_does_nothing(self, orchestrator, sleep: RecordingSleep):
        await orchestrator.set_online(False)

        orchestrator.notify_foreground()
        await orchestrator.wait_for_background()

        assert sleep.calls == []


class TestSettings:
    """Tests for remote id handling and status reporting."""

    @pytest.mark.asyncio
    async def test_remote_id_is_persisted(self, kv: MemoryKeyValueStore, remote, clock, sleep):
        first = await build(
            LocalSnapshotStore(kv, SyncConfig(), clock), remote, SyncConfig(), clock, sleep
        )
        await first.set_remote_id("  gist-42 ")

        second = await build(
            LocalSnapshotStore(kv, SyncConfig(), clock), remote, SyncConfig(), clock, sleep
        )
        assert first.remote_id == "gist-42"
        assert second.remote_id == "gist-42"

    @pytest.mark.asyncio
    async def test_blank_remote_id_is_rejected(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.set_remote_id("   ")
        assert orchestrator.remote_id == REMOTE_ID

    @pytest.mark.asyncio
    async def test_status_report(self, orchestrator, local_store):
        await local_store.save(make_snapshot([make_item("a")]))

        status = (await orchestrator.get_sync_status()).to_dict()

        assert status["initialized"] is True
        assert status["state"] == "idle"
        assert status["device_id"] == LOCAL_DEVICE
        assert status["remote_configured"] is True
        assert status["remote_id"] == REMOTE_ID
        assert status["online"] is True
        assert status["conflict_strategy"] == "manual"
        assert status["local_stats"]["item_count"] == 1
        assert status["queue_stats"]["total_operations"] == 0
        assert status["retry_stats"] == {"active_retries": 0, "operations": []}
        assert status["last_error"] is None

    @pytest.mark.asyncio
    async def test_context_manager(self, local_store, remote, config, clock, sleep):
        async with SyncOrchestrator(local_store, remote, config, clock=clock, sleep=sleep) as orch:
            assert (await orch.get_sync_status()).initialized
        assert not (await orch.get_sync_status()).initialized
