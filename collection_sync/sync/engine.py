"""
Synchronization engine for offline-first collection sync.

Reconciles the local snapshot with the single remote snapshot:
- Push: local snapshot → remote
- Pull: remote snapshot → local
- Concurrent edits detected and resolved per the configured strategy
- Every remote cycle wrapped in retry with exponential backoff
- Offline requests queued and replayed when connectivity returns
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..exceptions import (
    NotConfiguredError,
    RemoteNotFoundError,
    SyncInProgressError,
    ValidationError,
)
from ..local.snapshot_store import LocalSnapshotStore
from ..logging_utils import SyncLoggerAdapter
from ..models import CollectionSnapshot, SyncStatus, is_empty_document
from ..remote.base import RemoteDocumentStore
from ..utils import Clock, format_timestamp, utcnow
from .conflict import ConflictRecord, ConflictStrategy, detect_conflict, merge_snapshots
from .events import EventEmitter, Listener, SyncEventType
from .queue import IntentType, OfflineIntentQueue, QueuedIntent, QueueProcessResult
from .retry import RetryExecutor, UserFacingError

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncDirection(Enum):
    """Which side(s) a sync wrote to."""

    PUSH = "push"
    PULL = "pull"
    BOTH = "both"
    NONE = "none"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    direction: SyncDirection = SyncDirection.NONE
    message: str = ""
    queued: bool = False
    conflict: ConflictRecord | None = None
    resolution: ConflictStrategy | None = None
    requires_manual_resolution: bool = False
    item_count: int = 0
    timestamp: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "direction": self.direction.value,
            "message": self.message,
            "queued": self.queued,
            "conflict": self.conflict.to_dict() if self.conflict else None,
            "resolution": self.resolution.value if self.resolution else None,
            "requires_manual_resolution": self.requires_manual_resolution,
            "item_count": self.item_count,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SyncStatusReport:
    """Read-only snapshot of everything a status display needs."""

    initialized: bool
    in_progress: bool
    state: SyncState
    auto_sync_enabled: bool
    sync_interval: float
    last_sync_time: str | None
    sync_status: str | None
    conflict_strategy: str
    device_id: str
    remote_configured: bool
    remote_id: str | None
    online: bool
    local_stats: dict[str, Any] = field(default_factory=dict)
    queue_stats: dict[str, Any] = field(default_factory=dict)
    last_error: dict[str, Any] | None = None
    retry_stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "in_progress": self.in_progress,
            "state": self.state.value,
            "auto_sync_enabled": self.auto_sync_enabled,
            "sync_interval": self.sync_interval,
            "last_sync_time": self.last_sync_time,
            "sync_status": self.sync_status,
            "conflict_strategy": self.conflict_strategy,
            "device_id": self.device_id,
            "remote_configured": self.remote_configured,
            "remote_id": self.remote_id,
            "online": self.online,
            "local_stats": self.local_stats,
            "queue_stats": self.queue_stats,
            "last_error": self.last_error,
            "retry_stats": self.retry_stats,
        }


class SyncOrchestrator:
    """Offline-first sync between the local snapshot store and a remote store.

    Only one sync runs at a time; a second request while one is in flight
    fails immediately with SyncInProgressError. While offline, sync, push
    and pull requests are queued instead of touching the network and are
    replayed once connectivity returns.

    Example:
        >>> async with SyncOrchestrator(local_store, remote, config) as orchestrator:
        ...     orchestrator.on("syncCompleted", print)
        ...     result = await orchestrator.sync()
    """

    def __init__(
        self,
        local_store: LocalSnapshotStore,
        remote: RemoteDocumentStore,
        config: SyncConfig | None = None,
        queue: OfflineIntentQueue | None = None,
        retry_executor: RetryExecutor | None = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        connectivity_probe: Callable[[], Awaitable[bool]] | None = None,
        connectivity_host: str | None = None,
    ):
        """Initialize the sync orchestrator.

        Args:
            local_store: Local snapshot store
            remote: Remote document store
            config: Sync configuration
            queue: Offline intent queue (defaults to one on the local substrate)
            retry_executor: Retry executor (defaults to one built from config.retry)
            clock: Source of the current time
            sleep: Async sleep used for retry backoff and deferred syncs
            connectivity_probe: Async callable reporting reachability
            connectivity_host: Host resolved by the default connectivity check
        """
        self.config = config or local_store.config
        self.local = local_store
        self.remote = remote
        self.clock = clock
        self.queue = queue or OfflineIntentQueue(local_store.kv, self.config, clock)
        self.retry = retry_executor or RetryExecutor(self.config.retry, sleep=sleep, clock=clock)
        self.events = EventEmitter()
        self.connectivity_probe = connectivity_probe
        self.connectivity_host = connectivity_host

        self._sleep = sleep
        self._state = SyncState.IDLE
        self._online = True
        self._initialized = False
        self._in_progress = False
        self._remote_id: str | None = self.config.remote_id
        self._last_error: UserFacingError | None = None

        self._auto_sync_armed = False
        self._auto_sync_interval: float | None = None
        self._auto_sync_task: asyncio.Task[None] | None = None
        self._queue_drain_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._device_id: str | None = None
        self._log = SyncLoggerAdapter(logger, self._log_context)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def remote_id(self) -> str | None:
        return self._remote_id

    def _log_context(self) -> dict[str, Any]:
        return {
            "device_id": self._device_id,
            "remote_id": self._remote_id,
            "sync_state": self._state.value,
            "online": self._online,
        }

    async def initialize(self) -> None:
        """Load device identity and persisted settings. Idempotent."""
        if self._initialized:
            return

        device_id = await self.local.get_device_id()
        metadata = await self.local.get_sync_metadata()

        if self._remote_id:
            if metadata.get("remote_id") != self._remote_id:
                await self.local.update_sync_metadata({"remote_id": self._remote_id})
        else:
            self._remote_id = metadata.get("remote_id")

        self._device_id = device_id
        self._initialized = True
        self._log.info("Sync orchestrator initialized (remote configured: %s)", bool(self._remote_id))
        await self.events.emit(
            SyncEventType.INITIALIZED,
            {"device_id": device_id, "remote_configured": bool(self._remote_id)},
        )

    async def shutdown(self) -> None:
        """Stop timers, cancel background work and drop all listeners."""
        await self.stop_auto_sync()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

        self.events.clear()
        self._initialized = False

    async def __aenter__(self) -> SyncOrchestrator:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    def on(self, event: SyncEventType | str, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event: SyncEventType | str, listener: Listener) -> bool:
        return self.events.off(event, listener)

    # =========================================================================
    # Configuration
    # =========================================================================

    async def set_remote_id(self, remote_id: str | None) -> None:
        """Configure (or, with None, forget) the remote snapshot id."""
        if remote_id is not None and not remote_id.strip():
            raise ValidationError("remote_id", "must not be empty")
        self._remote_id = remote_id.strip() if remote_id else None
        await self.local.update_sync_metadata({"remote_id": self._remote_id})

    async def set_conflict_strategy(self, strategy: ConflictStrategy | str) -> None:
        """Change the strategy used when a sync detects a conflict.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
        """
        parsed = ConflictStrategy.parse(strategy)
        self.config.conflict_strategy = parsed.value
        await self.local.update_sync_metadata({"conflict_strategy": parsed.value})

    def _require_remote_id(self) -> str:
        if not self._remote_id:
            raise NotConfiguredError()
        return self._remote_id

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync(self, force: bool = False, skip_offline_check: bool = False) -> SyncResult:
        """Reconcile local and remote snapshots.

        Args:
            force: Skip conflict detection; when both sides exist, push local
            skip_offline_check: Run even if the orchestrator believes it is offline

        Returns:
            Result of the sync

        Raises:
            SyncInProgressError: If a sync is already running
            NotConfiguredError: If no remote id is configured
            RemoteNotFoundError: If the remote snapshot does not exist
        """
        if self._in_progress:
            raise SyncInProgressError()

        if not self._online and not skip_offline_check:
            await self.queue_operation(IntentType.SYNC, {"force": force}, intent_id="sync")
            return SyncResult(
                success=True,
                queued=True,
                message="Sync queued for when connection is restored",
                timestamp=format_timestamp(self.clock()),
            )

        self._in_progress = True
        self._state = SyncState.SYNCING
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            remote_id = self._require_remote_id()
            await self.events.emit(SyncEventType.SYNC_STARTED, {"force": force})
            result = await self.retry.execute_with_retry(
                lambda: self._sync_cycle(remote_id, force),
                operation_id=f"sync-{remote_id}",
                operation_type="sync",
                max_retries=self.config.max_sync_retries,
                timeout=self.config.operation_timeout,
            )
        except Exception as e:
            self._state = SyncState.ERROR
            await self._record_failure(e)
            raise
        finally:
            self._in_progress = False

        result.duration_ms = int((loop.time() - started) * 1000)
        self._state = SyncState.IDLE
        self._last_error = None

        patch: dict[str, Any] = {"last_error": None}
        if result.requires_manual_resolution:
            patch["sync_status"] = SyncStatus.PENDING
        else:
            patch["sync_status"] = SyncStatus.SYNCED
            patch["last_sync_time"] = format_timestamp(self.clock())
        await self.local.update_sync_metadata(patch)

        self._log.info("Sync completed: %s %s", result.direction.value, result.message)
        await self.events.emit(SyncEventType.SYNC_COMPLETED, result.to_dict())
        return result

    async def _sync_cycle(self, remote_id: str, force: bool) -> SyncResult:
        if not await self.remote.exists(remote_id):
            raise RemoteNotFoundError(remote_id)

        local, remote = await asyncio.gather(self.local.load(), self._load_remote(remote_id))

        if not force:
            conflict = self.detect_conflict(local, remote)
            if conflict is not None:
                self._log.warning(
                    "Conflict detected with %s (local %d items, remote %d items)",
                    conflict.remote_device_id,
                    conflict.local_count,
                    conflict.remote_count,
                )
                await self.events.emit(
                    SyncEventType.CONFLICT_DETECTED,
                    {
                        "conflict": conflict.to_dict(),
                        "local": local.to_dict() if local else None,
                        "remote": remote.to_dict() if remote else None,
                        "strategy": self.config.conflict_strategy,
                        "resolution_options": [
                            ConflictStrategy.KEEP_LOCAL.value,
                            ConflictStrategy.KEEP_REMOTE.value,
                            ConflictStrategy.MERGE.value,
                        ],
                    },
                )
                return await self.resolve_conflict(
                    self.config.conflict_strategy, local, remote, conflict
                )

        return await self.perform_sync(local, remote, force)

    async def _load_remote(self, remote_id: str) -> CollectionSnapshot | None:
        document = await self.remote.read(remote_id)
        if is_empty_document(document):
            return None
        return CollectionSnapshot.from_dict(document)

    async def _record_failure(self, error: Exception) -> None:
        self._last_error = self.retry.format_error_for_user(error)
        self._log.error("Sync failed: %s", error)
        try:
            await self.local.update_sync_metadata(
                {"sync_status": SyncStatus.ERROR, "last_error": self._last_error.to_dict()}
            )
        except Exception as meta_error:
            self._log.error("Failed to record sync error: %s", meta_error)
        await self.events.emit(SyncEventType.SYNC_ERROR, self._last_error.to_dict())

    def detect_conflict(
        self,
        local: CollectionSnapshot | None,
        remote: CollectionSnapshot | None,
    ) -> ConflictRecord | None:
        return detect_conflict(local, remote, self.config.conflict_window)

    async def perform_sync(
        self,
        local: CollectionSnapshot | None,
        remote: CollectionSnapshot | None,
        force: bool = False,
    ) -> SyncResult:
        """Pick a direction and sync one way.

        Absent local pulls, absent remote pushes, ``force`` pushes, otherwise
        the strictly newer side wins and equal timestamps are a no-op.
        """
        if local is None and remote is None:
            return self._result(SyncDirection.NONE, "No data to sync")
        if local is None:
            assert remote is not None
            return await self._apply_pull(remote)
        if remote is None or force:
            return await self._apply_push(local)

        local_time = local.metadata.last_modified
        remote_time = remote.metadata.last_modified
        if local_time > remote_time:
            return await self._apply_push(local)
        if remote_time > local_time:
            return await self._apply_pull(remote)
        return self._result(SyncDirection.NONE, "Data already in sync", local.item_count)

    async def _apply_push(self, snapshot: CollectionSnapshot) -> SyncResult:
        await self.remote.write(self._require_remote_id(), snapshot.to_dict())
        await self.local.update_sync_metadata({"last_push_time": format_timestamp(self.clock())})
        return self._result(SyncDirection.PUSH, "Pushed local snapshot", snapshot.item_count)

    async def _apply_pull(self, snapshot: CollectionSnapshot) -> SyncResult:
        await self.local.save(snapshot, update_timestamp=False)
        await self.local.update_sync_metadata({"last_pull_time": format_timestamp(self.clock())})
        return self._result(SyncDirection.PULL, "Pulled remote snapshot", snapshot.item_count)

    def _result(self, direction: SyncDirection, message: str, item_count: int = 0) -> SyncResult:
        return SyncResult(
            success=True,
            direction=direction,
            message=message,
            item_count=item_count,
            timestamp=format_timestamp(self.clock()),
        )

    # =========================================================================
    # Conflict resolution
    # =========================================================================

    async def resolve_conflict(
        self,
        strategy: ConflictStrategy | str,
        local: CollectionSnapshot | None,
        remote: CollectionSnapshot | None,
        conflict: ConflictRecord | None = None,
    ) -> SyncResult:
        """Resolve a conflict between ``local`` and ``remote``.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
        """
        resolution = ConflictStrategy.parse(strategy)
        conflict = conflict or self.detect_conflict(local, remote)

        if resolution is ConflictStrategy.MANUAL:
            return SyncResult(
                success=True,
                direction=SyncDirection.NONE,
                message="Conflict requires manual resolution",
                conflict=conflict,
                resolution=resolution,
                requires_manual_resolution=True,
                timestamp=format_timestamp(self.clock()),
            )

        if local is None or remote is None:
            raise ValidationError("snapshot", "both snapshots are required to resolve a conflict")

        remote_id = self._require_remote_id()
        if resolution is ConflictStrategy.KEEP_LOCAL:
            resolved = local
            direction = SyncDirection.PUSH
            await self.remote.write(remote_id, local.to_dict())
        elif resolution is ConflictStrategy.KEEP_REMOTE:
            resolved = remote
            direction = SyncDirection.PULL
            await self.local.save(remote, update_timestamp=False)
        else:
            resolved = await self.merge_data(local, remote)
            direction = SyncDirection.BOTH
            await self.local.save(resolved, update_timestamp=False)
            await self.remote.write(remote_id, resolved.to_dict())

        self._log.info("Resolved conflict with %s (%d items)", resolution.value, resolved.item_count)
        await self.local.update_sync_metadata(
            {
                "sync_status": SyncStatus.SYNCED,
                "last_sync_time": format_timestamp(self.clock()),
                "last_conflict_resolution": resolution.value,
            }
        )
        return SyncResult(
            success=True,
            direction=direction,
            message=f"Conflict resolved with {resolution.value}",
            conflict=conflict,
            resolution=resolution,
            item_count=resolved.item_count,
            timestamp=format_timestamp(self.clock()),
        )

    async def resolve_pending_conflict(self, strategy: ConflictStrategy | str) -> SyncResult:
        """Finish a conflict left for manual resolution.

        Reloads both snapshots and resolves them with ``strategy``. Shares
        the in-progress flag with ``sync()``.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
            SyncInProgressError: If a sync is already running
            NotConfiguredError: If no remote id is configured
        """
        resolution = ConflictStrategy.parse(strategy)
        remote_id = self._require_remote_id()

        async def run() -> SyncResult:
            local, remote = await asyncio.gather(self.local.load(), self._load_remote(remote_id))
            return await self.resolve_conflict(resolution, local, remote)

        result = await self._run_exclusive(run, f"resolve-{remote_id}", "resolve")
        if not result.requires_manual_resolution:
            self._last_error = None
            await self.events.emit(SyncEventType.SYNC_COMPLETED, result.to_dict())
        return result

    async def merge_data(
        self,
        local: CollectionSnapshot,
        remote: CollectionSnapshot,
    ) -> CollectionSnapshot:
        """Merge both snapshots, stamped with this device and the current time."""
        device_id = await self.local.get_device_id()
        return merge_snapshots(local, remote, device_id, self.clock())

    # =========================================================================
    # One-directional operations
    # =========================================================================

    async def push(self) -> SyncResult:
        """Write the local snapshot to the remote, or queue a push while offline."""
        if not self._online:
            await self.queue_operation(IntentType.PUSH, intent_id="push")
            return SyncResult(
                success=True,
                direction=SyncDirection.PUSH,
                queued=True,
                message="Push queued for when connection is restored",
                timestamp=format_timestamp(self.clock()),
            )
        return await self._push_now()

    async def _push_now(self) -> SyncResult:
        remote_id = self._require_remote_id()

        async def run() -> SyncResult:
            local = await self.local.load()
            if local is None:
                raise ValidationError("snapshot", "no local data to push")
            return await self._apply_push(local)

        return await self._run_exclusive(run, f"push-{remote_id}", "push")

    async def pull(self) -> SyncResult:
        """Replace the local snapshot with the remote one, or queue a pull while offline."""
        if not self._online:
            await self.queue_operation(IntentType.PULL, intent_id="pull")
            return SyncResult(
                success=True,
                direction=SyncDirection.PULL,
                queued=True,
                message="Pull queued for when connection is restored",
                timestamp=format_timestamp(self.clock()),
            )
        return await self._pull_now()

    async def _pull_now(self) -> SyncResult:
        remote_id = self._require_remote_id()

        async def run() -> SyncResult:
            remote = await self._load_remote(remote_id)
            if remote is None:
                return self._result(SyncDirection.NONE, "Remote holds no snapshot")
            return await self._apply_pull(remote)

        return await self._run_exclusive(run, f"pull-{remote_id}", "pull")

    async def _run_exclusive(
        self,
        operation: Callable[[], Awaitable[SyncResult]],
        operation_id: str,
        operation_type: str,
    ) -> SyncResult:
        if self._in_progress:
            raise SyncInProgressError()
        self._in_progress = True
        try:
            result = await self.retry.execute_with_retry(
                operation,
                operation_id=operation_id,
                operation_type=operation_type,
                timeout=self.config.operation_timeout,
            )
        finally:
            self._in_progress = False
        if result.direction is not SyncDirection.NONE:
            await self.local.update_sync_metadata({"sync_status": SyncStatus.SYNCED})
        return result

    # =========================================================================
    # Local changes
    # =========================================================================

    async def commit_local_changes(
        self,
        snapshot: CollectionSnapshot,
        item_ids: Iterable[str] = (),
    ) -> list[QueuedIntent]:
        """Save a locally edited snapshot.

        While offline, a ``mutate`` intent is queued for every changed item
        id so the edit is synced on reconnect.

        Returns:
            The intents queued (empty when online)
        """
        await self.local.save(snapshot)
        await self.local.update_sync_metadata({"sync_status": SyncStatus.PENDING})

        if self._online:
            return []
        return [
            await self.queue_operation(IntentType.MUTATE, {"item_id": item_id}, intent_id=item_id)
            for item_id in dict.fromkeys(item_ids)
        ]

    async def clear_all_data(self, keep_remote_id: bool = True) -> None:
        """Delete the local snapshot, bookkeeping and offline queue.

        The device id survives. The remote snapshot is never touched.
        """
        await self.local.clear()
        await self.queue.clear()
        self.retry.clear_retry_tracking()
        self._last_error = None
        self._state = SyncState.IDLE

        if not keep_remote_id:
            self._remote_id = None
        await self.local.update_sync_metadata(
            {"sync_status": SyncStatus.CLEARED, "remote_id": self._remote_id}
        )
        self._log.info("Cleared all local collection data")
        await self.events.emit(SyncEventType.DATA_CLEARED, {"keep_remote_id": keep_remote_id})

    # =========================================================================
    # Offline queue
    # =========================================================================

    async def queue_operation(
        self,
        intent_type: IntentType | str,
        payload: dict[str, Any] | None = None,
        intent_id: str | None = None,
    ) -> QueuedIntent:
        """Queue an operation for replay when online.

        ``intent_id`` defaults to the type name, so repeated requests of the
        same kind collapse into one queued intent.
        """
        kind = IntentType(intent_type)
        stored = await self.queue.enqueue(
            QueuedIntent(type=kind, id=intent_id or kind.value, payload=payload or {})
        )
        self._log.info("Queued %s intent %s", kind.value, stored.id)
        await self.events.emit(
            SyncEventType.OPERATION_QUEUED,
            {"operation": stored.to_dict(), "queue_size": await self.queue.size()},
        )
        return stored

    async def _replay_intent(self, intent: QueuedIntent) -> None:
        # Replays bypass the offline check so a drain never re-queues the
        # intent it is replaying.
        if intent.type is IntentType.SYNC:
            await self.sync(force=bool(intent.payload.get("force")), skip_offline_check=True)
        elif intent.type is IntentType.PUSH:
            await self._push_now()
        elif intent.type is IntentType.PULL:
            await self._pull_now()
        elif intent.type is IntentType.MUTATE:
            await self.sync(skip_offline_check=True)

    async def process_offline_queue(self) -> QueueProcessResult:
        """Replay every queued intent whose backoff has elapsed."""
        try:
            result = await self.queue.process_queue(self._replay_intent)
        except Exception as e:
            self._log.error("Failed to process offline queue: %s", e)
            await self.events.emit(SyncEventType.OFFLINE_QUEUE_ERROR, {"error": str(e)})
            return QueueProcessResult(failed=1, errors=[{"error": str(e)}])

        if result.processed > 0:
            await self.events.emit(SyncEventType.OFFLINE_QUEUE_PROCESSED, result.to_dict())
        return result

    async def clear_offline_queue(self) -> None:
        await self.queue.clear()
        await self.events.emit(SyncEventType.OFFLINE_QUEUE_CLEARED, {})

    # =========================================================================
    # Auto-sync
    # =========================================================================

    async def start_auto_sync(self, interval: float | None = None) -> None:
        """Start the periodic sync and queue-drain timers.

        Starting again with the same interval does nothing; a different
        interval restarts both timers.
        """
        sync_interval = interval or self.config.sync_interval
        if self._auto_sync_armed:
            if sync_interval == self._auto_sync_interval:
                return
            await self.stop_auto_sync()

        self._auto_sync_armed = True
        self._auto_sync_interval = sync_interval
        self._auto_sync_task = asyncio.create_task(self._auto_sync_loop(sync_interval))
        self._queue_drain_task = asyncio.create_task(
            self._queue_drain_loop(self.config.queue_drain_interval)
        )
        self._log.info("Auto-sync started (every %.1fs)", sync_interval)
        await self.events.emit(SyncEventType.AUTO_SYNC_STARTED, {"interval": sync_interval})

    async def stop_auto_sync(self) -> None:
        """Stop both timers. Does nothing if auto-sync is not running."""
        if not self._auto_sync_armed:
            return
        self._auto_sync_armed = False

        for task in (self._auto_sync_task, self._queue_drain_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._auto_sync_task = None
        self._queue_drain_task = None
        self._log.info("Auto-sync stopped")
        await self.events.emit(SyncEventType.AUTO_SYNC_STOPPED, {})

    @property
    def auto_sync_enabled(self) -> bool:
        return self._auto_sync_armed

    async def _auto_sync_loop(self, interval: float) -> None:
        while self._auto_sync_armed:
            await asyncio.sleep(interval)
            if not self._online or self._in_progress:
                continue
            try:
                await self.sync()
            except Exception as e:
                self._log.warning("Auto-sync failed: %s", e)

    async def _queue_drain_loop(self, interval: float) -> None:
        while self._auto_sync_armed:
            await asyncio.sleep(interval)
            if not self._online or self._in_progress:
                continue
            await self.process_offline_queue()

    # =========================================================================
    # Connectivity
    # =========================================================================

    async def check_connectivity(self) -> bool:
        """Probe connectivity and apply the result.

        Uses ``connectivity_probe`` when given, else resolves
        ``connectivity_host``. With neither, the current flag is kept.
        """
        if self.connectivity_probe is not None:
            try:
                online = bool(await self.connectivity_probe())
            except Exception as e:
                self._log.debug("Connectivity probe failed: %s", e)
                online = False
        elif self.connectivity_host:
            try:
                loop = asyncio.get_running_loop()
                await asyncio.wait_for(loop.getaddrinfo(self.connectivity_host, 443), 5.0)
                online = True
            except (OSError, TimeoutError):
                online = False
        else:
            return self._online

        await self.set_online(online)
        return online

    async def set_online(self, online: bool) -> None:
        """Record a connectivity change.

        Going offline marks the bookkeeping ``offline``. Coming online drains
        the offline queue and then, after ``online_settle_delay``, syncs.
        """
        if online == self._online:
            return
        self._online = online
        self._log.info("Network status changed: %s", "online" if online else "offline")
        await self.events.emit(SyncEventType.NETWORK_STATUS_CHANGED, {"online": online})

        if not online:
            try:
                await self.local.update_sync_metadata({"sync_status": SyncStatus.OFFLINE})
            except Exception as e:
                self._log.error("Failed to update sync status for offline mode: %s", e)
            return

        if self._initialized and not self._in_progress:
            self._spawn(self._reconnect())

    async def _reconnect(self) -> None:
        await self.process_offline_queue()
        await self._sleep(self.config.online_settle_delay)
        await self._best_effort_sync("coming online")

    def notify_foreground(self) -> None:
        """Schedule a deferred, best-effort sync after the app regains focus."""
        if self._initialized and self._online and not self._in_progress:
            self._spawn(self._deferred_sync(self.config.foreground_sync_delay, "foreground"))

    async def _deferred_sync(self, delay: float, reason: str) -> None:
        await self._sleep(delay)
        await self._best_effort_sync(reason)

    async def _best_effort_sync(self, reason: str) -> None:
        if not self._online or self._in_progress or not self._remote_id:
            return
        try:
            await self.sync()
        except Exception as e:
            self._log.warning("Sync after %s failed: %s", reason, e)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for scheduled reconnect and foreground syncs to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Status
    # =========================================================================

    async def get_sync_status(self) -> SyncStatusReport:
        metadata = await self.local.get_sync_metadata()
        last_error = self._last_error.to_dict() if self._last_error else metadata.get("last_error")
        return SyncStatusReport(
            initialized=self._initialized,
            in_progress=self._in_progress,
            state=self._state,
            auto_sync_enabled=self._auto_sync_armed,
            sync_interval=self._auto_sync_interval or self.config.sync_interval,
            last_sync_time=metadata.get("last_sync_time"),
            sync_status=metadata.get("sync_status"),
            conflict_strategy=self.config.conflict_strategy,
            device_id=await self.local.get_device_id(),
            remote_configured=bool(self._remote_id),
            remote_id=self._remote_id,
            online=self._online,
            local_stats=await self.local.stats(),
            queue_stats=await self.queue.get_stats(),
            last_error=last_error,
            retry_stats=self.retry.get_retry_stats(),
        )
