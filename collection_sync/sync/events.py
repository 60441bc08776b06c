"""
Sync event types and the per-orchestrator listener registry.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SyncEventType(Enum):
    """Events emitted by the sync orchestrator."""

    INITIALIZED = "initialized"
    SYNC_STARTED = "syncStarted"
    SYNC_COMPLETED = "syncCompleted"
    SYNC_ERROR = "syncError"
    CONFLICT_DETECTED = "conflictDetected"
    NETWORK_STATUS_CHANGED = "networkStatusChanged"
    AUTO_SYNC_STARTED = "autoSyncStarted"
    AUTO_SYNC_STOPPED = "autoSyncStopped"
    OPERATION_QUEUED = "operationQueued"
    OFFLINE_QUEUE_PROCESSED = "offlineQueueProcessed"
    OFFLINE_QUEUE_ERROR = "offlineQueueError"
    OFFLINE_QUEUE_CLEARED = "offlineQueueCleared"
    DATA_CLEARED = "dataCleared"


Listener = Callable[[dict[str, Any]], Any]


class EventEmitter:
    """Observer registry owned by a single orchestrator.

    Listeners receive the event payload dict. Coroutine listeners are
    awaited. A listener that raises is logged and skipped; the remaining
    listeners still run and the emitting operation is not affected.
    """

    def __init__(self) -> None:
        self._listeners: dict[SyncEventType, list[Listener]] = {}

    def on(self, event: SyncEventType | str, listener: Listener) -> None:
        """Register ``listener`` for ``event``."""
        event_type = SyncEventType(event)
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event: SyncEventType | str, listener: Listener) -> bool:
        """Unregister ``listener``.

        Returns:
            True if the listener was registered
        """
        listeners = self._listeners.get(SyncEventType(event), [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listener_count(self, event: SyncEventType | str) -> int:
        return len(self._listeners.get(SyncEventType(event), []))

    async def emit(self, event: SyncEventType, data: dict[str, Any] | None = None) -> None:
        payload = data or {}
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Listener for %s failed: %s", event.value, e, exc_info=True)

    def clear(self) -> None:
        self._listeners.clear()
