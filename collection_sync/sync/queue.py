"""
Offline intent queue.

Holds the operations that could not run because the device was offline,
persisted as a JSON array under ``{prefix}-offline-queue``. The queue is a
bounded FIFO with replace-on-duplicate semantics:

- an intent with the same (type, id) as a queued one replaces it in place,
  with a fresh timestamp and its retry count reset
- past ``queue_max_size`` the oldest intents are evicted
- each failed replay bumps ``retry_count``; reaching the type's ceiling drops
  the intent for good
- a failed intent is not offered again until ``backoff_base * 2**retry_count``
  seconds after its last attempt
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..exceptions import ValidationError
from ..local.kv import KeyValueStore
from ..utils import Clock, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class IntentType(Enum):
    """Kinds of operation the queue can hold."""

    SYNC = "sync"
    PUSH = "push"
    PULL = "pull"
    MUTATE = "mutate"


@dataclass
class QueuedIntent:
    """An operation waiting for connectivity.

    Attributes:
        type: Kind of operation
        id: Identity used for deduplication within a type
        payload: Operation data
        queued_at: When the intent was (re)queued
        retry_count: Failed replays so far
        last_error: Message of the last failed replay
        last_retry_at: When the last replay failed
    """

    type: IntentType
    id: str
    payload: dict[str, Any] = field(default_factory=dict)
    queued_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None
    last_retry_at: datetime | None = None

    @property
    def key(self) -> tuple[IntentType, str]:
        return (self.type, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "id": self.id,
            "payload": self.payload,
            "queued_at": format_timestamp(self.queued_at) if self.queued_at else None,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "last_retry_at": format_timestamp(self.last_retry_at) if self.last_retry_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedIntent:
        """Create from dictionary."""
        return cls(
            type=IntentType(data["type"]),
            id=str(data["id"]),
            payload=data.get("payload") or {},
            queued_at=parse_timestamp(data.get("queued_at")),
            retry_count=int(data.get("retry_count", 0)),
            last_error=data.get("last_error"),
            last_retry_at=parse_timestamp(data.get("last_retry_at")),
        )


@dataclass
class QueueProcessResult:
    """Outcome of one drain pass."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class OfflineIntentQueue:
    """Persisted, bounded, deduplicating queue of offline intents."""

    def __init__(
        self,
        kv: KeyValueStore,
        config: SyncConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the queue.

        Args:
            kv: Device-scoped key-value substrate
            config: Sync configuration (size, ceilings, backoff)
            clock: Source of the current time
        """
        self.kv = kv
        self.config = config or SyncConfig()
        self.clock = clock
        self.queue_key = self.config.storage_key("offline-queue")

    # =========================================================================
    # Persistence
    # =========================================================================

    async def get_queue(self) -> list[QueuedIntent]:
        """Load the queue. An unreadable queue is treated as empty."""
        try:
            raw = await self.kv.get(self.queue_key)
            if not raw:
                return []
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("queue is not a list")
            return [QueuedIntent.from_dict(entry) for entry in data]
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning("Failed to load offline queue, starting empty: %s", e)
            return []

    async def _save(self, queue: list[QueuedIntent]) -> None:
        await self.kv.set(self.queue_key, json.dumps([intent.to_dict() for intent in queue]))

    # =========================================================================
    # Queue operations
    # =========================================================================

    async def enqueue(self, intent: QueuedIntent) -> QueuedIntent:
        """Add an intent, replacing a queued one with the same (type, id).

        Returns:
            The intent as stored
        """
        queue = await self.get_queue()
        stored = QueuedIntent(
            type=intent.type,
            id=intent.id,
            payload=intent.payload,
            queued_at=self.clock(),
        )

        for index, existing in enumerate(queue):
            if existing.key == stored.key:
                queue[index] = stored
                logger.debug("Replaced queued %s intent %s", stored.type.value, stored.id)
                break
        else:
            queue.append(stored)

        overflow = len(queue) - self.config.queue_max_size
        if overflow > 0:
            evicted = queue[:overflow]
            queue = queue[overflow:]
            logger.warning(
                "Offline queue full, evicted %d oldest intents: %s",
                len(evicted),
                ", ".join(f"{i.type.value}:{i.id}" for i in evicted),
            )

        await self._save(queue)
        return stored

    async def dequeue(self) -> QueuedIntent | None:
        """Remove and return the oldest intent."""
        queue = await self.get_queue()
        if not queue:
            return None
        intent = queue.pop(0)
        await self._save(queue)
        return intent

    async def peek(self) -> QueuedIntent | None:
        queue = await self.get_queue()
        return queue[0] if queue else None

    async def size(self) -> int:
        return len(await self.get_queue())

    async def is_empty(self) -> bool:
        return await self.size() == 0

    async def clear(self) -> None:
        await self.kv.remove(self.queue_key)

    async def remove_operation(self, intent_id: str, intent_type: IntentType | None = None) -> bool:
        """Remove an intent by id (and type, when given).

        Returns:
            True if something was removed
        """
        queue = await self.get_queue()
        remaining = [
            intent
            for intent in queue
            if not (intent.id == intent_id and (intent_type is None or intent.type is intent_type))
        ]
        if len(remaining) == len(queue):
            return False
        await self._save(remaining)
        return True

    def max_retries_for(self, intent_type: IntentType) -> int:
        """Retry ceiling for an intent type."""
        return int(self.config.intent_retry_ceilings.get(intent_type.value, 3))

    async def mark_operation_failed(self, intent: QueuedIntent, error: BaseException | str) -> bool:
        """Record a failed replay.

        Returns:
            True if the intent stays queued for another attempt, False if it
            was dropped
        """
        queue = await self.get_queue()
        message = str(error)

        for index, queued in enumerate(queue):
            if queued.key != intent.key:
                continue

            queued.retry_count += 1
            queued.last_error = message
            queued.last_retry_at = self.clock()

            ceiling = self.max_retries_for(queued.type)
            if queued.retry_count >= ceiling:
                queue.pop(index)
                await self._save(queue)
                logger.warning(
                    "Dropping %s intent %s after %d failed attempts (ceiling %d): %s",
                    queued.type.value,
                    queued.id,
                    queued.retry_count,
                    ceiling,
                    message,
                )
                return False

            await self._save(queue)
            return True

        return False

    async def get_retryable_operations(self) -> list[QueuedIntent]:
        """Intents whose backoff window has elapsed."""
        now = self.clock()
        ready = []
        for intent in await self.get_queue():
            if intent.last_retry_at is None:
                ready.append(intent)
                continue
            backoff = self.config.queue_backoff_base * (2**intent.retry_count)
            if now >= intent.last_retry_at + timedelta(seconds=backoff):
                ready.append(intent)
        return ready

    async def process_queue(
        self,
        processor: Callable[[QueuedIntent], Awaitable[Any]],
    ) -> QueueProcessResult:
        """Replay every retryable intent through ``processor``.

        Successes are removed immediately; failures are recorded and the pass
        moves on to the next intent. Never raises for processor failures.
        """
        result = QueueProcessResult()

        for intent in await self.get_retryable_operations():
            result.processed += 1
            try:
                await processor(intent)
            except Exception as e:
                result.failed += 1
                result.errors.append(
                    {"id": intent.id, "type": intent.type.value, "error": str(e)}
                )
                await self.mark_operation_failed(intent, e)
                continue

            await self.remove_operation(intent.id, intent.type)
            result.succeeded += 1

        if result.processed:
            logger.info(
                "Processed offline queue: %d processed, %d succeeded, %d failed",
                result.processed,
                result.succeeded,
                result.failed,
            )
        return result

    async def get_stats(self) -> dict[str, Any]:
        queue = await self.get_queue()
        types: dict[str, int] = {}
        for intent in queue:
            types[intent.type.value] = types.get(intent.type.value, 0) + 1

        queued_times = sorted(i.queued_at for i in queue if i.queued_at is not None)
        return {
            "total_operations": len(queue),
            "operation_types": types,
            "oldest_operation": format_timestamp(queued_times[0]) if queued_times else None,
            "newest_operation": format_timestamp(queued_times[-1]) if queued_times else None,
            "failed_operations": sum(1 for i in queue if i.retry_count > 0),
            "max_size": self.config.queue_max_size,
        }
