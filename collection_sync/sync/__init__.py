"""
Sync module.

Orchestrates offline-first synchronization between the local snapshot
store and the remote snapshot document.
"""

from .conflict import ConflictRecord, ConflictStrategy, detect_conflict, merge_snapshots
from .engine import SyncDirection, SyncOrchestrator, SyncResult, SyncState, SyncStatusReport
from .events import EventEmitter, SyncEventType
from .queue import IntentType, OfflineIntentQueue, QueuedIntent, QueueProcessResult
from .retry import ErrorCategory, RetryExecutor, UserFacingError, classify, should_retry

__all__ = [
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncDirection",
    "SyncStatusReport",
    "SyncEventType",
    "EventEmitter",
    "ConflictStrategy",
    "ConflictRecord",
    "detect_conflict",
    "merge_snapshots",
    "OfflineIntentQueue",
    "QueuedIntent",
    "QueueProcessResult",
    "IntentType",
    "RetryExecutor",
    "ErrorCategory",
    "UserFacingError",
    "classify",
    "should_retry",
]
