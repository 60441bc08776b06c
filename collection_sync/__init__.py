"""
Collection Sync

Offline-first synchronization of a personal collection between a local
snapshot store and a single remote snapshot document.

Provides:
- Local snapshot store with validation, device identity and a repair pass
- Offline intent queue with deduplication and bounded, backed-off retries
- Error classification and retry with exponential backoff
- Sync orchestrator with conflict detection, resolution and auto-sync
- Remote stores: in-memory, HTTP, GitHub Gist and (optionally) Cosmos DB

Usage:

    >>> from collection_sync import (
    ...     FileKeyValueStore, GistDocumentStore, LocalSnapshotStore,
    ...     SyncConfig, SyncOrchestrator,
    ... )
    >>> config = SyncConfig.from_yaml("~/.collection-sync/settings.yaml")
    >>> local = LocalSnapshotStore(FileKeyValueStore(), config)
    >>> async with GistDocumentStore(token="...") as remote:
    ...     async with SyncOrchestrator(local, remote, config) as orchestrator:
    ...         result = await orchestrator.sync()

Remote Store Selection:

    # Plain REST document store
    from collection_sync.remote import HttpDocumentStore

    # Azure Cosmos DB (pip install collection-sync[cosmos])
    from collection_sync.remote.cosmos import CosmosDocumentStore, CosmosStoreConfig
"""

from .config import RetryConfig, SyncConfig
from .exceptions import (
    AccessDeniedError,
    AuthenticationError,
    CollectionSyncError,
    NotConfiguredError,
    OperationTimeoutError,
    QuotaExceededError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteStoreError,
    ServiceUnavailableError,
    StorageConnectionError,
    StorageIOError,
    SyncInProgressError,
    UnknownStrategyError,
    ValidationError,
)
from .local import (
    FileKeyValueStore,
    KeyValueStore,
    LocalSnapshotStore,
    MemoryKeyValueStore,
    RepairReport,
    SnapshotRepairer,
)
from .models import CollectionSnapshot, Item, SyncMetadata, SyncStatus
from .remote import (
    GistDocumentStore,
    HttpDocumentStore,
    InMemoryDocumentStore,
    RemoteDocumentStore,
)
from .sync import (
    ConflictRecord,
    ConflictStrategy,
    ErrorCategory,
    IntentType,
    OfflineIntentQueue,
    QueuedIntent,
    RetryExecutor,
    SyncEventType,
    SyncOrchestrator,
    SyncResult,
    SyncState,
    SyncStatusReport,
    UserFacingError,
)

# Conditional import for the Cosmos DB remote store
try:
    from .remote.cosmos import CosmosDocumentStore, CosmosStoreConfig  # noqa: F401

    _has_cosmos = True
except ImportError:
    _has_cosmos = False


__all__ = [
    # Configuration
    "SyncConfig",
    "RetryConfig",
    # Data model
    "CollectionSnapshot",
    "Item",
    "SyncMetadata",
    "SyncStatus",
    # Local storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "LocalSnapshotStore",
    "SnapshotRepairer",
    "RepairReport",
    # Remote storage
    "RemoteDocumentStore",
    "InMemoryDocumentStore",
    "HttpDocumentStore",
    "GistDocumentStore",
    # Sync
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatusReport",
    "SyncEventType",
    "ConflictStrategy",
    "ConflictRecord",
    "OfflineIntentQueue",
    "QueuedIntent",
    "IntentType",
    "RetryExecutor",
    "ErrorCategory",
    "UserFacingError",
    # Exceptions
    "CollectionSyncError",
    "ValidationError",
    "NotConfiguredError",
    "SyncInProgressError",
    "UnknownStrategyError",
    "QuotaExceededError",
    "StorageIOError",
    "RemoteStoreError",
    "RemoteNotFoundError",
    "AccessDeniedError",
    "AuthenticationError",
    "RateLimitError",
    "ServiceUnavailableError",
    "StorageConnectionError",
    "OperationTimeoutError",
]

# Add optional exports
if _has_cosmos:
    __all__.extend(["CosmosDocumentStore", "CosmosStoreConfig"])

__version__ = "0.1.0"
