"""
Configuration for the sync engine.

Settings can be built directly, read from environment variables, or loaded
from the ``sync:`` section of a YAML settings file:

```yaml
sync:
  remote_id: "5f3c2a..."
  sync_interval: 30
  conflict_strategy: merge
  retry:
    max_retries: 5
    max_delay: 30
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ValidationError

DEFAULT_INTENT_RETRY_CEILINGS: dict[str, int] = {
    "sync": 5,
    "push": 3,
    "pull": 3,
    "mutate": 3,
}


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int = 5
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # cap
    jitter: float = 0.25  # total spread, i.e. +/- jitter/2


@dataclass
class SyncConfig:
    """Configuration for the sync orchestrator and its components.

    Intervals and delays are in seconds.

    Environment Variables:
        COLLECTION_SYNC_REMOTE_ID: Remote snapshot identifier
        COLLECTION_SYNC_INTERVAL: Auto-sync interval (default: 30)
        COLLECTION_SYNC_QUEUE_DRAIN_INTERVAL: Offline queue drain interval (default: 10)
        COLLECTION_SYNC_CONFLICT_STRATEGY: manual | keep-local | keep-remote | merge
        COLLECTION_SYNC_CONFLICT_WINDOW: Concurrent-edit window (default: 60)
        COLLECTION_SYNC_MAX_RETRIES: Retry attempts for a sync cycle (default: 3)
        COLLECTION_SYNC_OPERATION_TIMEOUT: Per-attempt timeout (default: none)
        COLLECTION_SYNC_KEY_PREFIX: Prefix for persisted local keys
    """

    remote_id: str | None = None

    # Scheduling
    sync_interval: float = 30.0
    queue_drain_interval: float = 10.0
    online_settle_delay: float = 2.0
    foreground_sync_delay: float = 2.0

    # Conflict handling
    conflict_strategy: str = "manual"
    conflict_window: float = 60.0

    # Network behavior
    max_sync_retries: int = 3
    operation_timeout: float | None = None
    retry: RetryConfig = field(default_factory=RetryConfig)

    # Snapshot format
    schema_version: str = "1.0"
    client_version: str = "1.0.0"

    # Local persistence
    key_prefix: str = "collection"
    max_snapshot_bytes: int = 5 * 1024 * 1024

    # Offline queue
    queue_max_size: int = 100
    queue_backoff_base: float = 1.0
    intent_retry_ceilings: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_INTENT_RETRY_CEILINGS)
    )

    def __post_init__(self) -> None:
        if self.sync_interval <= 0:
            raise ValidationError("sync_interval", "must be positive", str(self.sync_interval))
        if self.queue_drain_interval <= 0:
            raise ValidationError(
                "queue_drain_interval", "must be positive", str(self.queue_drain_interval)
            )
        if self.conflict_window < 0:
            raise ValidationError(
                "conflict_window", "must not be negative", str(self.conflict_window)
            )
        if self.queue_max_size < 1:
            raise ValidationError("queue_max_size", "must be >= 1", str(self.queue_max_size))

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create configuration from environment variables.

        Returns:
            SyncConfig populated from environment variables
        """
        timeout = os.environ.get("COLLECTION_SYNC_OPERATION_TIMEOUT")

        return cls(
            remote_id=os.environ.get("COLLECTION_SYNC_REMOTE_ID") or None,
            sync_interval=float(os.environ.get("COLLECTION_SYNC_INTERVAL", "30")),
            queue_drain_interval=float(
                os.environ.get("COLLECTION_SYNC_QUEUE_DRAIN_INTERVAL", "10")
            ),
            conflict_strategy=os.environ.get("COLLECTION_SYNC_CONFLICT_STRATEGY", "manual"),
            conflict_window=float(os.environ.get("COLLECTION_SYNC_CONFLICT_WINDOW", "60")),
            max_sync_retries=int(os.environ.get("COLLECTION_SYNC_MAX_RETRIES", "3")),
            operation_timeout=float(timeout) if timeout else None,
            key_prefix=os.environ.get("COLLECTION_SYNC_KEY_PREFIX", "collection"),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> SyncConfig:
        """Load configuration from the ``sync`` section of a YAML file.

        Missing files and missing sections yield the defaults. Unknown keys
        are ignored.
        """
        config_path = Path(path)
        if not config_path.exists():
            return cls()

        data = yaml.safe_load(config_path.read_text()) or {}
        return cls.from_dict(data.get("sync") or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create configuration from a plain mapping."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known and k != "retry"}

        retry_data = data.get("retry") or {}
        retry_known = {f.name for f in fields(RetryConfig)}
        kwargs["retry"] = RetryConfig(**{k: v for k, v in retry_data.items() if k in retry_known})

        if "intent_retry_ceilings" in kwargs:
            ceilings = dict(DEFAULT_INTENT_RETRY_CEILINGS)
            ceilings.update(kwargs["intent_retry_ceilings"] or {})
            kwargs["intent_retry_ceilings"] = ceilings

        return cls(**kwargs)

    def storage_key(self, name: str) -> str:
        """Build a persisted key name, e.g. ``collection-snapshot``."""
        return f"{self.key_prefix}-{name}"
