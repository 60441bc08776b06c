"""
Custom exceptions for collection sync.

All stores and the sync engine raise these exceptions so callers and the
error classifier see one consistent taxonomy regardless of backend.
"""

from __future__ import annotations

from datetime import datetime


class CollectionSyncError(Exception):
    """Base exception for all collection sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CollectionSyncError):
    """Raised when a snapshot or item fails validation."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotConfiguredError(CollectionSyncError):
    """Raised when no remote snapshot identifier has been configured."""

    def __init__(self, message: str = "No remote snapshot configured. Set a remote id first."):
        super().__init__(message)


class SyncInProgressError(CollectionSyncError):
    """Raised when a sync is requested while another one is running."""

    def __init__(self) -> None:
        super().__init__("Sync already in progress")


class UnknownStrategyError(CollectionSyncError):
    """Raised for an unrecognized conflict resolution strategy."""

    def __init__(self, strategy: str):
        super().__init__(
            f"Unknown conflict resolution strategy: {strategy}",
            {"strategy": strategy},
        )
        self.strategy = strategy


class QuotaExceededError(CollectionSyncError):
    """Raised when the local key-value substrate runs out of capacity."""

    def __init__(self, key: str, size_bytes: int | None = None, limit_bytes: int | None = None):
        details: dict = {"key": key}
        message = f"Storage quota exceeded writing {key}"
        if size_bytes is not None and limit_bytes is not None:
            details["size_bytes"] = size_bytes
            details["limit_bytes"] = limit_bytes
            message += f": {size_bytes} > {limit_bytes} bytes"
        super().__init__(message, details)
        self.key = key
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class StorageIOError(CollectionSyncError):
    """Raised when a local storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


# =============================================================================
# Remote store errors
# =============================================================================


class RemoteStoreError(CollectionSyncError):
    """Base class for failures reported by a remote document store.

    ``status_code`` mirrors the transport status when there is one, so the
    error classifier can treat SDK and store errors the same way.
    """

    status_code: int | None = None

    def __init__(self, message: str, details: dict | None = None, status_code: int | None = None):
        super().__init__(message, details)
        if status_code is not None:
            self.status_code = status_code


class RemoteNotFoundError(RemoteStoreError):
    """Raised when the remote snapshot does not exist."""

    status_code = 404

    def __init__(self, remote_id: str):
        super().__init__(
            f"Remote snapshot not found or not accessible: {remote_id}",
            {"remote_id": remote_id},
        )
        self.remote_id = remote_id


class AccessDeniedError(RemoteStoreError):
    """Raised when the remote store refuses access to a snapshot."""

    status_code = 403

    def __init__(self, remote_id: str, reason: str | None = None):
        details = {"remote_id": remote_id}
        if reason:
            details["reason"] = reason
        super().__init__(f"Access denied for remote snapshot {remote_id}", details)
        self.remote_id = remote_id
        self.reason = reason


class AuthenticationError(RemoteStoreError):
    """Raised when authentication to the remote store fails."""

    status_code = 401

    def __init__(self, endpoint: str, reason: str | None = None):
        details = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication failed for {endpoint}", details)
        self.endpoint = endpoint
        self.reason = reason


class RateLimitError(RemoteStoreError):
    """Raised when the remote store rate-limits requests.

    ``reset_at`` (absolute) and ``retry_after`` (seconds) are hints for the
    earliest moment another attempt may succeed.
    """

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        reset_at: datetime | None = None,
    ):
        details: dict = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        if reset_at is not None:
            details["reset_at"] = reset_at.isoformat()
        super().__init__(message, details)
        self.retry_after = retry_after
        self.reset_at = reset_at


class ServiceUnavailableError(RemoteStoreError):
    """Raised when the remote store reports a server-side failure."""

    status_code = 503

    def __init__(self, endpoint: str, status_code: int = 503, reason: str | None = None):
        details: dict = {"endpoint": endpoint, "status_code": status_code}
        if reason:
            details["reason"] = reason
        super().__init__(
            f"Remote service temporarily unavailable ({status_code}): {endpoint}",
            details,
            status_code=status_code,
        )
        self.endpoint = endpoint
        self.reason = reason


class StorageConnectionError(RemoteStoreError):
    """Raised when the remote store cannot be reached at all.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class OperationTimeoutError(RemoteStoreError):
    """Raised when an operation exceeds its time budget."""

    status_code = 408

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Operation {operation} timed out after {timeout:g}s",
            {"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout
