"""Error classification and retry with exponential backoff for remote calls.

``classify`` is the single place that decides what kind of failure an
exception represents. The retry executor and the offline queue both use it
through ``should_retry``, so retry eligibility is consistent everywhere.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from ..config import RetryConfig
from ..exceptions import (
    AccessDeniedError,
    AuthenticationError,
    OperationTimeoutError,
    RateLimitError,
    RemoteNotFoundError,
    StorageConnectionError,
    ValidationError,
)
from ..utils import Clock, format_timestamp, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER_ERROR,
    }
)


def _extract_status_code(exc: BaseException) -> int | None:
    """Try to extract an HTTP status code from store and SDK exceptions."""
    # Store errors, Azure SDK
    status = getattr(exc, "status_code", None)
    if status is not None:
        return int(status)
    # aiohttp.ClientResponseError
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    # Nested response object
    response = getattr(exc, "response", None)
    if response is not None:
        code = getattr(response, "status_code", None) or getattr(response, "status", None)
        if code is not None:
            return int(code)
    return None


def classify(error: BaseException) -> ErrorCategory:
    """Classify an exception into an ErrorCategory."""
    if isinstance(error, RateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(error, (OperationTimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (StorageConnectionError, ConnectionError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(error, AuthenticationError):
        return ErrorCategory.AUTHENTICATION
    if isinstance(error, AccessDeniedError):
        return ErrorCategory.PERMISSION
    if isinstance(error, RemoteNotFoundError):
        return ErrorCategory.NOT_FOUND

    status = _extract_status_code(error)
    if status is not None:
        if status == 401:
            return ErrorCategory.AUTHENTICATION
        if status == 403:
            if "rate limit" in str(error).lower():
                return ErrorCategory.RATE_LIMIT
            return ErrorCategory.PERMISSION
        if status == 404:
            return ErrorCategory.NOT_FOUND
        if status == 408:
            return ErrorCategory.TIMEOUT
        if status == 429:
            return ErrorCategory.RATE_LIMIT
        if status in (400, 422):
            return ErrorCategory.VALIDATION
        if status >= 500:
            return ErrorCategory.SERVER_ERROR
        return ErrorCategory.UNKNOWN

    message = str(error).lower()
    if "rate limit" in message:
        return ErrorCategory.RATE_LIMIT
    if "timed out" in message or "timeout" in message:
        return ErrorCategory.TIMEOUT
    if "temporarily unavailable" in message or "service unavailable" in message:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.UNKNOWN


def should_retry(error: BaseException) -> bool:
    """True if the failure is transient and worth another attempt."""
    return classify(error) in RETRYABLE_CATEGORIES


_ERROR_INFO: dict[ErrorCategory, tuple[str, str, list[str]]] = {
    ErrorCategory.NETWORK: (
        "Connection Problem",
        "Unable to reach the sync service. Please check your network connection and try again.",
        [
            "Check your internet connection",
            "Wait a moment and try again",
            "Keep working offline; changes sync when you reconnect",
        ],
    ),
    ErrorCategory.TIMEOUT: (
        "Request Timed Out",
        "The request timed out. This might be due to a slow connection or server issues.",
        [
            "Check your internet connection speed",
            "Try again in a few moments",
            "Contact support if the problem persists",
        ],
    ),
    ErrorCategory.AUTHENTICATION: (
        "Authentication Error",
        "Authentication failed. Your access token may be invalid or expired.",
        [
            "Check your access token",
            "Generate a new access token if needed",
            "Ensure the token can read and write the remote snapshot",
        ],
    ),
    ErrorCategory.PERMISSION: (
        "Access Denied",
        "Access denied. You may not have permission to access this snapshot.",
        [
            "Check that the remote snapshot id is correct",
            "Ensure you have access to the remote snapshot",
            "Verify your access token permissions",
        ],
    ),
    ErrorCategory.RATE_LIMIT: (
        "Rate Limited",
        "Too many requests. The sync service has temporarily limited your access.",
        [
            "Wait a few minutes before trying again",
            "Reduce the frequency of sync operations",
        ],
    ),
    ErrorCategory.NOT_FOUND: (
        "Snapshot Not Found",
        "The remote snapshot was not found. It may have been deleted or the id is incorrect.",
        [
            "Double-check the remote snapshot id",
            "Ensure the remote snapshot still exists",
            "Create a new remote snapshot if the original was deleted",
        ],
    ),
    ErrorCategory.VALIDATION: (
        "Data Error",
        "The data format is invalid. There may be an issue with your collection data.",
        [
            "Run a data repair pass",
            "Check your collection data for errors",
            "Contact support if the problem persists",
        ],
    ),
    ErrorCategory.SERVER_ERROR: (
        "Server Error",
        "The sync service is experiencing technical difficulties. Please try again later.",
        [
            "Wait a few minutes and try again",
            "Keep working offline until service is restored",
        ],
    ),
    ErrorCategory.UNKNOWN: (
        "Unexpected Error",
        "An unexpected error occurred. Please try again or contact support if the problem persists.",
        [
            "Try the operation again",
            "Check the logs for more details",
            "Contact support with error details",
        ],
    ),
}


@dataclass
class UserFacingError:
    """A failure formatted for display."""

    title: str
    message: str
    category: ErrorCategory
    recovery_actions: list[str]
    technical_details: str
    can_retry: bool
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "category": self.category.value,
            "recovery_actions": list(self.recovery_actions),
            "technical_details": self.technical_details,
            "can_retry": self.can_retry,
            "timestamp": self.timestamp,
        }


@dataclass
class _RetryTracking:
    attempts: int
    operation_type: str
    last_error: BaseException
    started_at: float = field(default=0.0)


class RetryExecutor:
    """Runs async operations with classification-driven retries.

    Sleep, randomness and clock are injectable so backoff behavior can be
    tested without real waiting.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.clock = clock
        self._tracking: dict[str, _RetryTracking] = {}

    def compute_backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based).

        ``base_delay * 2**(attempt-1)`` with +/- ``jitter/2`` random variation,
        capped at ``max_delay``.
        """
        delay = self.config.base_delay * (2 ** (attempt - 1))
        jitter = delay * self.config.jitter * (self._rng.random() - 0.5)
        return min(delay + jitter, self.config.max_delay)

    def _rate_limit_wait(self, error: BaseException) -> float | None:
        if not isinstance(error, RateLimitError):
            return None
        if error.retry_after is not None:
            return error.retry_after
        if error.reset_at is not None:
            return max((error.reset_at - self.clock()).total_seconds(), 0.0)
        return None

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_id: str | None = None,
        operation_type: str = "operation",
        max_retries: int | None = None,
        timeout: float | None = None,
    ) -> T:
        """Execute ``operation`` with retry and backoff.

        Args:
            operation: Zero-argument async callable
            operation_id: Key for retry tracking (generated if None)
            operation_type: Label for logs and stats
            max_retries: Override ``config.max_retries``
            timeout: Per-attempt timeout in seconds

        Returns:
            Result of the operation

        Raises:
            Exception: The last error, unchanged, once retries are exhausted
                or the error is not retryable
        """
        op_id = operation_id or f"{operation_type}-{uuid.uuid4().hex[:8]}"
        retries = self.config.max_retries if max_retries is None else max_retries
        loop_time = asyncio.get_running_loop().time

        for attempt in range(retries + 1):
            try:
                if timeout is not None:
                    try:
                        result = await asyncio.wait_for(operation(), timeout)
                    except TimeoutError as e:
                        raise OperationTimeoutError(operation_type, timeout) from e
                else:
                    result = await operation()
            except Exception as exc:
                previous = self._tracking.get(op_id)
                self._tracking[op_id] = _RetryTracking(
                    attempts=attempt + 1,
                    operation_type=operation_type,
                    last_error=exc,
                    started_at=previous.started_at if previous else loop_time(),
                )

                category = classify(exc)
                retryable = category in RETRYABLE_CATEGORIES
                if not retryable or attempt >= retries:
                    self._tracking.pop(op_id, None)
                    logger.error(
                        "RETRY_EXHAUSTED: %s attempt=%d/%d category=%s retryable=%s: %s",
                        operation_type,
                        attempt + 1,
                        retries + 1,
                        category.value,
                        retryable,
                        exc,
                    )
                    raise

                delay = self.compute_backoff(attempt + 1)
                hint = self._rate_limit_wait(exc)
                if hint is not None:
                    delay = max(delay, hint)
                    logger.warning(
                        "THROTTLED: %s attempt=%d/%d, retry_after=%.1fs: %s",
                        operation_type,
                        attempt + 1,
                        retries + 1,
                        delay,
                        exc,
                    )
                else:
                    logger.warning(
                        "RETRYING: %s attempt=%d/%d category=%s delay=%.1fs: %s",
                        operation_type,
                        attempt + 1,
                        retries + 1,
                        category.value,
                        delay,
                        exc,
                    )
                await self._sleep(delay)
            else:
                if attempt > 0:
                    logger.warning(
                        "RETRY_RECOVERED: %s succeeded on attempt %d/%d",
                        operation_type,
                        attempt + 1,
                        retries + 1,
                    )
                self._tracking.pop(op_id, None)
                return result

        # Unreachable, but satisfies type checker
        raise RuntimeError("execute_with_retry exhausted without raising")  # pragma: no cover

    def format_error_for_user(self, error: BaseException) -> UserFacingError:
        """Turn an exception into a displayable error with recovery actions."""
        category = classify(error)
        title, message, actions = _ERROR_INFO[category]
        return UserFacingError(
            title=title,
            message=message,
            category=category,
            recovery_actions=list(actions),
            technical_details=str(error),
            can_retry=category in RETRYABLE_CATEGORIES,
            timestamp=format_timestamp(self.clock()),
        )

    def get_retry_stats(self) -> dict[str, Any]:
        """Operations currently between retry attempts."""
        try:
            now = asyncio.get_running_loop().time()
        except RuntimeError:
            now = None
        return {
            "active_retries": len(self._tracking),
            "operations": [
                {
                    "operation_id": op_id,
                    "attempts": info.attempts,
                    "operation_type": info.operation_type,
                    "last_error": str(info.last_error),
                    "duration": (now - info.started_at) if now is not None else None,
                }
                for op_id, info in self._tracking.items()
            ],
        }

    def clear_retry_tracking(self) -> None:
        self._tracking.clear()
