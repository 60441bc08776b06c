"""
HTTP remote document stores.

Two flavours share one transport:

- HttpDocumentStore: plain REST document store, ``GET``/``PUT {base_url}/{id}``
- GistDocumentStore: GitHub Gist API, the document lives in one file of a
  gist and is written with ``PATCH``

Rate limits are honoured in place: when the server says how long to wait
and the wait fits in ``max_rate_limit_wait``, the request is repeated once
after that wait. Otherwise a RateLimitError carrying the reset hint is
raised and the retry executor takes over.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiohttp

from ..exceptions import (
    AccessDeniedError,
    AuthenticationError,
    OperationTimeoutError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteStoreError,
    ServiceUnavailableError,
    StorageConnectionError,
    ValidationError,
)
from ..utils import Clock, utcnow
from .base import RemoteDocumentStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RATE_LIMIT_WAIT = 60.0


def parse_rate_limit(
    status: int,
    headers: Mapping[str, str],
    now: datetime,
) -> RateLimitError | None:
    """Build a RateLimitError from a throttled response, or None.

    A 403 only counts as a rate limit when ``X-RateLimit-Remaining`` is 0.
    ``Retry-After`` (seconds) wins over ``X-RateLimit-Reset`` (epoch seconds).
    """
    if status == 403 and headers.get("X-RateLimit-Remaining") != "0":
        return None
    if status not in (403, 429):
        return None

    retry_after: float | None = None
    reset_at: datetime | None = None

    raw_retry_after = headers.get("Retry-After")
    if raw_retry_after is not None:
        try:
            retry_after = max(float(raw_retry_after), 0.0)
        except ValueError:
            retry_after = None

    raw_reset = headers.get("X-RateLimit-Reset")
    if raw_reset is not None:
        try:
            reset_at = datetime.fromtimestamp(int(raw_reset), UTC)
        except (ValueError, OverflowError, OSError):
            reset_at = None

    if retry_after is None and reset_at is not None:
        retry_after = max((reset_at - now).total_seconds(), 0.0)

    message = "Rate limit exceeded"
    if reset_at is not None:
        message += f". Try again after {reset_at.isoformat()}"
    return RateLimitError(message, retry_after=retry_after, reset_at=reset_at)


class HttpDocumentStore(RemoteDocumentStore):
    """REST document store over aiohttp.

    Example:
        >>> async with HttpDocumentStore("https://docs.example.com/v1", token="...") as store:
        ...     document = await store.read("my-collection")
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_rate_limit_wait: float = DEFAULT_MAX_RATE_LIMIT_WAIT,
        session: aiohttp.ClientSession | None = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the store.

        Args:
            base_url: Base URL; documents live at ``{base_url}/{id}``
            token: Optional bearer token
            timeout: Per-request timeout in seconds
            max_rate_limit_wait: Longest rate-limit wait handled internally
            session: Shared aiohttp session (not closed by this store)
            clock: Source of the current time
            sleep: Async sleep used for rate-limit waits
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_rate_limit_wait = max_rate_limit_wait
        self.clock = clock
        self._sleep = sleep
        self._session = session
        self._owns_session = session is None

    # =========================================================================
    # RemoteDocumentStore
    # =========================================================================

    async def exists(self, remote_id: str) -> bool:
        try:
            await self._request("GET", self.document_url(remote_id), remote_id)
        except (RemoteNotFoundError, AccessDeniedError):
            return False
        return True

    async def read(self, remote_id: str) -> dict[str, Any]:
        body = await self._request("GET", self.document_url(remote_id), remote_id)
        return self._decode_document(body, remote_id)

    async def write(self, remote_id: str, document: dict[str, Any]) -> None:
        await self._request("PUT", self.document_url(remote_id), remote_id, payload=document)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    # =========================================================================
    # Transport
    # =========================================================================

    def document_url(self, remote_id: str) -> str:
        return f"{self.base_url}/{remote_id}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        remote_id: str,
        payload: dict[str, Any] | None = None,
    ) -> str:
        """Send one request, waiting out a short rate limit once.

        Returns:
            The response body text
        """
        waited = False
        while True:
            status, headers, body = await self._send(method, url, payload)
            if status < 400:
                return body

            error = self.error_for_status(status, headers, remote_id, url, body)
            if (
                isinstance(error, RateLimitError)
                and not waited
                and error.retry_after is not None
                and error.retry_after <= self.max_rate_limit_wait
            ):
                logger.warning(
                    "THROTTLED: %s %s, waiting %.1fs before retrying",
                    method,
                    url,
                    error.retry_after,
                )
                await self._sleep(error.retry_after)
                waited = True
                continue
            raise error

    async def _send(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None,
    ) -> tuple[int, Mapping[str, str], str]:
        session = self._get_session()
        try:
            async with session.request(
                method, url, json=payload, headers=self._headers()
            ) as response:
                body = await response.text()
                return response.status, response.headers, body
        except TimeoutError as e:
            raise OperationTimeoutError(f"{method} {url}", self.timeout) from e
        except aiohttp.ClientError as e:
            raise StorageConnectionError(url, e) from e

    def error_for_status(
        self,
        status: int,
        headers: Mapping[str, str],
        remote_id: str,
        url: str,
        body: str = "",
    ) -> RemoteStoreError:
        """Translate a failed response into a store exception."""
        rate_limit = parse_rate_limit(status, headers, self.clock())
        if rate_limit is not None:
            return rate_limit
        if status == 404:
            return RemoteNotFoundError(remote_id)
        if status == 401:
            return AuthenticationError(url, "Invalid or missing token")
        if status == 403:
            return AccessDeniedError(remote_id, "Snapshot may be private or token lacks access")
        if status >= 500:
            return ServiceUnavailableError(url, status)
        return RemoteStoreError(
            f"Request to {url} failed (HTTP {status})",
            {"url": url, "body": body[:200]},
            status_code=status,
        )

    @staticmethod
    def _decode_document(body: str, remote_id: str) -> dict[str, Any]:
        if not body.strip():
            return {}
        try:
            document = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValidationError(f"remote:{remote_id}", f"invalid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ValidationError(f"remote:{remote_id}", "document is not an object")
        return document


class GistDocumentStore(HttpDocumentStore):
    """Document store backed by a GitHub gist.

    The document is the content of ``filename`` inside the gist. When that
    file is missing, the first ``.json`` file that parses is used, so gists
    created by older clients under a different name keep working.
    """

    GITHUB_API = "https://api.github.com/gists"

    def __init__(
        self,
        token: str | None = None,
        filename: str = "collection.json",
        base_url: str = GITHUB_API,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, token=token, **kwargs)
        self.filename = filename

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def read(self, remote_id: str) -> dict[str, Any]:
        body = await self._request("GET", self.document_url(remote_id), remote_id)
        gist = self._decode_document(body, remote_id)
        content = await self._file_content(gist.get("files") or {}, remote_id)
        if content is None:
            return {}
        return self._decode_document(content, remote_id)

    async def write(self, remote_id: str, document: dict[str, Any]) -> None:
        payload = {"files": {self.filename: {"content": json.dumps(document, indent=2)}}}
        await self._request("PATCH", self.document_url(remote_id), remote_id, payload=payload)

    async def _file_content(self, files: dict[str, Any], remote_id: str) -> str | None:
        candidates = []
        if self.filename in files:
            candidates.append(files[self.filename])
        candidates.extend(
            file for name, file in files.items() if name != self.filename and name.endswith(".json")
        )

        for file in candidates:
            content = file.get("content") or ""
            if file.get("truncated") and file.get("raw_url"):
                content = await self._request("GET", file["raw_url"], remote_id)
            if file is candidates[0] and self.filename in files:
                return content
            try:
                json.loads(content)
            except json.JSONDecodeError:
                continue
            return content
        return None
