"""
Abstract remote document store interface.

The remote side of a sync is a versionless object store holding exactly one
JSON document per opaque identifier. Implementations translate their
transport failures into the exceptions in ``collection_sync.exceptions``:

- RemoteNotFoundError: the document does not exist
- AccessDeniedError / AuthenticationError: credentials or permissions
- RateLimitError: throttled, with reset hints when known
- ServiceUnavailableError: server-side failure
- StorageConnectionError / OperationTimeoutError: transport failure
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RemoteDocumentStore(ABC):
    """Abstract interface for the remote snapshot store."""

    @abstractmethod
    async def exists(self, remote_id: str) -> bool:
        """Check whether a document exists and is readable.

        Args:
            remote_id: Opaque document identifier

        Returns:
            True if the document can be read
        """
        ...

    @abstractmethod
    async def read(self, remote_id: str) -> dict[str, Any]:
        """Read a document.

        Args:
            remote_id: Opaque document identifier

        Returns:
            The parsed JSON document

        Raises:
            RemoteNotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def write(self, remote_id: str, document: dict[str, Any]) -> None:
        """Replace a document.

        Args:
            remote_id: Opaque document identifier
            document: JSON-serializable document body
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None

    async def __aenter__(self) -> RemoteDocumentStore:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
