"""In-memory remote document store, for tests and single-process setups."""

from __future__ import annotations

import copy
from typing import Any

from ..exceptions import RemoteNotFoundError
from .base import RemoteDocumentStore


class InMemoryDocumentStore(RemoteDocumentStore):
    """Remote store backed by a dict.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state by accident, just like with a real network store.
    """

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self.read_count = 0
        self.write_count = 0

    async def exists(self, remote_id: str) -> bool:
        return remote_id in self._documents

    async def read(self, remote_id: str) -> dict[str, Any]:
        self.read_count += 1
        if remote_id not in self._documents:
            raise RemoteNotFoundError(remote_id)
        return copy.deepcopy(self._documents[remote_id])

    async def write(self, remote_id: str, document: dict[str, Any]) -> None:
        self.write_count += 1
        self._documents[remote_id] = copy.deepcopy(document)

    def create(self, remote_id: str, document: dict[str, Any] | None = None) -> None:
        """Create a document directly (setup helper)."""
        self._documents[remote_id] = copy.deepcopy(document or {})

    def get(self, remote_id: str) -> dict[str, Any] | None:
        """Peek at a stored document without counting a read."""
        document = self._documents.get(remote_id)
        return copy.deepcopy(document) if document is not None else None
