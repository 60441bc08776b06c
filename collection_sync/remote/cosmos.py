"""
Cosmos DB remote document store.

Keeps each snapshot document as one item in an Azure Cosmos DB container,
partitioned by its own id. Requires the ``cosmos`` extra.

Supports two authentication methods:
- Key-based authentication (if org policy allows)
- Azure AD via DefaultAzureCredential (recommended)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential

from ..exceptions import (
    AccessDeniedError,
    AuthenticationError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteStoreError,
    ServiceUnavailableError,
    StorageConnectionError,
)
from .base import RemoteDocumentStore

logger = logging.getLogger(__name__)

# Cosmos system properties stripped from documents on read.
_SYSTEM_PROPERTIES = ("id", "_rid", "_self", "_etag", "_attachments", "_ts")


@dataclass
class CosmosStoreConfig:
    """Configuration for the Cosmos DB document store.

    Attributes:
        endpoint: Cosmos DB account endpoint URL
        database_name: Database holding the container
        container_name: Container holding snapshot documents
        key: Account key; when unset DefaultAzureCredential is used
    """

    endpoint: str
    database_name: str = "collection_sync"
    container_name: str = "snapshots"
    key: str | None = None

    @classmethod
    def from_env(cls) -> CosmosStoreConfig:
        """Create config from environment variables.

        Expected environment variables:
        - COLLECTION_SYNC_COSMOS_ENDPOINT: Cosmos DB account endpoint
        - COLLECTION_SYNC_COSMOS_KEY: Account key (optional)
        - COLLECTION_SYNC_COSMOS_DATABASE: Database name (optional)
        - COLLECTION_SYNC_COSMOS_CONTAINER: Container name (optional)

        Raises:
            AuthenticationError: If the endpoint is not set
        """
        endpoint = os.environ.get("COLLECTION_SYNC_COSMOS_ENDPOINT")
        if not endpoint:
            raise AuthenticationError(
                "cosmos", "COLLECTION_SYNC_COSMOS_ENDPOINT environment variable not set"
            )
        return cls(
            endpoint=endpoint,
            database_name=os.environ.get("COLLECTION_SYNC_COSMOS_DATABASE", "collection_sync"),
            container_name=os.environ.get("COLLECTION_SYNC_COSMOS_CONTAINER", "snapshots"),
            key=os.environ.get("COLLECTION_SYNC_COSMOS_KEY") or None,
        )


class CosmosDocumentStore(RemoteDocumentStore):
    """Remote store keeping snapshot documents in a Cosmos DB container."""

    def __init__(self, config: CosmosStoreConfig):
        self.config = config
        self._client: CosmosClient | None = None
        self._credential: DefaultAzureCredential | None = None
        self._container: ContainerProxy | None = None

    async def initialize(self) -> None:
        """Connect and make sure the database and container exist."""
        if self._container is not None:
            return

        try:
            if self.config.key:
                self._client = CosmosClient(self.config.endpoint, credential=self.config.key)
            else:
                self._credential = DefaultAzureCredential()
                self._client = CosmosClient(self.config.endpoint, credential=self._credential)

            database = await self._client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path="/id"),
            )
            logger.info(
                "Connected to Cosmos DB container %s/%s",
                self.config.database_name,
                self.config.container_name,
            )
        except CosmosHttpResponseError as e:
            await self.close()
            raise self._translate(e, self.config.endpoint) from e
        except Exception as e:
            await self.close()
            raise StorageConnectionError(self.config.endpoint, e) from e

    async def _get_container(self) -> ContainerProxy:
        if self._container is None:
            await self.initialize()
        assert self._container is not None
        return self._container

    async def exists(self, remote_id: str) -> bool:
        try:
            await self.read(remote_id)
        except RemoteNotFoundError:
            return False
        return True

    async def read(self, remote_id: str) -> dict[str, Any]:
        container = await self._get_container()
        try:
            item = await container.read_item(item=remote_id, partition_key=remote_id)
        except CosmosResourceNotFoundError as e:
            raise RemoteNotFoundError(remote_id) from e
        except CosmosHttpResponseError as e:
            raise self._translate(e, remote_id) from e
        return {k: v for k, v in item.items() if k not in _SYSTEM_PROPERTIES}

    async def write(self, remote_id: str, document: dict[str, Any]) -> None:
        container = await self._get_container()
        try:
            await container.upsert_item({**document, "id": remote_id})
        except CosmosHttpResponseError as e:
            raise self._translate(e, remote_id) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None
        self._container = None

    def _translate(self, error: CosmosHttpResponseError, target: str) -> RemoteStoreError:
        status = error.status_code
        if status == 404:
            return RemoteNotFoundError(target)
        if status == 401:
            return AuthenticationError(self.config.endpoint, str(error))
        if status == 403:
            return AccessDeniedError(target, str(error))
        if status == 429:
            retry_after_ms = (error.headers or {}).get("x-ms-retry-after-ms")
            retry_after = float(retry_after_ms) / 1000 if retry_after_ms else None
            return RateLimitError(retry_after=retry_after)
        if status is not None and status >= 500:
            return ServiceUnavailableError(self.config.endpoint, status, str(error))
        return RemoteStoreError(
            f"Cosmos DB request failed: {error}",
            {"target": target},
            status_code=status,
        )
