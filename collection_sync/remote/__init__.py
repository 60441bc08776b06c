"""
Remote document stores.

The Cosmos DB store needs the ``cosmos`` extra and is imported from
``collection_sync.remote.cosmos`` directly.
"""

from .base import RemoteDocumentStore
from .http import GistDocumentStore, HttpDocumentStore
from .memory import InMemoryDocumentStore

__all__ = [
    "RemoteDocumentStore",
    "InMemoryDocumentStore",
    "HttpDocumentStore",
    "GistDocumentStore",
]
