"""
Local storage for collection sync.

Device-scoped key-value substrate, the snapshot store built on it, and the
validate-and-repair pass for damaged snapshots.
"""

from .kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .repair import DataIssue, IssueType, RepairReport, SnapshotRepairer
from .snapshot_store import LocalSnapshotStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "LocalSnapshotStore",
    "SnapshotRepairer",
    "RepairReport",
    "DataIssue",
    "IssueType",
]
