"""
Validation and repair of snapshot documents.

Corrupt local data is never fatal: ``LocalSnapshotStore.load`` degrades to
"no data", and this pass can be run to detect and fix the common damage
instead of throwing the collection away:

- missing metadata block
- missing metadata fields
- unparseable lastModified
- items without an id
- duplicate item ids (first seen wins)

Every repair re-stamps ``lastModified`` and the document is re-validated
afterwards. The repaired document is written back once, so a failed repair
leaves the stored data untouched.
"""

from __future__ import annotations

import copy
import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import REQUIRED_METADATA_FIELDS, SyncStatus, document_items, normalize_metadata_keys
from ..remote.base import RemoteDocumentStore
from ..utils import format_timestamp, parse_timestamp
from .snapshot_store import LocalSnapshotStore

logger = logging.getLogger(__name__)


class IssueType(Enum):
    """Kinds of damage the validator can report."""

    MISSING_METADATA = "missing_metadata"
    MISSING_METADATA_FIELD = "missing_metadata_field"
    INVALID_TIMESTAMP = "invalid_timestamp"
    INVALID_ITEMS_STRUCTURE = "invalid_items_structure"
    MISSING_ITEM_ID = "missing_item_id"
    DUPLICATE_ITEM_ID = "duplicate_item_id"
    MISSING_ITEM_TITLE = "missing_item_title"
    DATA_CORRUPTION = "data_corruption"


# Issues this pass knows how to fix, in the order they are fixed. The rest
# are reported only.
REPAIR_ORDER = (
    IssueType.MISSING_METADATA,
    IssueType.MISSING_METADATA_FIELD,
    IssueType.INVALID_TIMESTAMP,
    IssueType.INVALID_ITEMS_STRUCTURE,
    IssueType.MISSING_ITEM_ID,
    IssueType.DUPLICATE_ITEM_ID,
)


@dataclass
class DataIssue:
    """A single problem found in a snapshot document."""

    type: IssueType
    location: str  # "local" or "remote"
    description: str
    severity: str = "high"
    field: str | None = None
    index: int | None = None
    item_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "location": self.location,
            "description": self.description,
            "severity": self.severity,
            "field": self.field,
            "index": self.index,
            "item_id": self.item_id,
        }


@dataclass
class RepairReport:
    """Outcome of a validate-and-repair pass."""

    issues: list[DataIssue] = field(default_factory=list)
    repairs: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    remaining: list[DataIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "repairs": list(self.repairs),
            "errors": list(self.errors),
            "remaining": [issue.to_dict() for issue in self.remaining],
        }


class SnapshotRepairer:
    """Detects and fixes corrupt snapshot documents, locally and remotely."""

    def __init__(
        self,
        local_store: LocalSnapshotStore,
        remote: RemoteDocumentStore | None = None,
        remote_id: str | None = None,
    ) -> None:
        self.local = local_store
        self.remote = remote
        self.remote_id = remote_id

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, document: dict[str, Any], location: str = "local") -> list[DataIssue]:
        """Return every issue found in ``document``."""
        issues: list[DataIssue] = []

        metadata = document.get("metadata")
        if not isinstance(metadata, dict):
            issues.append(
                DataIssue(IssueType.MISSING_METADATA, location, f"{location} data missing metadata")
            )
        else:
            normalized = normalize_metadata_keys(metadata)
            for name in REQUIRED_METADATA_FIELDS:
                if not normalized.get(name):
                    issues.append(
                        DataIssue(
                            IssueType.MISSING_METADATA_FIELD,
                            location,
                            f"Missing metadata field: {name}",
                            severity="medium",
                            field=name,
                        )
                    )
            if normalized.get("lastModified") and parse_timestamp(normalized["lastModified"]) is None:
                issues.append(
                    DataIssue(
                        IssueType.INVALID_TIMESTAMP,
                        location,
                        "Invalid lastModified timestamp format",
                        severity="medium",
                    )
                )

        items = document_items(document)
        if not isinstance(items, list):
            issues.append(
                DataIssue(IssueType.INVALID_ITEMS_STRUCTURE, location, "Items is not a list")
            )
            return issues

        seen: set[str] = set()
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                issues.append(
                    DataIssue(
                        IssueType.INVALID_ITEMS_STRUCTURE,
                        location,
                        f"Item at index {index} is not an object",
                        index=index,
                    )
                )
                continue
            item_id = item.get("id")
            if not item_id:
                issues.append(
                    DataIssue(
                        IssueType.MISSING_ITEM_ID,
                        location,
                        f"Item at index {index} missing id",
                        index=index,
                    )
                )
            elif item_id in seen:
                issues.append(
                    DataIssue(
                        IssueType.DUPLICATE_ITEM_ID,
                        location,
                        f"Duplicate item id: {item_id}",
                        index=index,
                        item_id=item_id,
                    )
                )
            else:
                seen.add(item_id)

            if not item.get("title"):
                issues.append(
                    DataIssue(
                        IssueType.MISSING_ITEM_TITLE,
                        location,
                        f"Item {item_id or index} missing title",
                        severity="medium",
                        index=index,
                        item_id=item_id or None,
                    )
                )

        return issues

    # =========================================================================
    # Repair
    # =========================================================================

    async def validate_and_repair(self) -> RepairReport:
        """Validate local (and, if configured, remote) data and fix what can be fixed."""
        report = RepairReport()
        device_id = await self.local.get_device_id()

        try:
            document = await self.local.read_raw()
        except Exception as e:
            report.issues.append(
                DataIssue(
                    IssueType.DATA_CORRUPTION,
                    "local",
                    f"Cannot read local data: {e}",
                    severity="critical",
                )
            )
            document = None

        if document is not None:
            repaired = self._repair_document(document, "local", device_id, report)
            if repaired is not None:
                try:
                    await self.local.write_raw(repaired)
                except Exception as e:
                    report.errors.append(f"Failed to write repaired local data: {e}")

        if self.remote is not None and self.remote_id:
            await self._repair_remote(device_id, report)

        if report.issues:
            logger.info(
                "Repair pass found %d issues, applied %d repairs",
                len(report.issues),
                len(report.repairs),
            )
        return report

    async def _repair_remote(self, device_id: str, report: RepairReport) -> None:
        assert self.remote is not None and self.remote_id is not None
        try:
            if not await self.remote.exists(self.remote_id):
                report.issues.append(
                    DataIssue(
                        IssueType.DATA_CORRUPTION,
                        "remote",
                        "Configured remote snapshot not found or not accessible",
                        severity="critical",
                    )
                )
                return
            document = await self.remote.read(self.remote_id)
        except Exception as e:
            report.issues.append(
                DataIssue(
                    IssueType.DATA_CORRUPTION,
                    "remote",
                    f"Cannot read remote data: {e}",
                    severity="critical",
                )
            )
            return

        repaired = self._repair_document(document, "remote", device_id, report)
        if repaired is not None:
            try:
                await self.remote.write(self.remote_id, repaired)
            except Exception as e:
                report.errors.append(f"Failed to write repaired remote data: {e}")

    def _repair_document(
        self,
        document: dict[str, Any],
        location: str,
        device_id: str,
        report: RepairReport,
    ) -> dict[str, Any] | None:
        """Repair ``document`` in a copy.

        Returns:
            The repaired document, or None when nothing was changed
        """
        issues = self.validate(document, location)
        report.issues.extend(issues)

        working = copy.deepcopy(document)
        changed = False

        for issue_type in REPAIR_ORDER:
            pending = [i for i in self.validate(working, location) if i.type is issue_type]
            if not pending:
                continue
            try:
                description = self._apply_repair(working, issue_type, pending, device_id)
            except Exception as e:
                report.errors.append(f"Failed to repair {issue_type.value} in {location}: {e}")
                continue

            if isinstance(working.get("metadata"), dict):
                working["metadata"]["lastModified"] = format_timestamp(self.local.clock())
            changed = True
            report.repairs.append(f"{description} in {location}")

            if any(i.type is issue_type for i in self.validate(working, location)):
                report.errors.append(f"Repair of {issue_type.value} in {location} did not hold")

        report.remaining.extend(self.validate(working, location))
        return working if changed else None

    def _apply_repair(
        self,
        document: dict[str, Any],
        issue_type: IssueType,
        issues: list[DataIssue],
        device_id: str,
    ) -> str:
        if issue_type is IssueType.MISSING_METADATA:
            document["metadata"] = self._default_metadata(device_id, SyncStatus.REPAIRED)
            return "Repaired missing metadata"

        metadata = normalize_metadata_keys(document["metadata"])
        document["metadata"] = metadata

        if issue_type is IssueType.MISSING_METADATA_FIELD:
            defaults = self._default_metadata(device_id, SyncStatus.REPAIRED)
            names = [i.field for i in issues if i.field]
            for name in names:
                metadata[name] = defaults[name]
            metadata["syncStatus"] = SyncStatus.REPAIRED.value
            return f"Repaired missing metadata fields {', '.join(names)}"

        if issue_type is IssueType.INVALID_TIMESTAMP:
            metadata["lastModified"] = format_timestamp(self.local.clock())
            return "Repaired invalid timestamp"

        items = document_items(document)

        if issue_type is IssueType.INVALID_ITEMS_STRUCTURE:
            kept = [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []
            document.pop("audiobooks", None)
            document["items"] = kept
            return "Rebuilt item list"

        if issue_type is IssueType.MISSING_ITEM_ID:
            for issue in issues:
                item = items[issue.index]
                item["id"] = generate_item_id(item.get("title"), item.get("author"))
            return f"Generated ids for {len(issues)} items"

        if issue_type is IssueType.DUPLICATE_ITEM_ID:
            seen: set[str] = set()
            unique = []
            for item in items:
                if item.get("id") in seen:
                    continue
                seen.add(item.get("id"))
                unique.append(item)
            document.pop("audiobooks", None)
            document["items"] = unique
            return f"Removed {len(items) - len(unique)} duplicate items"

        raise ValueError(f"No repair method for issue type: {issue_type.value}")

    def _default_metadata(self, device_id: str, status: SyncStatus) -> dict[str, Any]:
        config = self.local.config
        return {
            "schemaVersion": config.schema_version,
            "lastModified": format_timestamp(self.local.clock()),
            "originDeviceId": device_id,
            "clientVersion": config.client_version,
            "syncStatus": status.value,
        }


def generate_item_id(title: str | None, author: str | None) -> str:
    """Generate an item id from its title and author."""
    text = f"{title or 'untitled'}-{author or 'unknown'}"
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return f"{slug}-{uuid.uuid4().hex[:8]}"
