from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from garage_backend.models import Maintenance, MaintenanceFile


class RemoveOutcome(str, Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class StoredObject:
    url: str
    path: str


@dataclass(frozen=True)
class StagedFile:
    """An object uploaded ahead of ledger registration."""

    url: str
    path: str
    uploaded_at: datetime
    content_type: str | None = None
    size_bytes: int = 0
    filename: str | None = None


@dataclass(frozen=True)
class FailedFile:
    # URL when the object exists in storage, otherwise the client filename.
    ref: str
    reason: str


@dataclass(frozen=True)
class PartialFailure:
    succeeded: list[str]
    failed: list[FailedFile]


@dataclass(frozen=True)
class RemovedRow:
    row_id: str
    url: str
    # None when the URL does not resolve to a canonical path (corrupt / foreign row).
    path: str | None


@dataclass(frozen=True)
class UploadBatch:
    staged: list[StagedFile] = field(default_factory=list)
    failed: list[FailedFile] = field(default_factory=list)

    @property
    def partial_failure(self) -> PartialFailure | None:
        if not self.failed:
            return None
        return PartialFailure(succeeded=[s.url for s in self.staged], failed=list(self.failed))


@dataclass(frozen=True)
class CreateResult:
    record: Maintenance
    attachments: list[MaintenanceFile] = field(default_factory=list)
    failed: list[FailedFile] = field(default_factory=list)

    @property
    def partial_failure(self) -> PartialFailure | None:
        if not self.failed:
            return None
        return PartialFailure(
            succeeded=[a.file_url for a in self.attachments], failed=list(self.failed)
        )


@dataclass(frozen=True)
class UpdateResult:
    record: Maintenance
    attachments: list[MaintenanceFile] = field(default_factory=list)
    removed: list[RemovedRow] = field(default_factory=list)
    failed: list[FailedFile] = field(default_factory=list)
    # Objects of removed rows whose physical removal failed.
    orphaned_paths: list[str] = field(default_factory=list)
    # False when attachment reconciliation failed and the field mutation was withheld.
    fields_applied: bool = True

    @property
    def partial_failure(self) -> PartialFailure | None:
        if not self.failed:
            return None
        failed_refs = {f.ref for f in self.failed}
        return PartialFailure(
            succeeded=[a.file_url for a in self.attachments if a.file_url not in failed_refs],
            failed=list(self.failed),
        )


@dataclass(frozen=True)
class DeleteResult:
    maintenance_id: str
    removed_paths: list[str] = field(default_factory=list)
    # Ledger rows whose URL could not be resolved to a storage path.
    skipped_urls: list[str] = field(default_factory=list)
    # Paths whose physical removal failed; left as storage orphans.
    orphaned_paths: list[str] = field(default_factory=list)
