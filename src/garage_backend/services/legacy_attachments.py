"""Read-only view over the deprecated single-attachment field.

Records written before the attachment ledger existed keep their one file in
``Maintenance.receipt_url``. When such a record has no ledger rows, the
attachments view shows that URL as a virtual entry. The virtual entry has no id
and cannot be removed through the ledger; clearing ``receipt_url`` is the only
way to drop it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from garage_backend.domain.storage_paths import owned_path_from_url
from garage_backend.models import Maintenance, MaintenanceFile


@dataclass(frozen=True)
class AttachmentView:
    id: str | None
    url: str
    uploaded_at: datetime | None
    removable: bool
    legacy: bool = False


def legacy_attachment_url(record: Maintenance) -> str | None:
    value = (record.receipt_url or "").strip()
    return value or None


def legacy_storage_path(record: Maintenance) -> str | None:
    url = legacy_attachment_url(record)
    if url is None:
        return None
    return owned_path_from_url(url, record.user_id)


def attachment_views(
    record: Maintenance, rows: Sequence[MaintenanceFile]
) -> list[AttachmentView]:
    if rows:
        return [
            AttachmentView(id=r.id, url=r.file_url, uploaded_at=r.uploaded_at, removable=True)
            for r in rows
        ]

    url = legacy_attachment_url(record)
    if url is None:
        return []
    return [
        AttachmentView(
            id=None,
            url=url,
            uploaded_at=record.created_at,
            removable=False,
            legacy=True,
        )
    ]


def virtual_legacy_url(record: Maintenance, rows: Sequence[MaintenanceFile]) -> str | None:
    """URL shown as the virtual entry, if any."""
    return legacy_attachment_url(record) if not rows else None
