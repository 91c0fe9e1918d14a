"""Maintenance record / attachment lifecycle.

Keeps a maintenance row, its attachment ledger rows and the stored objects
consistent across create, update and delete. The relational store and the
object store share no transaction; consistency comes from step order and from
the ledger being the truth about which files belong to a record:

- create: record first, then ledger rows. A failed registration leaves the
  record and the uploaded object in place and is reported as a partial failure.
- update: removals, then additions, then the field mutation. Field changes are
  withheld when the ledger could not be brought to the desired state or a
  removed file could not be deleted from storage.
- delete: physical removals (best effort, independent), ledger rows, record.
  A storage failure never keeps a record alive.

Storage orphans left by these policies are logged with their path.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from garage_backend.domain.maintenance_fields import (
    LEGACY_FIELD,
    validate_changes,
    validate_new_fields,
)
from garage_backend.domain.ports import (
    AttachmentLedgerPort,
    AttachmentStorePort,
    MaintenanceRepositoryPort,
)
from garage_backend.domain.results import (
    CreateResult,
    DeleteResult,
    FailedFile,
    RemovedRow,
    RemoveOutcome,
    StagedFile,
    StoredObject,
    UpdateResult,
    UploadBatch,
)
from garage_backend.domain.saga import Saga, StepPolicy
from garage_backend.domain.storage_paths import parse_object_path
from garage_backend.errors import LedgerError, NotFoundError, StorageError, ValidationError
from garage_backend.models import Maintenance, MaintenanceFile, utc_now
from garage_backend.services.legacy_attachments import (
    AttachmentView,
    attachment_views,
    legacy_storage_path,
    virtual_legacy_url,
)

logger = logging.getLogger(__name__)

StagedRef = StagedFile | str


@dataclass(frozen=True)
class UploadInput:
    data: bytes
    mime_type: str | None
    filename: str | None = None


def _staged_url(item: StagedRef) -> str:
    return item.url if isinstance(item, StagedFile) else item


def _staged_uploaded_at(item: StagedRef) -> datetime | None:
    return item.uploaded_at if isinstance(item, StagedFile) else None


def _dedupe(items: Sequence[StagedRef]) -> list[StagedRef]:
    seen: set[str] = set()
    out: list[StagedRef] = []
    for item in items:
        url = _staged_url(item)
        if url in seen:
            continue
        seen.add(url)
        out.append(item)
    return out


def _reason(exc: Exception | None) -> str:
    if exc is None:
        return "unknown error"
    return str(exc) or exc.__class__.__name__


class LifecycleCoordinator:
    def __init__(
        self,
        *,
        store: AttachmentStorePort,
        records: MaintenanceRepositoryPort,
        ledger: AttachmentLedgerPort,
        max_upload_bytes: int = 0,
        upload_concurrency: int = 0,
    ) -> None:
        self._store = store
        self._records = records
        self._ledger = ledger
        self._max_upload_bytes = max_upload_bytes
        self._upload_concurrency = upload_concurrency

    # -- reads -------------------------------------------------------------

    async def get_record(self, *, owner_id: int, maintenance_id: str) -> Maintenance:
        record = await self._records.get(owner_id=owner_id, maintenance_id=maintenance_id)
        if record is None:
            raise NotFoundError("maintenance not found")
        return record

    async def list_records(self, *, owner_id: int, vehicle_id: str) -> list[Maintenance]:
        return await self._records.list_for_vehicle(owner_id=owner_id, vehicle_id=vehicle_id)

    async def list_attachments(
        self, *, owner_id: int, maintenance_id: str
    ) -> list[AttachmentView]:
        record = await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
        rows = await self._ledger.list_for_maintenance(
            maintenance_id=maintenance_id, owner_id=owner_id
        )
        return attachment_views(record, rows)

    # -- staging -----------------------------------------------------------

    def _resolve_owned_path(self, owner_id: int, url: str) -> str | None:
        path = self._store.path_from_url(url)
        if path is None:
            return None
        parsed = parse_object_path(path)
        if parsed is None or not parsed.owned_by(owner_id):
            return None
        return path

    def _check_attachable(
        self,
        *,
        owner_id: int,
        vehicle_id: str,
        maintenance_id: str | None,
        urls: Sequence[str],
    ) -> None:
        rejected: list[str] = []
        for url in urls:
            path = self._store.path_from_url(url)
            parsed = parse_object_path(path) if path is not None else None
            if (
                parsed is None
                or not parsed.owned_by(owner_id)
                or parsed.vehicle_id != vehicle_id
                or (parsed.maintenance_id is not None and parsed.maintenance_id != maintenance_id)
            ):
                rejected.append(url)
        if rejected:
            raise ValidationError(
                "attachments must be files uploaded for this vehicle",
                details={"urls": rejected},
            )

    async def stage_uploads(
        self,
        *,
        owner_id: int,
        vehicle_id: str,
        maintenance_id: str | None,
        files: Sequence[UploadInput],
    ) -> UploadBatch:
        """Upload picked files ahead of registration.

        Files upload concurrently, capped by ``upload_concurrency``. Each failure is
        reported without affecting the others.
        """
        if not files:
            raise ValidationError("no files to upload")
        for f in files:
            if not f.data:
                raise ValidationError("empty file", details={"filename": f.filename})
            if self._max_upload_bytes > 0 and len(f.data) > self._max_upload_bytes:
                raise ValidationError("attachment too large", details={"filename": f.filename})

        if maintenance_id is not None:
            record = await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
            if record.vehicle_id != vehicle_id:
                raise NotFoundError("maintenance not found")

        saga = Saga(
            "stage_uploads",
            context={"owner_id": owner_id, "vehicle_id": vehicle_id},
        )
        steps = [
            (
                f"upload:{i}",
                functools.partial(
                    self._store.put,
                    owner_id=owner_id,
                    vehicle_id=vehicle_id,
                    maintenance_id=maintenance_id,
                    data=f.data,
                    mime_type=f.mime_type,
                    filename=f.filename,
                ),
            )
            for i, f in enumerate(files)
        ]
        results: list[StoredObject | None] = await saga.fan_out(
            steps,
            policy=StepPolicy.BEST_EFFORT,
            recoverable=(StorageError,),
            limit=self._upload_concurrency,
        )
        errors = {o.name: o.error for o in saga.failures()}

        staged: list[StagedFile] = []
        failed: list[FailedFile] = []
        stamp = utc_now()
        for (name, _), f, stored in zip(steps, files, results):
            if stored is None:
                failed.append(FailedFile(ref=f.filename or name, reason=_reason(errors.get(name))))
                continue
            # Keep the picked order even when the clock does not advance.
            stamp = max(utc_now(), stamp + timedelta(microseconds=1))
            staged.append(
                StagedFile(
                    url=stored.url,
                    path=stored.path,
                    uploaded_at=stamp,
                    content_type=f.mime_type,
                    size_bytes=len(f.data),
                    filename=f.filename,
                )
            )
        if not staged:
            raise StorageError(
                "all uploads failed",
                details={"failed": [{"ref": f.ref, "reason": f.reason} for f in failed]},
            )
        return UploadBatch(staged=staged, failed=failed)

    async def discard_staged(self, *, owner_id: int, url: str) -> RemoveOutcome | None:
        """Best-effort removal of an uploaded file that was never registered."""
        path = self._resolve_owned_path(owner_id, url)
        if path is None:
            raise ValidationError("not a staged attachment of this user", details={"url": url})

        parsed = parse_object_path(path)
        if parsed is not None and parsed.maintenance_id is not None:
            rows = await self._ledger.list_for_maintenance(
                maintenance_id=parsed.maintenance_id, owner_id=owner_id
            )
            if any(r.file_url == url for r in rows):
                raise ValidationError(
                    "attachment is registered; remove it through its maintenance record",
                    details={"url": url},
                )

        saga = Saga("discard_staged", context={"owner_id": owner_id, "path": path})
        return await saga.step(
            "remove_object",
            functools.partial(self._store.remove, path),
            policy=StepPolicy.BEST_EFFORT,
            recoverable=(StorageError,),
        )

    # -- create ------------------------------------------------------------

    async def create_with_attachments(
        self,
        *,
        owner_id: int,
        vehicle_id: str,
        fields: Mapping[str, object],
        staged: Sequence[StagedRef] = (),
    ) -> CreateResult:
        values = validate_new_fields(fields)
        items = _dedupe(staged)
        self._check_attachable(
            owner_id=owner_id,
            vehicle_id=vehicle_id,
            maintenance_id=None,
            urls=[_staged_url(i) for i in items],
        )

        saga = Saga(
            "create_with_attachments",
            context={"owner_id": owner_id, "vehicle_id": vehicle_id},
        )
        record = await saga.require(
            "create_record",
            functools.partial(
                self._records.create, owner_id=owner_id, vehicle_id=vehicle_id, fields=values
            ),
        )
        # A failed ledger commit rolls the session back and expires every loaded row.
        maintenance_id = record.id
        saga.context["maintenance_id"] = maintenance_id

        attachments: list[MaintenanceFile] = []
        failed: list[FailedFile] = []
        for item in items:
            url = _staged_url(item)
            step_name = f"register:{url}"
            row = await saga.step(
                step_name,
                functools.partial(
                    self._ledger.add,
                    maintenance_id=maintenance_id,
                    owner_id=owner_id,
                    url=url,
                    uploaded_at=_staged_uploaded_at(item),
                ),
                policy=StepPolicy.BEST_EFFORT,
                recoverable=(LedgerError, NotFoundError),
            )
            if row is None:
                error = saga.outcomes[-1].error
                failed.append(FailedFile(ref=url, reason=_reason(error)))
                logger.warning(
                    "orphan object left unregistered owner_id=%s maintenance_id=%s url=%s",
                    owner_id,
                    maintenance_id,
                    url,
                )
                continue
            attachments.append(row)

        if failed:
            record = await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
            attachments = await self._ledger.list_for_maintenance(
                maintenance_id=maintenance_id, owner_id=owner_id
            )
        return CreateResult(record=record, attachments=attachments, failed=failed)

    # -- update ------------------------------------------------------------

    async def _remove_objects(self, saga: Saga, paths: Sequence[str]) -> list[str]:
        """Best-effort physical removals; returns the paths left behind."""
        steps = [(f"remove_object:{p}", functools.partial(self._store.remove, p)) for p in paths]
        results = await saga.fan_out(
            steps, policy=StepPolicy.BEST_EFFORT, recoverable=(StorageError, ValidationError)
        )
        orphaned = [p for p, outcome in zip(paths, results) if outcome is None]
        for p in orphaned:
            logger.warning("storage orphan left behind path=%s", p)
        return orphaned

    async def update_with_attachments(
        self,
        *,
        owner_id: int,
        maintenance_id: str,
        changes: Mapping[str, object],
        desired_attachments: Sequence[StagedRef] | None = None,
    ) -> UpdateResult:
        """Reconcile the ledger with ``desired_attachments``, then apply ``changes``.

        ``desired_attachments=None`` leaves attachments untouched.
        """
        values = validate_changes(changes)
        record = await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
        legacy_path = legacy_storage_path(record)

        saga = Saga(
            "update_with_attachments",
            context={"owner_id": owner_id, "maintenance_id": maintenance_id},
        )
        removed: list[RemovedRow] = []
        failed: list[FailedFile] = []
        orphaned: list[str] = []

        if desired_attachments is not None:
            current = await self._ledger.list_for_maintenance(
                maintenance_id=maintenance_id, owner_id=owner_id
            )
            virtual_url = virtual_legacy_url(record, current)
            desired = [
                i for i in _dedupe(desired_attachments) if _staged_url(i) != virtual_url
            ]
            desired_urls = {_staged_url(i) for i in desired}
            current_urls = {r.file_url for r in current}

            # Plain (id, url) pairs: a failed ledger write expires the loaded rows.
            to_remove = [(r.id, r.file_url) for r in current if r.file_url not in desired_urls]
            to_add = [i for i in desired if _staged_url(i) not in current_urls]
            self._check_attachable(
                owner_id=owner_id,
                vehicle_id=record.vehicle_id,
                maintenance_id=maintenance_id,
                urls=[_staged_url(i) for i in to_add],
            )

            # Rows the user removed disappear from the ledger whatever storage says.
            paths: list[str] = []
            for row_id, url in to_remove:
                path = self._resolve_owned_path(owner_id, url)
                if path is None:
                    logger.warning(
                        "skipping physical removal of unresolvable url row_id=%s url=%s",
                        row_id,
                        url,
                    )
                    continue
                paths.append(path)
            orphaned = await self._remove_objects(saga, paths)

            for row_id, url in to_remove:
                gone = await saga.step(
                    f"unlink:{row_id}",
                    functools.partial(self._ledger.remove_by_id, row_id=row_id, owner_id=owner_id),
                    policy=StepPolicy.BEST_EFFORT,
                    recoverable=(LedgerError,),
                )
                if gone is None and not saga.outcomes[-1].ok:
                    failed.append(FailedFile(ref=url, reason=_reason(saga.outcomes[-1].error)))
                elif gone is not None:
                    removed.append(gone)

            for item in to_add:
                url = _staged_url(item)
                row = await saga.step(
                    f"register:{url}",
                    functools.partial(
                        self._ledger.add,
                        maintenance_id=maintenance_id,
                        owner_id=owner_id,
                        url=url,
                        uploaded_at=_staged_uploaded_at(item),
                    ),
                    policy=StepPolicy.BEST_EFFORT,
                    recoverable=(LedgerError, NotFoundError),
                )
                if row is None:
                    failed.append(FailedFile(ref=url, reason=_reason(saga.outcomes[-1].error)))

        fields_applied = not failed and not orphaned
        if not fields_applied:
            logger.warning(
                "attachment reconciliation incomplete; field changes withheld "
                "owner_id=%s maintenance_id=%s failed=%s orphaned=%s",
                owner_id,
                maintenance_id,
                len(failed),
                len(orphaned),
            )
            if failed:
                record = await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
        elif values:
            updated = await saga.require(
                "update_record",
                functools.partial(
                    self._records.update,
                    owner_id=owner_id,
                    maintenance_id=maintenance_id,
                    changes=values,
                ),
            )
            if updated is None:
                raise NotFoundError("maintenance not found")
            record = updated

            if LEGACY_FIELD in values and legacy_path is not None:
                await self._remove_objects(saga, [legacy_path])

        attachments = await self._ledger.list_for_maintenance(
            maintenance_id=maintenance_id, owner_id=owner_id
        )
        return UpdateResult(
            record=record,
            attachments=attachments,
            removed=removed,
            failed=failed,
            orphaned_paths=orphaned,
            fields_applied=fields_applied,
        )

    async def remove_attachment(
        self, *, owner_id: int, maintenance_id: str, row_id: str
    ) -> RemovedRow:
        """Unlink one ledger row; physical removal is best effort."""
        await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
        rows = await self._ledger.list_for_maintenance(
            maintenance_id=maintenance_id, owner_id=owner_id
        )
        row = next((r for r in rows if r.id == row_id), None)
        if row is None:
            raise NotFoundError("attachment not found")

        saga = Saga(
            "remove_attachment",
            context={"owner_id": owner_id, "maintenance_id": maintenance_id, "row_id": row_id},
        )
        path = self._resolve_owned_path(owner_id, row.file_url)
        if path is not None:
            await self._remove_objects(saga, [path])
        else:
            logger.warning("skipping physical removal of unresolvable url row_id=%s", row_id)

        gone = await saga.require(
            "unlink",
            functools.partial(self._ledger.remove_by_id, row_id=row_id, owner_id=owner_id),
        )
        if gone is None:
            raise NotFoundError("attachment not found")
        return gone

    # -- delete ------------------------------------------------------------

    async def delete_with_attachments(self, *, owner_id: int, maintenance_id: str) -> DeleteResult:
        await self.get_record(owner_id=owner_id, maintenance_id=maintenance_id)

        saga = Saga(
            "delete_with_attachments",
            context={"owner_id": owner_id, "maintenance_id": maintenance_id},
        )
        rows = await self._ledger.list_for_maintenance(
            maintenance_id=maintenance_id, owner_id=owner_id
        )

        paths: list[str] = []
        skipped: list[str] = []
        for r in rows:
            path = self._resolve_owned_path(owner_id, r.file_url)
            if path is None:
                logger.warning(
                    "ledger row excluded from physical removal row_id=%s url=%s",
                    r.id,
                    r.file_url,
                )
                skipped.append(r.file_url)
                continue
            paths.append(path)

        orphaned = await self._remove_objects(saga, paths)

        if rows:
            await saga.step(
                "unlink_all",
                functools.partial(
                    self._ledger.remove_all_for_maintenance,
                    maintenance_id=maintenance_id,
                    owner_id=owner_id,
                ),
                policy=StepPolicy.BEST_EFFORT,
                recoverable=(LedgerError,),
            )

        deleted = await saga.require(
            "delete_record",
            functools.partial(
                self._records.delete, owner_id=owner_id, maintenance_id=maintenance_id
            ),
        )
        if not deleted:
            raise NotFoundError("maintenance not found")

        return DeleteResult(
            maintenance_id=maintenance_id,
            removed_paths=[p for p in paths if p not in orphaned],
            skipped_urls=skipped,
            orphaned_paths=orphaned,
        )
