from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from garage_backend.domain.results import PartialFailure, StagedFile
from garage_backend.models import Maintenance, MaintenanceCategory
from garage_backend.services.legacy_attachments import AttachmentView


class ErrorResponse(BaseModel):
    """Pinned error contract: {error, message, request_id, details}."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None


class MaintenanceCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(max_length=200)
    description: str | None = None
    maintenance_type: MaintenanceCategory = MaintenanceCategory.GENERAL
    cost: float | None = Field(default=None, ge=0)
    mileage: int | None = Field(default=None, ge=0)
    date_performed: date
    next_due_date: date | None = None
    next_due_mileage: int | None = Field(default=None, ge=0)
    technician: str | None = Field(default=None, max_length=200)

    # URLs returned by the staging upload endpoint.
    attachments: list[str] = Field(default_factory=list)

    def record_fields(self) -> dict[str, object]:
        return self.model_dump(exclude={"attachments"})


class MaintenanceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    maintenance_type: MaintenanceCategory | None = None
    cost: float | None = Field(default=None, ge=0)
    mileage: int | None = Field(default=None, ge=0)
    date_performed: date | None = None
    next_due_date: date | None = None
    next_due_mileage: int | None = Field(default=None, ge=0)
    technician: str | None = Field(default=None, max_length=200)
    # Legacy attachment slot; may only be cleared.
    receipt_url: str | None = None

    # Full desired attachment set. Omit to leave attachments untouched.
    attachments: list[str] | None = None

    def record_changes(self) -> dict[str, object]:
        return self.model_dump(exclude={"attachments"}, exclude_unset=True)


class AttachmentOut(BaseModel):
    id: str | None
    url: str
    uploaded_at: datetime | None
    removable: bool
    legacy: bool = False

    @classmethod
    def from_view(cls, view: AttachmentView) -> "AttachmentOut":
        return cls(
            id=view.id,
            url=view.url,
            uploaded_at=view.uploaded_at,
            removable=view.removable,
            legacy=view.legacy,
        )


class MaintenanceSummary(BaseModel):
    id: str
    vehicle_id: str
    title: str
    description: str | None
    maintenance_type: str
    cost: float | None
    mileage: int | None
    date_performed: date
    next_due_date: date | None
    next_due_mileage: int | None
    technician: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: Maintenance) -> "MaintenanceSummary":
        return cls(
            id=record.id,
            vehicle_id=record.vehicle_id,
            title=record.title,
            description=record.description,
            maintenance_type=record.maintenance_type,
            cost=record.cost,
            mileage=record.mileage,
            date_performed=record.date_performed,
            next_due_date=record.next_due_date,
            next_due_mileage=record.next_due_mileage,
            technician=record.technician,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class MaintenanceOut(MaintenanceSummary):
    attachments: list[AttachmentOut] = Field(default_factory=list)


class FailedFileOut(BaseModel):
    ref: str
    reason: str


class PartialFailureOut(BaseModel):
    succeeded: list[str]
    failed: list[FailedFileOut]

    @classmethod
    def from_result(cls, pf: PartialFailure | None) -> "PartialFailureOut | None":
        if pf is None:
            return None
        return cls(
            succeeded=list(pf.succeeded),
            failed=[FailedFileOut(ref=f.ref, reason=f.reason) for f in pf.failed],
        )


class MaintenanceResponse(BaseModel):
    maintenance: MaintenanceOut
    fields_applied: bool = True
    partial_failure: PartialFailureOut | None = None


class StagedFileOut(BaseModel):
    url: str
    path: str
    uploaded_at: datetime
    content_type: str | None = None
    size_bytes: int
    filename: str | None = None

    @classmethod
    def from_staged(cls, staged: StagedFile) -> "StagedFileOut":
        return cls(
            url=staged.url,
            path=staged.path,
            uploaded_at=staged.uploaded_at,
            content_type=staged.content_type,
            size_bytes=staged.size_bytes,
            filename=staged.filename,
        )


class UploadBatchOut(BaseModel):
    staged: list[StagedFileOut]
    partial_failure: PartialFailureOut | None = None
