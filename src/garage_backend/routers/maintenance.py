from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from garage_backend.config import settings
from garage_backend.deps import get_coordinator, get_owner_id
from garage_backend.models import Maintenance
from garage_backend.schemas import (
    AttachmentOut,
    MaintenanceCreate,
    MaintenanceOut,
    MaintenanceResponse,
    MaintenanceSummary,
    MaintenanceUpdate,
    PartialFailureOut,
    StagedFileOut,
    UploadBatchOut,
)
from garage_backend.services.legacy_attachments import attachment_views
from garage_backend.services.lifecycle_coordinator import LifecycleCoordinator, UploadInput

router = APIRouter()

_MULTI_STATUS = 207


async def _read_upload_file_limited(*, file: UploadFile, max_bytes: int) -> bytes:
    # Read the file in chunks and hard-stop once size exceeds max_bytes.
    buf = bytearray()
    chunk_size = 1024 * 1024
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                detail="attachment too large",
            )
    return bytes(buf)


def _maintenance_out(record: Maintenance, attachments: list[AttachmentOut]) -> MaintenanceOut:
    summary = MaintenanceSummary.from_record(record)
    return MaintenanceOut(**summary.model_dump(), attachments=attachments)


@router.post(
    "/vehicles/{vehicle_id}/attachments",
    response_model=UploadBatchOut,
    status_code=status.HTTP_201_CREATED,
)
async def stage_attachments(
    vehicle_id: str,
    response: Response,
    files: Annotated[list[UploadFile], File()],
    maintenance_id: Annotated[str | None, Query()] = None,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> UploadBatchOut:
    max_bytes = int(settings.attachments_max_size_bytes)
    inputs: list[UploadInput] = []
    for file in files:
        if max_bytes > 0:
            data = await _read_upload_file_limited(file=file, max_bytes=max_bytes)
        else:
            data = await file.read()
        inputs.append(UploadInput(data=data, mime_type=file.content_type, filename=file.filename))

    batch = await coordinator.stage_uploads(
        owner_id=owner_id,
        vehicle_id=vehicle_id,
        maintenance_id=maintenance_id,
        files=inputs,
    )
    if batch.partial_failure is not None:
        response.status_code = _MULTI_STATUS
    return UploadBatchOut(
        staged=[StagedFileOut.from_staged(s) for s in batch.staged],
        partial_failure=PartialFailureOut.from_result(batch.partial_failure),
    )


@router.delete("/vehicles/{vehicle_id}/attachments", status_code=status.HTTP_204_NO_CONTENT)
async def discard_staged_attachment(
    vehicle_id: str,
    url: Annotated[str, Query(min_length=1)],
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> Response:
    _ = vehicle_id
    await coordinator.discard_staged(owner_id=owner_id, url=url)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/vehicles/{vehicle_id}/maintenance", response_model=list[MaintenanceSummary])
async def list_maintenance(
    vehicle_id: str,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> list[MaintenanceSummary]:
    records = await coordinator.list_records(owner_id=owner_id, vehicle_id=vehicle_id)
    return [MaintenanceSummary.from_record(r) for r in records]


@router.post(
    "/vehicles/{vehicle_id}/maintenance",
    response_model=MaintenanceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_maintenance(
    vehicle_id: str,
    payload: MaintenanceCreate,
    response: Response,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> MaintenanceResponse:
    result = await coordinator.create_with_attachments(
        owner_id=owner_id,
        vehicle_id=vehicle_id,
        fields=payload.record_fields(),
        staged=payload.attachments,
    )
    if result.partial_failure is not None:
        response.status_code = _MULTI_STATUS
    views = attachment_views(result.record, result.attachments)
    return MaintenanceResponse(
        maintenance=_maintenance_out(result.record, [AttachmentOut.from_view(v) for v in views]),
        partial_failure=PartialFailureOut.from_result(result.partial_failure),
    )


@router.get("/maintenance/{maintenance_id}", response_model=MaintenanceOut)
async def get_maintenance(
    maintenance_id: str,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> MaintenanceOut:
    record = await coordinator.get_record(owner_id=owner_id, maintenance_id=maintenance_id)
    views = await coordinator.list_attachments(owner_id=owner_id, maintenance_id=maintenance_id)
    return _maintenance_out(record, [AttachmentOut.from_view(v) for v in views])


@router.patch("/maintenance/{maintenance_id}", response_model=MaintenanceResponse)
async def update_maintenance(
    maintenance_id: str,
    payload: MaintenanceUpdate,
    response: Response,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> MaintenanceResponse:
    result = await coordinator.update_with_attachments(
        owner_id=owner_id,
        maintenance_id=maintenance_id,
        changes=payload.record_changes(),
        desired_attachments=payload.attachments,
    )
    if result.partial_failure is not None or not result.fields_applied:
        response.status_code = _MULTI_STATUS
    views = attachment_views(result.record, result.attachments)
    return MaintenanceResponse(
        maintenance=_maintenance_out(result.record, [AttachmentOut.from_view(v) for v in views]),
        fields_applied=result.fields_applied,
        partial_failure=PartialFailureOut.from_result(result.partial_failure),
    )


@router.delete("/maintenance/{maintenance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_maintenance(
    maintenance_id: str,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> Response:
    await coordinator.delete_with_attachments(owner_id=owner_id, maintenance_id=maintenance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/maintenance/{maintenance_id}/attachments", response_model=list[AttachmentOut])
async def list_maintenance_attachments(
    maintenance_id: str,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> list[AttachmentOut]:
    views = await coordinator.list_attachments(owner_id=owner_id, maintenance_id=maintenance_id)
    return [AttachmentOut.from_view(v) for v in views]


@router.delete(
    "/maintenance/{maintenance_id}/attachments/{file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_maintenance_attachment(
    maintenance_id: str,
    file_id: str,
    owner_id: int = Depends(get_owner_id),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> Response:
    await coordinator.remove_attachment(
        owner_id=owner_id, maintenance_id=maintenance_id, row_id=file_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
