"""Collaborator interfaces of the lifecycle coordinator.

Concrete implementations: ``AttachmentStore`` (object storage),
``MaintenanceRepository`` and ``AttachmentLedger`` (relational store). Tests
substitute fakes.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Protocol

from garage_backend.domain.results import RemovedRow, RemoveOutcome, StoredObject
from garage_backend.models import Maintenance, MaintenanceFile


class AttachmentStorePort(Protocol):
    async def put(
        self,
        *,
        owner_id: int,
        vehicle_id: str,
        maintenance_id: str | None,
        data: bytes,
        mime_type: str | None,
        filename: str | None = None,
    ) -> StoredObject: ...

    async def remove(self, path: str) -> RemoveOutcome: ...

    def path_from_url(self, url: str) -> str | None: ...


class MaintenanceRepositoryPort(Protocol):
    async def create(
        self, *, owner_id: int, vehicle_id: str, fields: Mapping[str, object]
    ) -> Maintenance: ...

    async def get(self, *, owner_id: int, maintenance_id: str) -> Maintenance | None: ...

    async def list_for_vehicle(self, *, owner_id: int, vehicle_id: str) -> list[Maintenance]: ...

    async def update(
        self, *, owner_id: int, maintenance_id: str, changes: Mapping[str, object]
    ) -> Maintenance | None: ...

    async def delete(self, *, owner_id: int, maintenance_id: str) -> bool: ...


class AttachmentLedgerPort(Protocol):
    async def add(
        self,
        *,
        maintenance_id: str,
        owner_id: int,
        url: str,
        uploaded_at: datetime | None = None,
    ) -> MaintenanceFile: ...

    async def list_for_maintenance(
        self, *, maintenance_id: str, owner_id: int
    ) -> list[MaintenanceFile]: ...

    async def remove_by_id(self, *, row_id: str, owner_id: int) -> RemovedRow | None: ...

    async def remove_all_for_maintenance(
        self, *, maintenance_id: str, owner_id: int
    ) -> list[RemovedRow]: ...
