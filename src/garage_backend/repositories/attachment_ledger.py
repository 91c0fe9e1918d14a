from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from garage_backend.domain.results import RemovedRow
from garage_backend.domain.storage_paths import owned_path_from_url
from garage_backend.errors import LedgerError, NotFoundError
from garage_backend.models import Maintenance, MaintenanceFile, utc_now
from garage_backend.repositories.maintenance_repo import commit_or_rollback

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class AttachmentLedger:
    """Rows associating stored object URLs with a maintenance record."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _owned_record_exists(self, *, maintenance_id: str, owner_id: int) -> bool:
        stmt = (
            select(Maintenance.id)
            .where(Maintenance.user_id == owner_id)
            .where(Maintenance.id == maintenance_id)
        )
        return (await self._session.exec(stmt)).first() is not None

    async def _latest_uploaded_at(self, *, maintenance_id: str, owner_id: int) -> datetime | None:
        stmt = (
            select(MaintenanceFile.uploaded_at)
            .where(MaintenanceFile.user_id == owner_id)
            .where(MaintenanceFile.maintenance_id == maintenance_id)
            .order_by(cast(ColumnElement[object], col(MaintenanceFile.uploaded_at)).desc())
            .limit(1)
        )
        latest = (await self._session.exec(stmt)).first()
        return _as_utc(latest) if latest is not None else None

    async def add(
        self,
        *,
        maintenance_id: str,
        owner_id: int,
        url: str,
        uploaded_at: datetime | None = None,
    ) -> MaintenanceFile:
        if not await self._owned_record_exists(maintenance_id=maintenance_id, owner_id=owner_id):
            raise NotFoundError("maintenance not found")

        # Registration order must match listing order even within one clock tick.
        stamp = _as_utc(uploaded_at) if uploaded_at is not None else utc_now()
        latest = await self._latest_uploaded_at(maintenance_id=maintenance_id, owner_id=owner_id)
        if uploaded_at is None and latest is not None and stamp <= latest:
            stamp = latest + timedelta(microseconds=1)

        row = MaintenanceFile(
            id=str(uuid.uuid4()),
            maintenance_id=maintenance_id,
            user_id=owner_id,
            file_url=url,
            uploaded_at=stamp,
        )
        self._session.add(row)
        try:
            await commit_or_rollback(self._session)
        except SQLAlchemyError as exc:
            raise LedgerError(f"could not register attachment {url}") from exc
        await self._session.refresh(row)
        logger.info(
            "attachment registered owner_id=%s maintenance_id=%s row_id=%s",
            owner_id,
            maintenance_id,
            row.id,
        )
        return row

    async def list_for_maintenance(
        self, *, maintenance_id: str, owner_id: int
    ) -> list[MaintenanceFile]:
        stmt = (
            select(MaintenanceFile)
            .where(MaintenanceFile.user_id == owner_id)
            .where(MaintenanceFile.maintenance_id == maintenance_id)
            .order_by(
                cast(ColumnElement[object], col(MaintenanceFile.uploaded_at)).asc(),
                cast(ColumnElement[object], col(MaintenanceFile.id)).asc(),
            )
        )
        return list((await self._session.exec(stmt)).all())

    @staticmethod
    def _removed(row: MaintenanceFile) -> RemovedRow:
        path = owned_path_from_url(row.file_url, row.user_id)
        if path is None:
            logger.warning(
                "ledger row has no canonical storage path row_id=%s maintenance_id=%s url=%s",
                row.id,
                row.maintenance_id,
                row.file_url,
            )
        return RemovedRow(row_id=row.id, url=row.file_url, path=path)

    async def remove_by_id(self, *, row_id: str, owner_id: int) -> RemovedRow | None:
        stmt = (
            select(MaintenanceFile)
            .where(MaintenanceFile.user_id == owner_id)
            .where(MaintenanceFile.id == row_id)
        )
        row = (await self._session.exec(stmt)).first()
        if row is None:
            return None

        removed = self._removed(row)
        await self._session.delete(row)
        try:
            await commit_or_rollback(self._session)
        except SQLAlchemyError as exc:
            raise LedgerError(f"could not remove attachment row {row_id}") from exc
        return removed

    async def remove_all_for_maintenance(
        self, *, maintenance_id: str, owner_id: int
    ) -> list[RemovedRow]:
        rows = await self.list_for_maintenance(maintenance_id=maintenance_id, owner_id=owner_id)
        removed = [self._removed(row) for row in rows]
        for row in rows:
            await self._session.delete(row)
        try:
            await commit_or_rollback(self._session)
        except SQLAlchemyError as exc:
            raise LedgerError(
                f"could not remove attachment rows of maintenance {maintenance_id}"
            ) from exc
        return removed
