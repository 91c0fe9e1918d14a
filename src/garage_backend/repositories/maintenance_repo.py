from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from garage_backend.models import Maintenance, utc_now

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "maintenance_type",
        "cost",
        "mileage",
        "date_performed",
        "next_due_date",
        "next_due_mileage",
        "technician",
        "receipt_url",
    }
)


async def commit_or_rollback(session: AsyncSession) -> None:
    try:
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except SQLAlchemyError:
            logger.warning("rollback after failed commit also failed", exc_info=True)
        raise


class MaintenanceRepository:
    """Maintenance rows, always filtered by owner.

    A row owned by someone else is reported exactly like a missing row (``None``).
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, owner_id: int, vehicle_id: str, fields: Mapping[str, object]
    ) -> Maintenance:
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown maintenance fields: {sorted(unknown)}")

        now = utc_now()
        record = Maintenance(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            vehicle_id=vehicle_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._session.add(record)
        await commit_or_rollback(self._session)
        await self._session.refresh(record)
        logger.info(
            "maintenance created owner_id=%s vehicle_id=%s maintenance_id=%s",
            owner_id,
            vehicle_id,
            record.id,
        )
        return record

    async def get(self, *, owner_id: int, maintenance_id: str) -> Maintenance | None:
        stmt = (
            select(Maintenance)
            .where(Maintenance.user_id == owner_id)
            .where(Maintenance.id == maintenance_id)
        )
        return (await self._session.exec(stmt)).first()

    async def list_for_vehicle(self, *, owner_id: int, vehicle_id: str) -> list[Maintenance]:
        stmt = (
            select(Maintenance)
            .where(Maintenance.user_id == owner_id)
            .where(Maintenance.vehicle_id == vehicle_id)
            .order_by(
                cast(ColumnElement[object], col(Maintenance.date_performed)).desc(),
                cast(ColumnElement[object], col(Maintenance.created_at)).desc(),
            )
        )
        return list((await self._session.exec(stmt)).all())

    async def update(
        self, *, owner_id: int, maintenance_id: str, changes: Mapping[str, object]
    ) -> Maintenance | None:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown maintenance fields: {sorted(unknown)}")

        record = await self.get(owner_id=owner_id, maintenance_id=maintenance_id)
        if record is None:
            return None

        for name, value in changes.items():
            setattr(record, name, value)
        record.updated_at = utc_now()
        self._session.add(record)
        await commit_or_rollback(self._session)
        await self._session.refresh(record)
        return record

    async def delete(self, *, owner_id: int, maintenance_id: str) -> bool:
        record = await self.get(owner_id=owner_id, maintenance_id=maintenance_id)
        if record is None:
            return False
        await self._session.delete(record)
        await commit_or_rollback(self._session)
        logger.info("maintenance deleted owner_id=%s maintenance_id=%s", owner_id, maintenance_id)
        return True
