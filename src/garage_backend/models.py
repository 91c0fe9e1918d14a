# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MaintenanceCategory(str, Enum):
    OIL = "oil"
    MAINTENANCE = "maintenance"
    WASH = "wash"
    INSPECTION = "inspection"
    BATTERY = "battery"
    FUEL = "fuel"
    GENERAL = "general"


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    # Bearer token issued by the identity provider; resolves the owner id of every request.
    api_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True, index=True))

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class Maintenance(SQLModel, table=True):
    __tablename__ = "maintenance"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    user_id: int = Field(index=True, foreign_key="users.id")
    vehicle_id: str = Field(index=True, min_length=1, max_length=64)

    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    maintenance_type: str = Field(default=MaintenanceCategory.GENERAL.value, max_length=32, index=True)

    cost: Optional[float] = Field(default=None, ge=0)
    mileage: Optional[int] = Field(default=None, ge=0)
    date_performed: date = Field(index=True)
    next_due_date: Optional[date] = Field(default=None)
    next_due_mileage: Optional[int] = Field(default=None, ge=0)
    technician: Optional[str] = Field(default=None, max_length=200)

    # Deprecated single attachment slot. Read through the legacy shim only; never written
    # with a new value.
    receipt_url: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class MaintenanceFile(SQLModel, table=True):
    __tablename__ = "maintenance_files"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    maintenance_id: str = Field(
        index=True, foreign_key="maintenance.id", ondelete="CASCADE", min_length=1, max_length=36
    )
    # Denormalized owner for authorization filters.
    user_id: int = Field(index=True, foreign_key="users.id")

    # Metadata only. Binary content lives in object storage.
    file_url: str = Field(sa_column=Column(Text, nullable=False))
    uploaded_at: datetime = Field(default_factory=utc_now, index=True)
