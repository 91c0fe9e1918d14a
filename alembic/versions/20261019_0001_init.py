"""init schema (users + maintenance + maintenance_files)

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("api_token", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=False)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("maintenance"):
        op.create_table(
            "maintenance",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("vehicle_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "maintenance_type",
                sa.String(length=32),
                nullable=False,
                server_default=sa.text("'general'"),
            ),
            sa.Column("cost", sa.Float(), nullable=True),
            sa.Column("mileage", sa.Integer(), nullable=True),
            sa.Column("date_performed", sa.Date(), nullable=False),
            sa.Column("next_due_date", sa.Date(), nullable=True),
            sa.Column("next_due_mileage", sa.Integer(), nullable=True),
            sa.Column("technician", sa.String(length=200), nullable=True),
            sa.Column("receipt_url", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_maintenance_user_id", "maintenance", ["user_id"], unique=False)
        op.create_index("ix_maintenance_vehicle_id", "maintenance", ["vehicle_id"], unique=False)
        op.create_index(
            "ix_maintenance_maintenance_type", "maintenance", ["maintenance_type"], unique=False
        )
        op.create_index(
            "ix_maintenance_date_performed", "maintenance", ["date_performed"], unique=False
        )
        op.create_index("ix_maintenance_created_at", "maintenance", ["created_at"], unique=False)
        op.create_index("ix_maintenance_updated_at", "maintenance", ["updated_at"], unique=False)

    if not _table_exists("maintenance_files"):
        op.create_table(
            "maintenance_files",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column(
                "maintenance_id",
                sa.String(length=36),
                sa.ForeignKey("maintenance.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("file_url", sa.Text(), nullable=False),
            sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_maintenance_files_maintenance_id",
            "maintenance_files",
            ["maintenance_id"],
            unique=False,
        )
        op.create_index(
            "ix_maintenance_files_user_id", "maintenance_files", ["user_id"], unique=False
        )
        op.create_index(
            "ix_maintenance_files_uploaded_at", "maintenance_files", ["uploaded_at"], unique=False
        )


def downgrade() -> None:
    op.drop_table("maintenance_files")
    op.drop_table("maintenance")
    op.drop_table("users")
