"""create tenants table

Revision ID: 4f2a9c1d7e30
Revises: 
Create Date: 2026-10-17 09:12:44.218305

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_STATUS = sa.Enum(
    "CREATING",
    "PROVISIONING",
    "ACTIVE",
    "SUSPENDED",
    "FAILED",
    "DELETING",
    "DELETED",
    name="tenantstatus",
)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("store_key", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subdomain", sa.String(63), nullable=False),
        sa.Column("schema_name", sa.String(63), nullable=False),
        sa.Column("status", TENANT_STATUS, nullable=False),
        sa.Column("billing_plan", sa.String(50), nullable=False),
        sa.Column("settings", sa.Text(), server_default="{}", nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("schema_name"),
    )
    op.create_index("ix_tenants_store_key", "tenants", ["store_key"], unique=True)
    op.create_index("ix_tenants_subdomain", "tenants", ["subdomain"], unique=True)
    op.create_index("ix_tenants_status", "tenants", ["status"])


def downgrade() -> None:
    op.drop_index("ix_tenants_status", table_name="tenants")
    op.drop_index("ix_tenants_subdomain", table_name="tenants")
    op.drop_index("ix_tenants_store_key", table_name="tenants")
    op.drop_table("tenants")
    TENANT_STATUS.drop(op.get_bind(), checkfirst=True)
