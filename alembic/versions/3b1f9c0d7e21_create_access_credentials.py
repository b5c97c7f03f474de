"""create access_credentials

Revision ID: 3b1f9c0d7e21
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f9c0d7e21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "access_credentials",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("device_fingerprint", sa.Text(), nullable=True),
        sa.Column("bound_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("origin", sa.String(length=32), nullable=False),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("code", name="uq_access_credentials_code"),
        sa.UniqueConstraint(
            "payment_reference", name="uq_access_credentials_payment_reference"
        ),
        sa.CheckConstraint(
            "(bound_at IS NULL) = (expires_at IS NULL)",
            name="ck_access_credentials_expiry_pair",
        ),
        sa.CheckConstraint(
            "bound_at IS NULL OR device_fingerprint IS NOT NULL",
            name="ck_access_credentials_bound_has_device",
        ),
        sa.CheckConstraint(
            "origin IN ('student-purchase', 'admin-manual')",
            name="ck_access_credentials_origin",
        ),
    )
    # Admin list filters
    op.create_index(
        "ix_access_credentials_expires_at", "access_credentials", ["expires_at"]
    )
    op.create_index(
        "ix_access_credentials_created_at", "access_credentials", ["created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_access_credentials_created_at", table_name="access_credentials")
    op.drop_index("ix_access_credentials_expires_at", table_name="access_credentials")
    op.drop_table("access_credentials")
