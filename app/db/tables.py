"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in app/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.
"""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base

# Constraint names are matched by the Pg repositories to tell the two
# uniqueness failures apart.
CODE_UNIQUE = "uq_access_credentials_code"
PAYMENT_REFERENCE_UNIQUE = "uq_access_credentials_payment_reference"


class AccessCredentialRow(Base):
    __tablename__ = "access_credentials"
    __table_args__ = (
        UniqueConstraint("code", name=CODE_UNIQUE),
        UniqueConstraint("payment_reference", name=PAYMENT_REFERENCE_UNIQUE),
        # bound_at and expires_at are written and cleared together, and
        # never without a fingerprint.  Rows bound before expiry tracking
        # existed keep a fingerprint with both timestamps NULL.
        CheckConstraint(
            "(bound_at IS NULL) = (expires_at IS NULL)",
            name="ck_access_credentials_expiry_pair",
        ),
        CheckConstraint(
            "bound_at IS NULL OR device_fingerprint IS NOT NULL",
            name="ck_access_credentials_bound_has_device",
        ),
        CheckConstraint(
            "origin IN ('student-purchase', 'admin-manual')",
            name="ck_access_credentials_origin",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    device_fingerprint: Mapped[str | None] = mapped_column(Text, nullable=True)
    bound_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    origin: Mapped[str] = mapped_column(String(32), nullable=False)
    # Promoted out of metadata so the idempotency key gets a real index
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


ADMIN_EMAIL_UNIQUE = "uq_admin_users_email"


class AdminUserRow(Base):
    __tablename__ = "admin_users"
    __table_args__ = (
        UniqueConstraint("email", name=ADMIN_EMAIL_UNIQUE),
        CheckConstraint(
            "grace_logins_remaining >= 0",
            name="ck_admin_users_grace_logins",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    roles: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # The seeded bootstrap admin starts with a well-known password
    must_rotate_password: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    grace_logins_remaining: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
