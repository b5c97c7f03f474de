"""PostgreSQL implementation of CredentialRepo."""

from __future__ import annotations

import datetime
import functools
import logging
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CODE_UNIQUE, PAYMENT_REFERENCE_UNIQUE, AccessCredentialRow
from app.models.credential import (
    Credential,
    CredentialMetadata,
    CredentialOrigin,
    CredentialStatus,
    normalize_code,
)
from app.repos.credential_repo import (
    DuplicateCodeError,
    DuplicatePaymentReferenceError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

# Pool checkout timeouts raise SQLAlchemy's own TimeoutError, not the builtin
_TRANSIENT = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    TimeoutError,
    ConnectionError,
)


def transient_as_unavailable(fn):
    """Re-raise connection-level failures as StoreUnavailableError.

    A dropped connection, an exhausted pool or a timeout says nothing about
    the record, so it must never surface as "not found" or as a 500.
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except _TRANSIENT as e:
            logger.warning("Store unavailable in %s: %s", fn.__name__, e)
            raise StoreUnavailableError(str(e)) from e

    return wrapper


class PgCredentialRepo:
    """Satisfies the CredentialRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @transient_as_unavailable
    async def create(self, credential: Credential) -> Credential:
        meta = credential.metadata
        row = AccessCredentialRow(
            id=credential.id,
            code=normalize_code(credential.code),
            is_active=credential.is_active,
            device_fingerprint=credential.device_fingerprint,
            bound_at=credential.bound_at,
            expires_at=credential.expires_at,
            origin=meta.origin.value,
            payment_reference=meta.payment_reference,
            metadata_json=_metadata_to_json(meta),
            created_at=credential.created_at,
        )
        # SAVEPOINT so a unique violation leaves the request transaction
        # usable for the caller's follow-up read.
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as e:
            message = str(e.orig)
            if PAYMENT_REFERENCE_UNIQUE in message:
                raise DuplicatePaymentReferenceError(meta.payment_reference) from None
            if CODE_UNIQUE in message:
                raise DuplicateCodeError(row.code) from None
            raise
        return _row_to_credential(row)

    @transient_as_unavailable
    async def get_by_id(self, credential_id: UUID) -> Credential | None:
        stmt = select(AccessCredentialRow).where(AccessCredentialRow.id == credential_id)
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def get_by_code(self, code: str) -> Credential | None:
        stmt = select(AccessCredentialRow).where(
            AccessCredentialRow.code == normalize_code(code)
        )
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def get_by_payment_reference(self, reference: str) -> Credential | None:
        stmt = select(AccessCredentialRow).where(
            AccessCredentialRow.payment_reference == reference
        )
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def bind(
        self,
        credential_id: UUID,
        fingerprint: str,
        bound_at: datetime.datetime,
        expires_at: datetime.datetime,
    ) -> Credential | None:
        """One conditional UPDATE: only rows whose fingerprint is still NULL.

        A concurrent binder blocks on the row lock, re-evaluates the WHERE
        after the winner commits, and matches zero rows.
        """
        stmt = (
            update(AccessCredentialRow)
            .where(AccessCredentialRow.id == credential_id)
            .where(AccessCredentialRow.device_fingerprint.is_(None))
            .values(
                device_fingerprint=fingerprint,
                bound_at=bound_at,
                expires_at=expires_at,
            )
            .returning(AccessCredentialRow)
            .execution_options(populate_existing=True)
        )
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def set_active(self, credential_id: UUID, is_active: bool) -> Credential | None:
        stmt = (
            update(AccessCredentialRow)
            .where(AccessCredentialRow.id == credential_id)
            .values(is_active=is_active)
            .returning(AccessCredentialRow)
            .execution_options(populate_existing=True)
        )
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def clear_binding(self, credential_id: UUID) -> Credential | None:
        stmt = (
            update(AccessCredentialRow)
            .where(AccessCredentialRow.id == credential_id)
            .values(device_fingerprint=None, bound_at=None, expires_at=None)
            .returning(AccessCredentialRow)
            .execution_options(populate_existing=True)
        )
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def delete(self, credential_id: UUID) -> bool:
        stmt = delete(AccessCredentialRow).where(AccessCredentialRow.id == credential_id)
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    @transient_as_unavailable
    async def list_all(
        self,
        status: CredentialStatus | None = None,
        *,
        now: datetime.datetime | None = None,
    ) -> list[Credential]:
        now = now or datetime.datetime.now(datetime.UTC)
        stmt = select(AccessCredentialRow).order_by(
            AccessCredentialRow.created_at.desc()
        )
        if status is CredentialStatus.ACTIVE:
            stmt = stmt.where(AccessCredentialRow.is_active.is_(True))
        elif status is CredentialStatus.INACTIVE:
            stmt = stmt.where(AccessCredentialRow.is_active.is_(False))
        elif status is CredentialStatus.BOUND:
            stmt = stmt.where(AccessCredentialRow.device_fingerprint.is_not(None))
        elif status is CredentialStatus.UNBOUND:
            stmt = stmt.where(AccessCredentialRow.device_fingerprint.is_(None))
        elif status is CredentialStatus.EXPIRED:
            stmt = stmt.where(AccessCredentialRow.expires_at < now)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_credential(r) for r in rows]

    async def _one_or_none(self, stmt) -> Credential | None:
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_credential(row)


def _metadata_to_json(meta: CredentialMetadata) -> dict:
    return {
        "purchaser_name": meta.purchaser_name,
        "email": meta.email,
        "phone_number": meta.phone_number,
        "exam_type": meta.exam_entitlement,
        "amount_paid": meta.amount_paid,
        "gateway_transaction_id": meta.gateway_transaction_id,
        "verified_at": meta.verified_at.isoformat() if meta.verified_at else None,
        "note": meta.note,
    }


def _row_to_credential(row: AccessCredentialRow) -> Credential:
    data = row.metadata_json or {}
    verified_at = data.get("verified_at")
    metadata = CredentialMetadata(
        origin=CredentialOrigin(row.origin),
        payment_reference=row.payment_reference,
        purchaser_name=data.get("purchaser_name"),
        email=data.get("email"),
        phone_number=data.get("phone_number"),
        exam_entitlement=data.get("exam_type") or "BOTH",
        amount_paid=data.get("amount_paid"),
        gateway_transaction_id=data.get("gateway_transaction_id"),
        verified_at=datetime.datetime.fromisoformat(verified_at) if verified_at else None,
        note=data.get("note"),
    )
    return Credential(
        id=row.id,
        code=row.code,
        metadata=metadata,
        created_at=row.created_at,
        is_active=row.is_active,
        device_fingerprint=row.device_fingerprint,
        bound_at=row.bound_at,
        expires_at=row.expires_at,
    )
