"""Access credential domain model.

A Credential is the purchased (or admin-issued) access code.  Binding
state is three fields that move together:

    device_fingerprint, bound_at, expires_at

all None (unbound) or all set (bound).  Only the lifecycle engine writes
them, and only through the store's conditional bind / clear operations.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal
from uuid import UUID, uuid4

ExamType = Literal["JAMB", "WAEC", "BOTH"]


class CredentialOrigin(str, Enum):
    STUDENT_PURCHASE = "student-purchase"
    ADMIN_MANUAL = "admin-manual"


class CredentialStatus(str, Enum):
    """Filter values accepted by list_all()."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BOUND = "bound"
    UNBOUND = "unbound"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class CredentialMetadata:
    """Closed attribute record written once at creation.

    payment_reference is required for STUDENT_PURCHASE credentials and is
    the payment idempotency key; admin-issued codes have none.
    """

    origin: CredentialOrigin
    payment_reference: str | None = None
    purchaser_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    exam_entitlement: ExamType = "BOTH"
    amount_paid: int | None = None  # minor units (kobo)
    gateway_transaction_id: str | None = None
    verified_at: datetime.datetime | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        if self.origin is CredentialOrigin.STUDENT_PURCHASE:
            if not self.payment_reference:
                raise ValueError("student-purchase credentials need a payment_reference")
        elif self.payment_reference is not None:
            raise ValueError("admin-manual credentials carry no payment_reference")

    @staticmethod
    def student_purchase(
        *,
        payment_reference: str,
        amount_paid: int,
        purchaser_name: str | None = None,
        email: str | None = None,
        phone_number: str | None = None,
        exam_entitlement: ExamType = "BOTH",
        gateway_transaction_id: str | None = None,
        verified_at: datetime.datetime | None = None,
    ) -> CredentialMetadata:
        return CredentialMetadata(
            origin=CredentialOrigin.STUDENT_PURCHASE,
            payment_reference=payment_reference,
            purchaser_name=purchaser_name,
            email=email,
            phone_number=phone_number,
            exam_entitlement=exam_entitlement,
            amount_paid=amount_paid,
            gateway_transaction_id=gateway_transaction_id,
            verified_at=verified_at,
        )

    @staticmethod
    def admin_manual(
        *,
        exam_entitlement: ExamType = "BOTH",
        note: str | None = None,
        amount_paid: int | None = None,
    ) -> CredentialMetadata:
        return CredentialMetadata(
            origin=CredentialOrigin.ADMIN_MANUAL,
            exam_entitlement=exam_entitlement,
            note=note,
            amount_paid=amount_paid,
        )


@dataclass(frozen=True, slots=True)
class Credential:
    id: UUID
    code: str
    metadata: CredentialMetadata
    created_at: datetime.datetime
    is_active: bool = True
    device_fingerprint: str | None = None
    bound_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None

    @staticmethod
    def new(*, code: str, metadata: CredentialMetadata) -> Credential:
        return Credential(
            id=uuid4(),
            code=normalize_code(code),
            metadata=metadata,
            created_at=datetime.datetime.now(datetime.UTC),
        )

    @property
    def is_bound(self) -> bool:
        return self.device_fingerprint is not None

    def is_expired(self, now: datetime.datetime) -> bool:
        # Strict: the instant of expiry itself is still valid
        return self.expires_at is not None and now > self.expires_at

    def matches(self, status: CredentialStatus, now: datetime.datetime) -> bool:
        if status is CredentialStatus.ACTIVE:
            return self.is_active
        if status is CredentialStatus.INACTIVE:
            return not self.is_active
        if status is CredentialStatus.BOUND:
            return self.is_bound
        if status is CredentialStatus.UNBOUND:
            return not self.is_bound
        return self.is_expired(now)


@dataclass(frozen=True, slots=True)
class CredentialSummary:
    """Admin status-table row."""

    id: UUID
    code: str
    is_active: bool
    is_bound: bool
    # valid|expired|not_yet_bound|no_expiry_recorded
    expiry_state: str
    expires_at: datetime.datetime | None
    bound_at: datetime.datetime | None
    created_at: datetime.datetime
    origin: CredentialOrigin
    payment_reference: str | None = None
    purchaser_name: str | None = None
    exam_entitlement: ExamType = "BOTH"
    amount_paid: int | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def of(credential: Credential, now: datetime.datetime) -> CredentialSummary:
        if not credential.is_bound:
            expiry_state = "not_yet_bound"
        elif credential.expires_at is None:
            expiry_state = "no_expiry_recorded"
        elif credential.is_expired(now):
            expiry_state = "expired"
        else:
            expiry_state = "valid"

        meta = credential.metadata
        extra: dict[str, str] = {}
        if meta.note:
            extra["note"] = meta.note
        if meta.email:
            extra["email"] = meta.email

        return CredentialSummary(
            id=credential.id,
            code=credential.code,
            is_active=credential.is_active,
            is_bound=credential.is_bound,
            expiry_state=expiry_state,
            expires_at=credential.expires_at,
            bound_at=credential.bound_at,
            created_at=credential.created_at,
            origin=meta.origin,
            payment_reference=meta.payment_reference,
            purchaser_name=meta.purchaser_name,
            exam_entitlement=meta.exam_entitlement,
            amount_paid=meta.amount_paid,
            extra=extra,
        )


def normalize_code(code: str) -> str:
    """Codes compare case-insensitively; store and look up uppercase."""
    return code.strip().upper()
