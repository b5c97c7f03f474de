"""Access-code lifecycle: generation, device binding, validation, admin overrides.

State machine, per credential:

    created (unbound) ──authorize(confirm)──▶ bound (device + expiry fixed)
          ▲                                      │
          └──────────── reset_binding ◀──────────┘

    is_active is an orthogonal admin switch; expiry is read-only
    (now > expires_at).  Deletion removes the record.

authorize() decision table:

    not found                    → InvalidCredentialError
    is_active = False            → DeactivatedError
    unbound, confirm=False       → REQUIRES_BINDING_CONFIRMATION (no write)
    unbound, confirm=True        → conditional bind → AUTHORIZED
    bound, same device, expired  → ExpiredError(expires_at)
    bound, same device           → AUTHORIZED
    bound, other device          → DeviceMismatchError

Binding is only ever a single conditional write in the store ("set where
fingerprint IS NULL").  The loser of a first-bind race gets no row back,
re-reads, and is judged against the winner's binding.

Store failures (StoreUnavailableError) pass through untouched: a timeout
is never turned into a verdict on the code.
"""

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import NoReturn
from uuid import UUID

from app.core.config import SETTINGS
from app.core.logging import mask_code
from app.core.metrics import (
    ACCESS_AUTHORIZATIONS,
    ACCESS_CODES_GENERATED,
    BIND_RACES_LOST,
)
from app.models.credential import (
    Credential,
    CredentialMetadata,
    CredentialStatus,
    CredentialSummary,
)
from app.repos.credential_repo import CredentialRepo, DuplicateCodeError
from app.services.code_generator import generate_code, is_well_formed

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AccessError(Exception):
    """Base for authorization denials.  `kind` is the stable machine name."""

    kind = "access_denied"
    message = "Access denied."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidCredentialError(AccessError):
    kind = "invalid_credential"
    message = "Invalid access code."


class DeactivatedError(AccessError):
    kind = "deactivated"
    message = "This access code has been deactivated."


class DeviceMismatchError(AccessError):
    kind = "device_mismatch"
    message = "Access code locked to another device. Contact an administrator."


class ExpiredError(AccessError):
    kind = "expired"

    def __init__(self, expires_at: datetime.datetime) -> None:
        self.expires_at = expires_at
        super().__init__(f"Access code expired on {expires_at.date().isoformat()}.")


class CredentialNotFoundError(LookupError):
    """Admin operation on an id that does not exist."""


class CodeGenerationError(Exception):
    """Every generation attempt collided.  A service fault, not user input."""


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class DecisionStatus(str, enum.Enum):
    REQUIRES_BINDING_CONFIRMATION = "requires_binding_confirmation"
    AUTHORIZED = "authorized"


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    status: DecisionStatus
    credential: Credential
    newly_bound: bool = False

    @property
    def expires_at(self) -> datetime.datetime | None:
        return self.credential.expires_at


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _validity() -> datetime.timedelta:
    return datetime.timedelta(days=SETTINGS.access_code_validity_days)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


async def generate(
    repo: CredentialRepo,
    metadata: CredentialMetadata,
    *,
    prefix: str | None = None,
    attempts: int | None = None,
) -> Credential:
    """Issue a fresh, unbound credential.

    Retries with a new random draw on code collision, up to `attempts`
    times.  DuplicatePaymentReferenceError is not retried: it means the
    payment already has a credential.
    """
    prefix = prefix or SETTINGS.access_code_prefix
    attempts = attempts or SETTINGS.code_generation_attempts

    for attempt in range(1, attempts + 1):
        candidate = Credential.new(code=generate_code(prefix), metadata=metadata)
        try:
            stored = await repo.create(candidate)
        except DuplicateCodeError:
            logger.warning("Access code collision on attempt %d/%d", attempt, attempts)
            continue

        ACCESS_CODES_GENERATED.labels(origin=metadata.origin.value).inc()
        logger.info(
            "Issued access code %s origin=%s",
            mask_code(stored.code),
            metadata.origin.value,
            extra={"credential_id": str(stored.id), "outcome": "issued"},
        )
        return stored

    logger.error("Access code generation exhausted %d attempts", attempts)
    raise CodeGenerationError(f"could not generate a unique code in {attempts} attempts")


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


async def authorize(
    repo: CredentialRepo,
    code: str,
    fingerprint: str,
    *,
    confirm_binding: bool = False,
    now: datetime.datetime | None = None,
) -> AuthorizationDecision:
    """Run the login-time decision for (code, fingerprint).

    Never binds without confirm_binding=True: a bind is irreversible
    without an administrator.
    """
    now = now or _utcnow()

    credential = await repo.get_by_code(code) if is_well_formed(code) else None
    if credential is None:
        _deny(InvalidCredentialError(), code)

    if not credential.is_active:
        _deny(DeactivatedError(), code, credential)

    if credential.is_bound:
        return _check_bound(credential, fingerprint, now)

    if not confirm_binding:
        _record(DecisionStatus.REQUIRES_BINDING_CONFIRMATION.value, credential)
        return AuthorizationDecision(
            DecisionStatus.REQUIRES_BINDING_CONFIRMATION, credential
        )

    bound = await repo.bind(credential.id, fingerprint, now, now + _validity())
    if bound is not None:
        _record("bound", bound)
        return AuthorizationDecision(DecisionStatus.AUTHORIZED, bound, newly_bound=True)

    # Zero rows: someone bound it between our read and our write (or it
    # was deleted).  Judge this request against whatever won.
    BIND_RACES_LOST.inc()
    current = await repo.get_by_id(credential.id)
    if current is None:
        _deny(InvalidCredentialError(), code)
    logger.info(
        "First-bind race lost for %s",
        mask_code(current.code),
        extra={"credential_id": str(current.id)},
    )
    if not current.is_active:
        _deny(DeactivatedError(), code, current)
    if not current.is_bound:
        # Bound and reset again in the window.  Do not retry the bind:
        # the caller can confirm again.
        _deny(DeviceMismatchError(), code, current)
    return _check_bound(current, fingerprint, now)


async def validate_session(
    repo: CredentialRepo,
    credential_id: UUID,
    fingerprint: str,
    *,
    now: datetime.datetime | None = None,
) -> Credential:
    """Re-check an established exam session against the store.

    Same taxonomy as authorize(), but there is no binding step: a
    credential that has been unbound since the session began is rejected
    as a device mismatch.
    """
    now = now or _utcnow()
    credential = await repo.get_by_id(credential_id)
    if credential is None:
        _deny(InvalidCredentialError())
    if not credential.is_active:
        _deny(DeactivatedError(), credential=credential)
    if not credential.is_bound:
        _deny(
            DeviceMismatchError("Access code is no longer bound to this device."),
            credential=credential,
        )
    return _check_bound(credential, fingerprint, now).credential


def _check_bound(
    credential: Credential, fingerprint: str, now: datetime.datetime
) -> AuthorizationDecision:
    if credential.device_fingerprint != fingerprint:
        _deny(DeviceMismatchError(), credential=credential)
    # Legacy rows (bound before expiry tracking) have no expiry to enforce
    if credential.is_expired(now):
        _deny(ExpiredError(credential.expires_at), credential=credential)
    _record(DecisionStatus.AUTHORIZED.value, credential)
    return AuthorizationDecision(DecisionStatus.AUTHORIZED, credential)


def _deny(
    error: AccessError, code: str | None = None, credential: Credential | None = None
) -> NoReturn:
    ACCESS_AUTHORIZATIONS.labels(outcome=error.kind).inc()
    shown = mask_code(credential.code if credential else code or "")
    logger.warning(
        "Access denied for %s: %s",
        shown,
        error.kind,
        extra={
            "credential_id": str(credential.id) if credential else None,
            "outcome": error.kind,
        },
    )
    raise error


def _record(outcome: str, credential: Credential) -> None:
    ACCESS_AUTHORIZATIONS.labels(outcome=outcome).inc()
    logger.info(
        "Access %s for %s",
        outcome,
        mask_code(credential.code),
        extra={"credential_id": str(credential.id), "outcome": outcome},
    )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def reset_binding(repo: CredentialRepo, credential_id: UUID) -> Credential:
    """Clear fingerprint, bound_at and expires_at together.

    Leaves is_active, code and metadata alone.  The next confirmed
    authorize() starts a new binding with a new expiry.
    """
    updated = await repo.clear_binding(credential_id)
    if updated is None:
        raise CredentialNotFoundError(str(credential_id))
    logger.info(
        "Device lock reset for %s",
        mask_code(updated.code),
        extra={"credential_id": str(updated.id), "outcome": "reset"},
    )
    return updated


async def set_active(
    repo: CredentialRepo, credential_id: UUID, is_active: bool
) -> Credential:
    updated = await repo.set_active(credential_id, is_active)
    if updated is None:
        raise CredentialNotFoundError(str(credential_id))
    outcome = "activated" if is_active else "deactivated"
    logger.info(
        "Access code %s %s",
        mask_code(updated.code),
        outcome,
        extra={"credential_id": str(updated.id), "outcome": outcome},
    )
    return updated


async def delete(repo: CredentialRepo, credential_id: UUID) -> None:
    if not await repo.delete(credential_id):
        raise CredentialNotFoundError(str(credential_id))
    logger.info(
        "Access code deleted",
        extra={"credential_id": str(credential_id), "outcome": "deleted"},
    )


async def list_credentials(
    repo: CredentialRepo,
    status: CredentialStatus | None = None,
    *,
    now: datetime.datetime | None = None,
) -> list[CredentialSummary]:
    now = now or _utcnow()
    credentials = await repo.list_all(status, now=now)
    return [CredentialSummary.of(c, now) for c in credentials]
