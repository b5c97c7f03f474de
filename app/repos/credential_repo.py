from __future__ import annotations

import dataclasses
import datetime
import threading
from typing import Protocol
from uuid import UUID

from app.models.credential import Credential, CredentialStatus, normalize_code


class DuplicateCodeError(ValueError):
    """Another credential already holds this code."""


class DuplicatePaymentReferenceError(ValueError):
    """A credential was already issued for this payment reference."""


class StoreUnavailableError(Exception):
    """Transient storage failure (timeout, dropped connection).

    Retryable by the caller.  Never a statement about the credential.
    """


class CredentialRepo(Protocol):
    async def create(self, credential: Credential) -> Credential: ...
    async def get_by_id(self, credential_id: UUID) -> Credential | None: ...
    async def get_by_code(self, code: str) -> Credential | None: ...
    async def get_by_payment_reference(self, reference: str) -> Credential | None: ...
    async def bind(
        self,
        credential_id: UUID,
        fingerprint: str,
        bound_at: datetime.datetime,
        expires_at: datetime.datetime,
    ) -> Credential | None: ...
    async def set_active(
        self, credential_id: UUID, is_active: bool
    ) -> Credential | None: ...
    async def clear_binding(self, credential_id: UUID) -> Credential | None: ...
    async def delete(self, credential_id: UUID) -> bool: ...
    async def list_all(
        self,
        status: CredentialStatus | None = None,
        *,
        now: datetime.datetime | None = None,
    ) -> list[Credential]: ...


class InMemoryCredentialRepo:
    """Dict-backed store for dev and tests.

    Each mutation runs its check and write under one lock with no await in
    between, which gives the same single-record atomicity the Postgres
    conditional UPDATE gives.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[UUID, Credential] = {}
        self._id_by_code: dict[str, UUID] = {}
        self._id_by_payment_ref: dict[str, UUID] = {}

    async def create(self, credential: Credential) -> Credential:
        credential = dataclasses.replace(
            credential, code=normalize_code(credential.code)
        )
        ref = credential.metadata.payment_reference
        with self._lock:
            if credential.code in self._id_by_code:
                raise DuplicateCodeError(credential.code)
            if ref is not None and ref in self._id_by_payment_ref:
                raise DuplicatePaymentReferenceError(ref)
            self._by_id[credential.id] = credential
            self._id_by_code[credential.code] = credential.id
            if ref is not None:
                self._id_by_payment_ref[ref] = credential.id
        return credential

    async def get_by_id(self, credential_id: UUID) -> Credential | None:
        return self._by_id.get(credential_id)

    async def get_by_code(self, code: str) -> Credential | None:
        credential_id = self._id_by_code.get(normalize_code(code))
        if credential_id is None:
            return None
        return self._by_id.get(credential_id)

    async def get_by_payment_reference(self, reference: str) -> Credential | None:
        credential_id = self._id_by_payment_ref.get(reference)
        if credential_id is None:
            return None
        return self._by_id.get(credential_id)

    async def bind(
        self,
        credential_id: UUID,
        fingerprint: str,
        bound_at: datetime.datetime,
        expires_at: datetime.datetime,
    ) -> Credential | None:
        """Set the binding only if the credential is still unbound.

        Returns the updated record, or None if it doesn't exist or another
        device got there first.
        """
        with self._lock:
            current = self._by_id.get(credential_id)
            if current is None or current.device_fingerprint is not None:
                return None
            updated = dataclasses.replace(
                current,
                device_fingerprint=fingerprint,
                bound_at=bound_at,
                expires_at=expires_at,
            )
            self._by_id[credential_id] = updated
        return updated

    async def set_active(self, credential_id: UUID, is_active: bool) -> Credential | None:
        with self._lock:
            current = self._by_id.get(credential_id)
            if current is None:
                return None
            updated = dataclasses.replace(current, is_active=is_active)
            self._by_id[credential_id] = updated
        return updated

    async def clear_binding(self, credential_id: UUID) -> Credential | None:
        with self._lock:
            current = self._by_id.get(credential_id)
            if current is None:
                return None
            updated = dataclasses.replace(
                current, device_fingerprint=None, bound_at=None, expires_at=None
            )
            self._by_id[credential_id] = updated
        return updated

    async def delete(self, credential_id: UUID) -> bool:
        with self._lock:
            current = self._by_id.pop(credential_id, None)
            if current is None:
                return False
            self._id_by_code.pop(current.code, None)
            ref = current.metadata.payment_reference
            if ref is not None:
                self._id_by_payment_ref.pop(ref, None)
        return True

    async def list_all(
        self,
        status: CredentialStatus | None = None,
        *,
        now: datetime.datetime | None = None,
    ) -> list[Credential]:
        now = now or datetime.datetime.now(datetime.UTC)
        items = sorted(self._by_id.values(), key=lambda c: c.created_at, reverse=True)
        if status is None:
            return items
        return [c for c in items if c.matches(status, now)]
