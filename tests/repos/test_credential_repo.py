from __future__ import annotations

import asyncio
import datetime

import pytest

from app.models.credential import Credential, CredentialMetadata
from app.repos.credential_repo import (
    DuplicateCodeError,
    DuplicatePaymentReferenceError,
    InMemoryCredentialRepo,
)

NOW = datetime.datetime(2025, 1, 1, tzinfo=datetime.UTC)
LATER = NOW + datetime.timedelta(days=365)


def _purchase(code: str, reference: str) -> Credential:
    return Credential.new(
        code=code,
        metadata=CredentialMetadata.student_purchase(
            payment_reference=reference, amount_paid=150_000
        ),
    )


def test_create_rejects_duplicate_code_case_insensitively() -> None:
    repo = InMemoryCredentialRepo()
    asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))
    with pytest.raises(DuplicateCodeError):
        asyncio.run(repo.create(_purchase("ace-aaaa-bbbb-cccc", "ref-2")))


def test_create_rejects_duplicate_payment_reference() -> None:
    repo = InMemoryCredentialRepo()
    asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))
    with pytest.raises(DuplicatePaymentReferenceError):
        asyncio.run(repo.create(_purchase("ACE-DDDD-EEEE-FFFF", "ref-1")))
    assert len(repo._by_id) == 1


def test_bind_is_conditional_on_unbound() -> None:
    repo = InMemoryCredentialRepo()
    cred = asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))

    first = asyncio.run(repo.bind(cred.id, "fp-a", NOW, LATER))
    second = asyncio.run(repo.bind(cred.id, "fp-b", NOW, LATER))

    assert first is not None
    assert first.device_fingerprint == "fp-a"
    assert second is None
    stored = asyncio.run(repo.get_by_id(cred.id))
    assert stored is not None
    assert stored.device_fingerprint == "fp-a"


def test_clear_binding_resets_all_three_fields_together() -> None:
    repo = InMemoryCredentialRepo()
    cred = asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))
    asyncio.run(repo.bind(cred.id, "fp-a", NOW, LATER))

    cleared = asyncio.run(repo.clear_binding(cred.id))

    assert cleared is not None
    assert (cleared.device_fingerprint, cleared.bound_at, cleared.expires_at) == (
        None,
        None,
        None,
    )


def test_lookup_by_payment_reference() -> None:
    repo = InMemoryCredentialRepo()
    cred = asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))
    found = asyncio.run(repo.get_by_payment_reference("ref-1"))
    assert found is not None
    assert found.id == cred.id
    assert asyncio.run(repo.get_by_payment_reference("ref-2")) is None


def test_delete_frees_code_and_reference() -> None:
    repo = InMemoryCredentialRepo()
    cred = asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))

    assert asyncio.run(repo.delete(cred.id)) is True
    assert asyncio.run(repo.delete(cred.id)) is False
    asyncio.run(repo.create(_purchase("ACE-AAAA-BBBB-CCCC", "ref-1")))


def test_metadata_requires_reference_for_purchases() -> None:
    with pytest.raises(ValueError):
        CredentialMetadata.student_purchase(payment_reference="", amount_paid=1)
