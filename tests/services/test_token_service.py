from __future__ import annotations

import dataclasses
import datetime

import jwt
import pytest

from app.models.credential import Credential, CredentialMetadata
from app.services import token_service


def _credential(expires_in: datetime.timedelta | None) -> Credential:
    cred = Credential.new(
        code="ACE-WXYZ-23AB-CD45", metadata=CredentialMetadata.admin_manual()
    )
    if expires_in is None:
        return cred
    now = datetime.datetime.now(datetime.UTC)
    return dataclasses.replace(
        cred, device_fingerprint="fp", bound_at=now, expires_at=now + expires_in
    )


def test_access_token_round_trip_carries_roles() -> None:
    token = token_service.create_access_token(sub="u1", roles=["admin"])
    claims = token_service.decode_access_token(token)
    assert claims["sub"] == "u1"
    assert claims["roles"] == ["admin"]


def test_session_token_hides_raw_fingerprint() -> None:
    cred = _credential(datetime.timedelta(days=365))
    token, _ = token_service.create_exam_session_token(cred, "fp-secret-device")
    claims = token_service.decode_exam_session_token(token)

    assert claims["sub"] == str(cred.id)
    assert claims["code"] == cred.code
    assert claims["fph"] == token_service.fingerprint_digest("fp-secret-device")
    assert "fp-secret-device" not in token


def test_session_token_never_outlives_credential() -> None:
    cred = _credential(datetime.timedelta(minutes=5))
    _, exp = token_service.create_exam_session_token(cred, "fp", ttl_minutes=180)
    assert exp == cred.expires_at


def test_session_token_uses_ttl_when_credential_has_longer() -> None:
    cred = _credential(datetime.timedelta(days=365))
    before = datetime.datetime.now(datetime.UTC)
    _, exp = token_service.create_exam_session_token(cred, "fp", ttl_minutes=30)
    assert exp - before <= datetime.timedelta(minutes=30, seconds=5)


def test_audiences_do_not_cross() -> None:
    session, _ = token_service.create_exam_session_token(
        _credential(datetime.timedelta(days=1)), "fp"
    )
    admin = token_service.create_access_token(sub="u1")

    with pytest.raises(jwt.InvalidAudienceError):
        token_service.decode_access_token(session)
    with pytest.raises(jwt.InvalidTokenError):
        token_service.decode_exam_session_token(admin)
