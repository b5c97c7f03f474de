"""JWT creation and validation (ES256).

Two token kinds share one signing key and are kept apart by audience:

  access token  (aud=access-code-service)  administrator bearer token,
                 carries roles.
  exam session  (aud=exam-session)          the marker handed to a
                 student after a successful authorize().  Subject is the
                 credential id; `fph` is a SHA-256 digest of the bound
                 device fingerprint, so the raw fingerprint never rides
                 in the token.
"""

from __future__ import annotations

import datetime
import hashlib
import uuid
from pathlib import Path

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from app.core.config import SETTINGS
from app.models.credential import Credential

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------
# JWT_PRIVATE_KEY_PATH points at a PEM EC P-256 key shared by every replica.
# Without it an ephemeral key is generated on import (dev/test only: tokens
# do not survive a restart or cross replicas).


def _load_private_key() -> ec.EllipticCurvePrivateKey:
    if SETTINGS.jwt_private_key_path:
        key = load_pem_private_key(
            Path(SETTINGS.jwt_private_key_path).read_bytes(), password=None
        )
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError("JWT_PRIVATE_KEY_PATH must hold an EC private key")
        return key
    return ec.generate_private_key(ec.SECP256R1())


_private_key = _load_private_key()
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "access-code-service"
AUDIENCE = "access-code-service"
ACCESS_TOKEN_TTL_MIN = 15

EXAM_SESSION_AUDIENCE = "exam-session"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def fingerprint_digest(fingerprint: str) -> str:
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    now = _utcnow()
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + datetime.timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or [],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins algorithm to ES256 to prevent alg:none and alg-switching attacks.
    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )


# ---------------------------------------------------------------------------
# Exam session markers
# ---------------------------------------------------------------------------


def create_exam_session_token(
    credential: Credential,
    fingerprint: str,
    *,
    ttl_minutes: int | None = None,
) -> tuple[str, datetime.datetime]:
    """Sign a session marker.  Never outlives the credential's own expiry."""
    now = _utcnow()
    ttl = datetime.timedelta(
        minutes=ttl_minutes or SETTINGS.exam_session_ttl_minutes
    )
    exp = now + ttl
    # Capped at the credential expiry.  A marker minted in the credential's
    # last second is already lapsed; the gate then reports "expired".
    if credential.expires_at is not None:
        exp = min(exp, credential.expires_at)
    payload = {
        "sub": str(credential.id),
        "iss": ISSUER,
        "aud": EXAM_SESSION_AUDIENCE,
        "exp": exp,
        "iat": now,
        "jti": str(uuid.uuid4()),
        "code": credential.code,
        "fph": fingerprint_digest(fingerprint),
        "exam_type": credential.metadata.exam_entitlement,
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM), exp


def decode_exam_session_token(token: str, *, verify_exp: bool = True) -> dict:
    """Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.

    verify_exp=False still checks signature, issuer and audience; the gate
    uses it to find out why a lapsed marker lapsed.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=EXAM_SESSION_AUDIENCE,
        options={
            "require": ["sub", "exp", "iat", "jti", "fph"],
            "verify_exp": verify_exp,
        },
    )
