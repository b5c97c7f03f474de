"""Guard for exam operations (start exam, submit result).

A caller presents the exam-session token it got from authorize() plus
its device fingerprint.  The gate:

  1. verifies the token (signature, audience, expiry),
  2. checks the fingerprint against the digest sealed in the token,
  3. re-validates the credential in the store, so an admin deactivation,
     unbind, or deletion takes effect on the very next request.

There is no binding step here.  A session whose credential has moved to
another device, expired, or been reset is refused outright; getting back
in means going through authorize() again (and, for a reset code, an
explicit binding confirmation).
"""

from __future__ import annotations

import datetime
import hmac
import logging
from typing import NoReturn
from uuid import UUID

import jwt

from app.models.principal import ExamSession
from app.repos.credential_repo import CredentialRepo
from app.services import credential_service, token_service
from app.services.credential_service import (
    AccessError,
    DeviceMismatchError,
    ExpiredError,
)

logger = logging.getLogger(__name__)


class InvalidSessionError(AccessError):
    kind = "invalid_session"
    message = "Exam session is missing, invalid, or has ended. Sign in again."


async def check_session(
    repo: CredentialRepo,
    token: str,
    fingerprint: str,
    *,
    now: datetime.datetime | None = None,
) -> ExamSession:
    try:
        claims = token_service.decode_exam_session_token(token)
        credential_id = UUID(claims["sub"])
    except jwt.ExpiredSignatureError:
        await _end_lapsed_session(
            repo, token, fingerprint, now or datetime.datetime.now(datetime.UTC)
        )
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning("Invalid exam session token rejected: %s", e)
        raise InvalidSessionError() from None

    if not hmac.compare_digest(
        claims["fph"], token_service.fingerprint_digest(fingerprint)
    ):
        logger.warning(
            "Exam session presented from a different device",
            extra={"credential_id": str(credential_id), "outcome": "device_mismatch"},
        )
        raise DeviceMismatchError()

    credential = await credential_service.validate_session(
        repo, credential_id, fingerprint, now=now
    )
    return ExamSession(
        credential_id=credential.id,
        code=credential.code,
        exam_entitlement=credential.metadata.exam_entitlement,
        expires_at=credential.expires_at,
    )


async def _end_lapsed_session(
    repo: CredentialRepo, token: str, fingerprint: str, now: datetime.datetime
) -> NoReturn:
    """A lapsed marker always ends the session.

    Markers never outlive their credential, so when the credential itself
    has run out the caller is told "expired" rather than to sign in again.
    """
    try:
        claims = token_service.decode_exam_session_token(token, verify_exp=False)
        credential_id = UUID(claims["sub"])
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning("Invalid exam session token rejected: %s", e)
        raise InvalidSessionError() from None

    same_device = hmac.compare_digest(
        claims["fph"], token_service.fingerprint_digest(fingerprint)
    )
    credential = await repo.get_by_id(credential_id)
    if (
        same_device
        and credential is not None
        and credential.is_active
        and credential.is_expired(now)
    ):
        logger.info(
            "Exam session ended with its credential",
            extra={"credential_id": str(credential.id), "outcome": "expired"},
        )
        raise ExpiredError(credential.expires_at)
    logger.info("Expired exam session token rejected")
    raise InvalidSessionError("Exam session has ended. Sign in again.")
