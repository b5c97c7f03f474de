"""Student sign-in with an access code.

POST /v1/access/authorize   {code, device_fingerprint, confirm_binding}

  200 {"status": "requires_binding_confirmation", ...}
      The code is valid and unbound.  The client must show the "this
      will lock the code to this device" prompt and call again with
      confirm_binding=true.  Nothing has been written.

  200 {"status": "authorized", "expires_at": ..., "session_token": ...}
      Signed in.  session_token is the bearer token for /v1/exam/*.

  401/403 {"detail": {"kind": ...}}  see app/api/errors.py
  503     store unavailable, retry
"""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import get_credential_repo
from app.api.errors import access_denied, store_unavailable
from app.api.ratelimit import AUTHORIZE_LIMIT, require_rate_limit
from app.repos.credential_repo import CredentialRepo, StoreUnavailableError
from app.services import credential_service, token_service
from app.services.credential_service import AccessError, DecisionStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/access", tags=["access"])


class AuthorizeIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    device_fingerprint: str = Field(min_length=1, max_length=512)
    confirm_binding: bool = False


class AuthorizeOut(BaseModel):
    status: Literal["requires_binding_confirmation", "authorized"]
    code: str
    exam_type: str
    newly_bound: bool = False
    expires_at: datetime.datetime | None = None
    session_token: str | None = None
    session_expires_at: datetime.datetime | None = None


@router.post(
    "/authorize",
    response_model=AuthorizeOut,
    dependencies=[Depends(require_rate_limit(AUTHORIZE_LIMIT, scope="authorize"))],
)
async def authorize(
    body: AuthorizeIn,
    repo: Annotated[CredentialRepo, Depends(get_credential_repo)],
) -> AuthorizeOut:
    try:
        decision = await credential_service.authorize(
            repo,
            body.code,
            body.device_fingerprint,
            confirm_binding=body.confirm_binding,
        )
    except AccessError as e:
        raise access_denied(e) from None
    except StoreUnavailableError:
        raise store_unavailable() from None

    credential = decision.credential
    if decision.status is DecisionStatus.REQUIRES_BINDING_CONFIRMATION:
        return AuthorizeOut(
            status="requires_binding_confirmation",
            code=credential.code,
            exam_type=credential.metadata.exam_entitlement,
        )

    session_token, session_exp = token_service.create_exam_session_token(
        credential, body.device_fingerprint
    )
    return AuthorizeOut(
        status="authorized",
        code=credential.code,
        exam_type=credential.metadata.exam_entitlement,
        newly_bound=decision.newly_bound,
        expires_at=credential.expires_at,
        session_token=session_token,
        session_expires_at=session_exp,
    )
