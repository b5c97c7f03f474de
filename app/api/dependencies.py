from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordBearer

from app.api.errors import access_denied, store_unavailable
from app.db.engine import async_session_factory
from app.models.principal import ExamSession, Principal
from app.repos.credential_repo import (
    CredentialRepo,
    InMemoryCredentialRepo,
    StoreUnavailableError,
)
from app.repos.pg_credential_repo import PgCredentialRepo
from app.repos.pg_user_repo import PgUserRepo
from app.repos.user_repo import InMemoryUserRepo, UserRepo
from app.services import session_gate, token_service
from app.services.credential_service import AccessError
from app.services.session_gate import InvalidSessionError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
_session_bearer = HTTPBearer(auto_error=False)

# Used when DATABASE_URL is not configured
memory_credential_repo = InMemoryCredentialRepo()
memory_user_repo = InMemoryUserRepo()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


async def get_credential_repo() -> AsyncGenerator[CredentialRepo, None]:
    """Request-scoped credential store.

    Postgres: one session per request, committed after the handler
    returns, rolled back on error.  Otherwise the in-memory singleton.
    """
    if async_session_factory is None:
        yield memory_credential_repo
        return

    async with async_session_factory() as session:
        try:
            yield PgCredentialRepo(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Administrators
# ---------------------------------------------------------------------------


async def get_user_repo() -> AsyncGenerator[UserRepo, None]:
    """Request-scoped admin account store, same lifecycle as credentials."""
    if async_session_factory is None:
        yield memory_user_repo
        return

    async with async_session_factory() as session:
        try:
            yield PgUserRepo(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise



def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the admin bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Exam sessions
# ---------------------------------------------------------------------------


async def require_exam_session(
    repo: Annotated[CredentialRepo, Depends(get_credential_repo)],
    bearer: Annotated[
        HTTPAuthorizationCredentials | None, Depends(_session_bearer)
    ],
    device_fingerprint: Annotated[
        str | None, Header(alias="X-Device-Fingerprint")
    ] = None,
) -> ExamSession:
    """Session gate for exam routes.  Same error kinds as /v1/access/authorize."""
    try:
        if bearer is None or not device_fingerprint:
            raise InvalidSessionError()
        return await session_gate.check_session(
            repo, bearer.credentials, device_fingerprint
        )
    except AccessError as e:
        raise access_denied(e) from None
    except StoreUnavailableError:
        raise store_unavailable() from None
