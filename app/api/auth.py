"""Administrator sign-in (/auth/login, /auth/change-password).

Login returns { accessToken, user } with an ES256 bearer token carrying
the user's roles.  The seeded bootstrap admin must rotate its password;
after its grace logins are spent, /auth/login answers 403
password_rotation_required and only /auth/change-password works.

With DATABASE_URL set, accounts live in PostgreSQL, so the rotation
requirement and the grace allowance carry across restarts and replicas.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import get_user_repo, memory_user_repo
from app.api.errors import store_unavailable
from app.api.ratelimit import LOGIN_LIMIT, require_rate_limit
from app.core.config import SETTINGS
from app.db.engine import async_session_factory
from app.repos.credential_repo import StoreUnavailableError
from app.repos.pg_user_repo import PgUserRepo
from app.repos.user_repo import UserRepo
from app.services import auth_service, token_service
from app.services.auth_service import (
    InvalidLoginError,
    PasswordPolicyError,
    PasswordRotationRequiredError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

Users = Annotated[UserRepo, Depends(get_user_repo)]

_login_limit = require_rate_limit(LOGIN_LIMIT, scope="login")


async def seed_admin_store() -> None:
    """Startup hook: make sure the bootstrap admin exists.

    Existing accounts are left alone.  An unreachable database is logged
    and startup continues; /ready reports the outage.
    """
    if async_session_factory is None:
        logger.warning(
            "Admin accounts are in memory; a rotated bootstrap password "
            "does not survive a restart"
        )
        await auth_service.seed_bootstrap_admin(memory_user_repo, SETTINGS)
        return

    try:
        async with async_session_factory() as session:
            await auth_service.seed_bootstrap_admin(PgUserRepo(session), SETTINGS)
            await session.commit()
    except (StoreUnavailableError, SQLAlchemyError, OSError):
        logger.exception("Could not seed the bootstrap admin")


# --- Request / Response schemas -------------------------------------------


class LoginIn(BaseModel):
    email: str
    password: str


class ChangePasswordIn(BaseModel):
    email: str
    old_password: str
    new_password: str


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    must_rotate_password: bool
    grace_logins_remaining: int


class AuthResponse(BaseModel):
    accessToken: str
    user: UserOut


# --- POST /auth/login -----------------------------------------------------


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(_login_limit)])
async def login(payload: LoginIn, users: Users) -> AuthResponse:
    email = payload.email.lower().strip()

    try:
        user = await auth_service.authenticate_user(users, email, payload.password)
    except StoreUnavailableError:
        raise store_unavailable() from None
    except PasswordRotationRequiredError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "kind": e.kind,
                "message": "Change the default password before signing in.",
            },
        ) from None

    if user is None:
        logger.warning("Login failed  email=%s", email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": "invalid_login", "message": "Invalid email or password"},
        )

    logger.info("Login succeeded  user_id=%s email=%s", user.id, email)
    access_token = token_service.create_access_token(
        sub=str(user.id), roles=list(user.roles)
    )
    return AuthResponse(accessToken=access_token, user=_user_out(user))


# --- POST /auth/change-password -------------------------------------------


@router.post(
    "/change-password", response_model=UserOut, dependencies=[Depends(_login_limit)]
)
async def change_password(payload: ChangePasswordIn, users: Users) -> UserOut:
    try:
        user = await auth_service.change_password(
            users,
            payload.email.lower().strip(),
            payload.old_password,
            payload.new_password,
        )
    except InvalidLoginError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": e.kind, "message": "Invalid email or password"},
        ) from None
    except PasswordPolicyError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": e.kind, "message": str(e)},
        ) from None
    except StoreUnavailableError:
        raise store_unavailable() from None
    return _user_out(user)


def _user_out(user) -> UserOut:
    return UserOut(
        id=str(user.id),
        email=user.email,
        name=user.name,
        must_rotate_password=user.must_rotate_password,
        grace_logins_remaining=user.grace_logins_remaining,
    )
