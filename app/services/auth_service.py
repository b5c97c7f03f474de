"""Administrator authentication.

Argon2 password hashes, plus the bootstrap-account rule: the seeded
admin ships with a well-known password, so it is flagged must-rotate
and gets a small allowance of grace logins.  Once that allowance is
spent, login is refused until change_password() is called.
"""

from __future__ import annotations

import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from app.core.config import Settings
from app.models.user import User
from app.repos.user_repo import DuplicateEmailError, UserRepo

logger = logging.getLogger(__name__)

_ph = PasswordHasher()

MIN_PASSWORD_LENGTH = 8


class PasswordRotationRequiredError(Exception):
    """Correct password, but the account must rotate it before logging in."""

    kind = "password_rotation_required"


class InvalidLoginError(Exception):
    kind = "invalid_login"


class PasswordPolicyError(ValueError):
    kind = "password_policy"


def hash_password(plain_password: str) -> str:
    if not plain_password:
        raise ValueError("password must be non-empty")
    # Argon2 includes salt+params in the returned encoded string.
    return _ph.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return _ph.verify(password_hash, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


async def authenticate_user(
    repo: UserRepo, email: str, password: str
) -> User | None:
    """Return the user on a good password, None otherwise.

    Raises PasswordRotationRequiredError for a must-rotate account whose
    grace logins are used up.
    """
    user = await repo.get_by_email(email)
    if user is None:
        return None
    if not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    if user.must_rotate_password:
        updated = await repo.consume_grace_login(user.id)
        if updated is None:
            logger.warning("Login refused, password rotation required user=%s", user.id)
            raise PasswordRotationRequiredError(user.email)
        logger.warning(
            "Bootstrap password in use user=%s grace_logins_left=%d",
            user.id,
            updated.grace_logins_remaining,
        )
        user = updated

    try:
        if _ph.check_needs_rehash(user.password_hash):
            await repo.update_password_hash(user.id, _ph.hash(password))
            logger.info("Rehashed password for user=%s", user.id)
    except InvalidHash:
        return None

    return user


async def change_password(
    repo: UserRepo, email: str, old_password: str, new_password: str
) -> User:
    """Rotate a password.  Allowed even after the grace logins run out."""
    user = await repo.get_by_email(email)
    if user is None or not user.is_active:
        raise InvalidLoginError(email)
    if not verify_password(old_password, user.password_hash):
        logger.warning("Password change refused, bad old password user=%s", user.id)
        raise InvalidLoginError(email)

    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise PasswordPolicyError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if new_password == old_password:
        raise PasswordPolicyError("new password must differ from the old one")

    await repo.update_password_hash(
        user.id, hash_password(new_password), rotated=True
    )
    logger.info("Password rotated user=%s", user.id)
    updated = await repo.get_by_id(user.id)
    if updated is None:
        raise InvalidLoginError(email)
    return updated


async def seed_bootstrap_admin(repo: UserRepo, settings: Settings) -> User:
    """Create the configured admin if absent.  Idempotent.

    An existing account is returned untouched: a rotated password or a
    spent grace allowance must survive every restart.
    """
    existing = await repo.get_by_email(settings.bootstrap_admin_email)
    if existing is not None:
        return existing
    user = User.new(
        email=settings.bootstrap_admin_email,
        password_hash=hash_password(settings.bootstrap_admin_password),
        name="System Administrator",
        roles=("admin",),
        must_rotate_password=True,
        grace_logins_remaining=settings.bootstrap_admin_grace_logins,
    )
    try:
        await repo.add(user)
    except DuplicateEmailError:
        # Another replica seeded it first
        winner = await repo.get_by_email(user.email)
        if winner is None:
            raise
        return winner
    logger.info("Seeded bootstrap admin email=%s (must rotate password)", user.email)
    return user
