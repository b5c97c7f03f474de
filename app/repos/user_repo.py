from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.user import User


class DuplicateEmailError(ValueError):
    """An account with this email already exists."""


class UserRepo(Protocol):
    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def get_by_email(self, email: str) -> User | None: ...
    async def add(self, user: User) -> None: ...
    async def update_password_hash(
        self, user_id: UUID, password_hash: str, *, rotated: bool = False
    ) -> None: ...
    async def consume_grace_login(self, user_id: UUID) -> User | None: ...


class InMemoryUserRepo:
    """Administrator accounts for a process without DATABASE_URL.

    Nothing survives a restart here, so the bootstrap admin comes back
    with its default password.  Deployments keep admins in PostgreSQL
    (PgUserRepo).
    """

    def __init__(self) -> None:
        self._by_email: dict[str, User] = {}
        self._by_id: dict[UUID, User] = {}

    async def get_by_id(self, user_id: UUID) -> User | None:
        return self._by_id.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        return self._by_email.get(email.strip().lower())

    async def add(self, user: User) -> None:
        if user.email in self._by_email:
            raise DuplicateEmailError(user.email)
        self._store(user)

    async def update_password_hash(
        self, user_id: UUID, password_hash: str, *, rotated: bool = False
    ) -> None:
        """Store a new hash.  rotated=True means the owner chose a new
        password, which lifts the must-rotate flag."""
        u = self._by_id.get(user_id)
        if u is None:
            raise KeyError("user not found")

        updated = replace(u, password_hash=password_hash)
        if rotated:
            updated = replace(updated, must_rotate_password=False, grace_logins_remaining=0)
        self._store(updated)

    async def consume_grace_login(self, user_id: UUID) -> User | None:
        """Spend one grace login.  None once the allowance is used up."""
        u = self._by_id.get(user_id)
        if u is None or not u.must_rotate_password or u.grace_logins_remaining <= 0:
            return None
        updated = replace(u, grace_logins_remaining=u.grace_logins_remaining - 1)
        self._store(updated)
        return updated

    def _store(self, user: User) -> None:
        self._by_id[user.id] = user
        self._by_email[user.email] = user
