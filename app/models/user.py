from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class User:
    """Administrator account.  Students never have one: their access code
    is their credential."""

    id: UUID
    email: str
    password_hash: str
    name: str = ""
    roles: tuple[str, ...] = ()  # immutable
    is_active: bool = True
    # Bootstrap accounts ship with a well-known password and must rotate it
    must_rotate_password: bool = False
    grace_logins_remaining: int = 0

    @staticmethod
    def new(
        *,
        email: str,
        password_hash: str,
        name: str = "",
        roles: tuple[str, ...] = (),
        must_rotate_password: bool = False,
        grace_logins_remaining: int = 0,
    ) -> User:
        return User(
            id=uuid4(),
            email=email.strip().lower(),
            password_hash=password_hash,
            name=name,
            roles=roles,
            is_active=True,
            must_rotate_password=must_rotate_password,
            grace_logins_remaining=grace_logins_remaining,
        )
