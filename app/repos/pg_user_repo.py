"""PostgreSQL implementation of UserRepo.

Admin accounts outlive deploys here, so a rotated bootstrap password
stays rotated and a spent grace allowance stays spent.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import ADMIN_EMAIL_UNIQUE, AdminUserRow
from app.models.user import User
from app.repos.pg_credential_repo import transient_as_unavailable
from app.repos.user_repo import DuplicateEmailError


class PgUserRepo:
    """Satisfies the UserRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @transient_as_unavailable
    async def get_by_id(self, user_id: UUID) -> User | None:
        stmt = select(AdminUserRow).where(AdminUserRow.id == user_id)
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def get_by_email(self, email: str) -> User | None:
        stmt = select(AdminUserRow).where(AdminUserRow.email == email.strip().lower())
        return await self._one_or_none(stmt)

    @transient_as_unavailable
    async def add(self, user: User) -> None:
        row = AdminUserRow(
            id=user.id,
            email=user.email,
            password_hash=user.password_hash,
            name=user.name,
            roles=list(user.roles),
            is_active=user.is_active,
            must_rotate_password=user.must_rotate_password,
            grace_logins_remaining=user.grace_logins_remaining,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as e:
            if ADMIN_EMAIL_UNIQUE in str(e.orig):
                raise DuplicateEmailError(user.email) from None
            raise

    @transient_as_unavailable
    async def update_password_hash(
        self, user_id: UUID, password_hash: str, *, rotated: bool = False
    ) -> None:
        values: dict = {"password_hash": password_hash}
        if rotated:
            values.update(must_rotate_password=False, grace_logins_remaining=0)
        stmt = update(AdminUserRow).where(AdminUserRow.id == user_id).values(**values)
        await self._session.execute(stmt)

    @transient_as_unavailable
    async def consume_grace_login(self, user_id: UUID) -> User | None:
        """Conditional decrement: two replicas cannot both spend the last one."""
        stmt = (
            update(AdminUserRow)
            .where(AdminUserRow.id == user_id)
            .where(AdminUserRow.must_rotate_password.is_(True))
            .where(AdminUserRow.grace_logins_remaining > 0)
            .values(grace_logins_remaining=AdminUserRow.grace_logins_remaining - 1)
            .returning(AdminUserRow)
            .execution_options(populate_existing=True)
        )
        return await self._one_or_none(stmt)

    async def _one_or_none(self, stmt) -> User | None:
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_user(row)


def _row_to_user(row: AdminUserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name or "",
        roles=tuple(row.roles) if row.roles else (),
        is_active=row.is_active,
        must_rotate_password=row.must_rotate_password,
        grace_logins_remaining=row.grace_logins_remaining,
    )
