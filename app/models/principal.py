from __future__ import annotations

import datetime
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated administrator extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles


@dataclass(frozen=True, slots=True)
class ExamSession:
    """An exam-taking session that has passed the session gate.

    Built from a verified exam-session token and re-validated against the
    credential store on every protected request.
    """

    credential_id: UUID
    code: str
    exam_entitlement: str
    expires_at: datetime.datetime | None
