"""Domain error → HTTPException mapping.

Every denial carries its `kind` so the client can tell "buy a new code"
from "contact an admin" from "try again": the body is always

    {"detail": {"kind": ..., "message": ..., ...}}
"""

from __future__ import annotations

from fastapi import HTTPException, status

from app.services.credential_service import (
    AccessError,
    DeactivatedError,
    DeviceMismatchError,
    ExpiredError,
    InvalidCredentialError,
)

_ACCESS_STATUS: dict[type[AccessError], int] = {
    InvalidCredentialError: status.HTTP_401_UNAUTHORIZED,
    DeactivatedError: status.HTTP_403_FORBIDDEN,
    DeviceMismatchError: status.HTTP_403_FORBIDDEN,
    ExpiredError: status.HTTP_403_FORBIDDEN,
}


def access_denied(exc: AccessError) -> HTTPException:
    detail: dict[str, object] = {"kind": exc.kind, "message": exc.message}
    if isinstance(exc, ExpiredError):
        detail["expires_at"] = exc.expires_at.isoformat()
    code = _ACCESS_STATUS.get(type(exc), status.HTTP_401_UNAUTHORIZED)
    return HTTPException(status_code=code, detail=detail)


def unavailable(kind: str, message: str) -> HTTPException:
    """Transient dependency failure.  The client should retry."""
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"kind": kind, "message": message},
        headers={"Retry-After": "5"},
    )


def store_unavailable() -> HTTPException:
    return unavailable(
        "store_unavailable", "Access service temporarily unavailable. Try again."
    )


def not_found(message: str = "Access code not found.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"kind": "not_found", "message": message},
    )
