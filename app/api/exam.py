"""Exam operations behind the session gate.

Every route needs the exam-session token from /v1/access/authorize and
the same device fingerprint it was issued for:

  Authorization: Bearer <session_token>
  X-Device-Fingerprint: <fingerprint>

Results are scored on the client; the server only records them.
"""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, Literal
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_exam_session
from app.api.ratelimit import require_rate_limit
from app.models.principal import ExamSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/exam", tags=["exam"])

Session = Annotated[ExamSession, Depends(require_exam_session)]


class SessionOut(BaseModel):
    code: str
    exam_type: str
    expires_at: datetime.datetime | None


class StartIn(BaseModel):
    exam_type: Literal["JAMB", "WAEC"]
    subjects: list[str] = Field(min_length=1, max_length=9)


class StartOut(BaseModel):
    attempt_id: str
    exam_type: str
    subjects: list[str]
    started_at: datetime.datetime


class ResultIn(BaseModel):
    attempt_id: str | None = None
    exam_type: Literal["JAMB", "WAEC"]
    subject: str
    score: int = Field(ge=0)
    total: int = Field(gt=0)
    idempotency_key: str | None = None


class ResultOut(BaseModel):
    id: str
    attempt_id: str | None
    exam_type: str
    subject: str
    score: int
    total: int
    recorded_at: datetime.datetime


# In-memory result log, keyed by credential id in each record
_RESULTS: list[dict] = []


def _entitled(session: ExamSession, exam_type: str) -> bool:
    return session.exam_entitlement in ("BOTH", exam_type)


def _require_entitlement(session: ExamSession, exam_type: str) -> None:
    if not _entitled(session, exam_type):
        logger.warning(
            "Exam type %s outside entitlement %s",
            exam_type,
            session.exam_entitlement,
            extra={
                "credential_id": str(session.credential_id),
                "outcome": "exam_not_entitled",
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "kind": "exam_not_entitled",
                "message": f"This access code does not cover {exam_type}.",
            },
        )


@router.get("/session", response_model=SessionOut)
async def get_session(session: Session) -> SessionOut:
    return SessionOut(
        code=session.code,
        exam_type=session.exam_entitlement,
        expires_at=session.expires_at,
    )


@router.post("/start", response_model=StartOut)
async def start_exam(body: StartIn, session: Session) -> StartOut:
    _require_entitlement(session, body.exam_type)
    attempt = StartOut(
        attempt_id=str(uuid4()),
        exam_type=body.exam_type,
        subjects=body.subjects,
        started_at=datetime.datetime.now(datetime.UTC),
    )
    logger.info(
        "Exam started type=%s subjects=%d",
        body.exam_type,
        len(body.subjects),
        extra={"credential_id": str(session.credential_id), "outcome": "started"},
    )
    return attempt


@router.post(
    "/results",
    response_model=ResultOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit(scope="results"))],
)
async def record_result(body: ResultIn, session: Session) -> ResultOut:
    _require_entitlement(session, body.exam_type)
    if body.score > body.total:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": "invalid_result", "message": "score exceeds total"},
        )

    owner = str(session.credential_id)
    if body.idempotency_key:
        for existing in _RESULTS:
            if (
                existing["credential_id"] == owner
                and existing["idempotency_key"] == body.idempotency_key
            ):
                return ResultOut(**_public(existing))

    record = {
        "id": str(uuid4()),
        "credential_id": owner,
        "attempt_id": body.attempt_id,
        "exam_type": body.exam_type,
        "subject": body.subject,
        "score": body.score,
        "total": body.total,
        "recorded_at": datetime.datetime.now(datetime.UTC),
        "idempotency_key": body.idempotency_key,
    }
    _RESULTS.append(record)
    return ResultOut(**_public(record))


@router.get("/results", response_model=list[ResultOut])
async def list_results(session: Session) -> list[ResultOut]:
    owner = str(session.credential_id)
    return [ResultOut(**_public(r)) for r in _RESULTS if r["credential_id"] == owner]


def _public(record: dict) -> dict:
    return {
        k: v for k, v in record.items() if k not in ("credential_id", "idempotency_key")
    }
