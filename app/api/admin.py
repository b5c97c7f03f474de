"""Administrator console for access codes.

All routes require an admin bearer token (see /auth/login).

  GET    /admin/access-codes?status=active|inactive|bound|unbound|expired
  POST   /admin/access-codes                       manual issue (201)
  POST   /admin/access-codes/{id}/reset-binding    clear the device lock
  PATCH  /admin/access-codes/{id}                  {is_active}
  DELETE /admin/access-codes/{id}                  (204)
"""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_credential_repo, require_role
from app.api.errors import not_found, store_unavailable
from app.models.credential import CredentialMetadata, CredentialStatus, CredentialSummary
from app.models.principal import Principal
from app.repos.credential_repo import CredentialRepo, StoreUnavailableError
from app.services import credential_service
from app.services.credential_service import CodeGenerationError, CredentialNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/access-codes", tags=["admin"])

AdminPrincipal = Annotated[Principal, Depends(require_role("admin"))]
Repo = Annotated[CredentialRepo, Depends(get_credential_repo)]


class CredentialSummaryOut(BaseModel):
    id: UUID
    code: str
    is_active: bool
    is_bound: bool
    expiry_state: str
    expires_at: datetime.datetime | None
    bound_at: datetime.datetime | None
    created_at: datetime.datetime
    origin: str
    payment_reference: str | None = None
    purchaser_name: str | None = None
    exam_type: str
    amount_paid: int | None = None
    extra: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def of(cls, summary: CredentialSummary) -> CredentialSummaryOut:
        return cls(
            id=summary.id,
            code=summary.code,
            is_active=summary.is_active,
            is_bound=summary.is_bound,
            expiry_state=summary.expiry_state,
            expires_at=summary.expires_at,
            bound_at=summary.bound_at,
            created_at=summary.created_at,
            origin=summary.origin.value,
            payment_reference=summary.payment_reference,
            purchaser_name=summary.purchaser_name,
            exam_type=summary.exam_entitlement,
            amount_paid=summary.amount_paid,
            extra=summary.extra,
        )


class ManualIssueIn(BaseModel):
    exam_type: Literal["JAMB", "WAEC", "BOTH"] = "BOTH"
    note: str | None = Field(default=None, max_length=500)
    price: int | None = Field(default=None, ge=0)


class UpdateIn(BaseModel):
    is_active: bool


@router.get("", response_model=list[CredentialSummaryOut])
async def list_access_codes(
    principal: AdminPrincipal,
    repo: Repo,
    status_filter: Annotated[CredentialStatus | None, Query(alias="status")] = None,
) -> list[CredentialSummaryOut]:
    logger.info(
        "Access code list requested by user=%s status=%s",
        principal.user_id,
        status_filter.value if status_filter else "all",
    )
    try:
        summaries = await credential_service.list_credentials(repo, status_filter)
    except StoreUnavailableError:
        raise store_unavailable() from None
    return [CredentialSummaryOut.of(s) for s in summaries]


@router.post(
    "", response_model=CredentialSummaryOut, status_code=status.HTTP_201_CREATED
)
async def issue_access_code(
    body: ManualIssueIn, principal: AdminPrincipal, repo: Repo
) -> CredentialSummaryOut:
    metadata = CredentialMetadata.admin_manual(
        exam_entitlement=body.exam_type, note=body.note, amount_paid=body.price
    )
    try:
        credential = await credential_service.generate(repo, metadata)
    except StoreUnavailableError:
        raise store_unavailable() from None
    except CodeGenerationError:
        logger.exception("Manual code generation failed user=%s", principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "generation_failed", "message": "Could not issue a code."},
        ) from None
    logger.info(
        "Manual access code issued by user=%s",
        principal.user_id,
        extra={"credential_id": str(credential.id), "outcome": "issued"},
    )
    return CredentialSummaryOut.of(
        CredentialSummary.of(credential, credential.created_at)
    )


@router.post("/{credential_id}/reset-binding", response_model=CredentialSummaryOut)
async def reset_binding(
    credential_id: UUID, principal: AdminPrincipal, repo: Repo
) -> CredentialSummaryOut:
    logger.info(
        "Device lock reset requested by user=%s",
        principal.user_id,
        extra={"credential_id": str(credential_id)},
    )
    try:
        credential = await credential_service.reset_binding(repo, credential_id)
    except CredentialNotFoundError:
        raise not_found() from None
    except StoreUnavailableError:
        raise store_unavailable() from None
    return CredentialSummaryOut.of(
        CredentialSummary.of(credential, datetime.datetime.now(datetime.UTC))
    )


@router.patch("/{credential_id}", response_model=CredentialSummaryOut)
async def update_access_code(
    credential_id: UUID, body: UpdateIn, principal: AdminPrincipal, repo: Repo
) -> CredentialSummaryOut:
    logger.info(
        "Activation change is_active=%s by user=%s",
        body.is_active,
        principal.user_id,
        extra={"credential_id": str(credential_id)},
    )
    try:
        credential = await credential_service.set_active(
            repo, credential_id, body.is_active
        )
    except CredentialNotFoundError:
        raise not_found() from None
    except StoreUnavailableError:
        raise store_unavailable() from None
    return CredentialSummaryOut.of(
        CredentialSummary.of(credential, datetime.datetime.now(datetime.UTC))
    )


@router.delete("/{credential_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_access_code(
    credential_id: UUID, principal: AdminPrincipal, repo: Repo
) -> Response:
    logger.info(
        "Access code deletion requested by user=%s",
        principal.user_id,
        extra={"credential_id": str(credential_id)},
    )
    try:
        await credential_service.delete(repo, credential_id)
    except CredentialNotFoundError:
        raise not_found() from None
    except StoreUnavailableError:
        raise store_unavailable() from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
