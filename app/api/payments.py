"""Payment completion: a verified Paystack transaction buys one access code.

POST /v1/payments/verify  {reference, email, full_name, phone_number, exam_type}

Amount and status are looked up at the gateway; the request body cannot
carry them.  Re-posting a reference that already produced a code returns
that same code (replayed=true).
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_credential_repo
from app.api.errors import store_unavailable, unavailable
from app.api.ratelimit import PAYMENT_LIMIT, require_rate_limit
from app.repos.credential_repo import CredentialRepo, StoreUnavailableError
from app.services import payment_service
from app.services.credential_service import CodeGenerationError
from app.services.payment_service import (
    InvalidReferenceError,
    PaymentNotVerifiedError,
    PurchaseDetails,
)
from app.services.paystack import PaymentGatewayError, PaymentVerifier, build_verifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])

_verifier = build_verifier()


def get_payment_verifier() -> PaymentVerifier:
    return _verifier


class PaymentVerifyIn(BaseModel):
    reference: str = Field(min_length=1, max_length=128)
    email: str | None = Field(default=None, max_length=320)
    full_name: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)
    exam_type: Literal["JAMB", "WAEC", "BOTH"] = "BOTH"


class PaymentVerifyOut(BaseModel):
    success: bool = True
    code: str
    exam_type: str
    replayed: bool


@router.post(
    "/verify",
    response_model=PaymentVerifyOut,
    dependencies=[Depends(require_rate_limit(PAYMENT_LIMIT, scope="payments"))],
)
async def verify_payment(
    body: PaymentVerifyIn,
    repo: Annotated[CredentialRepo, Depends(get_credential_repo)],
    verifier: Annotated[PaymentVerifier, Depends(get_payment_verifier)],
) -> PaymentVerifyOut:
    details = PurchaseDetails(
        purchaser_name=body.full_name,
        email=body.email.strip().lower() if body.email else None,
        phone_number=body.phone_number,
        exam_entitlement=body.exam_type,
    )
    try:
        completion = await payment_service.complete_payment(
            repo, verifier, body.reference, details
        )
    except InvalidReferenceError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": e.kind, "message": str(e)},
        ) from None
    except PaymentNotVerifiedError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"kind": e.kind, "message": str(e)},
        ) from None
    except PaymentGatewayError:
        raise unavailable(
            "payment_gateway_unavailable",
            "Could not reach the payment gateway. Try again with the same reference.",
        ) from None
    except StoreUnavailableError:
        raise store_unavailable() from None
    except CodeGenerationError:
        logger.exception("Code generation failed for reference=%s", body.reference)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "generation_failed", "message": "Could not issue a code."},
        ) from None

    credential = completion.credential
    return PaymentVerifyOut(
        code=credential.code,
        exam_type=credential.metadata.exam_entitlement,
        replayed=completion.replayed,
    )
