"""Turn one verified payment into exactly one access code.

The payment reference is the idempotency key.  Replaying a reference
(network retry, double-click, refreshed page) returns the code already
issued for it, never a second one.  Two concurrent completions of the
same reference race on the store's unique constraint; the loser reads
back the winner's credential.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

from app.core.config import SETTINGS
from app.core.metrics import PAYMENT_VERIFICATIONS
from app.models.credential import Credential, CredentialMetadata, ExamType
from app.repos.credential_repo import (
    CredentialRepo,
    DuplicatePaymentReferenceError,
    StoreUnavailableError,
)
from app.services import credential_service
from app.services.paystack import PaymentGatewayError, PaymentVerifier

logger = logging.getLogger(__name__)


class InvalidReferenceError(ValueError):
    kind = "invalid_reference"


class PaymentNotVerifiedError(Exception):
    """The gateway did not confirm a sufficient, successful payment."""

    kind = "payment_not_verified"


@dataclass(frozen=True, slots=True)
class PurchaseDetails:
    """What the student tells us.  Amount and status are deliberately absent."""

    purchaser_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    exam_entitlement: ExamType = "BOTH"


@dataclass(frozen=True, slots=True)
class PaymentCompletion:
    credential: Credential
    replayed: bool


async def complete_payment(
    repo: CredentialRepo,
    verifier: PaymentVerifier,
    reference: str,
    details: PurchaseDetails,
    *,
    min_amount: int | None = None,
) -> PaymentCompletion:
    reference = reference.strip()
    if not reference:
        raise InvalidReferenceError("Missing transaction reference.")
    min_amount = SETTINGS.min_payment_amount if min_amount is None else min_amount

    existing = await repo.get_by_payment_reference(reference)
    if existing is not None:
        PAYMENT_VERIFICATIONS.labels(result="replayed").inc()
        logger.info(
            "Payment %s already completed",
            reference,
            extra={"credential_id": str(existing.id), "outcome": "replayed"},
        )
        return PaymentCompletion(existing, replayed=True)

    try:
        verification = await verifier.verify(reference)
    except PaymentGatewayError:
        PAYMENT_VERIFICATIONS.labels(result="gateway_error").inc()
        raise

    if not verification.succeeded or verification.amount < min_amount:
        PAYMENT_VERIFICATIONS.labels(result="not_verified").inc()
        logger.warning(
            "Payment %s not verified: status=%s amount=%d min=%d %s",
            reference,
            verification.status,
            verification.amount,
            min_amount,
            verification.reason,
        )
        raise PaymentNotVerifiedError("Payment verification failed.")

    metadata = CredentialMetadata.student_purchase(
        payment_reference=reference,
        amount_paid=verification.amount,
        purchaser_name=details.purchaser_name,
        email=details.email,
        phone_number=details.phone_number,
        exam_entitlement=details.exam_entitlement,
        gateway_transaction_id=verification.external_id,
        verified_at=datetime.datetime.now(datetime.UTC),
    )
    try:
        credential = await credential_service.generate(repo, metadata)
    except DuplicatePaymentReferenceError as e:
        # A concurrent completion of the same reference inserted first
        winner = await repo.get_by_payment_reference(reference)
        if winner is None:
            # Not readable yet; the same reference succeeds on retry
            raise StoreUnavailableError(f"payment {reference} is being completed") from e
        PAYMENT_VERIFICATIONS.labels(result="replayed").inc()
        logger.info(
            "Payment %s completed concurrently; returning existing code",
            reference,
            extra={"credential_id": str(winner.id), "outcome": "replayed"},
        )
        return PaymentCompletion(winner, replayed=True)

    PAYMENT_VERIFICATIONS.labels(result="issued").inc()
    return PaymentCompletion(credential, replayed=False)
