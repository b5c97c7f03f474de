"""Payment verification collaborator.

The bridge asks one question: "did transaction <reference> succeed, and
for how much?"  The answer comes from the gateway, never from the client.

Outcomes are split in two:

  PaymentVerification(status="failure")  definitive: the gateway looked
      and said no (unknown reference, abandoned, failed, or a response we
      cannot interpret).  The caller must not issue a code.

  PaymentGatewayError                    transient: timeout, connection
      error, 5xx, or no key configured.  Nothing is known about the
      payment; the client may retry with the same reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol
from urllib.parse import quote

import httpx

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """The gateway could not be asked.  Retryable."""


@dataclass(frozen=True, slots=True)
class PaymentVerification:
    status: Literal["success", "failure"]
    amount: int  # minor units (kobo)
    external_id: str | None = None
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaymentVerifier(Protocol):
    async def verify(self, reference: str) -> PaymentVerification: ...


def _failure(reason: str) -> PaymentVerification:
    return PaymentVerification(status="failure", amount=0, reason=reason)


class PaystackVerifier:
    """GET /transaction/verify/{reference} against the Paystack API."""

    def __init__(
        self,
        secret_key: str | None,
        *,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def verify(self, reference: str) -> PaymentVerification:
        if not self._secret_key:
            logger.error("PAYSTACK_SECRET_KEY is not configured")
            raise PaymentGatewayError("payment gateway is not configured")

        url = f"{self._base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(
                    url, headers={"Authorization": f"Bearer {self._secret_key}"}
                )
        except httpx.HTTPError as e:
            logger.warning("Paystack request failed: %s", e)
            raise PaymentGatewayError(str(e)) from e

        if resp.status_code >= 500:
            logger.warning("Paystack returned %d", resp.status_code)
            raise PaymentGatewayError(f"gateway returned {resp.status_code}")
        if resp.status_code >= 400:
            # 400/404 here means Paystack does not know the reference
            return _failure(f"gateway rejected reference ({resp.status_code})")

        try:
            body = resp.json()
        except ValueError:
            return _failure("unparseable gateway response")
        return _parse(body)


def _parse(body: object) -> PaymentVerification:
    """Anything short of an unambiguous success is a failure."""
    if not isinstance(body, dict) or body.get("status") is not True:
        return _failure("gateway reported an error")
    data = body.get("data")
    if not isinstance(data, dict):
        return _failure("missing transaction data")
    if data.get("status") != "success":
        return _failure(f"transaction status {data.get('status')!r}")

    amount = data.get("amount")
    # bool is an int subclass; True must not read as 1 kobo
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        return _failure("missing or invalid amount")

    external_id = data.get("id")
    return PaymentVerification(
        status="success",
        amount=amount,
        external_id=str(external_id) if external_id is not None else None,
    )


def build_verifier() -> PaystackVerifier:
    return PaystackVerifier(
        SETTINGS.paystack_secret_key,
        base_url=SETTINGS.paystack_base_url,
        timeout=SETTINGS.payment_timeout_seconds,
    )
