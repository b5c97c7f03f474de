"""PaystackVerifier against a mocked transport (no network)."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from app.services.paystack import PaymentGatewayError, PaystackVerifier


def _verifier(handler, secret: str | None = "sk_test_123") -> PaystackVerifier:
    return PaystackVerifier(
        secret,
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(handler),
    )


def _json(status_code: int, body: object):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    return handler


def test_success_returns_amount_and_transaction_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {"status": "success", "amount": 150000, "id": 987654},
            },
        )

    result = asyncio.run(_verifier(handler).verify("ref/001"))

    assert result.succeeded
    assert result.amount == 150000
    assert result.external_id == "987654"
    assert seen[0].url.path == "/transaction/verify/ref%2F001"
    assert seen[0].headers["Authorization"] == "Bearer sk_test_123"


@pytest.mark.parametrize(
    "body",
    [
        {"status": False, "message": "Transaction reference not found"},
        {"status": True, "data": {"status": "abandoned", "amount": 150000}},
        {"status": True, "data": {"status": "success"}},
        {"status": True, "data": {"status": "success", "amount": "150000"}},
        {"status": True, "data": {"status": "success", "amount": True}},
        {"status": True},
        ["not", "an", "object"],
    ],
)
def test_anything_but_clear_success_is_failure(body: object) -> None:
    result = asyncio.run(_verifier(_json(200, body)).verify("ref"))
    assert not result.succeeded
    assert result.amount == 0


def test_unknown_reference_404_is_failure() -> None:
    result = asyncio.run(_verifier(_json(404, {"status": False})).verify("ref"))
    assert not result.succeeded


def test_unparseable_body_is_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    assert not asyncio.run(_verifier(handler).verify("ref")).succeeded


def test_server_error_is_gateway_error() -> None:
    with pytest.raises(PaymentGatewayError):
        asyncio.run(_verifier(_json(502, {})).verify("ref"))


def test_connection_failure_is_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(PaymentGatewayError):
        asyncio.run(_verifier(handler).verify("ref"))


def test_missing_secret_key_is_gateway_error() -> None:
    with pytest.raises(PaymentGatewayError):
        asyncio.run(_verifier(_json(200, {}), secret=None).verify("ref"))
