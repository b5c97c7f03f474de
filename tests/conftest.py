from __future__ import annotations

import asyncio
import datetime
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.dialects import postgresql

from app.api import payments
from app.api.dependencies import memory_credential_repo, memory_user_repo
from app.api.exam import _RESULTS
from app.api.ratelimit import _rate_limiter
from app.core.config import SETTINGS
from app.main import app
from app.models.credential import Credential, CredentialMetadata
from app.services import auth_service, credential_service, token_service
from app.services.paystack import PaymentGatewayError, PaymentVerification

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# The app seeds the bootstrap admin at startup; TestClient is used without
# the lifespan, so seed once here and restore that state per test
asyncio.run(auth_service.seed_bootstrap_admin(memory_user_repo, SETTINGS))
_SEEDED_USERS = (dict(memory_user_repo._by_email), dict(memory_user_repo._by_id))


@pytest.fixture(autouse=True)
def reset_credential_store() -> None:
    memory_credential_repo._by_id.clear()
    memory_credential_repo._id_by_code.clear()
    memory_credential_repo._id_by_payment_ref.clear()


@pytest.fixture(autouse=True)
def reset_users_state() -> None:
    memory_user_repo._by_email.clear()
    memory_user_repo._by_email.update(_SEEDED_USERS[0])
    memory_user_repo._by_id.clear()
    memory_user_repo._by_id.update(_SEEDED_USERS[1])


@pytest.fixture(autouse=True)
def reset_exam_results() -> None:
    _RESULTS.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 admin-audience JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token without the admin role."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Credential helpers
# ---------------------------------------------------------------------------


def issue_code(
    exam_entitlement: str = "BOTH", note: str | None = None
) -> Credential:
    """Issue an admin-manual credential into the app's in-memory store."""
    metadata = CredentialMetadata.admin_manual(
        exam_entitlement=exam_entitlement,  # type: ignore[arg-type]
        note=note,
    )
    return asyncio.run(credential_service.generate(memory_credential_repo, metadata))


def bind_code(
    credential: Credential,
    fingerprint: str,
    *,
    bound_at: datetime.datetime | None = None,
    days: int = 365,
) -> Credential:
    """Bind directly in the store, optionally in the past."""
    bound_at = bound_at or datetime.datetime.now(datetime.UTC)
    bound = asyncio.run(
        memory_credential_repo.bind(
            credential.id,
            fingerprint,
            bound_at,
            bound_at + datetime.timedelta(days=days),
        )
    )
    assert bound is not None
    return bound


# ---------------------------------------------------------------------------
# Payment gateway fake
# ---------------------------------------------------------------------------


class FakeVerifier:
    """Stands in for Paystack.  Counts calls per reference."""

    def __init__(
        self,
        *,
        amount: int = 150_000,
        status: str = "success",
        error: Exception | None = None,
    ) -> None:
        self.amount = amount
        self.status = status
        self.error = error
        self.calls: list[str] = []

    async def verify(self, reference: str) -> PaymentVerification:
        self.calls.append(reference)
        # Yield so concurrent completions interleave
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return PaymentVerification(
            status=self.status,  # type: ignore[arg-type]
            amount=self.amount,
            external_id=f"txn-{reference}",
        )


@pytest.fixture
def fake_verifier() -> FakeVerifier:
    verifier = FakeVerifier()
    app.dependency_overrides[payments.get_payment_verifier] = lambda: verifier
    return verifier


@pytest.fixture
def down_verifier() -> FakeVerifier:
    verifier = FakeVerifier(error=PaymentGatewayError("timeout"))
    app.dependency_overrides[payments.get_payment_verifier] = lambda: verifier
    return verifier


# ---------------------------------------------------------------------------
# AsyncSession stand-in for the Postgres repositories
# ---------------------------------------------------------------------------


class _StubResult:
    def __init__(self, rows: list) -> None:
        self._rows = rows
        self.rowcount = len(rows)

    def scalar_one_or_none(self):
        return self._rows[0] if self._rows else None

    def scalars(self) -> _StubResult:
        return self

    def all(self) -> list:
        return list(self._rows)


class _StubSavepoint:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, *exc_info) -> bool:
        return False


class StubSession:
    """Records statements instead of talking to PostgreSQL.

    `rows` is what every execute() returns; `error` is raised by execute()
    and flush() instead.
    """

    def __init__(self, *, rows: list | None = None, error: Exception | None = None):
        self.rows = rows or []
        self.error = error
        self.statements: list = []
        self.added: list = []

    async def execute(self, stmt):
        self.statements.append(stmt)
        if self.error is not None:
            raise self.error
        return _StubResult(self.rows)

    def add(self, row) -> None:
        self.added.append(row)

    async def flush(self) -> None:
        if self.error is not None:
            raise self.error

    def begin_nested(self) -> _StubSavepoint:
        return _StubSavepoint()


def compiled_sql(stmt) -> str:
    """Render a statement the way PostgreSQL would receive it."""
    return str(stmt.compile(dialect=postgresql.dialect()))
