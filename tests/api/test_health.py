from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # In tests, neither backing service is configured
    assert data["checks"] == {"database": "not_configured", "redis": "not_configured"}


def test_ready_returns_200_without_database(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200


def test_ready_returns_503_when_database_unreachable(
    client: TestClient, monkeypatch
) -> None:
    from app.db import engine as db_engine

    async def failing_ping() -> bool:
        return False

    monkeypatch.setattr(db_engine, "engine", object())
    monkeypatch.setattr(db_engine, "ping_database", failing_ping)

    assert client.get("/ready").status_code == 503
    assert client.get("/health").json()["checks"]["database"] == "degraded"
