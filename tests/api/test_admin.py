"""Admin console: RBAC plus the four overrides."""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import bind_code, issue_code


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---- RBAC ----


def test_admin_routes_require_token(client: TestClient) -> None:
    assert client.get("/admin/access-codes").status_code == 401


def test_admin_routes_require_admin_role(client: TestClient, token: str) -> None:
    resp = client.get("/admin/access-codes", headers=_auth(token))
    assert resp.status_code == 403


def test_exam_session_token_is_not_an_admin_token(client: TestClient) -> None:
    cred = issue_code()
    session = client.post(
        "/v1/access/authorize",
        json={"code": cred.code, "device_fingerprint": "fp", "confirm_binding": True},
    ).json()["session_token"]
    resp = client.get("/admin/access-codes", headers=_auth(session))
    assert resp.status_code == 401


# ---- issue / list ----


def test_manual_issue_creates_unbound_code(client: TestClient, admin_token: str) -> None:
    resp = client.post(
        "/admin/access-codes",
        json={"exam_type": "JAMB", "note": "school bulk order", "price": 0},
        headers=_auth(admin_token),
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["origin"] == "admin-manual"
    assert body["payment_reference"] is None
    assert body["is_bound"] is False
    assert body["expiry_state"] == "not_yet_bound"
    assert body["exam_type"] == "JAMB"
    assert body["extra"] == {"note": "school bulk order"}


def test_list_with_status_filter(client: TestClient, admin_token: str) -> None:
    unbound = issue_code()
    bound = issue_code()
    bind_code(bound, "fp-a")

    all_rows = client.get("/admin/access-codes", headers=_auth(admin_token)).json()
    assert {r["id"] for r in all_rows} == {str(unbound.id), str(bound.id)}

    rows = client.get(
        "/admin/access-codes", params={"status": "bound"}, headers=_auth(admin_token)
    ).json()
    assert [r["id"] for r in rows] == [str(bound.id)]
    assert rows[0]["expiry_state"] == "valid"


def test_list_rejects_unknown_status(client: TestClient, admin_token: str) -> None:
    resp = client.get(
        "/admin/access-codes", params={"status": "weird"}, headers=_auth(admin_token)
    )
    assert resp.status_code == 422


# ---- reset / activate / delete ----


def test_reset_binding_frees_the_code(client: TestClient, admin_token: str) -> None:
    cred = issue_code()
    bind_code(cred, "fp-old-device")

    resp = client.post(
        f"/admin/access-codes/{cred.id}/reset-binding", headers=_auth(admin_token)
    )
    assert resp.status_code == 200
    assert resp.json()["is_bound"] is False
    assert resp.json()["expires_at"] is None

    new_device = client.post(
        "/v1/access/authorize",
        json={"code": cred.code, "device_fingerprint": "fp-new-device"},
    )
    assert new_device.json()["status"] == "requires_binding_confirmation"


def test_deactivate_then_reactivate(client: TestClient, admin_token: str) -> None:
    cred = issue_code()
    bind_code(cred, "fp-a")
    url = f"/admin/access-codes/{cred.id}"

    resp = client.patch(url, json={"is_active": False}, headers=_auth(admin_token))
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False
    denied = client.post(
        "/v1/access/authorize", json={"code": cred.code, "device_fingerprint": "fp-a"}
    )
    assert denied.status_code == 403
    assert denied.json()["detail"]["kind"] == "deactivated"

    client.patch(url, json={"is_active": True}, headers=_auth(admin_token))
    allowed = client.post(
        "/v1/access/authorize", json={"code": cred.code, "device_fingerprint": "fp-a"}
    )
    assert allowed.json()["status"] == "authorized"


def test_delete(client: TestClient, admin_token: str) -> None:
    cred = issue_code()
    url = f"/admin/access-codes/{cred.id}"

    assert client.delete(url, headers=_auth(admin_token)).status_code == 204
    assert client.delete(url, headers=_auth(admin_token)).status_code == 404

    resp = client.post(
        "/v1/access/authorize", json={"code": cred.code, "device_fingerprint": "fp"}
    )
    assert resp.json()["detail"]["kind"] == "invalid_credential"


def test_unknown_id_is_404(client: TestClient, admin_token: str) -> None:
    missing = uuid.uuid4()
    headers = _auth(admin_token)
    assert (
        client.post(f"/admin/access-codes/{missing}/reset-binding", headers=headers)
    ).status_code == 404
    assert (
        client.patch(
            f"/admin/access-codes/{missing}", json={"is_active": False}, headers=headers
        )
    ).status_code == 404
