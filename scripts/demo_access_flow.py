"""Demo: issue a code, bind it to a device, use it, reset it.

Run with:
    python scripts/demo_access_flow.py

Uses FastAPI TestClient against the in-memory store, so no database or
gateway is needed.  Logs in as the bootstrap admin (ADMIN_EMAIL /
ADMIN_PASSWORD, defaults admin@example.com / admin).
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from app.core.config import SETTINGS
from app.main import app

LAPTOP = "fp-demo-laptop"
PHONE = "fp-demo-phone"


def main() -> None:
    with TestClient(app) as client:
        run(client)


def run(client: TestClient) -> None:
    # ── Step 1: admin login ─────────────────────────────────────────
    r = client.post(
        "/auth/login",
        json={
            "email": SETTINGS.bootstrap_admin_email,
            "password": SETTINGS.bootstrap_admin_password,
        },
    )
    print(f"1. POST /auth/login                  → {r.status_code}")
    admin = {"Authorization": f"Bearer {r.json()['accessToken']}"}

    # ── Step 2: issue a code by hand ────────────────────────────────
    r = client.post(
        "/admin/access-codes",
        json={"exam_type": "JAMB", "note": "demo"},
        headers=admin,
    )
    issued = r.json()
    code, credential_id = issued["code"], issued["id"]
    print(f"2. POST /admin/access-codes          → {r.status_code}  {code}")

    # ── Step 3: first sign-in asks for confirmation ─────────────────
    r = client.post(
        "/v1/access/authorize", json={"code": code, "device_fingerprint": LAPTOP}
    )
    print(f"3. authorize (laptop)                → {r.status_code}  {r.json()['status']}")

    # ── Step 4: confirm, which binds ────────────────────────────────
    r = client.post(
        "/v1/access/authorize",
        json={"code": code, "device_fingerprint": LAPTOP, "confirm_binding": True},
    )
    body = r.json()
    print(f"4. authorize (laptop, confirm)       → {r.status_code}  expires {body['expires_at']}")
    session = {
        "Authorization": f"Bearer {body['session_token']}",
        "X-Device-Fingerprint": LAPTOP,
    }

    # ── Step 5: the session token opens exam routes ─────────────────
    r = client.post(
        "/v1/exam/start",
        json={"exam_type": "JAMB", "subjects": ["English", "Physics"]},
        headers=session,
    )
    print(f"5. POST /v1/exam/start               → {r.status_code}")

    # ── Step 6: another device is refused ───────────────────────────
    r = client.post(
        "/v1/access/authorize",
        json={"code": code, "device_fingerprint": PHONE, "confirm_binding": True},
    )
    print(f"6. authorize (phone)                 → {r.status_code}  {r.json()['detail']['kind']}")

    # ── Step 7: admin reset, then the phone can bind ────────────────
    r = client.post(f"/admin/access-codes/{credential_id}/reset-binding", headers=admin)
    print(f"7. reset-binding                     → {r.status_code}")
    r = client.post(
        "/v1/access/authorize",
        json={"code": code, "device_fingerprint": PHONE, "confirm_binding": True},
    )
    print(f"8. authorize (phone, confirm)        → {r.status_code}  {r.json()['status']}")

    # ── Step 9: the laptop's old session is dead ────────────────────
    r = client.get("/v1/exam/session", headers=session)
    print(f"9. GET /v1/exam/session (laptop)     → {r.status_code}  {r.json()['detail']['kind']}")


if __name__ == "__main__":
    main()
