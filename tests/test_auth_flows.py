from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import jwt
from fastapi.testclient import TestClient

from mdm_server.app import create_app


def _token(claims: dict, secret: str = "test-jwt-secret") -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": "1",
        "email": "admin@example.com",
        "iss": "test-issuer",
        "aud": "test-audience",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_login_sets_cookie_and_grants_access(client) -> None:
    response = client.post("/auth/login", json={"email": "admin@example.com", "password": "ChangeMeNow!123"})
    assert response.status_code == 200
    assert response.json()["admin"]["email"] == "admin@example.com"
    assert "password_hash" not in response.json()["admin"]

    set_cookie = response.headers["set-cookie"]
    assert "mdm_token=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Max-Age=86400" in set_cookie

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["admin"]["name"] == "Root Admin"


def test_wrong_email_and_wrong_password_look_identical(client) -> None:
    wrong_password = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    wrong_email = client.post("/auth/login", json={"email": "nobody@example.com", "password": "ChangeMeNow!123"})
    assert wrong_password.status_code == 401
    assert wrong_email.status_code == 401
    assert wrong_password.json() == wrong_email.json() == {"message": "Invalid credentials"}


def test_login_missing_fields(client) -> None:
    assert client.post("/auth/login", json={"email": "admin@example.com"}).status_code == 400
    assert client.post("/auth/login", json={}).status_code == 400


def test_register_issues_short_lived_cookie(client, db) -> None:
    response = client.post(
        "/auth/register",
        json={"email": "New.Admin@Example.com", "password": "S3cure-pass", "name": "New Admin"},
    )
    assert response.status_code == 201
    admin = response.json()["admin"]
    assert admin["email"] == "new.admin@example.com"
    assert "password_hash" not in admin
    assert "Max-Age=43200" in response.headers["set-cookie"]

    stored = db.get_admin_by_email("new.admin@example.com")
    assert stored.password_hash != "S3cure-pass"
    assert stored.password_hash.startswith("$argon2")


def test_register_rejects_duplicate_and_missing(client) -> None:
    duplicate = client.post("/auth/register", json={"email": "admin@example.com", "password": "x"})
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Admin already exists"

    missing = client.post("/auth/register", json={"email": "someone@example.com"})
    assert missing.status_code == 400


def test_missing_token_has_logout_hint(client) -> None:
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["logout"] is True
    assert "expired" not in response.json()


def test_bad_signature_rejected(client) -> None:
    token = _token({}, secret="some-other-secret")
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["logout"] is True
    assert "expired" not in response.json()


def test_wrong_audience_rejected(client) -> None:
    token = _token({"aud": "another-app"})
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_expired_token_rejected_with_hint(client) -> None:
    now = datetime.now(UTC)
    token = _token({"iat": int((now - timedelta(hours=30)).timestamp()), "exp": int((now - timedelta(hours=6)).timestamp())})
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json() == {"message": "Token expired. Please sign in again.", "logout": True, "expired": True}


def test_cookie_token_accepted(client) -> None:
    admin = client.app.state.db.get_admin_by_email("admin@example.com")
    token = _token({"sub": str(admin.id)})
    client.cookies.set("mdm_token", token)
    response = client.get("/auth/me")
    assert response.status_code == 200


def test_logout_clears_cookie(client) -> None:
    client.post("/auth/login", json={"email": "admin@example.com", "password": "ChangeMeNow!123"})
    response = client.get("/auth/logout")
    assert response.status_code == 200
    assert 'mdm_token=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]


def test_admin_listing_and_deletion(client, admin_headers) -> None:
    created = client.post("/auth/register", json={"email": "second@example.com", "password": "pw-123456"})
    second_id = created.json()["admin"]["id"]
    client.cookies.clear()

    listing = client.get("/auth/admins", headers=admin_headers)
    assert listing.status_code == 200
    assert {admin["email"] for admin in listing.json()["admins"]} == {"admin@example.com", "second@example.com"}

    assert client.delete(f"/auth/admins/{second_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/auth/admins/{second_id}", headers=admin_headers).status_code == 404


def test_delete_own_account(client, admin_headers, db) -> None:
    response = client.delete("/auth/delete", headers=admin_headers)
    assert response.status_code == 200
    assert db.get_admin_by_email("admin@example.com") is None


def test_login_rate_limited(server_config) -> None:
    app = create_app(replace(server_config, login_rate_limit_per_minute=2))
    with TestClient(app) as tc:
        codes = [
            tc.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"}).status_code
            for _ in range(3)
        ]
    assert codes == [401, 401, 429]
