"""
Auth API tests: registration, login, /me and the JWT middleware.
"""

from datetime import datetime, timedelta, timezone

import jwt

from app.models import db
from app.models.auth import User


def _register(client, **overrides):
    body = {"email": "new@example.com", "password": "s3cure-pass", "full_name": "New Person"}
    body.update(overrides)
    return client.post("/api/v1/auth/register", json=body)


class TestRegister:
    def test_register_returns_token(self, client):
        res = _register(client)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["access_token"]
        assert data["user"]["email"] == "new@example.com"

    def test_email_is_normalised(self, client):
        res = _register(client, email="Mixed.Case@Example.com")
        assert res.status_code == 201
        assert User.query.filter_by(email="mixed.case@example.com").first() is not None

    def test_short_password_rejected(self, client):
        res = _register(client, password="short")
        assert res.status_code == 422
        body = res.get_json()
        assert body["success"] is False
        assert "password" in body["field_errors"]

    def test_missing_fields_listed_together(self, client):
        res = client.post("/api/v1/auth/register", json={})
        assert res.status_code == 422
        errors = res.get_json()["field_errors"]
        assert {"email", "password", "full_name"} <= set(errors)

    def test_duplicate_email_conflicts(self, client):
        _register(client)
        res = _register(client)
        assert res.status_code == 409
        assert "email" in res.get_json()["field_errors"]


class TestLogin:
    def test_login_success(self, client, owner, password):
        res = client.post("/api/v1/auth/login",
                          json={"email": owner.email, "password": password})
        assert res.status_code == 200
        assert res.get_json()["data"]["user"]["id"] == owner.id

    def test_wrong_password(self, client, owner):
        res = client.post("/api/v1/auth/login",
                          json={"email": owner.email, "password": "nope-nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"

    def test_deactivated_user(self, client, owner, password):
        owner.is_active = False
        db.session.commit()
        res = client.post("/api/v1/auth/login",
                          json={"email": owner.email, "password": password})
        assert res.status_code == 403


class TestMe:
    def test_me_lists_organizations(self, client, org, owner, owner_headers):
        res = client.get("/api/v1/auth/me", headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["email"] == owner.email
        assert data["organizations"][0]["slug"] == "acme-builders"
        assert data["organizations"][0]["role"] == "owner"

    def test_missing_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTH_REQUIRED"

    def test_garbage_token(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_expired_token(self, client, app, owner):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": str(owner.id), "type": "access",
                            "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1)},
                           app.config["JWT_SECRET_KEY"], algorithm="HS256")
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token expired"


class TestProfile:
    def test_update_profile(self, client, owner, owner_headers):
        res = client.patch("/api/v1/auth/me", headers=owner_headers,
                           json={"full_name": "  Olive Owner-Smith ", "phone": "+14155550123"})
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["full_name"] == "Olive Owner-Smith"
        assert data["phone"] == "+14155550123"
        assert data["email"] == owner.email
        assert "organizations" in data

    def test_absent_fields_are_kept(self, client, owner, owner_headers):
        full_name = owner.full_name
        res = client.patch("/api/v1/auth/me", headers=owner_headers,
                           json={"avatar_url": "https://cdn.example.com/a.png"})
        assert res.status_code == 200
        assert res.get_json()["data"]["full_name"] == full_name
        assert db.session.get(User, owner.id).avatar_url == "https://cdn.example.com/a.png"

    def test_phone_can_be_cleared(self, client, owner, owner_headers):
        client.patch("/api/v1/auth/me", headers=owner_headers, json={"phone": "+14155550123"})
        res = client.patch("/api/v1/auth/me", headers=owner_headers, json={"phone": None})
        assert res.get_json()["data"]["phone"] is None

    def test_validation(self, client, owner_headers):
        res = client.patch("/api/v1/auth/me", headers=owner_headers,
                           json={"full_name": "", "phone": "555-0123", "avatar_url": "avatar.png"})
        assert res.status_code == 422
        assert res.get_json()["field_errors"] == {
            "full_name": ["Full name is required"],
            "phone": ["Invalid phone number format (E.164)"],
            "avatar_url": ["Invalid URL"],
        }

    def test_requires_token(self, client):
        assert client.patch("/api/v1/auth/me", json={"full_name": "Nobody"}).status_code == 401


class TestPassword:
    def test_change_password(self, client, owner, owner_headers, password):
        res = client.post("/api/v1/auth/password", headers=owner_headers,
                          json={"current_password": password, "new_password": "n3w-horse-battery",
                                "confirm_new_password": "n3w-horse-battery"})
        assert res.status_code == 200
        assert res.get_json()["data"] == {"updated": True}

        res = client.post("/api/v1/auth/login",
                          json={"email": owner.email, "password": password})
        assert res.status_code == 401
        res = client.post("/api/v1/auth/login",
                          json={"email": owner.email, "password": "n3w-horse-battery"})
        assert res.status_code == 200

    def test_wrong_current_password(self, client, owner, owner_headers):
        before = owner.password_hash
        res = client.post("/api/v1/auth/password", headers=owner_headers,
                          json={"current_password": "not-my-password",
                                "new_password": "n3w-horse-battery"})
        assert res.status_code == 422
        assert res.get_json()["field_errors"] == {
            "current_password": ["Current password is incorrect"]}
        assert db.session.get(User, owner.id).password_hash == before

    def test_new_password_rules(self, client, owner_headers, password):
        res = client.post("/api/v1/auth/password", headers=owner_headers,
                          json={"current_password": password, "new_password": "short"})
        assert res.get_json()["field_errors"]["new_password"] == [
            "Password must be at least 8 characters"]

        res = client.post("/api/v1/auth/password", headers=owner_headers,
                          json={"current_password": password, "new_password": password})
        assert res.get_json()["field_errors"]["new_password"] == [
            "New password must be different from current password"]

        res = client.post("/api/v1/auth/password", headers=owner_headers,
                          json={"current_password": password, "new_password": "n3w-horse-battery",
                                "confirm_new_password": "n3w-horse-batery"})
        assert res.status_code == 422
        assert res.get_json()["field_errors"] == {
            "confirm_new_password": ["Passwords do not match"]}
