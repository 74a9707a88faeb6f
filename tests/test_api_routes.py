"""
tests/test_api_routes.py -- Integration tests for the /api/v1 routes.

These tests exercise the full stack: FastAPI routing -> rate-limit and auth
dependencies -> AuthService -> SQLite stores -> envelope serialization.

Coverage:
  - Register / verify-otp / login / profile / refresh-token / resend-otp happy paths
  - Domain errors mapped to status codes and stable error codes
  - Role-gated routes: 401 without a token, 403 for the wrong role
  - Login and global rate limits: 429 with Retry-After
  - Trace ID propagation

Fixtures used (from conftest.py):
  - api_client / make_client: TestClient on the real app with isolated stores
  - email_sender: RecordingEmailSender the app sends OTPs through
"""

from __future__ import annotations

import itertools

import pytest
from fastapi.testclient import TestClient

from conftest import RecordingEmailSender, register_payload

_phones = (f"0300{n:07d}" for n in itertools.count(1000001))


def _register_and_verify(client: TestClient, sender: RecordingEmailSender, email: str, role: str = "customer") -> None:
    resp = client.post("/api/v1/auth/register", json=register_payload(email=email, phone=next(_phones), role=role))
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/v1/auth/verify-otp", json={"email": email, "code": sender.last_code(email)})
    assert resp.status_code == 200, resp.text


def _login(client: TestClient, email: str, password: str = "Password123") -> dict:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterRoute:
    def test_register_returns_201_envelope(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload())
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["trace_id"]
        user = body["data"]["user"]
        assert user["email"] == "a@x.com"
        assert user["phone"] == "+923001234567"
        assert user["role"] == "customer"
        assert user["is_verified"] is False
        assert "hashed_password" not in user
        assert "password" not in user

    def test_invalid_phone_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(phone="+92301234567"))
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "invalid_phone_format"

    def test_invalid_role_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(role="superuser"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_role"

    def test_duplicate_email_is_409(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=register_payload())
        resp = api_client.post("/api/v1/auth/register", json=register_payload(phone="03009999999"))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_exists"

    def test_duplicate_phone_is_409(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=register_payload())
        resp = api_client.post("/api/v1/auth/register", json=register_payload(email="b@x.com"))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "phone_exists"

    def test_malformed_body_is_422(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(email="not-an-email", password="short"))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    @pytest.mark.parametrize("email", ["x@y..z", "\"@x.y", "a@b", "a b@x.com"])
    def test_malformed_email_is_422(self, api_client: TestClient, email: str) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(email=email))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_names_are_trimmed(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(first_name="  Ayesha "))
        assert resp.status_code == 201
        assert resp.json()["data"]["user"]["first_name"] == "Ayesha"


class TestVerifyAndLoginRoutes:
    def test_wrong_otp_is_400_and_correct_otp_verifies(self, api_client: TestClient, email_sender) -> None:
        api_client.post("/api/v1/auth/register", json=register_payload())
        code = email_sender.last_code("a@x.com")
        wrong = "000000" if code != "000000" else "111111"

        resp = api_client.post("/api/v1/auth/verify-otp", json={"email": "a@x.com", "code": wrong})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_otp"

        resp = api_client.post("/api/v1/auth/verify-otp", json={"email": "a@x.com", "code": code})
        assert resp.status_code == 200
        assert resp.json()["data"]["message"]

    def test_verify_without_otp_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/verify-otp", json={"email": "nobody@x.com", "code": "123456"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_not_found"

    def test_login_before_verification_is_403(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=register_payload())
        resp = api_client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "Password123"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "user_not_verified"

    def test_bad_credentials_are_indistinguishable(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        wrong_password = api_client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "WrongPassword"})
        unknown_email = api_client.post("/api/v1/auth/login", json={"email": "nobody@x.com", "password": "anything"})
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json()["error"] == unknown_email.json()["error"]

    def test_password_whitespace_is_significant(self, api_client: TestClient, email_sender) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload(password="  Password123  "))
        assert resp.status_code == 201
        resp = api_client.post("/api/v1/auth/verify-otp", json={"email": "a@x.com", "code": email_sender.last_code("a@x.com")})
        assert resp.status_code == 200

        trimmed = api_client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "Password123"})
        assert trimmed.status_code == 401
        exact = api_client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "  Password123  "})
        assert exact.status_code == 200

    def test_login_returns_tokens(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        resp = api_client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "Password123"})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()["data"]
        assert data["access_token"] and data["refresh_token"]
        assert data["access_token"] != data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["user"]["is_verified"] is True


class TestProfileAndRefreshRoutes:
    def test_profile_requires_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_profile_rejects_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/profile", headers=_bearer("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_profile_rejects_refresh_token(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        tokens = _login(api_client, "a@x.com")
        resp = api_client.get("/api/v1/auth/profile", headers=_bearer(tokens["refresh_token"]))
        assert resp.status_code == 401

    def test_profile_returns_current_user(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        tokens = _login(api_client, "a@x.com")
        resp = api_client.get("/api/v1/auth/profile", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "a@x.com"

    def test_refresh_rotates_and_rejects_replay(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        tokens = _login(api_client, "a@x.com")

        resp = api_client.post("/api/v1/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        rotated = resp.json()["data"]
        assert rotated["refresh_token"] != tokens["refresh_token"]

        replay = api_client.post("/api/v1/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "revoked_token"

        resp = api_client.get("/api/v1/auth/profile", headers=_bearer(rotated["access_token"]))
        assert resp.status_code == 200

    def test_refresh_with_access_token_is_401(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        tokens = _login(api_client, "a@x.com")
        resp = api_client.post("/api/v1/auth/refresh-token", json={"refresh_token": tokens["access_token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"


class TestResendOTPRoute:
    def test_unknown_user_is_404(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/resend-otp", json={"email": "nobody@x.com"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_live_otp_is_429(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=register_payload())
        resp = api_client.post("/api/v1/auth/resend-otp", json={"email": "a@x.com"})
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "otp_already_sent"

    def test_verified_user_is_400(self, api_client: TestClient, email_sender) -> None:
        _register_and_verify(api_client, email_sender, "a@x.com")
        resp = api_client.post("/api/v1/auth/resend-otp", json={"email": "a@x.com"})
        assert resp.status_code == 400


class TestRoleRoutes:
    def test_role_routes_require_token(self, api_client: TestClient) -> None:
        for path in ("/api/v1/admin/users", "/api/v1/finance/reports", "/api/v1/manager/dashboard"):
            assert api_client.get(path).status_code == 401

    def test_access_matrix(self, api_client: TestClient, email_sender) -> None:
        expected = {
            "admin": {"admin/users": 200, "finance/reports": 200, "manager/dashboard": 200},
            "customer": {"admin/users": 403, "finance/reports": 403, "manager/dashboard": 403},
            "finance_manager": {"admin/users": 403, "finance/reports": 200, "manager/dashboard": 403},
            "manager": {"admin/users": 403, "finance/reports": 403, "manager/dashboard": 200},
        }
        for role, routes in expected.items():
            email = f"{role}@x.com"
            _register_and_verify(api_client, email_sender, email, role=role)
            headers = _bearer(_login(api_client, email)["access_token"])
            for path, status in routes.items():
                resp = api_client.get(f"/api/v1/{path}", headers=headers)
                assert resp.status_code == status, f"{role} -> {path}: {resp.status_code}"
                if status == 403:
                    assert resp.json()["error"]["code"] == "forbidden"
                else:
                    assert resp.json()["data"]["role"] == role


class TestRateLimits:
    def test_login_limit_returns_429_with_retry_after(self, make_client) -> None:
        client = make_client(login_rate_limit_requests_per_minute=2)
        body = {"email": "nobody@x.com", "password": "anything"}
        assert client.post("/api/v1/auth/login", json=body).status_code == 401
        assert client.post("/api/v1/auth/login", json=body).status_code == 401
        resp = client.post("/api/v1/auth/login", json=body)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert 0 < int(resp.headers["Retry-After"]) <= 60

    def test_login_limit_does_not_touch_other_routes(self, make_client) -> None:
        client = make_client(login_rate_limit_requests_per_minute=1)
        body = {"email": "nobody@x.com", "password": "anything"}
        client.post("/api/v1/auth/login", json=body)
        assert client.post("/api/v1/auth/login", json=body).status_code == 429
        assert client.post("/api/v1/auth/resend-otp", json={"email": "nobody@x.com"}).status_code == 404

    def test_global_limit(self, make_client) -> None:
        client = make_client(rate_limit_requests_per_minute=3)
        statuses = [client.get("/api/v1/auth/profile").status_code for _ in range(4)]
        assert statuses == [401, 401, 401, 429]

    def test_health_is_not_rate_limited(self, make_client) -> None:
        client = make_client(rate_limit_requests_per_minute=1)
        for _ in range(5):
            assert client.get("/api/v1/health").status_code == 200


class TestTraceID:
    def test_client_trace_id_is_echoed(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/resend-otp", json={"email": "nobody@x.com"}, headers={"X-Trace-ID": "trace-123"})
        assert resp.headers["X-Trace-ID"] == "trace-123"
        assert resp.json()["trace_id"] == "trace-123"

    def test_trace_id_is_generated(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=register_payload())
        assert resp.headers["X-Trace-ID"] == resp.json()["trace_id"]
