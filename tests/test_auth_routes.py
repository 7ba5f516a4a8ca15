"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth.

These tests exercise the full stack: FastAPI routing -> slowapi limits ->
route handler -> UserStore / LogEmailSender -> response envelope and cookies.

Coverage:
  - Register: 201, cookies, mail sent, duplicate email 409, role restriction,
    per-field validation errors, debug-only secret
  - Email verification: succeeds once, then "No verification token found";
    wrong, expired and unknown-email failures each have their own message
  - Login: indistinguishable failures for wrong password / unknown email,
    deactivated account, no-store header, last_login stamp
  - Logout clears both cookies; refresh mints a new pair
  - Password reset end to end, including rejection of a pre-reset session
  - Credential endpoints share one moving-window budget; 429 with Retry-After
"""

from __future__ import annotations

import itertools
import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.tokens import issue_session_token
from core.config import get_settings

PASSWORD = "register-pass-1"

_seq = itertools.count(1)


def _email(prefix: str) -> str:
    return f"{prefix}-{next(_seq)}@auth.example.com"


def _register(client: TestClient, email: str | None = None, **overrides):
    body = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": email or _email("reg"),
        "password": PASSWORD,
    }
    body.update(overrides)
    return client.post("/api/v1/auth/register", json=body)


class TestRegister:
    def test_register_returns_201_with_user_and_cookies(self, api, client: TestClient, make_account) -> None:
        email = _email("reg")
        resp = _register(client, email=email)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user"]["email"] == email
        assert data["user"]["role"] == "student"
        assert data["user"]["is_email_verified"] is False
        assert "hashed_password" not in data["user"]
        assert data["email_verification_token"]
        assert resp.cookies.get("token")
        assert resp.cookies.get("refreshToken")
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_sends_verification_and_welcome_mail(self, api, client: TestClient, make_account) -> None:
        email = _email("reg")
        resp = _register(client, email=email)
        secret = resp.json()["email_verification_token"]
        subjects = [m.subject for m in api.mailer.outbox]
        assert subjects == ["Verify your email address", "Welcome to Falcons!"]
        assert all(m.to == email for m in api.mailer.outbox)
        assert f"/verify-email?token={secret}" in api.mailer.outbox[0].html

    def test_registered_session_works(self, client: TestClient) -> None:
        email = _email("reg")
        _register(client, email=email)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["email"] == email

    def test_only_hash_of_secret_is_stored(self, api, client: TestClient, make_account) -> None:
        email = _email("reg")
        secret = _register(client, email=email).json()["email_verification_token"]
        stored = api.user_store.get_by_email(email).email_verification_token
        assert stored and stored != secret

    def test_duplicate_email_is_409(self, client: TestClient) -> None:
        email = _email("dup")
        assert _register(client, email=email).status_code == 201
        client.cookies.clear()
        resp = _register(client, email=email)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_email"
        assert resp.json()["error"]["message"] == "Email already in use"

    def test_email_is_case_insensitive(self, client: TestClient) -> None:
        email = _email("case")
        _register(client, email=email)
        client.cookies.clear()
        assert _register(client, email=email.upper()).status_code == 409

    def test_chosen_role_within_registration_roles(self, client: TestClient) -> None:
        resp = _register(client, role="instructor")
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "instructor"

    def test_admin_role_cannot_be_self_assigned(self, client: TestClient) -> None:
        resp = _register(client, role="admin")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert [e["field"] for e in error["errors"]] == ["role"]

    def test_missing_fields_report_each_field(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/register", json={"email": "not-an-email"})
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.json()["error"]["errors"]}
        assert {"first_name", "last_name", "email", "password"} <= fields

    def test_secret_withheld_outside_debug(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "debug", False)
        resp = _register(client)
        assert resp.status_code == 201
        assert resp.json()["email_verification_token"] is None


class TestVerifyEmail:
    def test_verify_once_then_no_token_found(self, api, client: TestClient, make_account) -> None:
        email = _email("verify")
        secret = _register(client, email=email).json()["email_verification_token"]

        first = client.post("/api/v1/auth/verify-email", json={"email": email, "token": secret})
        assert first.status_code == 200, first.text
        assert api.user_store.get_by_email(email).is_email_verified is True

        second = client.post("/api/v1/auth/verify-email", json={"email": email, "token": secret})
        assert second.status_code == 401
        assert second.json()["error"]["message"] == "No verification token found"

    def test_wrong_secret(self, client: TestClient) -> None:
        email = _email("verify")
        _register(client, email=email)
        resp = client.post("/api/v1/auth/verify-email", json={"email": email, "token": "0" * 64})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid verification token"

    def test_expired_secret_rejected_even_if_correct(self, api, client: TestClient, make_account) -> None:
        email = _email("verify")
        secret = _register(client, email=email).json()["email_verification_token"]
        user = api.user_store.get_by_email(email)
        api.user_store.set_email_verification(
            user.id, user.email_verification_token, datetime.now(timezone.utc) - timedelta(seconds=1)
        )
        resp = client.post("/api/v1/auth/verify-email", json={"email": email, "token": secret})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Verification token has expired"
        assert api.user_store.get_by_email(email).is_email_verified is False

    def test_unknown_email(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/verify-email", json={"email": _email("ghost"), "token": "abc"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or token"


class TestLogin:
    def test_login_sets_cookies_and_no_store(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        resp = client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.cookies.get("token")
        assert resp.cookies.get("refreshToken")
        assert resp.json()["user"]["last_login"] is not None
        assert api.user_store.get_by_id(user.id).last_login is not None

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        wrong_password = client.post("/api/v1/auth/login", json={"email": user.email, "password": "nope-nope"})
        unknown_email = client.post(
            "/api/v1/auth/login", json={"email": _email("ghost"), "password": make_account.password}
        )
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["message"] == "Incorrect email or password"

    def test_deactivated_account(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account(is_active=False)
        resp = client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "User account is deactivated"

    def test_missing_password_is_400(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"email": _email("login")})
        assert resp.status_code == 400
        assert [e["field"] for e in resp.json()["error"]["errors"]] == ["password"]


class TestSessionLifecycle:
    def test_logout_clears_both_cookies(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        assert client.get("/api/v1/auth/me").status_code == 200

        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert "token" not in client.cookies
        assert "refreshToken" not in client.cookies
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_refresh_issues_new_pair(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["id"] == user.id
        assert resp.cookies.get("token")

    def test_refresh_without_cookie(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "No refresh token provided"

    def test_refresh_rejected_for_deactivated_account(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        api.user_store.update_user(user.id, is_active=False)
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "User account is deactivated"


class TestPasswordReset:
    def test_reset_invalidates_earlier_sessions(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        old_token = issue_session_token(user.id, user.role, now=datetime.now(timezone.utc) - timedelta(hours=1))
        assert client.get("/api/v1/auth/me", headers=make_account.bearer(old_token)).status_code == 200

        requested = client.post("/api/v1/auth/request-password-reset", json={"email": user.email})
        assert requested.status_code == 200, requested.text
        secret = requested.json()["password_reset_token"]
        assert api.mailer.outbox[-1].subject == "Reset your password"
        assert f"/reset-password?token={secret}" in api.mailer.outbox[-1].html

        reset = client.post(
            "/api/v1/auth/reset-password",
            json={"email": user.email, "token": secret, "new_password": "brand-new-pass"},
        )
        assert reset.status_code == 200, reset.text

        stale = client.get("/api/v1/auth/me", headers=make_account.bearer(old_token))
        assert stale.status_code == 401
        assert stale.json()["error"]["message"] == "User recently changed password. Please log in again"

        old_login = client.post("/api/v1/auth/login", json={"email": user.email, "password": make_account.password})
        assert old_login.status_code == 401
        new_login = client.post("/api/v1/auth/login", json={"email": user.email, "password": "brand-new-pass"})
        assert new_login.status_code == 200
        assert client.get("/api/v1/auth/me").status_code == 200

    def test_reset_rejects_session_from_the_same_second(self, client: TestClient, make_account) -> None:
        user, fresh_token = make_account()
        secret = client.post("/api/v1/auth/request-password-reset", json={"email": user.email}).json()[
            "password_reset_token"
        ]
        body = {"email": user.email, "token": secret, "new_password": "same-second-pass"}
        assert client.post("/api/v1/auth/reset-password", json=body).status_code == 200

        stale = client.get("/api/v1/auth/me", headers=make_account.bearer(fresh_token))
        assert stale.status_code == 401
        assert stale.json()["error"]["message"] == "User recently changed password. Please log in again"
        relogin = client.post("/api/v1/auth/login", json={"email": user.email, "password": "same-second-pass"})
        assert relogin.status_code == 200
        assert client.get("/api/v1/auth/me").status_code == 200

    def test_reset_token_is_single_use(self
, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        secret = client.post("/api/v1/auth/request-password-reset", json={"email": user.email}).json()[
            "password_reset_token"
        ]
        body = {"email": user.email, "token": secret, "new_password": "first-new-pass"}
        assert client.post("/api/v1/auth/reset-password", json=body).status_code == 200
        again = client.post("/api/v1/auth/reset-password", json=body)
        assert again.status_code == 401
        assert again.json()["error"]["message"] == "No password reset token found"

    def test_wrong_reset_secret(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        client.post("/api/v1/auth/request-password-reset", json={"email": user.email})
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": user.email, "token": "f" * 64, "new_password": "whatever-pass"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid password reset token"

    def test_expired_reset_secret(self, api, client: TestClient, make_account) -> None:
        user, _ = make_account()
        secret = client.post("/api/v1/auth/request-password-reset", json={"email": user.email}).json()[
            "password_reset_token"
        ]
        stored = api.user_store.get_by_id(user.id)
        api.user_store.set_password_reset(
            user.id, stored.password_reset_token, datetime.now(timezone.utc) - timedelta(minutes=1)
        )
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": user.email, "token": secret, "new_password": "whatever-pass"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Password reset token has expired"

    def test_unknown_email(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/request-password-reset", json={"email": _email("ghost")})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "No user found with that email"

    def test_secret_withheld_outside_debug(self, api, client: TestClient, make_account, monkeypatch) -> None:
        user, _ = make_account()
        monkeypatch.setattr(get_settings(), "debug", False)
        resp = client.post("/api/v1/auth/request-password-reset", json={"email": user.email})
        assert resp.status_code == 200
        assert resp.json()["password_reset_token"] is None


class TestAttemptLimit:
    @pytest.fixture()
    def tight_budget(self, monkeypatch):
        def apply(limit: str) -> None:
            monkeypatch.setattr(get_settings(), "auth_rate_limit", limit)
            limiter.reset()

        return apply

    def test_credential_endpoints_share_a_budget(self, client: TestClient, tight_budget) -> None:
        tight_budget("2/minute")
        body = {"email": _email("ghost"), "password": "whatever"}
        assert client.post("/api/v1/auth/login", json=body).status_code == 401
        assert client.post("/api/v1/auth/request-password-reset", json={"email": body["email"]}).status_code == 401

        blocked = client.post("/api/v1/auth/login", json=body)
        assert blocked.status_code == 429
        assert blocked.json()["error"]["code"] == "rate_limited"
        assert blocked.json()["error"]["message"] == "Too many authentication attempts. Please try again later."
        assert 1 <= int(blocked.headers["Retry-After"]) <= 60
        assert _register(client).status_code == 429

    def test_logout_is_not_limited(self, client: TestClient, tight_budget) -> None:
        tight_budget("1/minute")
        for _ in range(3):
            assert client.post("/api/v1/auth/logout").status_code == 200

    def test_window_moves_past_earliest_attempt(self, client: TestClient, tight_budget) -> None:
        tight_budget("2/second")
        body = {"email": _email("ghost"), "password": "whatever"}
        assert client.post("/api/v1/auth/login", json=body).status_code == 401
        assert client.post("/api/v1/auth/login", json=body).status_code == 401
        assert client.post("/api/v1/auth/login", json=body).status_code == 429
        time.sleep(1.1)
        assert client.post("/api/v1/auth/login", json=body).status_code == 401


class TestMailFailure:
    def test_delivery_failure_propagates(self, api, client: TestClient, make_account, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise OSError("SMTP unreachable")

        monkeypatch.setattr(api.mailer, "send_verification_email", broken)
        resp = _register(client)
        assert resp.status_code == 500
        assert resp.json()["error"]["message"] == "Something went wrong!"
