"""
tests/test_auth_middleware.py -- Integration tests for the authentication pipeline.

Drives auth/dependencies.authenticate_request() through GET /api/v1/auth/me and
checks that each rejection carries its own message:
  - no token / malformed Authorization header
  - garbage and expired tokens (distinct codes)
  - account deleted or deactivated after the token was issued
  - refresh token presented as a session token
Also: cookie wins over the Bearer header, optional auth treats a bad token as
anonymous, and role / permission dependencies return 403.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.tokens import issue_refresh_token, issue_session_token
from core.config import get_settings

ME = "/api/v1/auth/me"


def _error(resp) -> dict:
    return resp.json()["error"]


class TestRejections:
    def test_no_token(self, client) -> None:
        resp = client.get(ME)
        assert resp.status_code == 401
        assert _error(resp)["message"] == "No token provided"

    def test_non_bearer_header_counts_as_missing(self, client, make_account) -> None:
        _, token = make_account()
        resp = client.get(ME, headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401
        assert _error(resp)["message"] == "No token provided"

    def test_garbage_token(self, client) -> None:
        resp = client.get(ME, headers={"Authorization": "Bearer abc.def.ghi"})
        assert resp.status_code == 401
        assert _error(resp) == {"code": "token_invalid", "message": "Invalid token"}

    def test_expired_token(self, client, make_account) -> None:
        user, _ = make_account()
        lifetime = get_settings().access_token_expire_seconds
        token = issue_session_token(
            user.id, user.role, now=datetime.now(timezone.utc) - timedelta(seconds=lifetime + 60)
        )
        resp = client.get(ME, headers=make_account.bearer(token))
        assert resp.status_code == 401
        assert _error(resp) == {"code": "token_expired", "message": "Token has expired"}

    def test_refresh_token_is_not_a_session(self, client, make_account) -> None:
        user, _ = make_account()
        resp = client.get(ME, headers=make_account.bearer(issue_refresh_token(user.id, user.role)))
        assert resp.status_code == 401
        assert _error(resp)["message"] == "Invalid token"

    def test_token_outlives_account(self, api, client, make_account) -> None:
        user, token = make_account()
        api.user_store.delete_user(user.id)
        resp = client.get(ME, headers=make_account.bearer(token))
        assert resp.status_code == 401
        assert _error(resp)["message"] == "User no longer exists"

    def test_deactivated_after_issue(self, api, client, make_account) -> None:
        user, token = make_account()
        api.user_store.update_user(user.id, is_active=False)
        resp = client.get(ME, headers=make_account.bearer(token))
        assert resp.status_code == 401
        assert _error(resp)["message"] == "User account is deactivated"

    def test_password_changed_after_issue(self, api, client, make_account) -> None:
        user, _ = make_account()
        token = issue_session_token(user.id, user.role, now=datetime.now(timezone.utc) - timedelta(minutes=5))
        api.user_store.set_password(user.id, "$2b$12$irrelevant")
        resp = client.get(ME, headers=make_account.bearer(token))
        assert resp.status_code == 401
        assert _error(resp)["message"] == "User recently changed password. Please log in again"


class TestTokenSources:
    def test_bearer_header(self, client, make_account) -> None:
        user, token = make_account()
        resp = client.get(ME, headers=make_account.bearer(token))
        assert resp.status_code == 200
        assert resp.json()["id"] == user.id

    def test_cookie_preferred_over_header(self, client, make_account) -> None:
        cookie_user, _ = make_account()
        _, header_token = make_account()
        client.post("/api/v1/auth/login", json={"email": cookie_user.email, "password": make_account.password})
        resp = client.get(ME, headers=make_account.bearer(header_token))
        assert resp.status_code == 200
        assert resp.json()["id"] == cookie_user.id


class TestOptionalAuth:
    def test_bad_token_is_anonymous_on_public_route(self, api, client, make_account, make_course) -> None:
        instructor, _ = make_account(role="instructor")
        course = make_course(instructor.id)
        resp = client.get(f"/api/v1/courses/{course.id}", headers={"Authorization": "Bearer nonsense"})
        assert resp.status_code == 200

    def test_bad_token_cannot_preview_draft(self, api, client, make_account, make_course) -> None:
        instructor, _ = make_account(role="instructor")
        draft = make_course(instructor.id, is_published=False)
        resp = client.get(f"/api/v1/courses/{draft.id}", headers={"Authorization": "Bearer nonsense"})
        assert resp.status_code == 404


class TestAuthorization:
    def test_role_gate(self, client, make_account) -> None:
        _, token = make_account(role="student")
        resp = client.get("/api/v1/admin/users", headers=make_account.bearer(token))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "forbidden"

    def test_permission_gate(self, client, make_account) -> None:
        # Designers hold only "read", so course authoring (write) is refused.
        _, token = make_account(role="designer")
        body = {
            "title": "Color theory",
            "description": "Hue, value and saturation.",
            "category": "design",
            "duration_hours": 3,
            "price": 0,
        }
        resp = client.post("/api/v1/courses", json=body, headers=make_account.bearer(token))
        assert resp.status_code == 403

    def test_unauthenticated_before_forbidden(self, client) -> None:
        assert client.get("/api/v1/admin/users").status_code == 401
