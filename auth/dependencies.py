"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

authenticate_request() is the whole pipeline, run in this order:
  1. Extract the token: "token" cookie first, else Authorization: Bearer.
  2. Verify signature, expiry and type (auth/tokens.verify_session_token).
  3. Load the account. A valid token can outlive its subject.
  4. Reject deactivated accounts.
  5. Reject tokens issued before the last password change.
  6. Bind the account to request.state.user.
Every rejection is an AuthenticationError with its own message.

get_current_user() is the mandatory variant used as a dependency.
get_optional_user() returns None instead of raising, and ONLY for
AuthenticationError -- a database outage still propagates as a 500.
require_roles() / require_permission() build dependencies that authorize
after authenticating.

Layer rule: no imports from api/, courses/, or mail/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import User
from auth.permissions import PermissionTable, has_role
from auth.store import UserStore
from auth.tokens import ACCESS_COOKIE, issued_before_password_change, verify_session_token
from core.errors import AuthenticationError, AuthorizationError


def extract_token(request: Request) -> str | None:
    """Return the session token from the cookie, else from a Bearer header.

    A header that is present but not of the form "Bearer <token>" yields None,
    same as no header at all.
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def load_account(user_store: UserStore, user_id: int) -> User:
    """Load an account for an already-verified token and run the account checks."""
    user = user_store.get_by_id(user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")
    return user


def authenticate_request(request: Request) -> User:
    """Run the full authentication pipeline. Raises AuthenticationError on any failure."""
    token = extract_token(request)
    if token is None:
        raise AuthenticationError("No token provided")

    claims = verify_session_token(token, expected_type="access")

    user = load_account(request.app.state.user_store, claims.user_id)
    if issued_before_password_change(claims, user.password_changed_at):
        raise AuthenticationError("User recently changed password. Please log in again")

    request.state.user = user
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return authenticate_request(request)


def get_optional_user(request: Request) -> User | None:
    """Authenticate if credentials are present and valid; otherwise None."""
    try:
        return authenticate_request(request)
    except AuthenticationError:
        return None


def require_roles(*roles: str) -> Callable[[Request], User]:
    """Dependency factory: authenticated AND role in roles.

        @router.post("/courses", dependencies=[Depends(require_roles("admin", "manager"))])
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> User:
        user = authenticate_request(request)
        if not has_role(user.role, allowed):
            raise AuthorizationError()
        return user

    return dependency


def require_permission(permission: str) -> Callable[[Request], User]:
    """Dependency factory: authenticated AND the role's permission set holds permission."""

    def dependency(request: Request) -> User:
        user = authenticate_request(request)
        table: PermissionTable = request.app.state.permissions
        if not table.has_permission(user.role, permission):
            raise AuthorizationError()
        return user

    return dependency

