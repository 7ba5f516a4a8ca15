"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work.

Layer rule: no imports from api/, courses/, or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLES: tuple[str, ...] = ("admin", "manager", "instructor", "student", "jobseeker", "employee", "designer")

# Roles that bypass ownership and enrollment checks.
STAFF_ROLES: frozenset[str] = frozenset({"admin", "manager"})


@dataclass
class User:
    """An account on the platform.

    email is the unique login identity.

    hashed_password is only populated when the store is asked for it
    (get_by_email(..., include_password=True)); default reads leave it None so
    the hash does not travel further than the login and reset paths.

    email_verification_token / password_reset_token hold the sha256 hex digest
    of a single-use secret, never the secret itself. Each is paired with an
    expiry and both are cleared together once the token is consumed.

    password_changed_at invalidates every session token issued before it.
    """

    email: str
    first_name: str
    last_name: str
    role: str = "student"
    id: int | None = None
    hashed_password: str | None = None
    phone: str | None = None
    avatar: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    email_verification_token: str | None = None
    email_verification_expires: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expires: datetime | None = None
    password_changed_at: datetime | None = None
    last_login: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a session or refresh JWT."""

    user_id: int
    role: str
    issued_at: datetime
    token_type: str  # "access" | "refresh"


@dataclass(frozen=True)
class SingleUseToken:
    """A freshly minted single-use secret.

    secret goes out-of-band (email) and is never persisted.
    secret_hash and expires_at are what the store keeps.
    """

    secret: str
    secret_hash: str
    expires_at: datetime
