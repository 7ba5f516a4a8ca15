"""
auth/tokens.py -- JWT, password hashing, and single-use token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, role, a type marker ("access" or "refresh"), iat and exp.
       Verification raises ExpiredTokenError or InvalidTokenError so callers
       can tell a stale session apart from a forged or malformed one.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  Single-use tokens (email verification, password reset):
       secrets.token_hex(32) gives 256 bits of entropy. Only the sha256 digest
       is stored; comparison uses hmac.compare_digest. Correctness and expiry
       are separate checks so the caller can report "invalid" and "expired"
       differently.

  Cookies: "token" (access) and "refreshToken" (refresh), httpOnly,
       SameSite=strict, Secure from Settings.secure_cookies. One helper sets
       both so every flow uses the same cookie policy.

Layer rule: no imports from api/, courses/, or mail/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import SingleUseToken, TokenClaims
from core.config import get_settings
from core.errors import ExpiredTokenError, InvalidTokenError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("falcons.auth")

_ALGORITHM = "HS256"

ACCESS_COOKIE = "token"
REFRESH_COOKIE = "refreshToken"

TOKEN_TYPES = ("access", "refresh")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input past 72 bytes. The API layer caps passwords at
    128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("falcons_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User (with hashed_password populated) when the password
    matches, None otherwise. Does NOT check is_active -- the login route
    reports deactivation separately, and only after the password matched.
    """
    user = store.get_by_email(email, include_password=True)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Session tokens (JWT)
# ---------------------------------------------------------------------------


def _lifetime_for(token_type: str) -> int:
    settings = get_settings()
    if token_type == "refresh":
        return settings.refresh_token_expire_seconds
    return settings.access_token_expire_seconds


def issue_session_token(user_id: int, role: str, token_type: str = "access", now: datetime | None = None) -> str:
    """Encode a signed JWT for the given account.

    Args:
        user_id:    Account primary key.
        role:       Account role at issue time.
        token_type: "access" (session) or "refresh". The marker is embedded so
                    a refresh token can never be replayed as a session token.
        now:        Issue time. Defaults to the current UTC time; tests pass an
                    earlier instant to simulate clock movement.
    """
    if token_type not in TOKEN_TYPES:
        raise ValueError(f"Unknown token type: {token_type!r}")
    issued_at = now or _utcnow()
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "role": role,
        "type": token_type,
        "iat": issued_at.timestamp(),
        "exp": issued_at + timedelta(seconds=_lifetime_for(token_type)),
    }
    return jwt.encode(payload, get_settings().secret_key, algorithm=_ALGORITHM)


def issue_refresh_token(user_id: int, role: str, now: datetime | None = None) -> str:
    return issue_session_token(user_id, role, token_type="refresh", now=now)


def verify_session_token(token: str, expected_type: str = "access") -> TokenClaims:
    """Verify signature, expiry and type of a JWT.

    Raises:
        ExpiredTokenError: signature is valid but exp has passed.
        InvalidTokenError: anything else -- bad signature, malformed token,
                           missing claims, or the wrong token type.
    """
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError() from exc
    except JWTError as exc:
        raise InvalidTokenError() from exc

    try:
        user_id = int(payload["user_id"])
        role = str(payload["role"])
        issued_at = datetime.fromtimestamp(float(payload["iat"]), tz=timezone.utc)
        token_type = payload["type"]
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidTokenError() from exc

    if token_type != expected_type:
        raise InvalidTokenError()
    return TokenClaims(user_id=user_id, role=role, issued_at=issued_at, token_type=token_type)


def issued_before_password_change(claims: TokenClaims, password_changed_at: datetime | None) -> bool:
    """True when the token predates the account's last password change.

    iat is a fractional NumericDate, so a token minted in the same second as
    the change is still ordered correctly against it.
    """
    if password_changed_at is None:
        return False
    changed = password_changed_at
    if changed.tzinfo is None:
        changed = changed.replace(tzinfo=timezone.utc)
    return claims.issued_at < changed


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


def hash_single_use_token(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def issue_single_use_token(lifetime_seconds: int, now: datetime | None = None) -> SingleUseToken:
    """Mint a random secret plus the digest and expiry to persist."""
    secret = secrets.token_hex(32)
    issued_at = now or _utcnow()
    return SingleUseToken(
        secret=secret,
        secret_hash=hash_single_use_token(secret),
        expires_at=issued_at + timedelta(seconds=lifetime_seconds),
    )


def issue_email_verification_token(now: datetime | None = None) -> SingleUseToken:
    return issue_single_use_token(get_settings().email_verification_expire_seconds, now=now)


def issue_password_reset_token(now: datetime | None = None) -> SingleUseToken:
    return issue_single_use_token(get_settings().password_reset_expire_seconds, now=now)


def verify_single_use_token(secret: str, stored_hash: str | None) -> bool:
    """Return True only if secret hashes to stored_hash. Says nothing about expiry."""
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_single_use_token(secret), stored_hash)


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True once now is at or past expires_at. A missing expiry counts as expired."""
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or _utcnow()) >= expires_at


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str | None = None) -> None:
    """Write the session (and optionally refresh) token as httpOnly cookies.

    max_age matches each JWT's lifetime so cookie and token expire together.
    """
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_COOKIE,
            value=refresh_token,
            httponly=True,
            samesite="strict",
            secure=settings.secure_cookies,
            max_age=settings.refresh_token_expire_seconds,
        )


def clear_auth_cookies(response) -> None:
    settings = get_settings()
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, httponly=True, samesite="strict", secure=settings.secure_cookies)
