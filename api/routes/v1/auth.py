"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; sets token cookies; 201
  POST /api/v1/auth/login                   -- password login; sets token cookies
  POST /api/v1/auth/logout                  -- clears both cookies
  POST /api/v1/auth/verify-email            -- consume the email verification token
  POST /api/v1/auth/request-password-reset  -- mint a reset token and mail it
  POST /api/v1/auth/reset-password          -- consume the reset token; new password
  POST /api/v1/auth/refresh                 -- new access token from the refresh cookie
  GET  /api/v1/auth/me                      -- current account (requires auth)

Security:
  Credential endpoints share one per-client slowapi budget (auth_attempts,
  AUTH_RATE_LIMIT) instead of the blanket API budget.
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Login reports one message for unknown email and wrong password.
  Cache-Control: no-store on every response that carries a token.
  Single-use secrets are returned in the body only when DEBUG is on.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    PasswordResetRequest,
    PasswordResetResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyEmailRequest,
)
from api.limiter import auth_attempts
from auth.dependencies import get_current_user, load_account
from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    REFRESH_COOKIE,
    authenticate_user,
    clear_auth_cookies,
    hash_password,
    is_expired,
    issue_email_verification_token,
    issue_password_reset_token,
    issue_refresh_token,
    issue_session_token,
    issued_before_password_change,
    set_auth_cookies,
    verify_session_token,
    verify_single_use_token,
)
from core.config import get_settings
from core.errors import AuthenticationError, ValidationError
from mail.sender import EmailSender

logger = logging.getLogger("falcons.auth")

# Auth policy:
# - POST /auth/register, /login, /verify-email, /request-password-reset,
#   /reset-password: public, rate-limited per client (auth_attempts)
# - POST /auth/logout:   public -- clearing a cookie needs no prior auth
# - POST /auth/refresh:  refresh cookie required
# - GET  /auth/me:       requires auth (get_current_user)
router = APIRouter(prefix="/auth")

_BAD_CREDENTIALS = "Incorrect email or password"


def _token_response(status_code: int, body: AuthResponse, user: User) -> JSONResponse:
    """JSON response carrying a fresh access + refresh cookie pair."""
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    set_auth_cookies(
        resp,
        issue_session_token(user.id, user.role),
        issue_refresh_token(user.id, user.role),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
@auth_attempts
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, mail the verification link, and start a session.

    Roles outside REGISTRATION_ROLES (admin, manager) cannot be self-assigned;
    they are granted through the admin routes only.
    """
    settings = get_settings()
    user_store: UserStore = request.app.state.user_store
    mailer: EmailSender = request.app.state.mailer

    role = body.role.value if body.role is not None else settings.default_role
    if role not in settings.registration_roles:
        raise ValidationError(
            "Invalid role",
            errors=[{"field": "role", "message": f"Role '{role}' cannot be chosen at registration"}],
        )

    email = body.email.lower()
    user_id = user_store.create_user(
        User(
            email=email,
            first_name=body.first_name,
            last_name=body.last_name,
            role=role,
            hashed_password=hash_password(body.password),
        )
    )

    verification = issue_email_verification_token()
    user_store.set_email_verification(user_id, verification.secret_hash, verification.expires_at)
    mailer.send_verification_email(email, verification.secret, first_name=body.first_name)
    mailer.send_welcome_email(email, first_name=body.first_name)

    user = user_store.get_by_id(user_id)
    logger.info("Account %d registered (role=%s)", user_id, role)
    return _token_response(
        201,
        AuthResponse(
            message="User registered successfully. Please verify your email.",
            user=UserResponse.from_user(user),
            email_verification_token=verification.secret if settings.debug else None,
        ),
        user,
    )


@router.post("/login", response_model=AuthResponse)
@auth_attempts
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set token cookies.

    Unknown email and wrong password raise the same AuthenticationError
    message. Deactivation is only reported after the password matched.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email.lower(), body.password)
    if user is None:
        raise AuthenticationError(_BAD_CREDENTIALS)
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    user_store.update_last_login(user.id)
    user = user_store.get_by_id(user.id)
    logger.info("Account %d logged in", user.id)
    return _token_response(200, AuthResponse(message="Login successful", user=UserResponse.from_user(user)), user)


@router.post("/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear both token cookies. Sessions are stateless; nothing else to revoke."""
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_auth_cookies(resp)
    return resp


@router.post("/refresh", response_model=AuthResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new token pair.

    The refresh token passes through the same account checks as a session
    token: the account must still exist, be active, and not have changed its
    password since the token was issued.
    """
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise AuthenticationError("No refresh token provided")
    claims = verify_session_token(token, expected_type="refresh")
    user = load_account(request.app.state.user_store, claims.user_id)
    if issued_before_password_change(claims, user.password_changed_at):
        raise AuthenticationError("User recently changed password. Please log in again")
    return _token_response(200, AuthResponse(message="Token refreshed", user=UserResponse.from_user(user)), user)


# ---------------------------------------------------------------------------
# Single-use token flows
# ---------------------------------------------------------------------------


@router.post("/verify-email", response_model=MessageResponse)
@auth_attempts
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    """Consume the verification token. Presence, expiry and match fail separately."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email.lower())
    if user is None:
        raise AuthenticationError("Invalid email or token")
    if not user.email_verification_token or user.email_verification_expires is None:
        raise AuthenticationError("No verification token found")
    if is_expired(user.email_verification_expires):
        raise AuthenticationError("Verification token has expired")
    if not verify_single_use_token(body.token, user.email_verification_token):
        raise AuthenticationError("Invalid verification token")

    if not user_store.mark_email_verified(user.id, token_hash=user.email_verification_token):
        raise AuthenticationError("No verification token found")
    logger.info("Account %d verified its email", user.id)
    return MessageResponse(message="Email verified successfully")


@router.post("/request-password-reset", response_model=PasswordResetResponse)
@auth_attempts
def request_password_reset(request: Request, body: PasswordResetRequest) -> PasswordResetResponse:
    """Mint a reset token, store its digest, and mail the link."""
    user_store: UserStore = request.app.state.user_store
    mailer: EmailSender = request.app.state.mailer

    user = user_store.get_by_email(body.email.lower())
    if user is None:
        raise AuthenticationError("No user found with that email")

    reset = issue_password_reset_token()
    user_store.set_password_reset(user.id, reset.secret_hash, reset.expires_at)
    mailer.send_password_reset_email(user.email, reset.secret, first_name=user.first_name)
    logger.info("Password reset requested for account %d", user.id)
    return PasswordResetResponse(
        message="Password reset email sent",
        password_reset_token=reset.secret if get_settings().debug else None,
    )


@router.post("/reset-password", response_model=MessageResponse)
@auth_attempts
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Consume the reset token and replace the password.

    set_password() stamps password_changed_at, so every session token issued
    before this call stops working. Consumption is conditional on the stored
    digest, so only one of two concurrent resets with the same token wins.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email.lower())
    if user is None:
        raise AuthenticationError("Invalid email or token")
    if not user.password_reset_token or user.password_reset_expires is None:
        raise AuthenticationError("No password reset token found")
    if is_expired(user.password_reset_expires):
        raise AuthenticationError("Password reset token has expired")
    if not verify_single_use_token(body.token, user.password_reset_token):
        raise AuthenticationError("Invalid password reset token")

    if not user_store.set_password(
        user.id, hash_password(body.new_password), reset_token_hash=user.password_reset_token
    ):
        raise AuthenticationError("No password reset token found")
    logger.info("Password reset completed for account %d", user.id)
    return MessageResponse(message="Password reset successful. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated account."""
    return UserResponse.from_user(current_user)
