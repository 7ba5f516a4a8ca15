"""
core/errors.py -- Error taxonomy shared by every layer.

Operational errors (AppError subclasses) are expected, user-facing failures:
bad input, missing resources, failed credentials. Each carries the HTTP status
and machine-readable code the API layer puts in the error envelope. Anything
that is not an AppError is a programming error and becomes a 500.

Stores raise these directly (e.g. ConflictError for a duplicate unique key)
so the exception handlers in api/main.py never see driver-specific errors.

Layer rule: core/ is the kernel. No imports from api/, auth/, courses/, mail/.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class for operational errors."""

    status_code: int = 500
    code: str = "app_error"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.is_operational = True


class ValidationError(AppError):
    """Malformed or missing input.

    errors is a list of {"field": ..., "message": ...} dicts, one per problem.
    """

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, errors: Optional[list[dict]] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.errors = errors or []


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"


class ExpiredTokenError(AuthenticationError):
    code = "token_expired"

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    code = "token_invalid"

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "You do not have permission to perform this action") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    """Referenced entity is absent. Pass the resource name, e.g. NotFoundError("Course")."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = "conflict"

