"""
api/routes/v1/admin.py -- Administration routes for accounts and the catalog.

Routes:
  GET    /admin/users                 -- list accounts (optional ?role=)
  GET    /admin/users/{id}            -- one account
  PATCH  /admin/users/{id}            -- edit profile, role, active/verified flags
  DELETE /admin/users/{id}            -- delete account (permission: manage_users)
  GET    /admin/courses               -- every course, published or not, with filters
  PATCH  /admin/courses/{id}/status   -- publish / feature flags
  PATCH  /admin/courses/{id}          -- edit any course
  DELETE /admin/courses/{id}          -- delete any course and its roster

Every route requires role admin or manager (router-level dependency).
Changing a role or deleting an account additionally requires manage_users,
which only admin holds.

Self-protection:
  An account cannot deactivate, demote or delete itself through these routes,
  so the last admin cannot lock everyone out by accident.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AdminUserUpdate,
    CategoryEnum,
    CourseResponse,
    CourseStatusUpdate,
    CourseUpdate,
    RoleEnum,
    UserResponse,
)
from auth.dependencies import require_permission, require_roles
from auth.models import User
from auth.permissions import PermissionTable
from auth.store import UserStore
from courses.store import CourseStore
from core.errors import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger("falcons.api.admin")

_staff = require_roles("admin", "manager")

router = APIRouter(prefix="/admin", dependencies=[Depends(_staff)])


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, role: Optional[RoleEnum] = None) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    users = user_store.list_users(role=role.value if role is not None else None)
    return [UserResponse.from_user(u) for u in users]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User")
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: AdminUserUpdate,
    current_user: User = Depends(_staff),
) -> UserResponse:
    """Edit an account. Role changes need manage_users; self-demotion and self-deactivation are refused."""
    user_store: UserStore = request.app.state.user_store
    permissions: PermissionTable = request.app.state.permissions

    target = user_store.get_by_id(user_id)
    if target is None:
        raise NotFoundError("User")

    changes = body.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if "role" in changes and changes["role"] != target.role:
        if not permissions.has_permission(current_user.role, "manage_users"):
            raise AuthorizationError()
        if target.id == current_user.id:
            raise ValidationError(
                "You cannot change your own role",
                errors=[{"field": "role", "message": "You cannot change your own role"}],
            )
    if changes.get("is_active") is False and target.id == current_user.id:
        raise ValidationError(
            "You cannot deactivate your own account",
            errors=[{"field": "is_active", "message": "You cannot deactivate your own account"}],
        )

    if changes:
        user_store.update_user(user_id, **changes)
        logger.info("Account %d updated by %d: %s", user_id, current_user.id, sorted(changes))
    return UserResponse.from_user(user_store.get_by_id(user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permission("manage_users")),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account from the admin panel")
    if not user_store.delete_user(user_id):
        raise NotFoundError("User")
    course_store: CourseStore = request.app.state.course_store
    course_store.remove_student(user_id)
    logger.info("Account %d deleted by %d", user_id, current_user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


@router.get("/courses", response_model=list[CourseResponse])
def list_all_courses(
    request: Request,
    instructor_id: Optional[int] = None,
    category: Optional[CategoryEnum] = None,
    is_published: Optional[bool] = None,
) -> list[CourseResponse]:
    store: CourseStore = request.app.state.course_store
    courses = store.list_courses(
        published=is_published,
        category=category.value if category is not None else None,
        instructor_id=instructor_id,
    )
    return [CourseResponse.from_course(c) for c in courses]


@router.patch("/courses/{course_id}/status", response_model=CourseResponse)
def update_course_status(request: Request, course_id: int, body: CourseStatusUpdate) -> CourseResponse:
    store: CourseStore = request.app.state.course_store
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not store.update_course(course_id, **changes):
        raise NotFoundError("Course")
    return CourseResponse.from_course(store.get_course(course_id))


@router.patch("/courses/{course_id}", response_model=CourseResponse)
def update_any_course(request: Request, course_id: int, body: CourseUpdate) -> CourseResponse:
    store: CourseStore = request.app.state.course_store
    changes = body.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if not store.update_course(course_id, **changes):
        raise NotFoundError("Course")
    return CourseResponse.from_course(store.get_course(course_id))


@router.delete("/courses/{course_id}", status_code=204)
def delete_any_course(request: Request, course_id: int) -> Response:
    store: CourseStore = request.app.state.course_store
    if not store.delete_course(course_id):
        raise NotFoundError("Course")
    return Response(status_code=204)
