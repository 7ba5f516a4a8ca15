"""
api/routes/v1/users.py -- Self-service account routes.

Routes:
  GET    /api/v1/users/me       -- current account
  GET    /api/v1/users/profile  -- current account (profile view)
  PATCH  /api/v1/users/profile  -- update name, phone, avatar
  DELETE /api/v1/users/me       -- delete own account; clears cookies

Every route requires authentication (router-level dependency). Role, active
flag and verification status are not self-editable; see api/routes/v1/admin.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import MessageResponse, ProfileUpdate, UserResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import clear_auth_cookies
from courses.store import CourseStore
from core.errors import NotFoundError

logger = logging.getLogger("falcons.api.users")

router = APIRouter(prefix="/users", dependencies=[Depends(get_current_user)])


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Apply the fields present in the body; omitted fields are left as they are."""
    user_store: UserStore = request.app.state.user_store
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if changes:
        user_store.update_user(current_user.id, **changes)
    updated = user_store.get_by_id(current_user.id)
    if updated is None:
        raise NotFoundError("User")
    return UserResponse.from_user(updated)


@router.delete("/me", response_model=MessageResponse)
def delete_me(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Permanently delete the caller's account, release its seats and end the session."""
    user_store: UserStore = request.app.state.user_store
    course_store: CourseStore = request.app.state.course_store
    user_store.delete_user(current_user.id)
    course_store.remove_student(current_user.id)
    logger.info("Account %d deleted itself", current_user.id)
    resp = JSONResponse(content=MessageResponse(message="Account deleted successfully").model_dump())
    clear_auth_cookies(resp)
    return resp
