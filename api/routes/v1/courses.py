"""
api/routes/v1/courses.py -- Course catalog, enrollment and progress routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /courses                     -- published catalog (public)
  GET    /courses/featured            -- published + featured (public)
  GET    /courses/my/enrolled         -- caller's enrollments (student, jobseeker)
  GET    /courses/category/{category} -- published by category (public)
  GET    /courses/{id}                -- one course (public if published)
  POST   /courses                     -- create (permission: write)
  PATCH  /courses/{id}                -- update (admin, manager, owning instructor)
  DELETE /courses/{id}                -- delete (admin, manager, owning instructor)
  POST   /courses/{id}/enroll         -- join roster (student, jobseeker)
  POST   /courses/{id}/unenroll       -- leave roster (student, jobseeker)
  PATCH  /courses/{id}/progress       -- record progress (enrolled learners)

Unpublished courses are hidden from the public catalog. GET /courses/{id}
still shows them to admin, manager and the instructor who owns them; anyone
else gets a 404 as if the course did not exist.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    CategoryEnum,
    CourseCreate,
    CourseResponse,
    CourseUpdate,
    EnrolledCourseRow,
    EnrollmentResponse,
    MessageResponse,
    ProgressUpdate,
)
from auth.dependencies import get_optional_user, require_permission, require_roles
from auth.models import STAFF_ROLES, User
from auth.permissions import check_enrollment, check_ownership
from courses.models import Course
from courses.store import CourseStore
from core.errors import NotFoundError

router = APIRouter(prefix="/courses")

_course_editors = require_roles("admin", "manager", "instructor")
_learners = require_roles("student", "jobseeker")


def _get_course_or_404(store: CourseStore, course_id: int) -> Course:
    course = store.get_course(course_id)
    if course is None:
        raise NotFoundError("Course")
    return course


# ---------------------------------------------------------------------------
# Public catalog
# ---------------------------------------------------------------------------


@router.get("", response_model=list[CourseResponse])
def list_courses(request: Request) -> list[CourseResponse]:
    """Return every published course, newest first."""
    store: CourseStore = request.app.state.course_store
    return [CourseResponse.from_course(c) for c in store.list_courses(published=True)]


@router.get("/featured", response_model=list[CourseResponse])
def featured_courses(request: Request) -> list[CourseResponse]:
    store: CourseStore = request.app.state.course_store
    return [CourseResponse.from_course(c) for c in store.list_courses(published=True, featured=True)]


@router.get("/my/enrolled", response_model=list[EnrolledCourseRow])
def my_enrolled_courses(request: Request, current_user: User = Depends(_learners)) -> list[EnrolledCourseRow]:
    """Return the caller's courses with their progress, most recent enrollment first."""
    store: CourseStore = request.app.state.course_store
    return [
        EnrolledCourseRow(
            course=CourseResponse.from_course(course),
            enrollment=EnrollmentResponse.from_enrollment(enrollment),
        )
        for course, enrollment in store.list_enrollments_for_student(current_user.id)
    ]


@router.get("/category/{category}", response_model=list[CourseResponse])
def courses_by_category(request: Request, category: CategoryEnum) -> list[CourseResponse]:
    store: CourseStore = request.app.state.course_store
    return [CourseResponse.from_course(c) for c in store.list_courses(published=True, category=category.value)]


@router.get("/{course_id}", response_model=CourseResponse)
def get_course(
    request: Request,
    course_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
) -> CourseResponse:
    store: CourseStore = request.app.state.course_store
    course = _get_course_or_404(store, course_id)
    if not course.is_published:
        can_preview = current_user is not None and (
            current_user.role in STAFF_ROLES or current_user.id == course.instructor_id
        )
        if not can_preview:
            raise NotFoundError("Course")
    return CourseResponse.from_course(course)


# ---------------------------------------------------------------------------
# Authoring (admin, manager, instructor)
# ---------------------------------------------------------------------------


@router.post("", response_model=CourseResponse, status_code=201)
def create_course(
    request: Request,
    body: CourseCreate,
    current_user: User = Depends(require_permission("write")),
) -> CourseResponse:
    """Create a course owned by the caller. New courses start unfeatured."""
    store: CourseStore = request.app.state.course_store
    course_id = store.create_course(
        Course(
            title=body.title,
            description=body.description,
            short_description=body.short_description,
            category=body.category.value,
            level=body.level.value,
            duration_hours=body.duration_hours,
            price=body.price,
            original_price=body.original_price,
            discount=body.discount,
            tags=body.tags,
            language=body.language,
            max_students=body.max_students,
            is_published=body.is_published,
            instructor_id=current_user.id,
        )
    )
    return CourseResponse.from_course(_get_course_or_404(store, course_id))


@router.patch("/{course_id}", response_model=CourseResponse)
def update_course(
    request: Request,
    course_id: int,
    body: CourseUpdate,
    current_user: User = Depends(_course_editors),
) -> CourseResponse:
    store: CourseStore = request.app.state.course_store
    check_ownership(current_user, _get_course_or_404(store, course_id))
    changes = body.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if changes:
        store.update_course(course_id, **changes)
    return CourseResponse.from_course(_get_course_or_404(store, course_id))


@router.delete("/{course_id}", status_code=204)
def delete_course(
    request: Request,
    course_id: int,
    current_user: User = Depends(_course_editors),
) -> Response:
    store: CourseStore = request.app.state.course_store
    check_ownership(current_user, _get_course_or_404(store, course_id))
    store.delete_course(course_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Enrollment (student, jobseeker)
# ---------------------------------------------------------------------------


@router.post("/{course_id}/enroll", response_model=EnrollmentResponse)
def enroll(request: Request, course_id: int, current_user: User = Depends(_learners)) -> EnrollmentResponse:
    """Join the roster. Duplicate enrollment and a full roster are both 409."""
    store: CourseStore = request.app.state.course_store
    course = _get_course_or_404(store, course_id)
    if not course.is_published:
        raise NotFoundError("Course")
    return EnrollmentResponse.from_enrollment(store.enroll(course_id, current_user.id))


@router.post("/{course_id}/unenroll", response_model=MessageResponse)
def unenroll(request: Request, course_id: int, current_user: User = Depends(_learners)) -> MessageResponse:
    store: CourseStore = request.app.state.course_store
    store.unenroll(course_id, current_user.id)
    return MessageResponse(message="Successfully unenrolled from course")


@router.patch("/{course_id}/progress", response_model=EnrollmentResponse)
def update_progress(
    request: Request,
    course_id: int,
    body: ProgressUpdate,
    current_user: User = Depends(_learners),
) -> EnrollmentResponse:
    """Record progress; module_id, when given, is added to completed_modules once."""
    store: CourseStore = request.app.state.course_store
    course = _get_course_or_404(store, course_id)
    check_enrollment(current_user, course, store.enrolled_student_ids(course_id))
    enrollment = store.update_progress(course_id, current_user.id, body.progress, module_id=body.module_id)
    return EnrollmentResponse.from_enrollment(enrollment)
