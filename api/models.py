"""
API request and response models for the Falcons REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
courses/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User
from courses.models import Course, Enrollment

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    manager = "manager"
    instructor = "instructor"
    student = "student"
    jobseeker = "jobseeker"
    employee = "employee"
    designer = "designer"


class CategoryEnum(str, Enum):
    programming = "programming"
    design = "design"
    business = "business"
    marketing = "marketing"
    data_science = "data-science"
    cybersecurity = "cybersecurity"
    other = "other"


class LevelEnum(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    role is optional; the route falls back to DEFAULT_ROLE and rejects roles
    outside REGISTRATION_ROLES.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Optional[RoleEnum] = None


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    token: str = Field(min_length=1, max_length=128)


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=30)
    avatar: Optional[str] = Field(default=None, max_length=500)


class AdminUserUpdate(ProfileUpdate):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None
    is_email_verified: Optional[bool] = None


# ---------------------------------------------------------------------------
# Users -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Credential and token columns never appear here."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: str
    phone: Optional[str] = None
    avatar: Optional[str] = None
    is_active: bool
    is_email_verified: bool
    last_login: Optional[str] = None
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            phone=user.phone,
            avatar=user.avatar,
            is_active=user.is_active,
            is_email_verified=user.is_email_verified,
            last_login=user.last_login,
            created_at=user.created_at,
        )


class AuthResponse(BaseModel):
    """Response for register, login and refresh.

    The single-use secret is only ever populated in debug mode.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse
    email_verification_token: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class PasswordResetResponse(MessageResponse):
    password_reset_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Courses -- request models
# ---------------------------------------------------------------------------


class CourseCreate(BaseModel):
    """Request body for POST /api/v1/courses."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    short_description: str = Field(default="", max_length=200)
    category: CategoryEnum
    level: LevelEnum = LevelEnum.beginner
    duration_hours: int = Field(ge=1)
    price: float = Field(ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    discount: float = Field(default=0, ge=0, le=100)
    tags: list[str] = Field(default_factory=list, max_length=20)
    language: str = Field(default="English", max_length=50)
    max_students: Optional[int] = Field(default=None, ge=1)
    is_published: bool = False


class CourseUpdate(BaseModel):
    """Request body for PATCH /api/v1/courses/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    short_description: Optional[str] = Field(default=None, max_length=200)
    category: Optional[CategoryEnum] = None
    level: Optional[LevelEnum] = None
    duration_hours: Optional[int] = Field(default=None, ge=1)
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0, le=100)
    tags: Optional[list[str]] = Field(default=None, max_length=20)
    language: Optional[str] = Field(default=None, max_length=50)
    max_students: Optional[int] = Field(default=None, ge=1)
    is_published: Optional[bool] = None


class CourseStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/courses/{id}/status."""

    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None


class ProgressUpdate(BaseModel):
    """Request body for PATCH /api/v1/courses/{id}/progress."""

    model_config = ConfigDict(str_strip_whitespace=True)

    progress: int = Field(ge=0, le=100)
    module_id: Optional[str] = Field(default=None, min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Courses -- response models
# ---------------------------------------------------------------------------


class CourseResponse(BaseModel):
    """Catalog entry with the derived pricing and capacity fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str
    short_description: str
    category: str
    level: str
    duration_hours: int
    price: float
    original_price: Optional[float]
    discount: float
    discounted_price: float
    instructor_id: int
    tags: list[str]
    language: str
    max_students: Optional[int]
    enrollment_count: int
    is_enrollment_full: bool
    is_published: bool
    is_featured: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_course(cls, course: Course) -> "CourseResponse":
        """Build a CourseResponse from a courses.models.Course.

        discounted_price applies the percentage discount to price, rounded to
        cents. A course with no max_students is never full.
        """
        discounted = round(course.price * (1 - course.discount / 100), 2) if course.discount else course.price
        is_full = course.max_students is not None and course.enrollment_count >= course.max_students
        return cls(
            id=course.id,
            title=course.title,
            description=course.description,
            short_description=course.short_description,
            category=course.category,
            level=course.level,
            duration_hours=course.duration_hours,
            price=course.price,
            original_price=course.original_price,
            discount=course.discount,
            discounted_price=discounted,
            instructor_id=course.instructor_id,
            tags=course.tags,
            language=course.language,
            max_students=course.max_students,
            enrollment_count=course.enrollment_count,
            is_enrollment_full=is_full,
            is_published=course.is_published,
            is_featured=course.is_featured,
            created_at=course.created_at,
            updated_at=course.updated_at,
        )


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    course_id: int
    student_id: int
    progress: int
    completed_modules: list[str]
    enrolled_at: str
    last_accessed: str

    @classmethod
    def from_enrollment(cls, enrollment: Enrollment) -> "EnrollmentResponse":
        return cls(
            course_id=enrollment.course_id,
            student_id=enrollment.student_id,
            progress=enrollment.progress,
            completed_modules=enrollment.completed_modules,
            enrolled_at=enrollment.enrolled_at,
            last_accessed=enrollment.last_accessed,
        )


class EnrolledCourseRow(BaseModel):
    """One row in GET /api/v1/courses/my/enrolled."""

    model_config = ConfigDict(frozen=True)

    course: CourseResponse
    enrollment: EnrollmentResponse


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    errors carries per-field reasons for validation failures. stack is only
    populated for 500s in debug mode.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[list[FieldError]] = None
    stack: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
