"""
courses/store.py -- SQLAlchemy-backed persistence layer for courses and enrollments.

Uses SQLAlchemy Core (not ORM) so the dataclasses in courses/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. CourseStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Enrollment rules enforced here:
  - (course_id, student_id) is UNIQUE. A second enroll raises ConflictError.
  - When max_students is set, the insert is a single INSERT ... SELECT guarded
    by a COUNT(*) subquery, so two concurrent enrollments cannot both take the
    last seat. Zero rows inserted means the course is full (ConflictError).
  - Unenroll / progress update for an account not on the roster raises
    ValidationError("You are not enrolled in this course").

Usage:
    store = CourseStore("sqlite:///falcons.db")
    course_id = store.create_course(course)
    store.enroll(course_id, student_id)
    store.update_progress(course_id, student_id, 40, module_id="m1")
    store.close()
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    literal,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.db import make_engine
from core.errors import ConflictError, NotFoundError, ValidationError
from courses.models import Course, Enrollment

logger = logging.getLogger("falcons.courses")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_courses = Table(
    "courses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(100), nullable=False),
    Column("description", String(1000), nullable=False),
    Column("short_description", String(200), nullable=False, server_default=""),
    Column("category", String(30), nullable=False),
    Column("level", String(20), nullable=False),
    Column("duration_hours", Integer, nullable=False),
    Column("price", Float, nullable=False),
    Column("original_price", Float),
    Column("discount", Float, nullable=False, server_default="0"),
    Column("instructor_id", Integer, nullable=False),
    Column("tags", Text),  # JSON array serialized as text
    Column("language", String(50), nullable=False, server_default="English"),
    Column("max_students", Integer),  # NULL = unlimited
    Column("is_published", Integer, nullable=False, server_default="0"),
    Column("is_featured", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    sqlite_autoincrement=True,
)

_enrollments = Table(
    "enrollments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("course_id", Integer, nullable=False),
    Column("student_id", Integer, nullable=False),
    Column("progress", Integer, nullable=False, server_default="0"),
    Column("completed_modules", Text, nullable=False, server_default="[]"),  # JSON array
    Column("enrolled_at", String(40), nullable=False),
    Column("last_accessed", String(40), nullable=False),
    UniqueConstraint("course_id", "student_id", name="uq_course_student"),
    sqlite_autoincrement=True,
)

_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "short_description",
        "category",
        "level",
        "duration_hours",
        "price",
        "original_price",
        "discount",
        "tags",
        "language",
        "max_students",
        "is_published",
        "is_featured",
    }
)

_NOT_ENROLLED = "You are not enrolled in this course"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _enrollment_counts():
    """Subquery: course_id -> number of enrollments."""
    return (
        select(_enrollments.c.course_id, func.count().label("enrollment_count"))
        .group_by(_enrollments.c.course_id)
        .subquery()
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CourseStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    def create_course(self, course: Course) -> int:
        """Insert a course and return its ID. original_price defaults to price."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _courses.insert().values(
                    title=course.title,
                    description=course.description,
                    short_description=course.short_description,
                    category=course.category,
                    level=course.level,
                    duration_hours=course.duration_hours,
                    price=course.price,
                    original_price=course.original_price if course.original_price is not None else course.price,
                    discount=course.discount,
                    instructor_id=course.instructor_id,
                    tags=json.dumps(course.tags),
                    language=course.language,
                    max_students=course.max_students,
                    is_published=1 if course.is_published else 0,
                    is_featured=1 if course.is_featured else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
        course_id = result.inserted_primary_key[0]
        logger.info("Course %d created by instructor %d", course_id, course.instructor_id)
        return course_id

    def get_course(self, course_id: int) -> Optional[Course]:
        with self.engine.connect() as conn:
            row = conn.execute(self._course_select().where(_courses.c.id == course_id)).fetchone()
        return _row_to_course(row) if row is not None else None

    def list_courses(
        self,
        published: Optional[bool] = None,
        featured: Optional[bool] = None,
        category: Optional[str] = None,
        instructor_id: Optional[int] = None,
    ) -> list[Course]:
        """Return courses newest first, filtered by whichever arguments are not None."""
        query = self._course_select()
        if published is not None:
            query = query.where(_courses.c.is_published == (1 if published else 0))
        if featured is not None:
            query = query.where(_courses.c.is_featured == (1 if featured else 0))
        if category is not None:
            query = query.where(_courses.c.category == category)
        if instructor_id is not None:
            query = query.where(_courses.c.instructor_id == instructor_id)
        query = query.order_by(_courses.c.created_at.desc(), _courses.c.id.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_course(r) for r in rows]

    def update_course(self, course_id: int, **fields) -> bool:
        """Update mutable course fields. Returns False if course_id was not found."""
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown course fields: {sorted(unknown)!r}")
        if "tags" in fields:
            fields["tags"] = json.dumps(fields["tags"])
        for flag in ("is_published", "is_featured"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_courses.update().where(_courses.c.id == course_id).values(**fields))
        return result.rowcount > 0

    def delete_course(self, course_id: int) -> bool:
        """Delete a course and its roster. Returns False if course_id was not found."""
        with self.engine.begin() as conn:
            conn.execute(_enrollments.delete().where(_enrollments.c.course_id == course_id))
            result = conn.execute(_courses.delete().where(_courses.c.id == course_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def enroll(self, course_id: int, student_id: int) -> Enrollment:
        """Put student_id on the course roster.

        Raises:
            NotFoundError:  course does not exist, or the new row is gone before it is read back.
            ConflictError:  already enrolled, or the roster is at max_students.
        """
        course = self.get_course(course_id)
        if course is None:
            raise NotFoundError("Course")
        if self.get_enrollment(course_id, student_id) is not None:
            raise ConflictError("You are already enrolled in this course", code="already_enrolled")

        now = _now_iso()
        values = {
            "course_id": course_id,
            "student_id": student_id,
            "progress": 0,
            "completed_modules": "[]",
            "enrolled_at": now,
            "last_accessed": now,
        }
        try:
            with self.engine.begin() as conn:
                if course.max_students is None:
                    conn.execute(_enrollments.insert().values(**values))
                    inserted = 1
                else:
                    seats_taken = (
                        select(func.count())
                        .select_from(_enrollments)
                        .where(_enrollments.c.course_id == course_id)
                        .scalar_subquery()
                    )
                    guarded = select(*(literal(v) for v in values.values())).where(seats_taken < course.max_students)
                    result = conn.execute(_enrollments.insert().from_select(list(values), guarded))
                    inserted = result.rowcount
        except IntegrityError as exc:
            # Lost a race with a concurrent enroll for the same pair.
            raise ConflictError("You are already enrolled in this course", code="already_enrolled") from exc

        if inserted == 0:
            raise ConflictError("Course enrollment is full", code="enrollment_full")
        logger.info("Account %d enrolled in course %d", student_id, course_id)
        enrollment = self.get_enrollment(course_id, student_id)
        if enrollment is None:
            # Removed between the insert and the read.
            raise NotFoundError("Enrollment")
        return enrollment

    def unenroll(self, course_id: int, student_id: int) -> None:
        """Remove student_id from the roster.

        Raises NotFoundError for an unknown course and ValidationError when the
        account is not enrolled.
        """
        if self.get_course(course_id) is None:
            raise NotFoundError("Course")
        with self.engine.begin() as conn:
            result = conn.execute(
                _enrollments.delete().where(
                    (_enrollments.c.course_id == course_id) & (_enrollments.c.student_id == student_id)
                )
            )
        if result.rowcount == 0:
            raise ValidationError(_NOT_ENROLLED, code="not_enrolled")
        logger.info("Account %d unenrolled from course %d", student_id, course_id)

    def remove_student(self, student_id: int) -> int:
        """Drop every enrollment held by student_id. Returns the number removed.

        Called when the account is deleted so its seats go back to the pool.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_enrollments.delete().where(_enrollments.c.student_id == student_id))
        if result.rowcount:
            logger.info("Released %d enrollment(s) held by account %d", result.rowcount, student_id)
        return result.rowcount

    def get_enrollment(self, course_id: int, student_id: int) -> Optional[Enrollment]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _enrollments.select().where(
                    (_enrollments.c.course_id == course_id) & (_enrollments.c.student_id == student_id)
                )
            ).fetchone()
        return _row_to_enrollment(row) if row is not None else None

    def enrolled_student_ids(self, course_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_enrollments.c.student_id)
                .where(_enrollments.c.course_id == course_id)
                .order_by(_enrollments.c.id)
            ).fetchall()
        return [r.student_id for r in rows]

    def list_enrollments_for_student(self, student_id: int) -> list[tuple[Course, Enrollment]]:
        """Return (course, enrollment) pairs for every course the account is on, newest first."""
        counts = _enrollment_counts()
        query = (
            select(
                *_courses.c,
                func.coalesce(counts.c.enrollment_count, 0).label("enrollment_count"),
                _enrollments.c.id.label("enrollment_id"),
                _enrollments.c.progress,
                _enrollments.c.completed_modules,
                _enrollments.c.enrolled_at,
                _enrollments.c.last_accessed,
            )
            .select_from(
                _enrollments.join(_courses, _courses.c.id == _enrollments.c.course_id).outerjoin(
                    counts, counts.c.course_id == _courses.c.id
                )
            )
            .where(_enrollments.c.student_id == student_id)
            .order_by(_enrollments.c.enrolled_at.desc(), _enrollments.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            (
                _row_to_course(r),
                Enrollment(
                    id=r.enrollment_id,
                    course_id=r.id,
                    student_id=student_id,
                    progress=r.progress,
                    completed_modules=json.loads(r.completed_modules or "[]"),
                    enrolled_at=r.enrolled_at,
                    last_accessed=r.last_accessed,
                ),
            )
            for r in rows
        ]

    def update_progress(
        self,
        course_id: int,
        student_id: int,
        progress: int,
        module_id: Optional[str] = None,
    ) -> Enrollment:
        """Set progress (0-100) and, if given, mark module_id completed once.

        Raises NotFoundError for an unknown course and ValidationError when the
        account is not enrolled or progress is out of range.
        """
        if not 0 <= progress <= 100:
            raise ValidationError(
                "Progress must be between 0 and 100",
                errors=[{"field": "progress", "message": "Progress must be between 0 and 100"}],
            )
        if self.get_course(course_id) is None:
            raise NotFoundError("Course")
        enrollment = self.get_enrollment(course_id, student_id)
        if enrollment is None:
            raise ValidationError(_NOT_ENROLLED, code="not_enrolled")

        completed = list(enrollment.completed_modules)
        if module_id and module_id not in completed:
            completed.append(module_id)
        with self.engine.begin() as conn:
            conn.execute(
                _enrollments.update()
                .where(_enrollments.c.id == enrollment.id)
                .values(progress=progress, completed_modules=json.dumps(completed), last_accessed=_now_iso())
            )
        updated = self.get_enrollment(course_id, student_id)
        if updated is None:
            raise NotFoundError("Enrollment")
        return updated

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _course_select():
        counts = _enrollment_counts()
        return select(
            *_courses.c,
            func.coalesce(counts.c.enrollment_count, 0).label("enrollment_count"),
        ).select_from(_courses.outerjoin(counts, counts.c.course_id == _courses.c.id))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_course(row) -> Course:
    return Course(
        id=row.id,
        title=row.title,
        description=row.description,
        short_description=row.short_description or "",
        category=row.category,
        level=row.level,
        duration_hours=row.duration_hours,
        price=row.price,
        original_price=row.original_price,
        discount=row.discount or 0.0,
        instructor_id=row.instructor_id,
        tags=json.loads(row.tags) if row.tags else [],
        language=row.language,
        max_students=row.max_students,
        is_published=bool(row.is_published),
        is_featured=bool(row.is_featured),
        enrollment_count=row.enrollment_count or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_enrollment(row) -> Enrollment:
    return Enrollment(
        id=row.id,
        course_id=row.course_id,
        student_id=row.student_id,
        progress=row.progress,
        completed_modules=json.loads(row.completed_modules or "[]"),
        enrolled_at=row.enrolled_at,
        last_accessed=row.last_accessed,
    )
