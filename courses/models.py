"""
courses/models.py -- Domain dataclasses for the course catalog.

These are pure data containers with zero logic. Enrollment rules (duplicate
check, capacity ceiling, progress bounds) live in courses/store.py; derived
display values (discounted price, is-full flag) are computed by the API
response models.
"""

from dataclasses import dataclass, field
from typing import Optional

CATEGORIES: tuple[str, ...] = (
    "programming",
    "design",
    "business",
    "marketing",
    "data-science",
    "cybersecurity",
    "other",
)
LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")


@dataclass
class Course:
    """A catalog entry.

    instructor_id references the owning account; ownership checks compare it
    against the caller. max_students None means unlimited seats.

    enrollment_count is filled in by the store on read and ignored on write.
    id is None before the record is written to the database.
    """

    title: str
    description: str
    category: str
    level: str
    duration_hours: int
    price: float
    instructor_id: int
    id: Optional[int] = None
    short_description: str = ""
    original_price: Optional[float] = None  # defaults to price on insert
    discount: float = 0.0  # percent, 0-100
    tags: list[str] = field(default_factory=list)
    language: str = "English"
    max_students: Optional[int] = None
    is_published: bool = False
    is_featured: bool = False
    enrollment_count: int = 0
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Enrollment:
    """One account's seat in one course. (course_id, student_id) is unique."""

    course_id: int
    student_id: int
    progress: int = 0  # percent, 0-100
    completed_modules: list[str] = field(default_factory=list)
    enrolled_at: str = ""
    last_accessed: str = ""
    id: Optional[int] = None
