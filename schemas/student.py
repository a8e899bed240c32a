"""
Student entity with enrollment lifecycle.

A student references at most one course through ``course_id``. Progress and
completed lessons only carry meaning while enrolled and are reset on every
enrollment transition.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ConflictError, ValidationError
from core.utils import capitalize, generate_id, is_valid_email
from schemas.course import validate_progress_value, validation_error_from_pydantic

STUDENT_UPDATABLE_FIELDS = ("name", "email", "phone", "is_active")

STATUS_INACTIVE = "Inactive"
STATUS_NOT_ENROLLED = "Not Enrolled"
STATUS_COMPLETED = "Completed"
STATUS_IN_PROGRESS = "In Progress"
STATUS_ENROLLED = "Enrolled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Student(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    email: str
    phone: Optional[str] = None
    course_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True
    progress: float = Field(default=0, ge=0, le=100)
    completed_lessons: List[str] = Field(default_factory=list)
    last_login_at: Optional[datetime] = None
    enrollment_date: Optional[datetime] = Field(default_factory=_utcnow)

    model_config = ConfigDict(extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def _valid_name(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Student name is required and must be a non-empty string")
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Student name must be at least 2 characters long")
        if len(v) > 100:
            raise ValueError("Student name must be 100 characters or less")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def _valid_email(cls, v: Any) -> str:
        if not is_valid_email(v):
            raise ValueError("Valid email address is required")
        return v.strip().lower()

    @field_validator("phone", mode="before")
    @classmethod
    def _valid_phone(cls, v: Any) -> Optional[str]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if not isinstance(v, str):
            raise ValueError("Phone number must be a string if provided")
        v = v.strip()
        if len(v) > 20:
            raise ValueError("Phone number must be 20 characters or less")
        return v

    @field_validator("course_id", mode="before")
    @classmethod
    def _blank_course_is_none(cls, v: Any) -> Optional[str]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if not isinstance(v, str):
            raise ValueError("Course id must be a string")
        return v.strip()

    @field_validator("completed_lessons")
    @classmethod
    def _unique_lessons(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _progress_requires_enrollment(self) -> "Student":
        if self.course_id is None and (self.progress or self.completed_lessons):
            raise ValueError("Progress and completed lessons require an active enrollment")
        return self

    @computed_field  # type: ignore[misc]
    @property
    def initials(self) -> str:
        return "".join(word[0].upper() for word in self.name.split() if word)[:2]

    @computed_field  # type: ignore[misc]
    @property
    def display_name(self) -> str:
        return " ".join(capitalize(word) for word in self.name.split())

    # --- construction -------------------------------------------------

    @classmethod
    def create(cls, data: Dict[str, Any]) -> "Student":
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise validation_error_from_pydantic(e, "Student validation failed") from e

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Student":
        return cls.create(record)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    # --- lifecycle ----------------------------------------------------

    def apply_updates(self, updates: Dict[str, Any]) -> "Student":
        allowed = {k: v for k, v in updates.items() if k in STUDENT_UPDATABLE_FIELDS}
        candidate = Student.create({**self.model_dump(), **allowed})
        for key in allowed:
            setattr(self, key, getattr(candidate, key))
        self.touch()
        return self

    def enroll_in_course(self, course_id: str) -> "Student":
        if not isinstance(course_id, str) or not course_id.strip():
            raise ValidationError("Enrollment failed", {"course_id": "Valid course ID is required for enrollment"})
        self.course_id = course_id
        self.enrollment_date = _utcnow()
        self.progress = 0
        self.completed_lessons = []
        self.touch()
        return self

    def unenroll_from_course(self) -> "Student":
        self.course_id = None
        self.progress = 0
        self.completed_lessons = []
        self.touch()
        return self

    def update_progress(self, progress: Any) -> "Student":
        value = validate_progress_value(progress)
        if not self.is_enrolled():
            raise ConflictError("Student is not enrolled in any course")
        self.progress = value
        self.touch()
        return self

    def complete_lesson(self, lesson_id: str) -> "Student":
        if not isinstance(lesson_id, str) or not lesson_id.strip():
            raise ValidationError("Lesson update failed", {"lesson_id": "Valid lesson ID is required"})
        if not self.is_enrolled():
            raise ConflictError("Student is not enrolled in any course")
        if lesson_id not in self.completed_lessons:
            self.completed_lessons.append(lesson_id)
            self.touch()
        return self

    def uncomplete_lesson(self, lesson_id: str) -> "Student":
        if lesson_id in self.completed_lessons:
            self.completed_lessons.remove(lesson_id)
            self.touch()
        return self

    def record_login(self) -> "Student":
        self.last_login_at = _utcnow()
        self.touch()
        return self

    def toggle_active(self) -> "Student":
        self.is_active = not self.is_active
        self.touch()
        return self

    def touch(self) -> None:
        self.updated_at = _utcnow()

    # --- presentation -------------------------------------------------

    def is_enrolled(self) -> bool:
        return self.course_id is not None

    def has_completed_course(self) -> bool:
        return self.progress >= 100

    def enrollment_duration_days(self, now: Optional[datetime] = None) -> int:
        if not self.enrollment_date:
            return 0
        now = now or _utcnow()
        seconds = abs((now - self.enrollment_date).total_seconds())
        days, remainder = divmod(seconds, 86400)
        return int(days) + (1 if remainder else 0)

    @property
    def status(self) -> str:
        if not self.is_active:
            return STATUS_INACTIVE
        if not self.is_enrolled():
            return STATUS_NOT_ENROLLED
        if self.has_completed_course():
            return STATUS_COMPLETED
        if self.progress > 0:
            return STATUS_IN_PROGRESS
        return STATUS_ENROLLED

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "email": self.email,
            "phone": self.phone,
            "initials": self.initials,
            "status": self.status,
            "progress": f"{self.progress:g}%",
            "enrollment_date": self.enrollment_date.isoformat() if self.enrollment_date else None,
            "last_login": self.last_login_at.isoformat() if self.last_login_at else "Never",
            "enrollment_duration": f"{self.enrollment_duration_days()} days",
            "completed_lessons": len(self.completed_lessons),
            "is_active": self.is_active,
            "is_enrolled": self.is_enrolled(),
            "has_completed": self.has_completed_course(),
        }


def student_sort_key(field: Optional[str]) -> Optional[Callable[[Student], Any]]:
    """Key function for a named sort field, or None for unknown fields."""
    if field in ("name", "email"):
        return lambda s: getattr(s, field).lower()
    if field == "progress":
        return lambda s: s.progress
    if field in ("created_at", "updated_at", "last_login_at", "enrollment_date"):
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return lambda s: getattr(s, field) or epoch
    return None
