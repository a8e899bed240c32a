"""
Course entity.

Design choices:
- Pydantic v2 model so construction validates every field and rejects bad input
  without producing a partially built object.
- Derived values (slug, estimated completion time) are computed fields so they
  are always in sync with the stored attributes and appear in exports.
- Mutating helpers only ever run on the repository's authoritative copy; callers
  receive deep copies and go through the repository update paths.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError
from core.utils import capitalize, generate_id, round_half_up, slugify, to_number

Difficulty = Literal["beginner", "intermediate", "advanced"]

DIFFICULTIES = ("beginner", "intermediate", "advanced")
DIFFICULTY_MULTIPLIERS: Dict[str, float] = {
    "beginner": 1.0,
    "intermediate": 1.3,
    "advanced": 1.6,
}
DIFFICULTY_ORDER: Dict[str, int] = {"beginner": 1, "intermediate": 2, "advanced": 3}

COURSE_UPDATABLE_FIELDS = ("title", "description", "duration", "instructor", "difficulty", "is_active")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validation_error_from_pydantic(exc: PydanticValidationError, message: str) -> ValidationError:
    """Fold pydantic's error list into a field-keyed map (first message per field)."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("record",)
        field_name = str(loc[0])
        msg = str(err.get("msg", "Invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        errors.setdefault(field_name, msg)
    return ValidationError(message, errors)


def validate_progress_value(value: Any) -> float:
    number = to_number(value)
    if number is None or number < 0 or number > 100:
        raise ValidationError(
            "Progress validation failed",
            {"progress": "Progress must be a number between 0 and 100"},
        )
    return round_half_up(number, 2)


class Course(BaseModel):
    id: str = Field(default_factory=generate_id)
    title: str
    description: str
    duration: int = Field(description="Course length in hours")
    instructor: str
    difficulty: Difficulty
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True
    progress: float = Field(default=0, ge=0, le=100)
    enrollment_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("title", "description", "instructor", mode="before")
    @classmethod
    def _require_text(cls, v: Any, info) -> str:
        labels = {"title": "Course title", "description": "Course description", "instructor": "Instructor name"}
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{labels[info.field_name]} is required and must be a non-empty string")
        return v.strip()

    @field_validator("title")
    @classmethod
    def _title_length(cls, v: str) -> str:
        if len(v) > 100:
            raise ValueError("Course title must be 100 characters or less")
        return v

    @field_validator("description")
    @classmethod
    def _description_length(cls, v: str) -> str:
        if len(v) > 500:
            raise ValueError("Course description must be 500 characters or less")
        return v

    @field_validator("duration", mode="before")
    @classmethod
    def _positive_duration(cls, v: Any) -> int:
        number = to_number(v)
        if number is None or number <= 0:
            raise ValueError("Course duration must be a positive number")
        if number > 1000:
            raise ValueError("Course duration cannot exceed 1000 hours")
        return int(number)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _known_difficulty(cls, v: Any) -> str:
        if not isinstance(v, str) or v.strip().lower() not in DIFFICULTIES:
            raise ValueError("Course difficulty must be one of: beginner, intermediate, advanced")
        return v.strip().lower()

    @computed_field  # type: ignore[misc]
    @property
    def slug(self) -> str:
        return slugify(self.title)

    @computed_field  # type: ignore[misc]
    @property
    def estimated_completion_time(self) -> int:
        multiplier = DIFFICULTY_MULTIPLIERS.get(self.difficulty, 1.0)
        return int(round_half_up(self.duration * multiplier))

    # --- construction -------------------------------------------------

    @classmethod
    def create(cls, data: Dict[str, Any]) -> "Course":
        """Build a course from raw input, raising the domain ValidationError on failure."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise validation_error_from_pydantic(e, "Course validation failed") from e

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Course":
        return cls.create(record)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    # --- lifecycle ----------------------------------------------------

    def apply_updates(self, updates: Dict[str, Any]) -> "Course":
        """Merge allowed fields, re-validate the whole record, then commit."""
        allowed = {k: v for k, v in updates.items() if k in COURSE_UPDATABLE_FIELDS}
        candidate = Course.create({**self.model_dump(), **allowed})
        for key in allowed:
            setattr(self, key, getattr(candidate, key))
        self.touch()
        return self

    def update_progress(self, progress: Any) -> "Course":
        self.progress = validate_progress_value(progress)
        self.touch()
        return self

    def add_enrollment(self) -> "Course":
        self.enrollment_count += 1
        self.touch()
        return self

    def remove_enrollment(self) -> "Course":
        if self.enrollment_count > 0:
            self.enrollment_count -= 1
            self.touch()
        return self

    def toggle_active(self) -> "Course":
        self.is_active = not self.is_active
        self.touch()
        return self

    def touch(self) -> None:
        self.updated_at = _utcnow()

    # --- presentation -------------------------------------------------

    def is_completed(self) -> bool:
        return self.progress >= 100

    @property
    def formatted_duration(self) -> str:
        return "1 hour" if self.duration == 1 else f"{self.duration} hours"

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "instructor": self.instructor,
            "duration": self.formatted_duration,
            "difficulty": capitalize(self.difficulty),
            "progress": f"{self.progress:g}%",
            "enrollments": self.enrollment_count,
            "is_active": self.is_active,
            "is_completed": self.is_completed(),
        }


def course_sort_key(field: Optional[str]) -> Optional[Callable[[Course], Any]]:
    """Key function for a named sort field, or None for unknown fields."""
    if field in ("title", "instructor"):
        return lambda c: getattr(c, field).lower()
    if field in ("duration", "progress", "enrollment_count", "created_at", "updated_at"):
        return lambda c: getattr(c, field)
    if field == "difficulty":
        return lambda c: DIFFICULTY_ORDER.get(c.difficulty, 0)
    return None
