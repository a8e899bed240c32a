"""
Field-level validation for raw course and student input.

A registry of named validators (strategy pattern). Entity-level checks run
every rule for the entity and collect all failures into one field-keyed map.

Create mode checks every field an entity needs; update mode only checks the
fields that were actually supplied, and never asks for a course selection.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from core.utils import is_valid_email, sanitize_html, to_number
from schemas.course import DIFFICULTIES

logger = logging.getLogger(__name__)

ValidationMode = Literal["create", "update"]

_PHONE_STRIP_RE = re.compile(r"[\s\-()]")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_NAME_RE = re.compile(r"^[a-zA-Z\s\-'.]+$")


@dataclass
class ValidationResult:
    is_valid: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def fail(cls, message: str) -> "ValidationResult":
        return cls(False, message)


@dataclass
class ValidationReport:
    is_valid: bool = True
    errors: Dict[str, str] = field(default_factory=dict)

    def add(self, field_name: str, result: ValidationResult) -> None:
        if not result.is_valid:
            self.errors[field_name] = result.message or "Invalid value"
            self.is_valid = False


@dataclass
class ArrayValidationReport:
    is_valid: bool
    results: List[ValidationResult]


Validator = Callable[[Any, Dict[str, Any]], ValidationResult]


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _required(value: Any, options: Dict[str, Any]) -> ValidationResult:
    if _blank(value) or (isinstance(value, (list, dict)) and not value):
        return ValidationResult.fail(f"{options.get('field_name', 'Field')} is required")
    return ValidationResult.ok()


def _length(value: Any, options: Dict[str, Any]) -> ValidationResult:
    min_len = options.get("min", 0)
    max_len = options.get("max", float("inf"))
    label = options.get("field_name", "Field")
    length = len(str(value).strip()) if value is not None else 0
    if length < min_len:
        return ValidationResult.fail(f"{label} must be at least {min_len} characters long")
    if length > max_len:
        return ValidationResult.fail(f"{label} must be no more than {max_len} characters long")
    return ValidationResult.ok()


def _number(value: Any, options: Dict[str, Any]) -> ValidationResult:
    min_value = options.get("min", float("-inf"))
    max_value = options.get("max", float("inf"))
    label = options.get("field_name", "Field")
    number = to_number(value)
    if number is None:
        return ValidationResult.fail(f"{label} must be a valid number")
    if number < min_value:
        return ValidationResult.fail(f"{label} must be at least {min_value}")
    if number > max_value:
        return ValidationResult.fail(f"{label} cannot exceed {max_value}")
    return ValidationResult.ok()


def _email(value: Any, options: Dict[str, Any]) -> ValidationResult:
    if _blank(value):
        return ValidationResult.fail("Email is required")
    if not is_valid_email(value):
        return ValidationResult.fail("Please enter a valid email address")
    return ValidationResult.ok()


def _phone(value: Any, options: Dict[str, Any]) -> ValidationResult:
    if _blank(value):
        # optional
        return ValidationResult.ok()
    if not isinstance(value, str) or not _PHONE_RE.match(_PHONE_STRIP_RE.sub("", value)):
        return ValidationResult.fail("Please enter a valid phone number")
    return ValidationResult.ok()


def _name(value: Any, options: Dict[str, Any]) -> ValidationResult:
    if not isinstance(value, str) or not value.strip():
        return ValidationResult.fail("Name is required")
    trimmed = value.strip()
    if len(trimmed) < 2:
        return ValidationResult.fail("Name must be at least 2 characters long")
    if len(trimmed) > 100:
        return ValidationResult.fail("Name must be no more than 100 characters long")
    if not _NAME_RE.match(trimmed):
        return ValidationResult.fail("Name can only contain letters, spaces, hyphens, and apostrophes")
    return ValidationResult.ok()


def _difficulty(value: Any, options: Dict[str, Any]) -> ValidationResult:
    if not isinstance(value, str) or value.strip().lower() not in DIFFICULTIES:
        return ValidationResult.fail("Difficulty must be one of: Beginner, Intermediate, Advanced")
    return ValidationResult.ok()


def _progress(value: Any, options: Dict[str, Any]) -> ValidationResult:
    number = to_number(value)
    if number is None or number < 0 or number > 100:
        return ValidationResult.fail("Progress must be a number between 0 and 100")
    return ValidationResult.ok()


class ValidationService:
    def __init__(self):
        self.validators: Dict[str, Validator] = {
            "required": _required,
            "length": _length,
            "number": _number,
            "email": _email,
            "phone": _phone,
            "name": _name,
            "difficulty": _difficulty,
            "progress": _progress,
        }
        self.custom_validators: Dict[str, Validator] = {}

    def register_custom_validator(self, name: str, validate_fn: Validator) -> None:
        if name in self.validators:
            logger.warning(f"Custom validator '{name}' is shadowed by the built-in validator of the same name")
        self.custom_validators[name] = validate_fn

    def validate_field(self, validator_name: str, value: Any,
                       options: Optional[Dict[str, Any]] = None) -> ValidationResult:
        """Run one named validator. Unknown names raise KeyError."""
        validator = self.validators.get(validator_name) or self.custom_validators.get(validator_name)
        if validator is None:
            raise KeyError(f"Validator '{validator_name}' not found")
        return validator(value, dict(options or {}))

    def validate_array(self, items: List[Any], validator_name: str,
                       options: Optional[Dict[str, Any]] = None) -> ArrayValidationReport:
        results = [
            self.validate_field(validator_name, item, {**(options or {}), "index": index})
            for index, item in enumerate(items)
        ]
        return ArrayValidationReport(all(r.is_valid for r in results), results)

    def _check_text(self, report: ValidationReport, field_name: str, value: Any,
                    label: str, min_len: int, max_len: int) -> None:
        required = self.validate_field("required", value, {"field_name": label})
        if not required.is_valid:
            report.add(field_name, required)
            return
        report.add(field_name, self.validate_field("length", value, {"min": min_len, "max": max_len,
                                                                     "field_name": label}))

    def validate_course(self, course_data: Dict[str, Any], mode: ValidationMode = "create") -> ValidationReport:
        report = ValidationReport()

        def wanted(key: str) -> bool:
            return mode == "create" or key in course_data

        if wanted("title"):
            self._check_text(report, "title", course_data.get("title"), "Course title", 3, 100)
        if wanted("description"):
            self._check_text(report, "description", course_data.get("description"), "Description", 10, 500)
        if wanted("duration"):
            report.add("duration", self.validate_field("number", course_data.get("duration"),
                                                       {"min": 1, "max": 1000, "field_name": "Duration"}))
        if wanted("instructor"):
            report.add("instructor", self.validate_field("name", course_data.get("instructor")))
        if wanted("difficulty"):
            report.add("difficulty", self.validate_field("difficulty", course_data.get("difficulty")))
        if "progress" in course_data:
            report.add("progress", self.validate_field("progress", course_data.get("progress")))
        return report

    def validate_student(self, student_data: Dict[str, Any], mode: ValidationMode = "create") -> ValidationReport:
        report = ValidationReport()

        def wanted(key: str) -> bool:
            return mode == "create" or key in student_data

        if wanted("name"):
            report.add("name", self.validate_field("name", student_data.get("name")))
        if wanted("email"):
            report.add("email", self.validate_field("email", student_data.get("email")))
        if student_data.get("phone"):
            report.add("phone", self.validate_field("phone", student_data.get("phone")))
        if mode == "create":
            course_id = student_data.get("course_id")
            if not isinstance(course_id, str) or not course_id.strip():
                report.add("course_id", ValidationResult.fail("Please select a course"))
        return report

    def sanitize_input(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Trim and HTML-escape top-level string values; everything else passes through."""
        return {
            key: sanitize_html(value.strip()) if isinstance(value, str) else value
            for key, value in data.items()
        }
