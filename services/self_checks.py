"""
Built-in checks run by the harness against a live application context.

Unit and validation checks exercise pure pieces. Integration checks go through
the managers, tag every record they create with a unique token and remove
those records afterwards, so they can run repeatedly against persistent data.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from core.errors import NotFoundError, ValidationError
from core.utils import calculate_progress, generate_id, is_valid_email, sanitize_html
from schemas.course import Course
from schemas.student import Student
from services.data_service import DataService
from services.harness import TestHarness
from services.storage import InMemoryStore
from services.validation_service import ValidationService

# Integration checks make many latency-simulated calls
INTEGRATION_TIMEOUT_SECONDS = 60.0

if TYPE_CHECKING:
    from core.context import AppContext


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise AssertionError(message)


def _course_payload(token: str, **overrides: Any) -> Dict[str, Any]:
    payload = {
        "title": f"Check Course {token}",
        "description": "Course created by the built-in checks",
        "duration": 10,
        "instructor": "Check Instructor",
        "difficulty": "beginner",
    }
    payload.update(overrides)
    return payload


def _register_unit_checks(harness: TestHarness, context: "AppContext") -> None:
    def unique_ids():
        first, second = generate_id(), generate_id()
        _check(bool(first) and bool(second), "Generated IDs should not be empty")
        _check(first != second, "Generated IDs should be unique")

    def email_shapes():
        for email in ("test@example.com", "user.name@domain.co.uk", "test+tag@example.org"):
            _check(is_valid_email(email), f"{email} should be valid")
        for email in ("invalid", "@example.com", "test@", "test..test@example.com"):
            _check(not is_valid_email(email), f"{email} should be invalid")

    def progress_math():
        _check(calculate_progress(50, 100) == 50, "50/100 should equal 50%")
        _check(calculate_progress(0, 100) == 0, "0/100 should equal 0%")
        _check(calculate_progress(100, 100) == 100, "100/100 should equal 100%")
        _check(calculate_progress(10, 0) == 0, "Any/0 should equal 0%")

    def markup_is_neutralized():
        _check("<script>" not in sanitize_html('<script>alert("xss")</script>'),
               "Script tags should be sanitized")

    def course_requires_fields():
        try:
            Course.create({})
        except ValidationError as e:
            _check("title" in e.errors, "Missing title should be reported")
            return
        raise AssertionError("Empty course data should be rejected")

    def course_builds():
        course = Course.create(_course_payload("unit", difficulty="advanced"))
        _check(bool(course.id), "Course should have an ID")
        _check(course.slug == "check-course-unit", "Course slug should derive from the title")
        _check(course.estimated_completion_time == 16, "Advanced courses take 1.6x their duration")

    def student_rejects_bad_email():
        try:
            Student.create({"name": "Check Student", "email": "not-an-email"})
        except ValidationError as e:
            _check("email" in e.errors, "Email error should be reported")
            return
        raise AssertionError("Invalid email should be rejected")

    def student_builds():
        student = Student.create({"name": "check student", "email": "Check@Example.com", "course_id": "c1"})
        _check(student.email == "check@example.com", "Email should be normalized")
        _check(student.initials == "CS", "Initials should come from the name")
        _check(student.is_enrolled(), "Student with a course should be enrolled")

    def course_progress_bounds():
        course = Course.create(_course_payload("progress"))
        course.update_progress(33.333)
        _check(course.progress == 33.33, "Progress should round to two decimals")
        try:
            course.update_progress(101)
        except ValidationError:
            _check(course.progress == 33.33, "Rejected progress must leave the value unchanged")
            return
        raise AssertionError("Progress above 100 should be rejected")

    async def data_service_initializes():
        settings = context.settings.model_copy(update={"api_delay_ms": 0})
        service = DataService(InMemoryStore(), settings)
        _check(not service.initialized, "DataService should not be initialized on creation")
        await service.initialize()
        _check(service.initialized, "DataService should be initialized after initialize()")
        await service.initialize()
        _check(service.initialized, "A second initialize() should be a no-op")

    harness.register("Utils.generate_id generates unique IDs", unique_ids, "unit")
    harness.register("Utils.is_valid_email validates email correctly", email_shapes, "unit")
    harness.register("Utils.calculate_progress calculates correctly", progress_math, "unit")
    harness.register("Utils.sanitize_html prevents XSS", markup_is_neutralized, "unit")
    harness.register("Course model validates required fields", course_requires_fields, "unit")
    harness.register("Course model creates valid instance", course_builds, "unit")
    harness.register("Student model validates email format", student_rejects_bad_email, "unit")
    harness.register("Student model creates valid instance", student_builds, "unit")
    harness.register("Course progress updates correctly", course_progress_bounds, "unit")
    harness.register("DataService initializes correctly", data_service_initializes, "unit")


def _register_integration_checks(harness: TestHarness, context: "AppContext") -> None:
    courses = context.course_manager
    students = context.student_manager

    async def course_manager_creates():
        token = generate_id()
        course = await courses.create_course(_course_payload(token, difficulty="intermediate"))
        try:
            _check(course.title == f"Check Course {token}", "Created course should keep its title")
        finally:
            await courses.delete_course(course.id)

    async def enrollment_counts_follow_students():
        token = generate_id()
        course = await courses.create_course(_course_payload(token, difficulty="advanced"))
        student = await students.create_student({
            "name": "Integration Check Student",
            "email": f"check-{token}@example.com",
            "course_id": course.id,
        })
        try:
            await students.update_student_progress(student.id, 75)
            current = await courses.get_course_by_id(course.id)
            _check(current.enrollment_count == 1, "Course enrollment count should be updated")

            await students.unenroll_student(student.id)
            await students.enroll_student(student.id, course.id)
            current = await courses.get_course_by_id(course.id)
            refreshed = await students.get_student_by_id(student.id)
            _check(current.enrollment_count == 1, "Re-enrollment should leave exactly one enrollment")
            _check(refreshed.progress == 0, "Re-enrollment should reset progress")
        finally:
            await students.delete_student(student.id)

        current = await courses.get_course_by_id(course.id)
        _check(current.enrollment_count == 0, "Deleting the student should release the enrollment")
        await courses.delete_course(course.id)

    async def created_course_is_listed():
        await courses.get_courses()
        token = generate_id()
        course = await courses.create_course(_course_payload(token))
        try:
            listed = await courses.get_courses()
            _check(any(c.id == course.id for c in listed), "Created course should be retrievable")
        finally:
            await courses.delete_course(course.id)

    async def errors_reach_the_caller():
        try:
            await courses.create_course(_course_payload("invalid", title=""))
        except ValidationError:
            pass
        else:
            raise AssertionError("Empty title should raise ValidationError")

        try:
            await courses.delete_course("non-existent-id")
        except NotFoundError:
            pass
        else:
            raise AssertionError("Deleting a missing course should raise NotFoundError")

    harness.register("CourseManager creates course successfully", course_manager_creates, "integration",
                     timeout=INTEGRATION_TIMEOUT_SECONDS)
    harness.register("Course and Student integration", enrollment_counts_follow_students, "integration",
                     timeout=INTEGRATION_TIMEOUT_SECONDS)
    harness.register("Data persistence integration", created_course_is_listed, "integration",
                     timeout=INTEGRATION_TIMEOUT_SECONDS)
    harness.register("Async operations handle errors correctly", errors_reach_the_caller, "integration",
                     timeout=INTEGRATION_TIMEOUT_SECONDS)


def _register_validation_checks(harness: TestHarness) -> None:
    validation = ValidationService()

    def course_fields():
        report = validation.validate_course({})
        _check(not report.is_valid, "Empty course data should fail validation")
        for name in ("title", "description", "duration", "instructor", "difficulty"):
            _check(name in report.errors, f"Should have {name} error")

    def student_fields():
        report = validation.validate_student({})
        _check(not report.is_valid, "Empty student data should fail validation")
        for name in ("name", "email", "course_id"):
            _check(name in report.errors, f"Should have {name} error")

    def partial_student_update():
        report = validation.validate_student({"phone": "+1 (555) 123-4567"}, mode="update")
        _check(report.is_valid, "Update mode should only check supplied fields")

    def length_bounds():
        _check(not validation.validate_field("length", "ab", {"min": 3, "field_name": "Test"}).is_valid,
               "Short string should fail min length validation")
        _check(not validation.validate_field("length", "a" * 101, {"max": 100, "field_name": "Test"}).is_valid,
               "Long string should fail max length validation")
        _check(validation.validate_field("length", "valid", {"min": 3, "max": 10}).is_valid,
               "Valid length string should pass validation")

    harness.register("Course validation catches all required fields", course_fields, "validation")
    harness.register("Student validation catches all required fields", student_fields, "validation")
    harness.register("Student update validation skips absent fields", partial_student_update, "validation")
    harness.register("Length validation works correctly", length_bounds, "validation")


def register_builtin_checks(harness: TestHarness, context: "AppContext") -> None:
    _register_unit_checks(harness, context)
    _register_integration_checks(harness, context)
    _register_validation_checks(harness)
