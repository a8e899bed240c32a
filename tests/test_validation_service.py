import pytest

from services.validation_service import ValidationResult, ValidationService


@pytest.fixture
def validation():
    return ValidationService()


def test_empty_course_reports_every_field(validation):
    report = validation.validate_course({})
    assert not report.is_valid
    assert set(report.errors) == {"title", "description", "duration", "instructor", "difficulty"}
    assert report.errors["title"] == "Course title is required"
    assert report.errors["duration"] == "Duration must be a valid number"


def test_valid_course_passes(validation, course_payload):
    report = validation.validate_course(course_payload())
    assert report.is_valid
    assert report.errors == {}


def test_course_length_and_range_rules(validation, course_payload):
    report = validation.validate_course(course_payload(title="Go", description="short", duration=1001))
    assert report.errors == {
        "title": "Course title must be at least 3 characters long",
        "description": "Description must be at least 10 characters long",
        "duration": "Duration cannot exceed 1000",
    }


def test_course_update_mode_only_checks_supplied_fields(validation):
    assert validation.validate_course({"description": "A much longer description"}, mode="update").is_valid
    report = validation.validate_course({"duration": 0}, mode="update")
    assert report.errors == {"duration": "Duration must be at least 1"}


def test_student_create_mode_requires_course(validation, student_payload):
    report = validation.validate_student(student_payload())
    assert report.errors == {"course_id": "Please select a course"}
    assert validation.validate_student(student_payload(course_id="c1")).is_valid


def test_student_update_mode_never_requires_course(validation):
    assert validation.validate_student({"name": "Grace Hopper"}, mode="update").is_valid
    report = validation.validate_student({"email": "broken"}, mode="update")
    assert report.errors == {"email": "Please enter a valid email address"}


def test_empty_student_collects_all_errors(validation):
    report = validation.validate_student({})
    assert set(report.errors) == {"name", "email", "course_id"}


@pytest.mark.parametrize("phone,ok", [
    ("+1 (555) 123-4567", True),
    ("020 7946 0958", False),
    ("abc", False),
    ("", True),
])
def test_phone_shapes(validation, phone, ok):
    assert validation.validate_field("phone", phone).is_valid is ok


@pytest.mark.parametrize("name,ok", [("Mary-Jane O'Neil", True), ("R2-D2", False), ("J", False)])
def test_name_character_class(validation, name, ok):
    assert validation.validate_field("name", name).is_valid is ok


def test_difficulty_and_progress(validation):
    assert validation.validate_field("difficulty", "Advanced").is_valid
    assert not validation.validate_field("difficulty", "expert").is_valid
    assert validation.validate_field("progress", "55.5").is_valid
    result = validation.validate_field("progress", 101)
    assert result.message == "Progress must be a number between 0 and 100"


def test_unknown_validator_fails_loudly(validation):
    with pytest.raises(KeyError):
        validation.validate_field("does-not-exist", "x")


def test_custom_validator_registration(validation):
    def even(value, options):
        if int(value) % 2:
            return ValidationResult.fail(f"{options.get('field_name', 'Value')} must be even")
        return ValidationResult.ok()

    validation.register_custom_validator("even", even)
    assert validation.validate_field("even", 4).is_valid
    assert validation.validate_field("even", 3, {"field_name": "Seats"}).message == "Seats must be even"

    report = validation.validate_array([2, 3, 4], "even")
    assert not report.is_valid
    assert [r.is_valid for r in report.results] == [True, False, True]


def test_sanitize_input_trims_and_escapes(validation):
    sanitized = validation.sanitize_input({"title": "  <b>Bold</b> & more ", "duration": 5})
    assert sanitized == {"title": "&lt;b&gt;Bold&lt;/b&gt; &amp; more", "duration": 5}
