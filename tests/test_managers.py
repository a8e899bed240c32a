import asyncio
import random

import pytest

from core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from schemas.query import RecordQuery
from services.course_manager import CourseManager
from services.data_service import DataService
from services.events import (
    CreatedEvent,
    DeletedEvent,
    ErrorEvent,
    LoadedEvent,
    LoadingEvent,
    UpdatedEvent,
    ValidationErrorEvent,
)
from services.storage import InMemoryStore
from services.validation_service import ValidationService


class RecordingObserver:
    def __init__(self):
        self.calls = []

    def course_created(self, course):
        self.calls.append(("course_created", course.id))

    def courses_loaded(self, courses):
        self.calls.append(("courses_loaded", len(courses)))

    def course_validation_error(self, errors):
        self.calls.append(("course_validation_error", sorted(errors)))

    def course_error(self, error):
        self.calls.append(("course_error", type(error).__name__))

    def student_enrolled(self, student, course):
        self.calls.append(("student_enrolled", student.course_id, course.enrollment_count))

    def student_unenrolled(self, student, course):
        self.calls.append(("student_unenrolled", student.course_id, course.enrollment_count))

    def student_lesson_uncompleted(self, student):
        self.calls.append(("student_lesson_uncompleted", list(student.completed_lessons)))

    def student_updated(self, student):
        self.calls.append(("student_updated", student.id))


class BrokenObserver:
    def course_created(self, course):
        raise RuntimeError("observer bug")


async def _enrolled_student(context, course_payload, student_payload):
    course = await context.course_manager.create_course(course_payload())
    student = await context.student_manager.create_student(student_payload(course_id=course.id))
    return course, student


@pytest.mark.asyncio
async def test_cache_is_cleared_by_mutations(context, course_payload):
    courses = context.course_manager
    assert await courses.get_courses() == []
    assert courses.cache_size() == 1

    created = await courses.create_course(course_payload())
    assert courses.cache_size() == 0

    listed = await courses.get_courses()
    assert [c.id for c in listed] == [created.id]


@pytest.mark.asyncio
async def test_cached_reads_skip_the_repository(context, course_payload):
    courses = context.course_manager
    await courses.get_courses()

    # written behind the manager's back, so its cache does not know about it
    await context.data_service.create_course(course_payload())
    assert await courses.get_courses() == []
    assert len(await courses.get_courses(use_cache=False)) == 1


@pytest.mark.asyncio
async def test_cached_results_are_copies(context, course_payload):
    courses = context.course_manager
    await courses.create_course(course_payload())
    first = await courses.get_courses()
    first[0].title = "Tampered"
    second = await courses.get_courses()
    assert second[0].title == "Intro to Python"


@pytest.mark.asyncio
async def test_distinct_queries_get_distinct_cache_entries(context, course_payload):
    courses = context.course_manager
    await courses.create_course(course_payload())
    await courses.create_course(course_payload(title="Deep Learning", difficulty="advanced"))

    await courses.get_courses()
    advanced = await courses.get_courses(RecordQuery(filters={"difficulty": "advanced"}))
    assert [c.title for c in advanced] == ["Deep Learning"]
    assert courses.cache_size() == 2

    # predicate queries are never cached
    await courses.search_courses("deep")
    assert courses.cache_size() == 2


@pytest.mark.asyncio
async def test_cache_entries_expire_after_ttl(context, settings, course_payload):
    now = [0.0]
    manager = CourseManager(context.data_service, ValidationService(), settings, clock=lambda: now[0])
    await manager.get_courses()
    await context.data_service.create_course(course_payload())

    now[0] += settings.cache_ttl_seconds - 1
    assert await manager.get_courses() == []

    now[0] += 1
    assert len(await manager.get_courses()) == 1


@pytest.mark.asyncio
async def test_toggle_course_active(context, course_payload):
    course = await context.course_manager.create_course(course_payload())
    events = []
    context.course_manager.subscribe(events.append)

    toggled = await context.course_manager.toggle_course_active(course.id)
    assert toggled.is_active is False
    assert isinstance(events[-1], UpdatedEvent)
    assert (await context.course_manager.get_courses())[0].is_active is False

    with pytest.raises(NotFoundError):
        await context.course_manager.toggle_course_active("missing")


@pytest.mark.asyncio
async def test_overlapping_toggles_both_apply(settings, course_payload):
    service = DataService(InMemoryStore(), settings.model_copy(update={"api_delay_ms": 20}))
    manager = CourseManager(service, ValidationService(), settings)
    course = await manager.create_course(course_payload())

    await asyncio.gather(manager.toggle_course_active(course.id), manager.toggle_course_active(course.id))
    assert (await service.get_course_by_id(course.id)).is_active is True


@pytest.mark.asyncio
async def test_events_for_reads_and_writes(context, course_payload):
    events = []
    unsubscribe = context.course_manager.subscribe(events.append)

    await context.course_manager.get_courses()
    course = await context.course_manager.create_course(course_payload())
    await context.course_manager.update_course(course.id, {"duration": 12})
    await context.course_manager.delete_course(course.id)

    assert [type(e) for e in events] == [LoadingEvent, LoadedEvent, CreatedEvent, UpdatedEvent, DeletedEvent]
    assert events[3].reason == "fields"
    assert events[4].record_id == course.id

    unsubscribe()
    await context.course_manager.get_courses()
    assert len(events) == 5


@pytest.mark.asyncio
async def test_validation_failures_are_reported_once_on_validation_channel(context):
    events = []
    context.course_manager.subscribe(events.append)

    with pytest.raises(ValidationError) as exc_info:
        await context.course_manager.create_course({"title": ""})

    assert "title" in exc_info.value.errors
    assert [type(e) for e in events] == [ValidationErrorEvent]
    assert events[0].errors == exc_info.value.errors


@pytest.mark.asyncio
async def test_other_failures_are_reported_once_on_error_channel(context):
    events = []
    context.course_manager.subscribe(events.append)

    with pytest.raises(NotFoundError):
        await context.course_manager.delete_course("missing")

    assert [type(e) for e in events] == [ErrorEvent]
    assert isinstance(events[0].error, NotFoundError)


@pytest.mark.asyncio
async def test_observer_objects_and_faulty_observers(context, course_payload):
    recorder = RecordingObserver()
    context.course_manager.add_observer(BrokenObserver())
    context.course_manager.add_observer(recorder)

    course = await context.course_manager.create_course(course_payload())
    await context.course_manager.get_courses()
    with pytest.raises(ValidationError):
        await context.course_manager.create_course({})

    assert recorder.calls == [
        ("course_created", course.id),
        ("courses_loaded", 1),
        ("course_validation_error", ["description", "difficulty", "duration", "instructor", "title"]),
    ]

    context.course_manager.remove_observer(recorder)
    await context.course_manager.create_course(course_payload(title="Another Course"))
    assert len(recorder.calls) == 3


@pytest.mark.asyncio
async def test_duplicate_title_reaches_caller_and_error_channel(context, course_payload):
    recorder = RecordingObserver()
    context.course_manager.add_observer(recorder)
    await context.course_manager.create_course(course_payload())

    with pytest.raises(ConflictError):
        await context.course_manager.create_course(course_payload(title="intro to python"))
    assert recorder.calls[-1] == ("course_error", "ConflictError")


@pytest.mark.asyncio
async def test_progress_is_validated_before_repository(context, course_payload, student_payload):
    course, student = await _enrolled_student(context, course_payload, student_payload)

    with pytest.raises(ValidationError) as exc_info:
        await context.student_manager.update_student_progress(student.id, 150)
    assert exc_info.value.errors == {"progress": "Progress must be a number between 0 and 100"}
    assert (await context.student_manager.get_student_by_id(student.id)).progress == 0

    updated = await context.course_manager.update_course_progress(course.id, 12.346)
    assert updated.progress == 12.35


@pytest.mark.asyncio
async def test_enroll_unenroll_reenroll_leaves_one_enrollment(context, course_payload, student_payload):
    course, student = await _enrolled_student(context, course_payload, student_payload)
    students = context.student_manager

    await students.update_student_progress(student.id, 40)
    for _ in range(2):
        await students.unenroll_student(student.id)
        await students.enroll_student(student.id, course.id)

    final_course = await context.course_manager.get_course_by_id(course.id)
    final_student = await students.get_student_by_id(student.id)
    assert final_course.enrollment_count == 1
    assert final_student.progress == 0
    assert context.data_service.verify_enrollment_counts() == {}


@pytest.mark.asyncio
async def test_enrollment_rules(context, course_payload, student_payload):
    course, student = await _enrolled_student(context, course_payload, student_payload)
    other = await context.course_manager.create_course(course_payload(title="Data Science"))
    students = context.student_manager

    with pytest.raises(ConflictError, match="unenroll first"):
        await students.enroll_student(student.id, other.id)
    with pytest.raises(NotFoundError):
        await students.enroll_student(student.id, "missing")

    await students.unenroll_student(student.id)
    with pytest.raises(ConflictError):
        await students.unenroll_student(student.id)


@pytest.mark.asyncio
async def test_enrollment_events_carry_reason(context, course_payload, student_payload):
    course, student = await _enrolled_student(context, course_payload, student_payload)
    await context.student_manager.unenroll_student(student.id)

    recorder = RecordingObserver()
    events = []
    context.student_manager.add_observer(recorder)
    context.student_manager.subscribe(events.append)

    await context.student_manager.enroll_student(student.id, course.id)
    assert events[-1].reason == "enrolled"
    assert events[-1].related.enrollment_count == 1
    assert recorder.calls == [("student_enrolled", course.id, 1)]

    await context.student_manager.update_student(student.id, {"phone": "+44 20 7946 0958"})
    assert recorder.calls[-1] == ("student_updated", student.id)

    await context.student_manager.unenroll_student(student.id)
    assert recorder.calls[-1] == ("student_unenrolled", None, 0)


@pytest.mark.asyncio
async def test_lessons_can_be_completed_and_undone(context, course_payload, student_payload):
    _, student = await _enrolled_student(context, course_payload, student_payload)
    recorder = RecordingObserver()
    context.student_manager.add_observer(recorder)

    done = await context.student_manager.complete_lesson(student.id, "lesson-1")
    assert done.completed_lessons == ["lesson-1"]
    assert recorder.calls[-1] == ("student_updated", student.id)

    undone = await context.student_manager.uncomplete_lesson(student.id, "lesson-1")
    assert undone.completed_lessons == []
    assert recorder.calls[-1] == ("student_lesson_uncompleted", [])
    assert (await context.student_manager.get_student_by_id(student.id)).completed_lessons == []

    with pytest.raises(NotFoundError):
        await context.student_manager.uncomplete_lesson("missing", "lesson-1")


@pytest.mark.asyncio
async def test_student_mutations_refresh_course_reads(context, course_payload, student_payload):
    course = await context.course_manager.create_course(course_payload())
    assert (await context.course_manager.get_courses())[0].enrollment_count == 0

    await context.student_manager.create_student(student_payload(course_id=course.id))
    assert (await context.course_manager.get_courses())[0].enrollment_count == 1


@pytest.mark.asyncio
async def test_create_student_validation(context, student_payload):
    with pytest.raises(ValidationError) as exc_info:
        await context.student_manager.create_student(student_payload(name="R2-D2", email="bad"))
    assert set(exc_info.value.errors) == {"name", "email", "course_id"}

    with pytest.raises(NotFoundError):
        await context.student_manager.create_student(student_payload(course_id="missing"))


@pytest.mark.asyncio
async def test_update_student_does_not_require_course(context, course_payload, student_payload):
    _, student = await _enrolled_student(context, course_payload, student_payload)
    await context.student_manager.unenroll_student(student.id)

    updated = await context.student_manager.update_student(student.id, {"name": "Grace M. Hopper"})
    assert updated.name == "Grace M. Hopper"
    assert updated.course_id is None


@pytest.mark.asyncio
async def test_student_simulation_only_advances_enrolled(context, course_payload, student_payload):
    course, enrolled = await _enrolled_student(context, course_payload, student_payload)
    loner = await context.student_manager.create_student(
        student_payload(name="Alan Turing", email="alan@example.com", course_id=course.id))
    await context.student_manager.unenroll_student(loner.id)
    await context.student_manager.update_student_progress(enrolled.id, 95)

    updated = await context.student_manager.simulate_progress(rng=random.Random(3))
    assert [s.id for s in updated] == [enrolled.id]
    assert updated[0].progress == 100
    assert (await context.student_manager.get_student_by_id(loner.id)).progress == 0


@pytest.mark.asyncio
async def test_course_simulation_is_best_effort(context, course_payload, monkeypatch):
    first = await context.course_manager.create_course(course_payload())
    second = await context.course_manager.create_course(course_payload(title="Data Science"))
    errors = []
    context.course_manager.subscribe(lambda e: errors.append(e) if isinstance(e, ErrorEvent) else None)

    original = context.data_service.set_course_progress

    async def failing_for_first(course_id, progress):
        if course_id == first.id:
            raise PersistenceError("disk full")
        return await original(course_id, progress)

    monkeypatch.setattr(context.data_service, "set_course_progress", failing_for_first)

    updated = await context.course_manager.simulate_progress(rng=random.Random(11))
    assert [c.id for c in updated] == [second.id]
    assert 5 <= updated[0].progress <= 25
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_search_and_grouping(context, course_payload, student_payload):
    courses = context.course_manager
    await courses.create_course(course_payload())
    await courses.create_course(course_payload(title="Neural Networks", difficulty="advanced",
                                               instructor="Geoffrey Hinton"))

    assert [c.title for c in await courses.search_courses("HINTON")] == ["Neural Networks"]
    assert len(await courses.search_courses("  ")) == 2

    grouped = await courses.get_courses_by_difficulty()
    assert [len(grouped[d]) for d in ("beginner", "intermediate", "advanced")] == [1, 0, 1]

    stats = await courses.get_course_statistics()
    assert stats["total"] == 2
    assert stats["total_duration"] == 20
    assert stats["by_difficulty"]["advanced"] == 1

    exported = await courses.export_courses()
    assert {record["title"] for record in exported} == {"Intro to Python", "Neural Networks"}


@pytest.mark.asyncio
async def test_student_reports(context, course_payload, student_payload):
    course, student = await _enrolled_student(context, course_payload, student_payload)
    students = context.student_manager
    await students.create_student(student_payload(name="Alan Turing", email="alan@example.com",
                                                  course_id=course.id))
    await students.update_student_progress(student.id, 100)
    await students.record_student_login(student.id)
    await students.complete_lesson(student.id, "lesson-1")

    assert [s.name for s in await students.search_students("ALAN")] == ["Alan Turing"]
    assert len(await students.get_students_by_course(course.id)) == 2

    stats = await students.get_student_statistics()
    assert stats["enrolled"] == 2
    assert stats["completed"] == 1
    assert stats["completion_rate"] == 50
    assert stats["by_status"]["Completed"] == 1

    analytics = await students.get_enrollment_analytics()
    assert analytics[course.id]["average_progress"] == 50
    assert analytics[course.id]["completion_rate"] == 50

    exported = await students.export_students()
    grace = next(r for r in exported if r["email"] == "grace@example.com")
    assert grace["completed_lessons"] == ["lesson-1"]
    assert grace["last_login_at"] is not None
