"""
Repository for courses and students.

Responsibilities:
- Own the authoritative in-memory collections and mirror them to one persisted blob.
- Enforce uniqueness (course title, student email) and referential integrity
  (course enrollment counts, no deletion of referenced courses).
- Simulate network latency on every call.

Notes:
- Every mutation runs under one asyncio.Lock together with its persistence
  write. Inside the lock the in-memory changes happen without awaiting, so a
  student reference and the matching enrollment count always change together.
- Reads return deep copies; the only way to change a record is through the
  update paths below.
- A failed save leaves the in-memory change in place and raises
  PersistenceError to the caller of the mutation.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from core.config import Settings, get_settings
from core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from core.utils import RetryPolicy, delay, round_half_up
from schemas.course import Course, course_sort_key
from schemas.query import RecordQuery
from schemas.student import Student, student_sort_key
from services.storage import KeyValueStore

logger = logging.getLogger("data_service")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataService:
    def __init__(self, store: KeyValueStore, settings: Optional[Settings] = None,
                 retry_policy: Optional[RetryPolicy] = None) -> None:
        self._settings = settings or get_settings()
        self.store = store
        self.storage_key = self._settings.storage_key
        self.version = self._settings.data_version
        self.retry_policy = retry_policy or RetryPolicy.none()
        self.initialized = False

        self._courses: Dict[str, Course] = {}
        self._students: Dict[str, Student] = {}
        self._app_settings: Dict[str, Any] = {}
        self._metadata: Dict[str, Any] = self._fresh_metadata()

        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle and persistence
    # ------------------------------------------------------------------

    def _fresh_metadata(self) -> Dict[str, Any]:
        now = _now_iso()
        return {"version": self.version, "created_at": now, "last_updated": now}

    def _reset_dataset(self) -> None:
        self._courses = {}
        self._students = {}
        self._app_settings = {}
        self._metadata = self._fresh_metadata()

    async def _latency(self, fraction: float) -> None:
        await delay(self._settings.api_delay_ms * fraction)

    async def initialize(self) -> None:
        """Load the persisted blob, or seed and persist an empty dataset. Safe to call repeatedly."""
        async with self._init_lock:
            if self.initialized:
                return
            try:
                loaded = await self.load_data()
                if not loaded:
                    logger.info("No stored data found, starting with empty dataset")
            except PersistenceError as e:
                logger.warning(f"Failed to load existing data, starting with empty dataset: {e}")
                loaded = False

            if not loaded:
                self._reset_dataset()
                try:
                    await self._persist()
                except PersistenceError as save_error:
                    # In-memory state stays authoritative; the next mutation retries the write
                    logger.error(f"Failed to persist empty dataset: {save_error}")
            self.initialized = True
            logger.info(f"Data service initialized with {len(self._courses)} courses "
                        f"and {len(self._students)} students")

    async def ensure_initialized(self) -> None:
        if not self.initialized:
            await self.initialize()

    async def load_data(self) -> bool:
        """Read the blob into memory. Returns False when nothing is stored yet."""
        await self._latency(1)
        try:
            raw = await self.retry_policy.call(lambda: self.store.get(self.storage_key))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to read stored data: {e}") from e

        if raw is None:
            return False

        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to parse stored data: {e}") from e

        parsed = self._normalize_structure(parsed)
        try:
            courses = [Course.from_record(record) for record in parsed["courses"]]
            students = [Student.from_record(record) for record in parsed["students"]]
        except ValidationError as e:
            raise PersistenceError(f"Stored data failed validation: {e.message} {e.errors}") from e
        except (TypeError, AttributeError) as e:
            raise PersistenceError(f"Stored records are malformed: {e}") from e

        self._courses = {course.id: course for course in courses}
        self._students = {student.id: student for student in students}
        self._app_settings = parsed["settings"]
        self._metadata = parsed["metadata"]

        mismatches = self.verify_enrollment_counts()
        if mismatches:
            logger.warning(f"Stored enrollment counts disagree with student references: {mismatches}")
        return True

    def _normalize_structure(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise PersistenceError("Invalid data format")
        if not isinstance(data.get("courses"), list):
            data["courses"] = []
        if not isinstance(data.get("students"), list):
            data["students"] = []
        if not isinstance(data.get("metadata"), dict):
            data["metadata"] = self._fresh_metadata()
        if not isinstance(data.get("settings"), dict):
            data["settings"] = {}
        return data

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "courses": [course.to_record() for course in self._courses.values()],
            "students": [student.to_record() for student in self._students.values()],
            "settings": dict(self._app_settings),
            "metadata": dict(self._metadata),
        }

    async def _persist(self) -> None:
        await self._latency(0.5)
        self._metadata["last_updated"] = _now_iso()
        self._metadata["version"] = self.version
        try:
            payload = json.dumps(self._snapshot(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to serialize data: {e}") from e

        try:
            await self.retry_policy.call(lambda: self.store.set(self.storage_key, payload))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save data: {e}") from e

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    def _title_taken(self, title: str, exclude_id: Optional[str] = None) -> bool:
        needle = title.strip().lower()
        return any(c.title.lower() == needle and c.id != exclude_id for c in self._courses.values())

    async def get_courses(self, query: Optional[RecordQuery] = None) -> List[Course]:
        await self.ensure_initialized()
        await self._latency(1 / 3)
        courses = [course.model_copy(deep=True) for course in self._courses.values()]
        return (query or RecordQuery()).apply(courses, course_sort_key)

    async def get_course_by_id(self, course_id: str) -> Optional[Course]:
        await self.ensure_initialized()
        await self._latency(1 / 4)
        course = self._courses.get(course_id)
        return course.model_copy(deep=True) if course else None

    async def create_course(self, course_data: Dict[str, Any]) -> Course:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            course = Course.create({**course_data, "enrollment_count": 0})
            if self._title_taken(course.title):
                raise ConflictError("A course with this title already exists")
            if course.id in self._courses:
                raise ConflictError(f"A course with id {course.id} already exists")

            self._courses[course.id] = course
            await self._persist()
            logger.info(f"Created course {course.id}", extra={"entity": "course", "entity_id": course.id})
            return course.model_copy(deep=True)

    async def update_course(self, course_id: str, updates: Dict[str, Any]) -> Course:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            course = self._courses.get(course_id)
            if course is None:
                raise NotFoundError("Course not found")
            new_title = updates.get("title")
            if isinstance(new_title, str) and new_title.strip() and self._title_taken(new_title, exclude_id=course_id):
                raise ConflictError("A course with this title already exists")

            course.apply_updates(updates)
            await self._persist()
            return course.model_copy(deep=True)

    async def set_course_progress(self, course_id: str, progress: Any) -> Course:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            course = self._courses.get(course_id)
            if course is None:
                raise NotFoundError("Course not found")
            course.update_progress(progress)
            await self._persist()
            return course.model_copy(deep=True)

    async def toggle_course_active(self, course_id: str) -> Course:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            course = self._courses.get(course_id)
            if course is None:
                raise NotFoundError("Course not found")
            course.toggle_active()
            await self._persist()
            return course.model_copy(deep=True)

    async def delete_course(self, course_id: str) -> bool:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            if course_id not in self._courses:
                raise NotFoundError("Course not found")
            if any(student.course_id == course_id for student in self._students.values()):
                raise ConflictError("Cannot delete course with enrolled students")

            del self._courses[course_id]
            await self._persist()
            logger.info(f"Deleted course {course_id}", extra={"entity": "course", "entity_id": course_id})
            return True

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def _email_taken(self, email: str, exclude_id: Optional[str] = None) -> bool:
        needle = email.strip().lower()
        return any(s.email == needle and s.id != exclude_id for s in self._students.values())

    async def get_students(self, query: Optional[RecordQuery] = None) -> List[Student]:
        await self.ensure_initialized()
        await self._latency(1 / 3)
        students = [student.model_copy(deep=True) for student in self._students.values()]
        return (query or RecordQuery()).apply(students, student_sort_key)

    async def get_student_by_id(self, student_id: str) -> Optional[Student]:
        await self.ensure_initialized()
        await self._latency(1 / 4)
        student = self._students.get(student_id)
        return student.model_copy(deep=True) if student else None

    async def create_student(self, student_data: Dict[str, Any]) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = Student.create({**student_data, "progress": 0, "completed_lessons": []})
            if self._email_taken(student.email):
                raise ConflictError("A student with this email already exists")
            if student.id in self._students:
                raise ConflictError(f"A student with id {student.id} already exists")

            course = None
            if student.course_id is not None:
                course = self._courses.get(student.course_id)
                if course is None:
                    raise NotFoundError("Selected course does not exist")
            else:
                student.enrollment_date = None

            self._students[student.id] = student
            if course is not None:
                course.add_enrollment()
            await self._persist()
            logger.info(f"Created student {student.id}", extra={"entity": "student", "entity_id": student.id})
            return student.model_copy(deep=True)

    async def update_student(self, student_id: str, updates: Dict[str, Any]) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            new_email = updates.get("email")
            if isinstance(new_email, str) and new_email.strip() and self._email_taken(new_email, exclude_id=student_id):
                raise ConflictError("A student with this email already exists")
            if "course_id" in updates:
                logger.debug("Ignoring course_id in student update; use enroll/unenroll instead")

            student.apply_updates(updates)
            await self._persist()
            return student.model_copy(deep=True)

    async def set_student_progress(self, student_id: str, progress: Any) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            student.update_progress(progress)
            await self._persist()
            return student.model_copy(deep=True)

    async def record_student_login(self, student_id: str) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            student.record_login()
            await self._persist()
            return student.model_copy(deep=True)

    async def complete_student_lesson(self, student_id: str, lesson_id: str) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            student.complete_lesson(lesson_id)
            await self._persist()
            return student.model_copy(deep=True)

    async def uncomplete_student_lesson(self, student_id: str, lesson_id: str) -> Student:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            student.uncomplete_lesson(lesson_id)
            await self._persist()
            return student.model_copy(deep=True)

    async def delete_student(self, student_id: str) -> bool:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")

            if student.course_id is not None:
                course = self._courses.get(student.course_id)
                if course is not None:
                    course.remove_enrollment()
            del self._students[student_id]
            await self._persist()
            logger.info(f"Deleted student {student_id}", extra={"entity": "student", "entity_id": student_id})
            return True

    # ------------------------------------------------------------------
    # Enrollment transitions
    # ------------------------------------------------------------------

    async def enroll_student(self, student_id: str, course_id: str) -> Tuple[Student, Course]:
        """Point the student at the course and bump its count as one unit."""
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            course = self._courses.get(course_id)
            if course is None:
                raise NotFoundError("Course not found")
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            if student.is_enrolled():
                raise ConflictError("Student is already enrolled in a course. Please unenroll first.")

            student.enroll_in_course(course_id)
            course.add_enrollment()
            await self._persist()
            logger.info(f"Enrolled student {student_id} in course {course_id}",
                        extra={"entity": "student", "entity_id": student_id})
            return student.model_copy(deep=True), course.model_copy(deep=True)

    async def unenroll_student(self, student_id: str) -> Tuple[Student, Optional[Course]]:
        await self.ensure_initialized()
        await self._latency(1)

        async with self._write_lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            if not student.is_enrolled():
                raise ConflictError("Student is not enrolled in any course")

            course = self._courses.get(student.course_id)
            student.unenroll_from_course()
            if course is not None:
                course.remove_enrollment()
            await self._persist()
            logger.info(f"Unenrolled student {student_id}", extra={"entity": "student", "entity_id": student_id})
            return student.model_copy(deep=True), course.model_copy(deep=True) if course else None

    # ------------------------------------------------------------------
    # Reporting and maintenance
    # ------------------------------------------------------------------

    def verify_enrollment_counts(self) -> Dict[str, Tuple[int, int]]:
        """Scan both collections; returns {course_id: (stored_count, referencing_students)} for mismatches."""
        referenced: Dict[str, int] = {course_id: 0 for course_id in self._courses}
        for student in self._students.values():
            if student.course_id is not None:
                referenced[student.course_id] = referenced.get(student.course_id, 0) + 1
        mismatches = {}
        for course_id, actual in referenced.items():
            course = self._courses.get(course_id)
            stored = course.enrollment_count if course else 0
            if stored != actual:
                mismatches[course_id] = (stored, actual)
        return mismatches

    async def get_analytics(self) -> Dict[str, Any]:
        await self.ensure_initialized()
        await self._latency(0.5)

        courses = list(self._courses.values())
        students = list(self._students.values())

        enrolled = [s for s in students if s.is_enrolled()]
        completed = [s for s in students if s.has_completed_course()]
        average_progress = sum(s.progress for s in students) / len(students) if students else 0
        completion_rate = len(completed) / len(enrolled) * 100 if enrolled else 0

        distribution = []
        for course in courses:
            course_students = [s for s in students if s.course_id == course.id]
            course_average = (sum(s.progress for s in course_students) / len(course_students)
                              if course_students else 0)
            distribution.append({
                "course_id": course.id,
                "course_title": course.title,
                "enrollment_count": course.enrollment_count,
                "average_progress": round_half_up(course_average, 2),
            })

        return {
            "total_courses": len(courses),
            "total_students": len(students),
            "active_students": sum(1 for s in students if s.is_active),
            "enrolled_students": len(enrolled),
            "completed_students": len(completed),
            "average_progress": round_half_up(average_progress, 2),
            "completion_rate": round_half_up(completion_rate, 2),
            "enrollment_distribution": distribution,
        }

    async def export_data(self) -> Dict[str, Any]:
        await self.ensure_initialized()
        await self._latency(1)
        export = self._snapshot()
        export["exported_at"] = _now_iso()
        return export

    async def clear_all_data(self) -> None:
        await self.ensure_initialized()
        await self._latency(1)
        async with self._write_lock:
            self._reset_dataset()
            await self._persist()
            logger.info("Cleared all course and student data")
