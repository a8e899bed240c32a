"""
Student management facade with enrollment orchestration.

Enrollment transitions are delegated to the repository, which changes the
student reference and the course count together. This manager validates
input, keeps its cache (and the linked course cache) fresh, and reports what
happened to subscribers.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from core.errors import RecordError
from core.utils import random_between, round_half_up
from schemas.query import RecordQuery
from schemas.student import (
    STATUS_COMPLETED,
    STATUS_ENROLLED,
    STATUS_IN_PROGRESS,
    STATUS_INACTIVE,
    STATUS_NOT_ENROLLED,
    Student,
)
from services.base_manager import BaseRecordManager
from services.events import STUDENT, CreatedEvent, DeletedEvent, UpdatedEvent

logger = logging.getLogger(__name__)

PROGRESS_STEP_RANGE = (3, 20)


class StudentManager(BaseRecordManager):
    entity = STUDENT

    async def get_students(self, query: Optional[RecordQuery] = None, use_cache: bool = True) -> List[Student]:
        async with self._operation("list"):
            return await self._cached_list(query, use_cache, self.data_service.get_students)

    async def get_student_by_id(self, student_id: str) -> Optional[Student]:
        async with self._operation("get"):
            return await self.data_service.get_student_by_id(student_id)

    async def create_student(self, student_data: Dict[str, Any]) -> Student:
        async with self._operation("create", mutating=True):
            sanitized = self.validation_service.sanitize_input(student_data)
            report = self.validation_service.validate_student(sanitized, mode="create")
            self._require_valid(report.errors, "Student validation failed")

            student = await self.data_service.create_student(sanitized)
            self.clear_cache()
            self._notify(CreatedEvent(STUDENT, student))
            return student

    async def update_student(self, student_id: str, updates: Dict[str, Any]) -> Student:
        async with self._operation("update", mutating=True):
            sanitized = self.validation_service.sanitize_input(updates)
            report = self.validation_service.validate_student(sanitized, mode="update")
            self._require_valid(report.errors, "Student validation failed")

            student = await self.data_service.update_student(student_id, sanitized)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="fields"))
            return student

    async def delete_student(self, student_id: str) -> bool:
        async with self._operation("delete", mutating=True):
            result = await self.data_service.delete_student(student_id)
            self.clear_cache()
            self._notify(DeletedEvent(STUDENT, student_id))
            return result

    async def enroll_student(self, student_id: str, course_id: str) -> Student:
        async with self._operation("enroll", mutating=True):
            student, course = await self.data_service.enroll_student(student_id, course_id)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="enrolled", related=course))
            return student

    async def unenroll_student(self, student_id: str) -> Student:
        async with self._operation("unenroll", mutating=True):
            student, course = await self.data_service.unenroll_student(student_id)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="unenrolled", related=course))
            return student

    async def update_student_progress(self, student_id: str, progress: Any) -> Student:
        async with self._operation("progress", mutating=True):
            self._validate_progress(progress)
            student = await self.data_service.set_student_progress(student_id, progress)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="progress"))
            return student

    async def record_student_login(self, student_id: str) -> Student:
        async with self._operation("login", mutating=True):
            student = await self.data_service.record_student_login(student_id)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="login"))
            return student

    async def complete_lesson(self, student_id: str, lesson_id: str) -> Student:
        async with self._operation("lesson", mutating=True):
            student = await self.data_service.complete_student_lesson(student_id, lesson_id)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="lesson"))
            return student

    async def uncomplete_lesson(self, student_id: str, lesson_id: str) -> Student:
        async with self._operation("lesson_undone", mutating=True):
            student = await self.data_service.uncomplete_student_lesson(student_id, lesson_id)
            self.clear_cache()
            self._notify(UpdatedEvent(STUDENT, student, reason="lesson_undone"))
            return student

    async def simulate_progress(self, rng: Optional[random.Random] = None) -> List[Student]:
        """Advance every enrolled student by a random step; one failure does not stop the batch."""
        async with self._operation("simulate_progress"):
            students = await self.get_students(use_cache=False)
            enrolled = [s for s in students if s.is_enrolled()]
            updated = []
            for student in enrolled:
                step = random_between(*PROGRESS_STEP_RANGE, rng=rng)
                target = min(100, student.progress + step)
                try:
                    updated.append(await self.update_student_progress(student.id, target))
                except RecordError as e:
                    logger.warning(f"Skipping progress simulation for student {student.id}: {e}",
                                   extra={"entity": STUDENT, "entity_id": student.id})
            logger.info(f"Simulated progress for {len(updated)}/{len(enrolled)} enrolled students")
            return updated

    async def search_students(self, text: Optional[str]) -> List[Student]:
        if not text or not text.strip():
            return await self.get_students()
        needle = text.strip().lower()
        query = RecordQuery(predicate=lambda s: needle in s.name.lower() or needle in s.email)
        return await self.get_students(query)

    async def get_students_by_course(self, course_id: str) -> List[Student]:
        return await self.get_students(RecordQuery(filters={"course_id": course_id}))

    async def get_student_statistics(self) -> Dict[str, Any]:
        students = await self.get_students()
        total = len(students)
        enrolled = sum(1 for s in students if s.is_enrolled())
        completed = sum(1 for s in students if s.has_completed_course())

        by_status = {
            STATUS_NOT_ENROLLED: sum(1 for s in students if not s.is_enrolled()),
            STATUS_ENROLLED: sum(1 for s in students if s.is_enrolled() and s.progress == 0),
            STATUS_IN_PROGRESS: sum(1 for s in students if 0 < s.progress < 100),
            STATUS_COMPLETED: completed,
            STATUS_INACTIVE: sum(1 for s in students if not s.is_active),
        }

        return {
            "total": total,
            "active": sum(1 for s in students if s.is_active),
            "enrolled": enrolled,
            "completed": completed,
            "average_progress": round_half_up(sum(s.progress for s in students) / total, 2) if total else 0,
            "by_status": by_status,
            "completion_rate": round_half_up(completed / enrolled * 100, 2) if enrolled else 0,
            "enrollment_rate": round_half_up(enrolled / total * 100, 2) if total else 0,
        }

    async def get_enrollment_analytics(self) -> Dict[str, Dict[str, Any]]:
        """Per-course view: enrolled students, their average progress and completion rate."""
        async with self._operation("enrollment_analytics"):
            students = await self.get_students()
            courses = await self.data_service.get_courses()

            analytics = {}
            for course in courses:
                course_students = [s for s in students if s.course_id == course.id]
                count = len(course_students)
                analytics[course.id] = {
                    "course": course,
                    "students": course_students,
                    "average_progress": (round_half_up(sum(s.progress for s in course_students) / count, 2)
                                         if count else 0),
                    "completion_rate": (round_half_up(
                        sum(1 for s in course_students if s.has_completed_course()) / count * 100, 2)
                        if count else 0),
                }
            return analytics

    async def export_students(self) -> List[Dict[str, Any]]:
        students = await self.get_students()
        return [student.to_record() for student in students]
