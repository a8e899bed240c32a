"""
Course management facade

This module wraps the repository's course operations with:
- Input sanitization and validation before anything reaches storage
- Cached list reads (TTL, keyed by query options)
- Cache invalidation on every mutation
- Lifecycle events for subscribers and observers
- Search, grouping, statistics and export helpers
"""

import logging
import random
from typing import Any, Dict, List, Optional

from core.errors import RecordError
from core.utils import random_between, round_half_up
from schemas.course import DIFFICULTIES, Course
from schemas.query import RecordQuery
from services.base_manager import BaseRecordManager
from services.events import COURSE, CreatedEvent, DeletedEvent, UpdatedEvent

logger = logging.getLogger(__name__)

PROGRESS_STEP_RANGE = (5, 25)


class CourseManager(BaseRecordManager):
    entity = COURSE

    async def get_courses(self, query: Optional[RecordQuery] = None, use_cache: bool = True) -> List[Course]:
        async with self._operation("list"):
            return await self._cached_list(query, use_cache, self.data_service.get_courses)

    async def get_course_by_id(self, course_id: str) -> Optional[Course]:
        async with self._operation("get"):
            return await self.data_service.get_course_by_id(course_id)

    async def create_course(self, course_data: Dict[str, Any]) -> Course:
        async with self._operation("create", mutating=True):
            sanitized = self.validation_service.sanitize_input(course_data)
            report = self.validation_service.validate_course(sanitized, mode="create")
            self._require_valid(report.errors, "Course validation failed")

            course = await self.data_service.create_course(sanitized)
            self.clear_cache()
            self._notify(CreatedEvent(COURSE, course))
            return course

    async def update_course(self, course_id: str, updates: Dict[str, Any]) -> Course:
        async with self._operation("update", mutating=True):
            sanitized = self.validation_service.sanitize_input(updates)
            report = self.validation_service.validate_course(sanitized, mode="update")
            self._require_valid(report.errors, "Course validation failed")

            course = await self.data_service.update_course(course_id, sanitized)
            self.clear_cache()
            self._notify(UpdatedEvent(COURSE, course, reason="fields"))
            return course

    async def delete_course(self, course_id: str) -> bool:
        async with self._operation("delete", mutating=True):
            result = await self.data_service.delete_course(course_id)
            self.clear_cache()
            self._notify(DeletedEvent(COURSE, course_id))
            return result

    async def update_course_progress(self, course_id: str, progress: Any) -> Course:
        async with self._operation("progress", mutating=True):
            self._validate_progress(progress)
            course = await self.data_service.set_course_progress(course_id, progress)
            self.clear_cache()
            self._notify(UpdatedEvent(COURSE, course, reason="progress"))
            return course

    async def toggle_course_active(self, course_id: str) -> Course:
        async with self._operation("toggle_active", mutating=True):
            course = await self.data_service.toggle_course_active(course_id)
            self.clear_cache()
            self._notify(UpdatedEvent(COURSE, course, reason="fields"))
            return course

    async def simulate_progress(self, rng: Optional[random.Random] = None) -> List[Course]:
        """Advance every course by a random step, one at a time; failures are skipped."""
        async with self._operation("simulate_progress"):
            courses = await self.get_courses(use_cache=False)
            updated = []
            for course in courses:
                step = random_between(*PROGRESS_STEP_RANGE, rng=rng)
                target = min(100, course.progress + step)
                try:
                    updated.append(await self.update_course_progress(course.id, target))
                except RecordError as e:
                    logger.warning(f"Skipping progress simulation for course {course.id}: {e}",
                                   extra={"entity": COURSE, "entity_id": course.id})
            logger.info(f"Simulated progress for {len(updated)}/{len(courses)} courses")
            return updated

    async def search_courses(self, text: Optional[str]) -> List[Course]:
        """Case-insensitive substring match on title, instructor and description."""
        if not text or not text.strip():
            return await self.get_courses()
        needle = text.strip().lower()
        query = RecordQuery(predicate=lambda c: (needle in c.title.lower()
                                                 or needle in c.instructor.lower()
                                                 or needle in c.description.lower()))
        return await self.get_courses(query)

    async def get_courses_by_difficulty(self) -> Dict[str, List[Course]]:
        courses = await self.get_courses()
        grouped: Dict[str, List[Course]] = {difficulty: [] for difficulty in DIFFICULTIES}
        for course in courses:
            grouped[course.difficulty].append(course)
        return grouped

    async def get_course_statistics(self) -> Dict[str, Any]:
        courses = await self.get_courses()
        total = len(courses)
        total_duration = sum(c.duration for c in courses)
        completed = sum(1 for c in courses if c.is_completed())

        return {
            "total": total,
            "by_difficulty": {d: sum(1 for c in courses if c.difficulty == d) for d in DIFFICULTIES},
            "average_progress": round_half_up(sum(c.progress for c in courses) / total, 2) if total else 0,
            "completed_courses": completed,
            "completion_rate": round_half_up(completed / total * 100, 2) if total else 0,
            "total_duration": total_duration,
            "average_duration": round_half_up(total_duration / total, 2) if total else 0,
            "total_enrollments": sum(c.enrollment_count for c in courses),
        }

    async def export_courses(self) -> List[Dict[str, Any]]:
        courses = await self.get_courses()
        return [course.to_record() for course in courses]
