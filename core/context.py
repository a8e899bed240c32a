"""
Application context: every long-lived component, built once and passed by
reference to whatever needs it (CLI commands, the check harness, tests).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.config import Settings, get_settings
from core.utils import RetryPolicy
from services.course_manager import CourseManager
from services.data_service import DataService
from services.harness import TestHarness
from services.self_checks import register_builtin_checks
from services.storage import InMemoryStore, JsonFileStore, KeyValueStore
from services.student_manager import StudentManager
from services.validation_service import ValidationService

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@dataclass
class AppContext:
    settings: Settings
    store: KeyValueStore
    data_service: DataService
    validation_service: ValidationService
    course_manager: CourseManager
    student_manager: StudentManager
    harness: TestHarness
    version: str = APP_VERSION

    @property
    def initialized(self) -> bool:
        return self.data_service.initialized

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise RuntimeError("Application not initialized")

    async def get_info(self) -> Dict[str, Any]:
        courses = await self.data_service.get_courses()
        students = await self.data_service.get_students()
        return {
            "version": self.version,
            "environment": self.settings.environment,
            "initialized": self.initialized,
            "storage_backend": self.settings.storage_backend,
            "data_version": self.data_service.version,
            "courses": len(courses),
            "students": len(students),
            "cache": {
                "courses": self.course_manager.cache_size(),
                "students": self.student_manager.cache_size(),
            },
            "checks": self.harness.statistics(),
        }

    async def export_application_data(self) -> Dict[str, Any]:
        self._require_initialized()
        data = await self.data_service.export_data()
        return {
            **data,
            "app_version": self.version,
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }

    async def reset(self) -> None:
        self._require_initialized()
        await self.data_service.clear_all_data()
        self.course_manager.clear_cache()
        self.student_manager.clear_cache()
        logger.info("Application data reset")


def build_store(settings: Settings) -> KeyValueStore:
    if settings.storage_backend == "memory":
        return InMemoryStore()
    if settings.storage_backend == "file":
        return JsonFileStore(settings.storage_path, settings.backup_dir, settings.max_backups)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


async def build_app_context(settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None,
                            retry_policy: Optional[RetryPolicy] = None,
                            register_checks: bool = True) -> AppContext:
    """Wire the components together and load the persisted dataset."""
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)

    data_service = DataService(store, settings, retry_policy=retry_policy)
    await data_service.initialize()

    validation_service = ValidationService()
    course_manager = CourseManager(data_service, validation_service, settings)
    student_manager = StudentManager(data_service, validation_service, settings)
    # Enrollment changes move course counts, so student mutations invalidate course reads too
    student_manager.link_cache(course_manager)

    harness = TestHarness(settings.harness_timeout_seconds, settings.harness_retry_delay_seconds)

    context = AppContext(
        settings=settings,
        store=store,
        data_service=data_service,
        validation_service=validation_service,
        course_manager=course_manager,
        student_manager=student_manager,
        harness=harness,
    )
    if register_checks:
        register_builtin_checks(harness, context)

    logger.info(f"Application context ready (v{APP_VERSION}, {settings.storage_backend} storage)")
    return context
