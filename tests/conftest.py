import pytest
import pytest_asyncio

from core.config import Settings
from core.context import build_app_context
from services.data_service import DataService
from services.storage import InMemoryStore


@pytest.fixture
def settings():
    return Settings(storage_backend="memory", api_delay_ms=0, harness_retry_delay_seconds=0.0)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest_asyncio.fixture
async def data_service(store, settings):
    service = DataService(store, settings)
    await service.initialize()
    return service


@pytest_asyncio.fixture
async def context(store, settings):
    return await build_app_context(settings, store=store, register_checks=False)


@pytest.fixture
def course_payload():
    def _make(**overrides):
        payload = {
            "title": "Intro to Python",
            "description": "Learn the basics of Python programming",
            "duration": 10,
            "instructor": "Ada Lovelace",
            "difficulty": "beginner",
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def student_payload():
    def _make(**overrides):
        payload = {
            "name": "Grace Hopper",
            "email": "grace@example.com",
            "phone": "+1 555 0100",
        }
        payload.update(overrides)
        return payload
    return _make
