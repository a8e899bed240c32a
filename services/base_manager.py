"""
Shared plumbing for the course and student managers.

- Read-through TTL cache keyed by the query options
- Event dispatch to subscribers and observer objects
- One failure report per failed operation (validation channel or error channel)
- Operation-scoped log correlation
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from core.config import Settings, get_settings
from core.errors import ValidationError
from core.logging_config import operation_scope
from schemas.query import RecordQuery
from services.data_service import DataService
from services.events import (
    ErrorEvent,
    EventDispatcher,
    LoadedEvent,
    LoadingEvent,
    ManagerEvent,
    Subscriber,
    ValidationErrorEvent,
)
from services.record_cache import TTLCache
from services.validation_service import ValidationService

logger = logging.getLogger(__name__)

_REPORTED_ATTR = "_observers_notified"


class BaseRecordManager:
    entity: str = "record"

    def __init__(self, data_service: DataService, validation_service: ValidationService,
                 settings: Optional[Settings] = None, clock: Callable[[], float] = time.time):
        settings = settings or get_settings()
        self.data_service = data_service
        self.validation_service = validation_service
        self.events = EventDispatcher(f"{self.entity}_manager")
        self.cache = TTLCache(settings.cache_ttl_seconds, clock=clock)
        self._linked_caches: List[TTLCache] = []

    # --- observers ------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.events.subscribe(callback)

    def add_observer(self, observer: Any) -> None:
        self.events.add_observer(observer)

    def remove_observer(self, observer: Any) -> None:
        self.events.remove_observer(observer)

    def _notify(self, event: ManagerEvent) -> None:
        self.events.notify(event)

    def _report_failure(self, exc: BaseException) -> None:
        # Nested manager calls share the exception object; report it only once
        if getattr(exc, _REPORTED_ATTR, False):
            return
        try:
            setattr(exc, _REPORTED_ATTR, True)
        except AttributeError:
            pass
        if isinstance(exc, ValidationError):
            logger.info(f"{self.entity} validation failed: {exc.errors}", extra={"entity": self.entity})
            self._notify(ValidationErrorEvent(self.entity, dict(exc.errors)))
        else:
            logger.warning(f"{self.entity} operation failed: {exc}", extra={"entity": self.entity})
            self._notify(ErrorEvent(self.entity, exc))

    # --- cache ----------------------------------------------------------

    def link_cache(self, other: "BaseRecordManager") -> None:
        """Also clear ``other``'s cache whenever this manager mutates state."""
        self._linked_caches.append(other.cache)

    def clear_cache(self) -> None:
        self.cache.clear()
        for cache in self._linked_caches:
            cache.clear()

    def cache_size(self) -> int:
        return len(self.cache)

    async def _cached_list(self, query: Optional[RecordQuery], use_cache: bool,
                           fetch: Callable[[RecordQuery], Awaitable[List[Any]]]) -> List[Any]:
        query = query or RecordQuery()
        key = query.cache_key(self.entity) if use_cache else None

        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit", extra={"entity": self.entity, "cache_key": key})
                return [record.model_copy(deep=True) for record in cached]

        self._notify(LoadingEvent(self.entity))
        records = await fetch(query)
        if key is not None:
            self.cache.set(key, [record.model_copy(deep=True) for record in records])
        self._notify(LoadedEvent(self.entity, records))
        return records

    # --- operation wrapper ----------------------------------------------

    @asynccontextmanager
    async def _operation(self, name: str, mutating: bool = False) -> AsyncIterator[str]:
        """Log correlation plus failure reporting for one public operation.

        Mutating operations also clear the cache when they fail, since a
        persistence failure can leave the in-memory change in place.
        """
        with operation_scope(f"{self.entity}.{name}") as operation_id:
            try:
                yield operation_id
            except Exception as exc:
                if mutating:
                    self.clear_cache()
                self._report_failure(exc)
                raise

    def _require_valid(self, errors: dict, message: str) -> None:
        if errors:
            raise ValidationError(message, errors)

    def _validate_progress(self, progress: Any) -> None:
        result = self.validation_service.validate_field("progress", progress)
        if not result.is_valid:
            raise ValidationError("Progress validation failed", {"progress": result.message})
