"""
Manager lifecycle events and their dispatch.

Each event is a small frozen dataclass tagged with the entity kind it concerns
("course" or "student"). Subscribers are plain callables receiving the event.
Objects written in the observer style (methods named ``course_created``,
``students_loaded``, ...) are adapted through a fixed lookup table.

A subscriber that raises is logged and skipped; it never reaches the caller
of the manager operation and never stops later subscribers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

COURSE = "course"
STUDENT = "student"


@dataclass(frozen=True)
class LoadingEvent:
    entity: str

    @property
    def payload(self) -> Any:
        return True


@dataclass(frozen=True)
class LoadedEvent:
    entity: str
    records: List[Any] = field(default_factory=list)

    @property
    def payload(self) -> Any:
        return self.records


@dataclass(frozen=True)
class CreatedEvent:
    entity: str
    record: Any

    @property
    def payload(self) -> Any:
        return self.record


@dataclass(frozen=True)
class UpdatedEvent:
    """``reason`` is one of fields, progress, enrolled, unenrolled, login, lesson, lesson_undone."""
    entity: str
    record: Any
    reason: str = "fields"
    related: Any = None

    @property
    def payload(self) -> Any:
        return self.record


@dataclass(frozen=True)
class DeletedEvent:
    entity: str
    record_id: str

    @property
    def payload(self) -> Any:
        return self.record_id


@dataclass(frozen=True)
class ErrorEvent:
    entity: str
    error: BaseException

    @property
    def payload(self) -> Any:
        return self.error


@dataclass(frozen=True)
class ValidationErrorEvent:
    entity: str
    errors: Dict[str, str]

    @property
    def payload(self) -> Any:
        return self.errors


ManagerEvent = Union[
    LoadingEvent, LoadedEvent, CreatedEvent, UpdatedEvent, DeletedEvent, ErrorEvent, ValidationErrorEvent
]
Subscriber = Callable[[ManagerEvent], None]


# (event type, entity) -> observer method name
OBSERVER_METHODS: Dict[Tuple[type, str], str] = {
    (LoadingEvent, COURSE): "courses_loading",
    (LoadedEvent, COURSE): "courses_loaded",
    (CreatedEvent, COURSE): "course_created",
    (UpdatedEvent, COURSE): "course_updated",
    (DeletedEvent, COURSE): "course_deleted",
    (ErrorEvent, COURSE): "course_error",
    (ValidationErrorEvent, COURSE): "course_validation_error",
    (LoadingEvent, STUDENT): "students_loading",
    (LoadedEvent, STUDENT): "students_loaded",
    (CreatedEvent, STUDENT): "student_created",
    (UpdatedEvent, STUDENT): "student_updated",
    (DeletedEvent, STUDENT): "student_deleted",
    (ErrorEvent, STUDENT): "student_error",
    (ValidationErrorEvent, STUDENT): "student_validation_error",
}

# More specific handlers for updates; fall back to the generic *_updated method
UPDATE_REASON_METHODS: Dict[Tuple[str, str], str] = {
    (COURSE, "progress"): "course_progress_updated",
    (STUDENT, "progress"): "student_progress_updated",
    (STUDENT, "enrolled"): "student_enrolled",
    (STUDENT, "unenrolled"): "student_unenrolled",
    (STUDENT, "login"): "student_login_recorded",
    (STUDENT, "lesson"): "student_lesson_completed",
    (STUDENT, "lesson_undone"): "student_lesson_uncompleted",
}

# Enrollment handlers also receive the course the student joined or left
RELATED_RECORD_METHODS = {"student_enrolled", "student_unenrolled"}


def observer_method_name(event: ManagerEvent, target: Any) -> Optional[str]:
    if isinstance(event, UpdatedEvent):
        specific = UPDATE_REASON_METHODS.get((event.entity, event.reason))
        if specific and callable(getattr(target, specific, None)):
            return specific
    name = OBSERVER_METHODS.get((type(event), event.entity))
    if name and callable(getattr(target, name, None)):
        return name
    return None


class ObserverAdapter:
    """Wrap an observer object as a subscriber callable."""

    def __init__(self, target: Any):
        self.target = target

    def __call__(self, event: ManagerEvent) -> None:
        name = observer_method_name(event, self.target)
        if name is None:
            return
        handler = getattr(self.target, name)
        if name in RELATED_RECORD_METHODS:
            handler(event.payload, event.related)
        else:
            handler(event.payload)


class EventDispatcher:
    def __init__(self, name: str = "events"):
        self.name = name
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callable; returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def add_observer(self, observer: Any) -> None:
        self._subscribers.append(ObserverAdapter(observer))

    def remove_observer(self, observer: Any) -> None:
        self._subscribers = [
            s for s in self._subscribers
            if not (isinstance(s, ObserverAdapter) and s.target is observer)
        ]

    def notify(self, event: ManagerEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"Error in {self.name} subscriber handling {type(event).__name__}",
                                 extra={"entity": event.entity, "event": type(event).__name__})

    def __len__(self) -> int:
        return len(self._subscribers)
