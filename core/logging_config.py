"""
Structured logging configuration for the course records service.
- JSON output
- operation_id propagation via contextvars
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

# Context variable for the id of the manager operation currently running
_operation_id_var: ContextVar[str | None] = ContextVar("operation_id", default=None)


def get_operation_id() -> str | None:
    return _operation_id_var.get()


@contextmanager
def operation_scope(operation: str, operation_id: Optional[str] = None) -> Iterator[str]:
    """Tag every log record emitted inside the block with one operation id.

    Nested scopes keep the outer id so a batch operation and its per-entity
    updates share a single id.
    """
    current = _operation_id_var.get()
    if current is not None:
        yield current
        return
    op_id = operation_id or f"{operation}-{uuid.uuid4().hex[:8]}"
    token = _operation_id_var.set(op_id)
    try:
        yield op_id
    finally:
        _operation_id_var.reset(token)


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        op_id = get_operation_id()
        setattr(record, "operation_id", op_id or "-")
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation_id": getattr(record, "operation_id", "-"),
        }
        # Optional extras
        for key in ("entity", "entity_id", "event", "cache_key", "category", "status"):
            if hasattr(record, key):
                base[key] = getattr(record, key)
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def configure_logging(level: int | str = logging.INFO) -> None:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(OperationIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)
