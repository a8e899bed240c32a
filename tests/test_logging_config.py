import json
import logging

from core.logging_config import JsonFormatter, OperationIdFilter, get_operation_id, operation_scope


def _format(message, **extra):
    record = logging.LogRecord("records", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    OperationIdFilter().filter(record)
    return json.loads(JsonFormatter().format(record))


def test_operation_scope_nests_under_outer_id():
    assert get_operation_id() is None
    with operation_scope("course.simulate_progress") as outer:
        assert outer.startswith("course.simulate_progress-")
        with operation_scope("course.progress") as inner:
            assert inner == outer
            payload = _format("updated", entity="course", entity_id="c1")
    assert get_operation_id() is None

    assert payload["operation_id"] == outer
    assert payload["entity"] == "course"
    assert payload["entity_id"] == "c1"
    assert payload["message"] == "updated"


def test_records_outside_operations_use_placeholder():
    payload = _format("idle")
    assert payload["operation_id"] == "-"
    assert "entity" not in payload
