"""
Typed exceptions shared by the repository, managers and harness.

Every error carries a stable ``kind`` so callers can branch on it without
parsing messages:

- validation   -> input failed field rules (field-keyed map in ``errors``)
- not_found    -> an id referenced a missing entity
- conflict     -> duplicate title/email or a relationship rule was violated
- persistence  -> the key-value store could not be read or written
"""
from typing import Dict, Optional


class RecordError(Exception):
    """Base exception for the records layer"""
    kind: str = "error"

    def __init__(self, message: str, kind: Optional[str] = None):
        self.message = message
        if kind:
            self.kind = kind
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, object]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(RecordError):
    """
    Raised when input fails validation.

    ``errors`` maps each offending field to a human-readable message; all
    violated fields are reported at once.
    """
    kind = "validation"

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, str]] = None):
        self.errors: Dict[str, str] = dict(errors or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload["errors"] = dict(self.errors)
        return payload


class NotFoundError(RecordError):
    kind = "not_found"

    def __init__(self, message: str = "Record not found"):
        super().__init__(message)


class ConflictError(RecordError):
    """
    Raised when an operation would break uniqueness or referential integrity.

    Examples:
    - Duplicate course title or student email
    - Deleting a course that still has enrolled students
    - Enrolling a student that is already enrolled
    """
    kind = "conflict"

    def __init__(self, message: str = "Operation conflicts with existing records"):
        super().__init__(message)


class PersistenceError(RecordError):
    kind = "persistence"

    def __init__(self, message: str = "Failed to persist data"):
        super().__init__(message)
