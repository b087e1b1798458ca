"""
Errors raised around the aggregation engine.

Every error carries three things:

* ``message`` - what went wrong, for logs
* ``details`` - structured fields for log records and API bodies
* ``user_message`` - a sentence that can be shown in the tracker UI

The engine itself never raises; these come from validation, the
repositories, CSV import and export.
"""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Root of the tracker's error hierarchy."""

    default_user_message = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.user_message = user_message or self.default_user_message

    def __str__(self) -> str:
        return f"{type(self).__name__}: {self.message}"


class ValidationError(TrackerError):
    """A single input field was rejected."""

    def __init__(
        self, field: str, message: str, value: Any = None, details: dict[str, Any] | None = None
    ):
        self.field = field
        self.value = value
        super().__init__(
            f"Validation failed for field '{field}': {message}",
            details=details or {"field": field, "value": value},
            user_message=f"Invalid {field.replace('_', ' ')}: {message}",
        )


class MultipleValidationError(ValidationError):
    """Several fields of one input were rejected at once."""

    def __init__(self, field: str, problems: list[tuple[str, str]]):
        self.problems = problems
        super().__init__(
            field,
            "; ".join(f"{name}: {reason}" for name, reason in problems),
            details={"field": field, "errors": [{"field": n, "message": r} for n, r in problems]},
        )
        self.user_message = "Please correct the highlighted fields and try again."


class DatabaseError(TrackerError):
    default_user_message = "A database error occurred. Please try again in a moment."

    def __init__(self, message: str, operation: str, details: dict[str, Any] | None = None):
        self.operation = operation
        super().__init__(
            f"Database error during {operation}: {message}",
            details=details or {"operation": operation},
        )


class IntegrityError(DatabaseError):
    """A unique, foreign key or check constraint rejected a write."""

    constraint_messages = {
        "unique": "This item already exists. Please use a different name.",
        "foreign_key": "Referenced item no longer exists. Please refresh and try again.",
    }

    def __init__(
        self, message: str, constraint: str | None = None, details: dict[str, Any] | None = None
    ):
        self.constraint = constraint
        super().__init__(message, "integrity_check", details or {"constraint": constraint})
        self.user_message = self.constraint_messages.get(
            constraint or "",
            "Data integrity constraint violated. Please check your input and try again.",
        )


class DuplicateCodeError(TrackerError):
    """An active objective already uses the code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(
            f"Objective code '{code}' is already in use",
            details={"code": code},
            user_message=f"Code {code} already exists. Choose a different code.",
        )


class NotFoundError(TrackerError):
    """Lookup by id or code found nothing; subclasses name the entity."""

    entity = "Item"

    def __init__(self, key: Any):
        self.key = key
        super().__init__(
            f"{self.entity} {key!r} not found",
            details={"entity": self.entity.lower(), "key": key},
            user_message=(
                f"The selected {self.entity.lower()} could not be found. "
                "Please refresh and try again."
            ),
        )


class ObjectiveNotFoundError(NotFoundError):
    entity = "Objective"


class StudentNotFoundError(NotFoundError):
    entity = "Student"


class GroupNotFoundError(NotFoundError):
    entity = "Group"


class DomainNotFoundError(NotFoundError):
    entity = "Expertise check"


class BusinessLogicError(TrackerError):
    """A tracker rule refused the operation; the message is shown as is."""

    def __init__(
        self, message: str, rule: str | None = None, details: dict[str, Any] | None = None
    ):
        self.rule = rule
        super().__init__(message, details=details or {"rule": rule}, user_message=message)


class ConfigurationError(TrackerError):
    default_user_message = "Configuration error. Please check your settings."

    def __init__(self, message: str, config_key: str | None = None):
        self.config_key = config_key
        super().__init__(message, details={"config_key": config_key})


class ExportError(TrackerError):
    default_user_message = "Export failed. Please try again or choose a different location."

    def __init__(self, message: str, export_format: str | None = None):
        self.export_format = export_format
        super().__init__(message, details={"export_format": export_format})


class CSVImportError(TrackerError):
    """The roster file could not be read at all (as opposed to single bad rows)."""

    def __init__(self, message: str, missing_headers: list[str] | None = None):
        self.missing_headers = list(missing_headers or [])
        super().__init__(
            message, details={"missing_headers": self.missing_headers}, user_message=message
        )


_CONSTRAINT_MARKERS = (
    ("unique", ("unique constraint", "duplicate")),
    ("foreign_key", ("foreign key", "foreign_key")),
    ("check", ("check constraint",)),
)


def handle_database_error(e: Exception, operation: str = "database operation") -> DatabaseError:
    """
    Map a driver or SQLAlchemy exception onto :class:`DatabaseError`.

    Constraint violations become :class:`IntegrityError` with ``constraint``
    set to ``unique``, ``foreign_key`` or ``check``.
    """
    text = str(e).lower()
    for constraint, markers in _CONSTRAINT_MARKERS:
        if any(marker in text for marker in markers):
            return IntegrityError(str(e), constraint=constraint)
    return DatabaseError(str(e), operation)


_BUILTIN_MESSAGES = {
    ValueError: "Invalid input provided. Please check your data and try again.",
    KeyError: "Required information is missing. Please check your input.",
    TypeError: "Incorrect data type provided. Please check your input format.",
}


def create_user_friendly_error_message(error: Exception) -> str:
    if isinstance(error, TrackerError):
        return error.user_message
    return _BUILTIN_MESSAGES.get(
        type(error), "An unexpected error occurred. Please try again or contact support."
    )


def log_error_details(error: Exception, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """Fields to pass as ``extra=`` when logging ``error``."""
    details: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }
    if isinstance(error, TrackerError):
        details["user_message"] = error.user_message
        details["error_details"] = error.details
    return details
