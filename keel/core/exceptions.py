"""
Service-wide exception hierarchy.

Services raise these types; the error handlers registered in
``keel.blueprints.register_error_handlers`` map each one to a stable error
code and HTTP status once, so no blueprint needs its own try/except.

    ValidationError    → 400  malformed or inapplicable input
    NotFoundError      → 404  referenced entity absent
    PermissionDenied   → 403  caller role may not perform the action
    ConflictError      → 409  uniqueness / at-most-one invariant violated
    InvalidStateError  → 409  operation not allowed in the current lifecycle state
    StorageError       → 503  opaque storage failure; the caller may retry

Usage:
    from keel.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="VesselAssignment", resource_id=42)
    raise ValidationError("end_date precedes start_date", details={"end_date": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Cadet", "TaskTemplate").
        resource_id: The key that was looked up. Included in logs, not in the
                     HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when input is malformed, out of range, or not applicable.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDenied(Exception):
    """Raised when the caller's role does not allow the requested action.

    Args:
        role: The role the caller presented (may be None).
        action: What was attempted.
    """

    def __init__(self, role: str | None, action: str) -> None:
        self.role = role
        self.action = action
        super().__init__(f"Role {role or '(none)'} may not {action}")


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness invariant.

    Args:
        resource: Entity name.
        field: The unique field (or field combination) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidStateError(Exception):
    """Raised when an operation is not permitted in the entity's current state.

    Args:
        resource: Entity name.
        current: The state the entity is in.
        attempted: The operation or target state that was refused.
    """

    def __init__(self, resource: str, current: str, attempted: str) -> None:
        self.resource = resource
        self.current = current
        self.attempted = attempted
        msg = f"{resource} is {current}; cannot {attempted}"
        super().__init__(msg)


class StorageError(Exception):
    """Raised when the storage layer fails for reasons outside this service's rules.

    Wraps the original SQLAlchemy exception as ``__cause__``. The core never
    retries; the calling layer may.
    """

    def __init__(self, message: str = "Storage unavailable") -> None:
        super().__init__(message)
