"""
Platform-wide exception hierarchy.

How these are used:
  Server actions (service-layer functions decorated with
  ``app.core.actions.server_action``) never let an exception escape to the
  caller. They raise one of the types below and the decorator translates
  it into a failed ``ActionResult`` with a stable HTTP status:

    ValidationError   → 422, field messages shown next to form inputs
    UnauthorizedError → 401
    ForbiddenError    → 403, generic message; the detail only reaches the log
    NotFoundError     → 404
    ConflictError     → 409

  Anything else is an unexpected error: logged with traceback, reported
  to the user as a generic message.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Rfi", resource_id=42)
    raise ValidationError("Title is required", details={"title": "Title is required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is not visible to the caller.

    Also used for resources in projects or organizations the caller cannot
    see, so that a 403 does not confirm the record exists.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Submittal").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ForbiddenError(Exception):
    """Raised when the caller is authenticated but lacks the role for an action.

    The message is written to the log; clients see a generic "Forbidden"
    unless ``public`` is True (used for role messages the UI displays, e.g.
    "Only project managers can create RFIs").
    """

    def __init__(self, message: str = "Forbidden", *, public: bool = False) -> None:
        self.public = public
        super().__init__(message)


class UnauthorizedError(Exception):
    """Raised when no authenticated user is present."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)
