"""
Server actions: service functions that always return a result object.

Every mutating or querying operation exposed to the UI goes through
``@server_action``. The decorated function either returns plain data
(success) or raises one of ``app.core.exceptions``; it never leaks an
exception to the caller. Blueprints render the result with ``respond``.

    @server_action
    def close_rfi(*, rfi_id, user):
        ...
        return rfi.to_dict()

    result = close_rfi(rfi_id=3, user=g.current_user)
    if not result.success:
        result.error          # "RFI must be answered before closing"
        result.field_errors   # {} unless a ValidationError carried details
        result.status         # 422

Unexpected exceptions roll back the session and are logged with their
traceback; the caller only sees ``GENERIC_ERROR``.
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import Any

from flask import jsonify

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.models import db
from app.utils.errors import ErrorMessages

logger = logging.getLogger(__name__)

GENERIC_ERROR = ErrorMessages.UNEXPECTED_ERROR
FORBIDDEN_MESSAGE = "Forbidden"


@dataclass
class ActionResult:
    """Discriminated success/error outcome of a server action."""

    success: bool
    data: Any = None
    error: str | None = None
    field_errors: dict = field(default_factory=dict)
    status: int = 200

    @classmethod
    def ok(cls, data=None, status: int = 200) -> "ActionResult":
        return cls(success=True, data=data, status=status)

    @classmethod
    def fail(cls, error: str, status: int = 400, field_errors: dict | None = None) -> "ActionResult":
        return cls(success=False, error=error, status=status, field_errors=field_errors or {})

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        body = {"success": False, "error": self.error}
        if self.field_errors:
            body["field_errors"] = self.field_errors
        return body


def server_action(func):
    """Wrap a service function so it returns an ``ActionResult``.

    The wrapped function may also return an ``ActionResult`` itself (for
    example to pick a non-200 success status); it is passed through.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            data = func(*args, **kwargs)
        except ValidationError as exc:
            db.session.rollback()
            return ActionResult.fail(str(exc), 422, exc.details)
        except UnauthorizedError as exc:
            db.session.rollback()
            return ActionResult.fail(str(exc), 401)
        except ForbiddenError as exc:
            db.session.rollback()
            logger.info("Forbidden in %s: %s", func.__name__, exc)
            return ActionResult.fail(str(exc) if exc.public else FORBIDDEN_MESSAGE, 403)
        except NotFoundError as exc:
            db.session.rollback()
            return ActionResult.fail(f"{exc.resource} not found", 404)
        except ConflictError as exc:
            db.session.rollback()
            return ActionResult.fail(str(exc), 409, {exc.field: [str(exc)]})
        except Exception:
            db.session.rollback()
            logger.exception("Unexpected error in %s", func.__name__)
            return ActionResult.fail(GENERIC_ERROR, 500)

        if isinstance(data, ActionResult):
            return data
        return ActionResult.ok(data)

    return wrapper


def respond(result: ActionResult, success_status: int = 200):
    """Render an ``ActionResult`` as a Flask JSON response tuple."""
    status = result.status if not result.success else (
        success_status if result.status == 200 else result.status
    )
    return jsonify(result.to_dict()), status
