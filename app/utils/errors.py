"""Standardised API error responses and user-facing messages.

Usage
-----
    from app.utils.errors import api_error, E, ErrorMessages

    return api_error(E.NOT_FOUND, ErrorMessages.PROJECT_NOT_FOUND)
    return api_error(E.AUTH_REQUIRED, ErrorMessages.AUTH_REQUIRED)
    raise ForbiddenError(ErrorMessages.PROJECT_NO_ACCESS, public=True)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"

    # Auth – HTTP 401 / 403
    AUTH_REQUIRED = "ERR_AUTH_REQUIRED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Payload – HTTP 413 / 415
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_FAILED: 422,
    E.AUTH_REQUIRED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.UNSUPPORTED_MEDIA: 415,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


# ── Canonical user-facing messages ────────────────────────────────────
class ErrorMessages:
    # Auth
    AUTH_REQUIRED = "Authentication required"
    AUTH_INVALID_CREDENTIALS = "Invalid email or password"
    AUTH_WEAK_PASSWORD = "Password does not meet security requirements"
    AUTH_EMAIL_IN_USE = "Email address is already in use"

    # Organizations
    ORG_NOT_FOUND = "Organization not found"
    ORG_NO_ACCESS = "You do not have access to this organization"
    ORG_SLUG_IN_USE = "Organization slug is already in use"
    ORG_ADMIN_REQUIRED = "Organization admin access required"
    ORG_OWNER_REQUIRED = "Organization owner access required"

    # Projects
    PROJECT_NOT_FOUND = "Project not found"
    PROJECT_NO_ACCESS = "You do not have access to this project"
    PROJECT_MANAGER_REQUIRED = "Project manager access required"

    # Members
    MEMBER_NOT_FOUND = "Member not found"
    MEMBER_ALREADY_EXISTS = "User is already a member of this organization"
    MEMBER_CANNOT_REMOVE_OWNER = "Cannot remove organization owner"
    MEMBER_CANNOT_CHANGE_OWN_ROLE = "Cannot change your own role"

    # Generic
    VALIDATION_FAILED = "Validation failed"
    OPERATION_FAILED = "Operation failed"
    UNEXPECTED_ERROR = "An unexpected error occurred"


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level messages.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["field_errors"] = details

    return jsonify(body), http_status
