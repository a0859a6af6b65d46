"""Registration, login, current-user lookup and self-service profile changes."""

import logging

from app.core.actions import server_action
from app.core.exceptions import ConflictError, ForbiddenError, UnauthorizedError, ValidationError
from app.models import db
from app.models.auth import User
from app.services.jwt_service import token_response
from app.utils.crypto import hash_password, verify_password
from app.utils.errors import ErrorMessages
from app.utils.helpers import utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72  # bcrypt ignores bytes past 72
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
URL_PATTERN = r"^https?://\S+$"


@server_action
def register(*, data):
    v = FieldValidator(data)
    email = v.email("email", required=True)
    password = data.get("password") if isinstance(data, dict) else None
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        v.add_error("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    full_name = v.string("full_name", required=True, min_len=2, max_len=200)
    v.raise_if_errors()

    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(email=email, password_hash=hash_password(password), full_name=full_name)
    db.session.add(user)
    db.session.commit()
    logger.info("User registered: %s", email, extra={"user_id": user.id})
    return token_response(user)


@server_action
def login(*, data):
    v = FieldValidator(data)
    email = v.string("email", required=True, lower=True)
    password = v.string("password", required=True)
    v.raise_if_errors()

    user = User.query.filter_by(email=email).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        raise UnauthorizedError(ErrorMessages.AUTH_INVALID_CREDENTIALS)
    if not user.is_active:
        raise ForbiddenError("User account is deactivated", public=True)

    user.last_login_at = utcnow()
    db.session.commit()
    return token_response(user)


def _profile(user):
    body = user.to_dict()
    body["organizations"] = [
        {"organization_id": m.organization_id, "role": m.role,
         "name": m.organization.name, "slug": m.organization.slug,
         "joined": m.joined_at is not None}
        for m in user.memberships
        if m.organization is not None and not m.organization.is_deleted
    ]
    return body


@server_action
def me(*, user):
    return _profile(user)


@server_action
def update_profile(*, user, data):
    """PATCH semantics: only the fields present in ``data`` change."""
    v = FieldValidator(data, partial=True)
    v.string("full_name", required=True, min_len=2, max_len=100)
    v.string("phone", pattern=PHONE_PATTERN,
             pattern_message="Invalid phone number format (E.164)")
    v.string("avatar_url", max_len=500, pattern=URL_PATTERN, pattern_message="Invalid URL")
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        setattr(user, key, value)
    db.session.commit()
    logger.info("Profile updated: %s", ", ".join(sorted(v.cleaned)) or "no changes",
                extra={"user_id": user.id})
    return _profile(user)


@server_action
def update_password(*, user, data):
    data = data or {}
    v = FieldValidator(data)
    current = v.string("current_password", required=True)
    new = data.get("new_password")
    if not isinstance(new, str) or len(new) < MIN_PASSWORD_LENGTH:
        v.add_error("new_password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif len(new) > MAX_PASSWORD_LENGTH:
        v.add_error("new_password", f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
    elif new == data.get("current_password"):
        v.add_error("new_password", "New password must be different from current password")
    if "confirm_new_password" in data and data["confirm_new_password"] != new:
        v.add_error("confirm_new_password", "Passwords do not match")
    v.raise_if_errors()

    if not verify_password(current, user.password_hash):
        logger.info("Password change with wrong current password", extra={"user_id": user.id})
        raise ValidationError("Current password is incorrect",
                              details={"current_password": ["Current password is incorrect"]})

    user.password_hash = hash_password(new)
    db.session.commit()
    logger.info("Password changed", extra={"user_id": user.id})
    return {"updated": True}
