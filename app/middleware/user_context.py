"""
User Context Middleware — resolves the JWT subject to a User row.

Chain order:
  jwt_auth.py  →  user_context.py  →  route handler

Sets ``g.current_user``. A token for a deleted user is treated as
unauthenticated; a deactivated account gets 403.
"""

import logging

from flask import g, request

from app.models import db
from app.models.auth import User
from app.utils.errors import E, ErrorMessages, api_error

logger = logging.getLogger(__name__)


def init_user_context(app):
    """Register user context middleware as a before_request hook."""

    @app.before_request
    def _user_context():
        g.current_user = None

        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return None

        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("JWT user_id %s not found in DB", user_id)
            return api_error(E.AUTH_REQUIRED, ErrorMessages.AUTH_REQUIRED)

        if not user.is_active:
            logger.warning("Deactivated user %s attempted %s", user_id, request.path,
                           extra={"user_id": user_id})
            return api_error(E.FORBIDDEN, "User account is deactivated")

        g.current_user = user
        return None
