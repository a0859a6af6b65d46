"""
JWT Auth Middleware — every /api/v1 request needs a valid Bearer token.

Sets ``g.jwt_user_id`` from the token subject. Missing, expired or
malformed tokens get a 401 before the view runs. Login/register, health
probes and the cron endpoint (which has its own shared-secret check) are
exempt.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token
from app.utils.errors import E, ErrorMessages, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/health",
    "/api/v1/cron/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/") or request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.AUTH_REQUIRED, ErrorMessages.AUTH_REQUIRED)

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.AUTH_REQUIRED, "Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected JWT: %s", exc, extra={"path": path})
            return api_error(E.AUTH_REQUIRED, ErrorMessages.AUTH_REQUIRED)

        g.jwt_user_id = payload["sub"]
        return None
