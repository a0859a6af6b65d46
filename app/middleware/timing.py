"""
Request timing middleware.

Every request gets ``g.request_id`` (an incoming X-Request-ID is kept so a
proxy's id follows the request through our logs). API requests are logged
once on the way out with method, path, status, duration and the acting
user; health probes and CORS preflights are not logged.

Response headers: X-Request-ID, X-Response-Time (milliseconds).
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/api/v1/health",)
DEFAULT_SLOW_REQUEST_MS = 1000


def _log_level(status_code, duration_ms, slow_ms):
    if status_code >= 500:
        return logging.ERROR
    if duration_ms >= slow_ms:
        return logging.WARNING
    if status_code >= 400:
        return logging.INFO
    return logging.DEBUG


def _should_log():
    path = request.path
    return (path.startswith("/api/") and request.method != "OPTIONS"
            and not path.startswith(QUIET_PREFIXES))


def init_request_timing(app: Flask):
    slow_ms = app.config.get("SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS)

    @app.before_request
    def _start_timer():
        g.request_started = time.monotonic()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]

    @app.after_request
    def _finish_timer(response):
        started = g.pop("request_started", None)
        if started is None:
            return response
        duration_ms = round((time.monotonic() - started) * 1000, 1)
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Response-Time"] = str(duration_ms)

        if _should_log():
            user = getattr(g, "current_user", None)
            view_args = request.view_args or {}
            logger.log(
                _log_level(response.status_code, duration_ms, slow_ms),
                "%s %s -> %d in %.0fms", request.method, request.path,
                response.status_code, duration_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "remote_addr": request.remote_addr,
                    "request_id": g.request_id,
                    "user_id": user.id if user is not None else None,
                    "org_id": view_args.get("org_id"),
                    "project_id": view_args.get("project_id") or view_args.get("pid"),
                },
            )
        return response
