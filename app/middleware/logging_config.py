"""
Structured logging configuration.

- Production: one JSON object per line for the log aggregator
- Development: short colored lines on stderr
- Testing: same as development, WARNING and above unless LOG_LEVEL is set

``RequestContextFilter`` stamps every record emitted inside a request with
``request_id`` and ``user_id`` from ``flask.g``, so service code only
passes domain context (``project_id``, ``entity``, ``job_name``...) through
``extra={...}``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes promoted to top-level JSON keys when present
CONTEXT_KEYS = (
    "request_id",
    "user_id",
    "org_id",
    "project_id",
    "entity",
    "entity_id",
    "job_name",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "openai", "anthropic",
                 "google_genai", "reportlab")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_id", None) is None:
                user = g.get("current_user")
                record.user_id = user.id if user is not None else g.get("jwt_user_id")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in CONTEXT_KEYS
                      if getattr(record, key, None) is not None})
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:04:31 WARNING app.services.rfi_service (3f9c2a1b) message``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        rid = getattr(record, "request_id", None)
        line = (f"{datetime.fromtimestamp(record.created):%H:%M:%S} {level} {record.name}"
                f"{f' ({rid[:8]})' if rid else ''} {record.getMessage()}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    LOG_LEVEL wins; otherwise DEBUG in development, INFO in production and
    WARNING under tests.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL") or ("WARNING" if testing else
                                            "INFO" if production else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production
                         else ReadableFormatter(color=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs more than once under tests
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    app.logger.info("Logging configured: level=%s format=%s",
                    level_name, "json" if production else "readable")
