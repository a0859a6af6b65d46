"""
Log formatting and request-context stamping.
"""

import json
import logging

from flask import g

from app.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter


def _record(**extra):
    record = logging.LogRecord("app.services.rfi_service", logging.WARNING, __file__, 1,
                               "RFI %s overdue", ("RFI-004",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_promotes_context():
    line = JSONFormatter().format(_record(project_id=7, entity="rfi", unrelated="x"))
    entry = json.loads(line)
    assert entry["msg"] == "RFI RFI-004 overdue"
    assert entry["level"] == "WARNING"
    assert entry["project_id"] == 7
    assert entry["entity"] == "rfi"
    assert "unrelated" not in entry


def test_filter_stamps_request_id_and_user(app, owner):
    record = _record()
    with app.test_request_context("/api/v1/projects/1"):
        g.request_id = "abc123def456"
        g.current_user = owner
        assert RequestContextFilter().filter(record) is True
    assert record.request_id == "abc123def456"
    assert record.user_id == owner.id


def test_filter_keeps_explicit_values(app):
    record = _record(user_id=99)
    with app.test_request_context("/api/v1/health"):
        g.request_id = "r1"
        RequestContextFilter().filter(record)
    assert record.user_id == 99


def test_filter_outside_request_is_noop():
    record = _record()
    RequestContextFilter().filter(record)
    assert getattr(record, "request_id", None) is None


def test_readable_formatter_without_color():
    line = ReadableFormatter(color=False).format(_record(request_id="0123456789abcdef"))
    assert "WARNING  app.services.rfi_service (01234567) RFI RFI-004 overdue" in line
    assert "\033[" not in line
