"""Field-level input validation for server actions.

Collects every problem with a payload before failing, so forms can show
all messages at once:

    v = FieldValidator(data)
    title = v.string("title", required=True, min_len=3, max_len=500)
    priority = v.choice("priority", RFI_PRIORITIES, default="medium")
    cost = v.number("cost_impact", min_value=0)
    v.raise_if_errors()          # ValidationError(details={"title": [...]})

With ``partial=True`` (PATCH-style updates) missing fields are skipped and
``v.cleaned`` holds only the fields the caller actually sent.
"""

import math
import re

from email_validator import EmailNotValidError, validate_email

from app.core.exceptions import ValidationError
from app.utils.errors import ErrorMessages
from app.utils.helpers import parse_date, parse_datetime

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_MISSING = object()


def _label(field):
    return field.replace("_", " ").capitalize()


class FieldValidator:
    def __init__(self, data, *, partial=False):
        self.data = data or {}
        self.partial = partial
        self.errors: dict[str, list[str]] = {}
        self.cleaned: dict = {}

    # ── bookkeeping ─────────────────────────────────────────────────────

    def add_error(self, field, message):
        self.errors.setdefault(field, []).append(message)

    def _raw(self, field, required):
        present = field in self.data
        value = self.data.get(field)
        empty = value is None or (isinstance(value, str) and value.strip() == "")
        if not empty:
            return value
        if present and not required:
            self.cleaned[field] = None
            return None
        if required and (present or not self.partial):
            self.add_error(field, f"{_label(field)} is required")
        return _MISSING

    def _keep(self, field, value):
        self.cleaned[field] = value
        return value

    def raise_if_errors(self):
        if self.errors:
            first = next(iter(self.errors.values()))[0]
            message = first if len(self.errors) == 1 else ErrorMessages.VALIDATION_FAILED
            raise ValidationError(message, details=self.errors)

    # ── typed accessors ─────────────────────────────────────────────────

    def string(self, field, *, required=False, min_len=None, max_len=None,
               default=None, pattern=None, pattern_message=None, lower=False):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        if not isinstance(raw, str):
            self.add_error(field, f"{_label(field)} must be text")
            return default
        value = raw.strip()
        if lower:
            value = value.lower()
        if min_len is not None and len(value) < min_len:
            self.add_error(field, f"{_label(field)} must be at least {min_len} characters")
        elif max_len is not None and len(value) > max_len:
            self.add_error(field, f"{_label(field)} must be at most {max_len} characters")
        elif pattern is not None and not re.match(pattern, value):
            self.add_error(field, pattern_message or f"{_label(field)} is invalid")
        return self._keep(field, value)

    def choice(self, field, choices, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        if raw not in choices:
            self.add_error(field, f"{_label(field)} must be one of: {', '.join(choices)}")
            return default
        return self._keep(field, raw)

    def number(self, field, *, required=False, min_value=None, max_value=None,
               greater_than=None, integer=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        if isinstance(raw, bool):
            self.add_error(field, f"{_label(field)} must be a number")
            return default
        try:
            value = float(raw)
        except (TypeError, ValueError):
            self.add_error(field, f"{_label(field)} must be a number")
            return default
        if not math.isfinite(value):
            self.add_error(field, f"{_label(field)} must be a number")
            return default
        if integer:
            if not value.is_integer():
                self.add_error(field, f"{_label(field)} must be a whole number")
                return default
            value = int(value)
        if greater_than is not None and value <= greater_than:
            self.add_error(field, f"{_label(field)} must be greater than {greater_than}")
        elif min_value is not None and value < min_value:
            self.add_error(field, f"{_label(field)} must be at least {min_value}")
        elif max_value is not None and value > max_value:
            self.add_error(field, f"{_label(field)} must be at most {max_value}")
        return self._keep(field, value)

    def date(self, field, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        value = parse_date(raw)
        if value is None:
            self.add_error(field, f"{_label(field)} must be a date in YYYY-MM-DD format")
            return default
        return self._keep(field, value)

    def datetime(self, field, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        value = parse_datetime(raw)
        if value is None:
            self.add_error(field, f"{_label(field)} must be an ISO 8601 datetime")
            return default
        return self._keep(field, value)

    def time(self, field, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        if not isinstance(raw, str) or not _TIME_RE.match(raw):
            self.add_error(field, f"{_label(field)} must be in HH:MM format")
            return default
        return self._keep(field, raw)

    def boolean(self, field, *, default=False):
        raw = self.data.get(field, _MISSING)
        if raw is _MISSING or raw is None:
            return default
        if isinstance(raw, bool):
            return self._keep(field, raw)
        if isinstance(raw, str) and raw.lower() in ("true", "false", "1", "0"):
            return self._keep(field, raw.lower() in ("true", "1"))
        self.add_error(field, f"{_label(field)} must be true or false")
        return default

    def integer_id(self, field, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        try:
            value = int(raw)
        except (TypeError, ValueError, OverflowError):
            self.add_error(field, f"{_label(field)} must be a valid id")
            return default
        if isinstance(raw, bool) or value <= 0:
            self.add_error(field, f"{_label(field)} must be a valid id")
            return default
        return self._keep(field, value)

    def email(self, field, *, required=False, default=None):
        raw = self._raw(field, required)
        if raw is _MISSING or raw is None:
            return default
        try:
            valid = validate_email(str(raw).strip(), check_deliverability=False)
        except EmailNotValidError:
            self.add_error(field, "Invalid email address")
            return default
        return self._keep(field, valid.normalized.lower())

    def money(self, field, *, required=False, min_value=None, greater_than=None, default=None):
        """Number with at most two decimal places."""
        value = self.number(field, required=required, min_value=min_value,
                            greater_than=greater_than, default=default)
        if value is not None and field not in self.errors and abs(round(value, 2) - value) > 1e-9:
            self.add_error(field, f"{_label(field)} must have at most 2 decimal places")
        return value
