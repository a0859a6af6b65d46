"""
RFI SLA and ball-in-court calculations.

Pure functions over an object carrying ``status``, ``submitted_at``,
``response_due_date``, ``answered_at`` (and, for ball-in-court,
``created_by_id``, ``assigned_to_id``, ``assigned_to_org_id``). Every
function accepts an explicit ``now`` so callers and tests can pin the clock.
"""

import math

from app.utils.helpers import as_utc, utcnow

_DAY_SECONDS = 86400
_INACTIVE = ("closed", "cancelled")


def is_overdue(rfi, now=None):
    """Past the response due date, or answered after it."""
    if rfi.status in _INACTIVE or rfi.status == "draft" or not rfi.response_due_date:
        return False
    due = as_utc(rfi.response_due_date)
    if rfi.answered_at:
        return as_utc(rfi.answered_at) > due
    return (now or utcnow()) > due


def days_overdue(rfi, now=None):
    """Whole days past due (floor); 0 when not overdue."""
    if not is_overdue(rfi, now):
        return 0
    compare = as_utc(rfi.answered_at) if rfi.answered_at else (now or utcnow())
    delta = compare - as_utc(rfi.response_due_date)
    return max(0, math.floor(delta.total_seconds() / _DAY_SECONDS))


def response_time_hours(rfi):
    """Submitted → answered in hours, one decimal. None until answered."""
    if not rfi.submitted_at or not rfi.answered_at:
        return None
    delta = as_utc(rfi.answered_at) - as_utc(rfi.submitted_at)
    return round(delta.total_seconds() / 3600, 1)


def sla_compliance(rfis):
    answered = [r for r in rfis if r.answered_at and r.response_due_date]
    total = len(answered)
    if total == 0:
        return {"total": 0, "compliant": 0, "percentage": 0}
    compliant = sum(
        1 for r in answered if as_utc(r.answered_at) <= as_utc(r.response_due_date)
    )
    return {"total": total, "compliant": compliant,
            "percentage": round(compliant / total * 100)}


def average_response_time(rfis):
    times = [t for t in (response_time_hours(r) for r in rfis) if t is not None]
    if not times:
        return None
    return round(sum(times) / len(times), 1)


def days_until_due(rfi, now=None):
    """Ceil of days until the response due date; negative once overdue."""
    if not rfi.response_due_date or rfi.status in _INACTIVE:
        return None
    delta = as_utc(rfi.response_due_date) - (now or utcnow())
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def ball_in_court(rfi):
    """Who holds the next action, and what that action is."""
    if rfi.status == "draft":
        return {"user_id": rfi.created_by_id, "org_id": None,
                "suggested_action": "Complete and submit RFI", "is_blocked": False}
    if rfi.status in ("submitted", "under_review"):
        return {
            "user_id": rfi.assigned_to_id,
            "org_id": rfi.assigned_to_org_id,
            "suggested_action": "Review and provide response",
            "is_blocked": not rfi.assigned_to_id and not rfi.assigned_to_org_id,
        }
    if rfi.status == "answered":
        return {"user_id": rfi.created_by_id, "org_id": None,
                "suggested_action": "Review answer and close RFI", "is_blocked": False}
    if rfi.status in _INACTIVE:
        return {"user_id": None, "org_id": None,
                "suggested_action": "No action required", "is_blocked": False}
    return {"user_id": None, "org_id": None,
            "suggested_action": "Unknown status", "is_blocked": True}


def sla_summary(rfis, now=None):
    """Project-level roll-up used by the RFI SLA endpoint."""
    open_rfis = [r for r in rfis if r.status in ("submitted", "under_review")]
    overdue = [r for r in rfis if is_overdue(r, now) and not r.answered_at]
    return {
        "total": len(rfis),
        "open": len(open_rfis),
        "overdue": len(overdue),
        "overdue_ids": [r.id for r in overdue],
        "compliance": sla_compliance(rfis),
        "average_response_time_hours": average_response_time(rfis),
    }
