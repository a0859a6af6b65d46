"""Submittal reporting: pipeline, cycle times, resubmittal rate, overdue procurement."""

from collections import defaultdict

from app.core.actions import server_action
from app.models.submittal import CLOSED_STATUSES, REVIEW_STAGES, SUBMITTAL_STAGES, Submittal
from app.services import permission_service
from app.utils.helpers import as_utc, utcnow

APPROVED_STATUSES = ("approved", "approved_as_noted")

CSI_DIVISIONS = {
    "01": "General Requirements",
    "02": "Existing Conditions",
    "03": "Concrete",
    "04": "Masonry",
    "05": "Metals",
    "06": "Wood, Plastics, Composites",
    "07": "Thermal and Moisture Protection",
    "08": "Openings",
    "09": "Finishes",
    "10": "Specialties",
    "11": "Equipment",
    "12": "Furnishings",
    "13": "Special Construction",
    "14": "Conveying Equipment",
    "21": "Fire Suppression",
    "22": "Plumbing",
    "23": "HVAC",
    "26": "Electrical",
    "27": "Communications",
    "28": "Electronic Safety and Security",
    "31": "Earthwork",
    "32": "Exterior Improvements",
    "33": "Utilities",
}


def division_title(code):
    return CSI_DIVISIONS.get(code, "Other")


def _days(start, end):
    return (as_utc(end) - as_utc(start)).days


def pipeline(submittals):
    counts = {stage: 0 for stage in SUBMITTAL_STAGES}
    for s in submittals:
        counts[s.current_stage] = counts.get(s.current_stage, 0) + 1
    counts["total"] = len(submittals)
    return counts


def stage_durations(submittal):
    """Days spent in each review stage, from the review history.

    A stage starts at ``submitted_at`` (gc_review) or at the previous
    review; it ends at the review recorded for that stage.
    """
    durations = {}
    start = submittal.submitted_at
    for review in sorted((r for r in submittal.reviews
                          if r.version_number == submittal.version_number),
                         key=lambda r: as_utc(r.reviewed_at)):
        if start is not None and review.stage in REVIEW_STAGES:
            durations[review.stage] = _days(start, review.reviewed_at)
        start = review.reviewed_at
    return durations


def cycle_times(submittals):
    approved = [s for s in submittals
                if s.status in APPROVED_STATUSES and s.submitted_at and s.closed_at]
    result = {"avg_days_to_approval": 0}
    per_stage = defaultdict(list)
    for s in approved:
        for stage, days in stage_durations(s).items():
            per_stage[stage].append(days)
    if approved:
        total = sum(_days(s.submitted_at, s.closed_at) for s in approved)
        result["avg_days_to_approval"] = round(total / len(approved))
    for stage in REVIEW_STAGES:
        values = per_stage.get(stage)
        result[f"avg_days_in_{stage}"] = round(sum(values) / len(values)) if values else 0
    return result


def resubmittal_rate(submittals):
    total = len(submittals)
    resubmitted = sum(1 for s in submittals if s.parent_submittal_id is not None)
    return {
        "total_submittals": total,
        "resubmitted": resubmitted,
        "resubmittal_rate": round(resubmitted / total * 100) if total else 0,
    }


def cycle_times_by_division(submittals):
    buckets = defaultdict(list)
    for s in submittals:
        if s.status in APPROVED_STATUSES and s.submitted_at and s.closed_at:
            buckets[s.spec_section[:2]].append(_days(s.submitted_at, s.closed_at))
    return [
        {
            "division": f"Division {code}",
            "division_title": division_title(code),
            "avg_days": round(sum(days) / len(days)),
            "count": len(days),
        }
        for code, days in sorted(buckets.items())
    ]


def overdue_procurement(submittals, today=None):
    today = today or utcnow().date()
    overdue = [s for s in submittals
               if s.procurement_deadline and s.procurement_deadline < today
               and s.status not in CLOSED_STATUSES]
    overdue.sort(key=lambda s: s.procurement_deadline)
    return [
        {
            "id": s.id,
            "number": s.number,
            "title": s.title,
            "spec_section": s.spec_section,
            "procurement_deadline": s.procurement_deadline.isoformat(),
            "days_overdue": (today - s.procurement_deadline).days,
            "current_stage": s.current_stage,
            "status": s.status,
        }
        for s in overdue
    ]


@server_action
def get_analytics(*, user, project_id, today=None):
    permission_service.ensure_project_access(user, project_id, "view_submittals")
    submittals = Submittal.query_active().filter(Submittal.project_id == project_id).all()
    return {
        "pipeline": pipeline(submittals),
        "cycle_times": cycle_times(submittals),
        "resubmittals": resubmittal_rate(submittals),
        "by_division": cycle_times_by_division(submittals),
        "overdue": overdue_procurement(submittals, today),
    }
