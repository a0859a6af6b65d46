"""
Overdue-RFI digest.

Shared by the cron endpoint and the ``rfi_overdue_digest`` scheduled job.
Collects open, assigned RFIs past their response due date, groups them by
assignee and sends one digest email each.
"""

import logging
import math
from collections import defaultdict

from app.models import db
from app.models.project import Project
from app.models.rfi import RFI_OPEN_STATUSES, Rfi
from app.services import notifications
from app.services.rfi_sla import is_overdue
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def _candidate_rfis():
    return (
        Rfi.query.join(Project, Rfi.project_id == Project.id)
        .filter(
            Rfi.status.in_(RFI_OPEN_STATUSES),
            Rfi.assigned_to_id.isnot(None),
            Rfi.response_due_date.isnot(None),
            Rfi.deleted_at.is_(None),
            Project.deleted_at.is_(None),
        )
        .order_by(Rfi.response_due_date)
        .all()
    )


def send_overdue_rfi_digests(now=None):
    """Send the digest and return the summary the cron endpoint reports."""
    now = now or utcnow()
    overdue = [rfi for rfi in _candidate_rfis() if is_overdue(rfi, now)]
    if not overdue:
        return {"success": True, "message": "No overdue RFIs found", "sent": 0}

    by_assignee = defaultdict(list)
    for rfi in overdue:
        by_assignee[rfi.assigned_to_id].append(rfi)

    sent = 0
    errors = []
    for assignee_id, rfis in by_assignee.items():
        assignee = rfis[0].assigned_to
        if assignee is None or not assignee.email:
            logger.warning("No email found for assignee %s", assignee_id,
                           extra={"job_name": "rfi_overdue_digest"})
            continue

        items = []
        for rfi in rfis:
            due = as_utc(rfi.response_due_date)
            items.append({
                "number": rfi.number,
                "title": rfi.title,
                "due_date": due.date().isoformat(),
                "days_overdue": math.ceil((now - due).total_seconds() / 86400),
                "priority": rfi.priority,
                "project_name": rfi.project.name,
                "view_url": notifications.rfi_view_url(
                    rfi.project.organization_id, rfi.project_id, rfi.id),
            })

        log = notifications.send_rfi_overdue_digest(assignee, items)
        if log is not None and log.status == "sent":
            sent += 1
        else:
            reason = log.error_message if log is not None else "template missing"
            errors.append(f"Failed to send to {assignee.email}: {reason}")

    db.session.commit()

    logger.info("RFI overdue digest completed: %d sent, %d overdue", sent, len(overdue),
                extra={"job_name": "rfi_overdue_digest"})
    if errors:
        logger.error("RFI overdue digest encountered %d errors", len(errors),
                     extra={"job_name": "rfi_overdue_digest"})

    result = {
        "success": True,
        "message": f"Sent {sent} digest email(s)",
        "sent": sent,
        "overdue_count": len(overdue),
    }
    if errors:
        result["errors"] = errors
    return result
