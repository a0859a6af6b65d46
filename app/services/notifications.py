"""
Notification senders for RFI, submittal and organization events.

Each function builds the template context and hands it to EmailService.
They run inside server actions after the state change is committed and
commit their own EmailLog row; a failed notification is logged and never
fails the action that triggered it.
"""

import logging

from flask import current_app
from markupsafe import escape

from app.models.auth import User
from app.models import db
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    "gc_review": "GC",
    "ae_review": "Architect/Engineer",
    "owner_review": "Owner",
}


def _app_url():
    return current_app.config.get("APP_URL", "").rstrip("/")


def rfi_view_url(org_id, project_id, rfi_id):
    return f"{_app_url()}/{org_id}/projects/{project_id}/rfis/{rfi_id}"


def submittal_view_url(org_id, project_id, submittal_id):
    return f"{_app_url()}/{org_id}/projects/{project_id}/submittals/{submittal_id}"


def _deliver(user, template_name, context, *, category, project_id):
    if user is None or not user.email:
        return None
    try:
        log = EmailService.send_from_template(
            to_email=user.email,
            to_name=user.full_name,
            template_name=template_name,
            context=context,
            category=category,
            project_id=project_id,
        )
        db.session.commit()
        return log
    except Exception:
        db.session.rollback()
        logger.exception("Notification %s to %s failed", template_name, user.email,
                         extra={"project_id": project_id})
        return None


# ── RFIs ─────────────────────────────────────────────────────────────────────

def notify_rfi_assigned(rfi, assigned_by):
    """Email the assigned user (organization assignments have no single inbox)."""
    if not rfi.assigned_to_id:
        logger.info("RFI %s assigned to organization %s; no direct email",
                    rfi.number, rfi.assigned_to_org_id, extra={"project_id": rfi.project_id})
        return None
    assignee = db.session.get(User, rfi.assigned_to_id)
    project = rfi.project
    due = rfi.response_due_date or rfi.due_date
    return _deliver(assignee, "rfi_assignment", {
        "rfi_number": rfi.number,
        "rfi_title": rfi.title,
        "rfi_description": rfi.description,
        "assigned_by": assigned_by.display_name,
        "due_date": due.date().isoformat() if due else "Not set",
        "priority": rfi.priority,
        "project_name": project.name,
        "view_url": rfi_view_url(project.organization_id, project.id, rfi.id),
        "button_label": "View RFI",
    }, category="rfi", project_id=rfi.project_id)


def notify_rfi_response(rfi, response, responder):
    """Email the RFI creator about a response they did not write themselves."""
    if not rfi.created_by_id or rfi.created_by_id == responder.id:
        return None
    creator = db.session.get(User, rfi.created_by_id)
    project = rfi.project
    official = response.is_official_answer
    return _deliver(creator, "rfi_response", {
        "rfi_number": rfi.number,
        "rfi_title": rfi.title,
        "response_kind": "Official Answer Provided" if official else "New Response",
        "response_verb": "provided an official answer" if official else "responded",
        "responder_name": responder.display_name,
        "response_content": response.content,
        "project_name": project.name,
        "view_url": rfi_view_url(project.organization_id, project.id, rfi.id),
        "button_label": "View RFI",
    }, category="rfi", project_id=rfi.project_id)


def send_rfi_overdue_digest(recipient, overdue_rfis):
    """One digest email listing every overdue RFI assigned to ``recipient``.

    ``overdue_rfis`` items: number, title, due_date, days_overdue, priority,
    project_name, view_url.
    """
    if not overdue_rfis:
        return None
    rows = []
    for item in overdue_rfis:
        rows.append(
            '<div style="border: 1px solid #e5e5e5; padding: 12px; margin: 8px 0; border-radius: 4px;">'
            f'<p style="margin: 0 0 4px;"><strong>{escape(item["number"])}</strong> - '
            f'{escape(item["title"])}</p>'
            f'<p style="margin: 0; color: #64748b;">{escape(item["project_name"])} · '
            f'Due {escape(item["due_date"])} · <strong>{item["days_overdue"]} days overdue</strong> · '
            f'{escape(item["priority"])}</p>'
            f'<p style="margin: 4px 0 0;"><a href="{escape(item["view_url"])}">View RFI</a></p>'
            "</div>"
        )
    count = len(overdue_rfis)
    log = EmailService.send_from_template(
        to_email=recipient.email,
        to_name=recipient.full_name,
        template_name="rfi_overdue_digest",
        context={
            "recipient_name": recipient.display_name,
            "count": count,
            "rfi_word": "RFI" if count == 1 else "RFIs",
            "rfi_list_html": "".join(rows),
        },
        category="digest",
    )
    return log


# ── Submittals ───────────────────────────────────────────────────────────────

def _submittal_context(submittal):
    project = submittal.project
    return {
        "submittal_number": submittal.number,
        "submittal_title": submittal.title,
        "spec_section": submittal.spec_section,
        "version": submittal.version,
        "project_name": project.name,
        "view_url": submittal_view_url(project.organization_id, project.id, submittal.id),
        "button_label": "View Submittal",
    }


def notify_submittal_review_required(submittal):
    reviewer = db.session.get(User, submittal.current_reviewer_id) if submittal.current_reviewer_id else None
    context = _submittal_context(submittal)
    context["stage_label"] = STAGE_LABELS.get(submittal.current_stage, submittal.current_stage)
    return _deliver(reviewer, "submittal_review_required", context,
                    category="submittal", project_id=submittal.project_id)


def notify_submittal_decision(submittal, action, comments):
    """Tell the submittal creator about a closing decision."""
    creator = db.session.get(User, submittal.created_by_id) if submittal.created_by_id else None
    context = _submittal_context(submittal)
    context["comments"] = comments
    if action in ("approved", "approved_as_noted"):
        context["decision_label"] = "approved" if action == "approved" else "approved as noted"
        template = "submittal_approved"
    elif action == "revise_resubmit":
        template = "submittal_revision_required"
    else:
        template = "submittal_rejected"
    return _deliver(creator, template, context,
                    category="submittal", project_id=submittal.project_id)


# ── Organizations ────────────────────────────────────────────────────────────

def notify_org_invite(org, user, invited_by, role):
    return _deliver(user, "organization_invite", {
        "org_name": org.name,
        "invited_by": invited_by.display_name,
        "role": role,
        "view_url": f"{_app_url()}/invitations",
        "button_label": "Accept invitation",
    }, category="organization", project_id=None)
