"""
RFI workflow.

    draft ──submit──▶ submitted ──response──▶ under_review
                         │                        │
                         └──official answer───────┴──▶ answered ──close──▶ closed
    (any non-closed status) ──cancel──▶ cancelled

Only project managers create, assign and cancel RFIs. The creator submits
and (with managers) edits drafts and closes answered RFIs. Any project
member may respond.
"""

import logging
import re

from sqlalchemy import func

from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import Organization, User
from app.models.rfi import RFI_OPEN_STATUSES, RFI_PRIORITIES, RFI_STATUSES, Rfi, RfiAttachment, RfiResponse
from app.services import notifications, permission_service, rfi_sla, storage_service
from app.utils.helpers import utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^RFI-(\d+)$")


def next_rfi_number(project_id):
    """``RFI-001``, ``RFI-002``, ... per project; deleted RFIs keep their numbers."""
    numbers = [n for (n,) in db.session.query(Rfi.number).filter(Rfi.project_id == project_id)]
    highest = 0
    for number in numbers:
        match = _NUMBER_RE.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"RFI-{highest + 1:03d}"


def _get_rfi(rfi_id):
    rfi = Rfi.get_active(rfi_id)
    if rfi is None:
        raise NotFoundError("RFI", rfi_id)
    return rfi


def _load(user, rfi_id, permission="view_rfis"):
    rfi = _get_rfi(rfi_id)
    permission_service.ensure_project_access(user, rfi.project_id, permission)
    return rfi


def _require_manager(user, project_id, message):
    if not permission_service.is_project_manager(user.id, project_id):
        raise ForbiddenError(message, public=True)


def _validate_fields(v):
    v.string("title", required=True, min_len=3, max_len=500)
    v.string("description", required=True, min_len=10)
    v.string("discipline", max_len=100)
    v.string("spec_section", max_len=100)
    v.string("drawing_reference", max_len=500)
    v.money("cost_impact", min_value=0)
    v.number("schedule_impact", min_value=0, integer=True)


def _validate_assignee(v, project, assigned_to_id, assigned_to_org_id):
    """The user must have access to the project; the org must exist."""
    if assigned_to_id and (db.session.get(User, assigned_to_id) is None
                           or not permission_service.can_access_project(assigned_to_id, project.id)):
        v.add_error("assigned_to_id", "Assignee must be a member of this project")
    if assigned_to_org_id and Organization.get_active(assigned_to_org_id) is None:
        v.add_error("assigned_to_org_id", "Organization not found")


# ── Queries ──────────────────────────────────────────────────────────────────

@server_action
def list_rfis(*, user, project_id, status=None, priority=None, assigned_to_me=False,
              overdue=False):
    permission_service.ensure_project_access(user, project_id, "view_rfis")
    query = Rfi.query_active().filter(Rfi.project_id == project_id)
    if status:
        if status not in RFI_STATUSES:
            raise ValidationError("Invalid status", details={"status": ["Invalid status"]})
        query = query.filter(Rfi.status == status)
    if priority:
        query = query.filter(Rfi.priority == priority)
    if assigned_to_me:
        query = query.filter(Rfi.assigned_to_id == user.id)
    rfis = query.order_by(Rfi.created_at.desc(), Rfi.id.desc()).all()
    if overdue:
        rfis = [r for r in rfis if rfi_sla.is_overdue(r)]

    now = utcnow()
    result = []
    for rfi in rfis:
        row = rfi.to_dict()
        row["is_overdue"] = rfi_sla.is_overdue(rfi, now)
        row["days_until_due"] = rfi_sla.days_until_due(rfi, now)
        result.append(row)
    return result


@server_action
def get_rfi(*, user, rfi_id):
    rfi = _load(user, rfi_id)
    body = rfi.to_dict(include_children=True)
    now = utcnow()
    body["is_overdue"] = rfi_sla.is_overdue(rfi, now)
    body["days_overdue"] = rfi_sla.days_overdue(rfi, now)
    body["days_until_due"] = rfi_sla.days_until_due(rfi, now)
    body["response_time_hours"] = rfi_sla.response_time_hours(rfi)
    body["ball_in_court"] = rfi_sla.ball_in_court(rfi)
    return body


@server_action
def get_sla_summary(*, user, project_id):
    permission_service.ensure_project_access(user, project_id, "view_rfis")
    rfis = Rfi.query_active().filter(Rfi.project_id == project_id).all()
    return rfi_sla.sla_summary(rfis)


# ── Lifecycle ────────────────────────────────────────────────────────────────

@server_action
def create_rfi(*, user, project_id, data):
    project = permission_service.ensure_project_access(user, project_id, "view_rfis")
    _require_manager(user, project_id, "Only project managers can create RFIs")

    v = FieldValidator(data)
    _validate_fields(v)
    priority = v.choice("priority", RFI_PRIORITIES, default="medium")
    assigned_to_id = v.integer_id("assigned_to_id")
    assigned_to_org_id = v.integer_id("assigned_to_org_id")
    v.datetime("due_date")
    v.datetime("response_due_date")
    _validate_assignee(v, project, assigned_to_id, assigned_to_org_id)
    v.raise_if_errors()

    fields = dict(v.cleaned)
    fields["priority"] = priority
    rfi = Rfi(project_id=project_id, number=next_rfi_number(project_id), status="draft",
              created_by_id=user.id, **fields)
    db.session.add(rfi)
    db.session.commit()
    logger.info("RFI %s created", rfi.number, extra={"user_id": user.id, "project_id": project_id})
    return rfi.to_dict()


@server_action
def update_rfi(*, user, rfi_id, data):
    rfi = _load(user, rfi_id)
    if rfi.status != "draft":
        raise ValidationError("Only draft RFIs can be edited")
    if rfi.created_by_id != user.id and not permission_service.is_project_manager(user.id, rfi.project_id):
        raise ForbiddenError("Only the creator or project manager can edit this RFI", public=True)

    v = FieldValidator(data, partial=True)
    _validate_fields(v)
    v.choice("priority", RFI_PRIORITIES, required=True)
    v.datetime("due_date")
    v.datetime("response_due_date")
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        setattr(rfi, key, value)
    db.session.commit()
    return rfi.to_dict()


@server_action
def submit_rfi(*, user, rfi_id, data=None):
    rfi = _load(user, rfi_id)
    if rfi.status != "draft":
        raise ValidationError("Only draft RFIs can be submitted")
    if rfi.created_by_id != user.id:
        raise ForbiddenError("Only the creator can submit this RFI", public=True)

    v = FieldValidator(data)
    assigned_to_id = v.integer_id("assigned_to_id") or rfi.assigned_to_id
    assigned_to_org_id = v.integer_id("assigned_to_org_id") or rfi.assigned_to_org_id
    response_due = v.datetime("response_due_date")
    if not assigned_to_id and not assigned_to_org_id:
        v.add_error("assigned_to_id", "Must assign to either a user or organization")
    if not response_due and not rfi.response_due_date and "response_due_date" not in v.errors:
        v.add_error("response_due_date", "Response due date is required to submit")
    _validate_assignee(v, rfi.project, v.cleaned.get("assigned_to_id"),
                       v.cleaned.get("assigned_to_org_id"))
    v.raise_if_errors()

    rfi.assigned_to_id = assigned_to_id
    rfi.assigned_to_org_id = assigned_to_org_id
    if response_due:
        rfi.response_due_date = response_due
    rfi.status = "submitted"
    rfi.submitted_at = utcnow()
    db.session.commit()
    logger.info("RFI %s submitted", rfi.number, extra={"user_id": user.id, "project_id": rfi.project_id})

    notifications.notify_rfi_assigned(rfi, user)
    return rfi.to_dict()


@server_action
def assign_rfi(*, user, rfi_id, data):
    rfi = _load(user, rfi_id)
    _require_manager(user, rfi.project_id, "Only project managers can assign RFIs")

    v = FieldValidator(data)
    assigned_to_id = v.integer_id("assigned_to_id")
    assigned_to_org_id = v.integer_id("assigned_to_org_id")
    if not assigned_to_id and not assigned_to_org_id:
        v.add_error("assigned_to_id", "Must assign to either a user or organization")
    elif assigned_to_id and assigned_to_org_id:
        v.add_error("assigned_to_id", "Cannot assign to both user and organization")
    _validate_assignee(v, rfi.project, assigned_to_id, assigned_to_org_id)
    v.raise_if_errors()

    rfi.assigned_to_id = assigned_to_id
    rfi.assigned_to_org_id = assigned_to_org_id
    db.session.commit()

    if rfi.status in RFI_OPEN_STATUSES and assigned_to_id:
        notifications.notify_rfi_assigned(rfi, user)
    return rfi.to_dict()


@server_action
def add_response(*, user, rfi_id, data):
    rfi = _load(user, rfi_id, "respond_to_rfi")
    if rfi.status not in RFI_OPEN_STATUSES + ("answered",):
        raise ValidationError(f"Cannot respond to an RFI with status: {rfi.status}")

    v = FieldValidator(data)
    content = v.string("content", required=True, min_len=1)
    official = v.boolean("is_official_answer")
    v.raise_if_errors()

    response = RfiResponse(rfi_id=rfi.id, author_id=user.id, content=content,
                           is_official_answer=official)
    db.session.add(response)
    if official:
        rfi.status = "answered"
        rfi.answered_at = utcnow()
    elif rfi.status == "submitted" and user.id != rfi.created_by_id:
        rfi.status = "under_review"
    db.session.commit()

    notifications.notify_rfi_response(rfi, response, user)
    return response.to_dict()


@server_action
def close_rfi(*, user, rfi_id):
    rfi = _load(user, rfi_id)
    if rfi.status != "answered":
        raise ValidationError("RFI must be answered before closing")
    if rfi.created_by_id != user.id and not permission_service.has_permission(
            user.id, rfi.project_id, "close_rfi"):
        raise ForbiddenError("Only the creator or project manager can close this RFI", public=True)
    rfi.status = "closed"
    rfi.closed_at = utcnow()
    db.session.commit()
    logger.info("RFI %s closed", rfi.number, extra={"user_id": user.id, "project_id": rfi.project_id})
    return rfi.to_dict()


@server_action
def cancel_rfi(*, user, rfi_id):
    rfi = _load(user, rfi_id)
    _require_manager(user, rfi.project_id, "Only project managers can cancel RFIs")
    if rfi.status in ("closed", "cancelled"):
        raise ValidationError(f"Cannot cancel an RFI with status: {rfi.status}")
    rfi.status = "cancelled"
    db.session.commit()
    return rfi.to_dict()


@server_action
def delete_rfi(*, user, rfi_id):
    rfi = _load(user, rfi_id)
    _require_manager(user, rfi.project_id, "Only project managers can delete RFIs")
    rfi.soft_delete()
    db.session.commit()
    return {"id": rfi_id, "deleted": True}


# ── Attachments ──────────────────────────────────────────────────────────────

@server_action
def upload_attachment(*, user, rfi_id, upload, data=None):
    rfi = _load(user, rfi_id)
    v = FieldValidator(data)
    response_id = v.integer_id("response_id")
    drawing_sheet = v.string("drawing_sheet", max_len=100)
    if response_id:
        response = db.session.get(RfiResponse, response_id)
        if response is None or response.rfi_id != rfi.id:
            v.add_error("response_id", "Response not found on this RFI")
    v.raise_if_errors()

    storage_service.validate_upload("rfis", upload)
    path = storage_service.save("rfis", rfi.project_id, upload)
    attachment = RfiAttachment(
        rfi_id=rfi.id, response_id=response_id, file_path=path,
        file_name=upload.filename, file_size=upload.size,
        mime_type=upload.content_type, drawing_sheet=drawing_sheet,
        uploaded_by_id=user.id,
    )
    db.session.add(attachment)
    db.session.commit()
    return attachment.to_dict()


@server_action
def delete_attachment(*, user, attachment_id):
    attachment = db.session.get(RfiAttachment, attachment_id)
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    rfi = _load(user, attachment.rfi_id)
    if attachment.uploaded_by_id != user.id and not permission_service.is_project_manager(
            user.id, rfi.project_id):
        raise ForbiddenError("Only the uploader or project manager can delete this attachment",
                             public=True)
    storage_service.delete("rfis", attachment.file_path)
    db.session.delete(attachment)
    db.session.commit()
    return {"id": attachment_id, "deleted": True}


def rfi_counts(project_id):
    """Status → count for the project dashboard."""
    rows = (db.session.query(Rfi.status, func.count(Rfi.id))
            .filter(Rfi.project_id == project_id, Rfi.deleted_at.is_(None))
            .group_by(Rfi.status).all())
    return {status: count for status, count in rows}
