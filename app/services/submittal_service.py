"""
Submittal review workflow.

Stages run ``draft → gc_review → ae_review → owner_review → complete``.
The current reviewer either closes the submittal with a decision or
forwards it to the next stage; the owner stage cannot forward. A
``revise_resubmit`` or ``rejected`` decision is answered by a resubmittal:
a new draft row with the same number and the next revision label.
"""

import logging
from datetime import timedelta

from sqlalchemy import func

from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.submittal import (
    ATTACHMENT_TYPES,
    CLOSED_STATUSES,
    REVIEW_ACTIONS,
    REVIEW_STAGES,
    SUBMITTAL_STAGES,
    SUBMITTAL_STATUSES,
    SUBMITTAL_TYPES,
    Submittal,
    SubmittalAttachment,
    SubmittalReview,
    SubmittalVersion,
)
from app.services import notifications, permission_service, storage_service
from app.utils.helpers import as_utc, utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

SPEC_SECTION_PATTERN = r"^[0-9]{2} [0-9]{2} [0-9]{2}$"
SPEC_SECTION_MESSAGE = 'Invalid spec section format (e.g., "03 30 00")'
NEXT_STAGE = {"gc_review": "ae_review", "ae_review": "owner_review"}
REVIEW_OVERDUE_DAYS = 7
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 100


# ── Pure helpers ─────────────────────────────────────────────────────────────

def version_label(version_number):
    """0 → ``Rev 0``, 1 → ``Rev A``, 2 → ``Rev B``, ..."""
    if version_number <= 0:
        return "Rev 0"
    return f"Rev {chr(ord('A') + version_number - 1)}"


def procurement_deadline(required_on_site, lead_time_days):
    if required_on_site is None or lead_time_days is None:
        return None
    return required_on_site - timedelta(days=lead_time_days)


def next_stage(stage):
    return NEXT_STAGE.get(stage)


def next_submittal_number(project_id, spec_section):
    count = (db.session.query(func.count(func.distinct(Submittal.number)))
             .filter(Submittal.project_id == project_id,
                     Submittal.spec_section == spec_section).scalar())
    return f"{spec_section}-{(count or 0) + 1:03d}"


def days_pending(submittal, now=None):
    if not submittal.submitted_at:
        return 0
    return ((now or utcnow()) - as_utc(submittal.submitted_at)).days


def _get(submittal_id):
    submittal = Submittal.get_active(submittal_id)
    if submittal is None:
        raise NotFoundError("Submittal", submittal_id)
    return submittal


def _load(user, submittal_id, permission="view_submittals"):
    submittal = _get(submittal_id)
    permission_service.ensure_project_access(user, submittal.project_id, permission)
    return submittal


def _check_reviewer(v, field, reviewer_id, project_id):
    if reviewer_id and (db.session.get(User, reviewer_id) is None
                        or not permission_service.can_access_project(reviewer_id, project_id)):
        v.add_error(field, "Reviewer must be a member of this project")


# ── Queries ──────────────────────────────────────────────────────────────────

@server_action
def list_submittals(*, user, project_id, status=None, stage=None, spec_section=None,
                    overdue=False, assigned_to_me=False, limit=DEFAULT_LIST_LIMIT, offset=0):
    permission_service.ensure_project_access(user, project_id, "view_submittals")
    errors = {}
    if status and status not in SUBMITTAL_STATUSES:
        errors["status"] = ["Invalid status"]
    if stage and stage not in SUBMITTAL_STAGES:
        errors["stage"] = ["Invalid stage"]
    if not isinstance(limit, int) or limit < 1 or limit > MAX_LIST_LIMIT:
        errors["limit"] = [f"Limit must be between 1 and {MAX_LIST_LIMIT}"]
    if not isinstance(offset, int) or offset < 0:
        errors["offset"] = ["Offset must be at least 0"]
    if errors:
        raise ValidationError(next(iter(errors.values()))[0], details=errors)

    query = Submittal.query_active().filter(Submittal.project_id == project_id)
    if status:
        query = query.filter(Submittal.status == status)
    if stage:
        query = query.filter(Submittal.current_stage == stage)
    if spec_section:
        query = query.filter(Submittal.spec_section.like(f"{spec_section}%"))
    if overdue:
        query = query.filter(
            Submittal.procurement_deadline.isnot(None),
            Submittal.procurement_deadline < utcnow().date(),
            Submittal.status.notin_(CLOSED_STATUSES),
        )
    if assigned_to_me:
        query = query.filter(Submittal.current_reviewer_id == user.id)

    total = query.count()
    rows = (query.order_by(Submittal.spec_section, Submittal.number, Submittal.version_number)
            .offset(offset).limit(limit).all())
    return {"items": [s.to_dict() for s in rows], "total": total,
            "limit": limit, "offset": offset}


@server_action
def get_submittal(*, user, submittal_id):
    submittal = _load(user, submittal_id)
    body = submittal.to_dict(include_children=True)
    body["versions"] = [v.to_dict() for v in SubmittalVersion.query
                        .filter_by(submittal_id=submittal.id).order_by(SubmittalVersion.version_number)]
    body["revisions"] = [
        {"id": s.id, "version": s.version, "version_number": s.version_number, "status": s.status}
        for s in Submittal.query_active()
        .filter(Submittal.project_id == submittal.project_id, Submittal.number == submittal.number)
        .order_by(Submittal.version_number)
    ]
    return body


@server_action
def my_pending_reviews(*, user, limit=20):
    if not isinstance(limit, int) or limit < 1 or limit > MAX_LIST_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_LIST_LIMIT}",
                              details={"limit": [f"Limit must be between 1 and {MAX_LIST_LIMIT}"]})
    query = (Submittal.query_active()
             .filter(Submittal.current_reviewer_id == user.id,
                     Submittal.current_stage.in_(REVIEW_STAGES))
             .order_by(Submittal.submitted_at.asc()))
    total = query.count()
    now = utcnow()
    reviews = []
    for submittal in query.limit(limit).all():
        row = submittal.to_dict()
        row["days_pending"] = days_pending(submittal, now)
        row["is_overdue"] = row["days_pending"] > REVIEW_OVERDUE_DAYS
        reviews.append(row)
    return {"reviews": reviews, "total": total}


# ── Lifecycle ────────────────────────────────────────────────────────────────

def _validate_schedule(v):
    required_on_site = v.date("required_on_site")
    lead_time = v.number("lead_time_days", min_value=0, integer=True)
    return required_on_site, lead_time


@server_action
def create_submittal(*, user, project_id, data):
    permission_service.ensure_project_access(user, project_id, "create_submittal")
    v = FieldValidator(data)
    title = v.string("title", required=True, min_len=1, max_len=500)
    description = v.string("description")
    submittal_type = v.choice("submittal_type", SUBMITTAL_TYPES, required=True)
    spec_section = v.string("spec_section", required=True, pattern=SPEC_SECTION_PATTERN,
                            pattern_message=SPEC_SECTION_MESSAGE)
    spec_title = v.string("spec_section_title", max_len=200)
    required_on_site, lead_time = _validate_schedule(v)
    org_id = v.integer_id("submitted_by_org_id")
    v.raise_if_errors()

    submittal = Submittal(
        project_id=project_id,
        number=next_submittal_number(project_id, spec_section),
        title=title, description=description, submittal_type=submittal_type,
        spec_section=spec_section, spec_section_title=spec_title,
        status="draft", current_stage="draft",
        version=version_label(0), version_number=0,
        required_on_site=required_on_site, lead_time_days=lead_time,
        procurement_deadline=procurement_deadline(required_on_site, lead_time),
        created_by_id=user.id, submitted_by_org_id=org_id,
    )
    db.session.add(submittal)
    db.session.commit()
    logger.info("Submittal %s created", submittal.number,
                extra={"user_id": user.id, "project_id": project_id})
    return submittal.to_dict()


@server_action
def update_submittal(*, user, submittal_id, data):
    submittal = _load(user, submittal_id)
    can_update = ((submittal.status == "draft" and submittal.created_by_id == user.id)
                  or submittal.current_reviewer_id == user.id)
    if not can_update:
        raise ForbiddenError(
            "Cannot modify submittal. Only creators can update drafts, and reviewers "
            "can update assigned submittals.", public=True)

    v = FieldValidator(data, partial=True)
    v.string("title", required=True, min_len=1, max_len=500)
    v.string("description")
    _validate_schedule(v)
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        setattr(submittal, key, value)
    submittal.procurement_deadline = procurement_deadline(submittal.required_on_site,
                                                          submittal.lead_time_days)
    db.session.commit()
    return submittal.to_dict()


@server_action
def submit_for_review(*, user, submittal_id, data):
    submittal = _load(user, submittal_id)
    if submittal.created_by_id != user.id:
        raise ForbiddenError("Only the creator can submit this submittal for review", public=True)
    if submittal.status != "draft":
        raise ValidationError("Submittal must be in draft status to submit for review")

    v = FieldValidator(data)
    reviewer_id = v.integer_id("reviewer_id", required=True)
    _check_reviewer(v, "reviewer_id", reviewer_id, submittal.project_id)
    v.raise_if_errors()

    has_attachment = SubmittalAttachment.query.filter_by(
        submittal_id=submittal.id, version_number=submittal.version_number).first()
    if has_attachment is None:
        raise ValidationError("At least one attachment is required before submitting for review")

    submittal.status = "submitted"
    submittal.current_stage = "gc_review"
    submittal.current_reviewer_id = reviewer_id
    submittal.submitted_at = utcnow()
    db.session.commit()
    logger.info("Submittal %s submitted for review", submittal.number,
                extra={"user_id": user.id, "project_id": submittal.project_id})

    notifications.notify_submittal_review_required(submittal)
    return submittal.to_dict()


@server_action
def review_submittal(*, user, submittal_id, data):
    submittal = _load(user, submittal_id)
    if submittal.current_reviewer_id != user.id:
        raise ForbiddenError("You are not the assigned reviewer for this submittal", public=True)

    v = FieldValidator(data)
    action = v.choice("action", REVIEW_ACTIONS, required=True)
    comments = v.string("comments", required=True, min_len=1)
    next_reviewer_id = v.integer_id("next_reviewer_id")
    if action == "forwarded":
        if not next_reviewer_id and "next_reviewer_id" not in v.errors:
            v.add_error("next_reviewer_id", "Next reviewer is required for forwarding action")
        _check_reviewer(v, "next_reviewer_id", next_reviewer_id, submittal.project_id)
    v.raise_if_errors()
    if action == "forwarded" and next_stage(submittal.current_stage) is None:
        raise ValidationError("Cannot forward from current stage")

    now = utcnow()
    db.session.add(SubmittalReview(
        submittal_id=submittal.id, version_number=submittal.version_number,
        stage=submittal.current_stage, reviewer_id=user.id, action=action,
        comments=comments, reviewed_at=now,
    ))

    if action == "forwarded":
        submittal.status = "submitted"
        submittal.current_stage = next_stage(submittal.current_stage)
        submittal.current_reviewer_id = next_reviewer_id
    else:
        submittal.status = action
        submittal.current_stage = "complete"
        submittal.current_reviewer_id = None
        submittal.closed_at = now
    submittal.reviewed_at = now
    db.session.commit()
    logger.info("Submittal %s reviewed: %s", submittal.number, action,
                extra={"user_id": user.id, "project_id": submittal.project_id})

    if action == "forwarded":
        notifications.notify_submittal_review_required(submittal)
    else:
        notifications.notify_submittal_decision(submittal, action, comments)
    return submittal.to_dict()


@server_action
def create_resubmittal(*, user, submittal_id, data):
    parent = _load(user, submittal_id)
    if parent.created_by_id != user.id:
        raise ForbiddenError("Only the original creator can create a resubmittal", public=True)
    if parent.status not in ("revise_resubmit", "rejected"):
        raise ValidationError("Can only create resubmittal after revision request or rejection")

    v = FieldValidator(data)
    notes = v.string("notes", required=True, min_len=1)
    if "notes" in v.errors:
        v.errors["notes"] = ["Please describe what changed in this revision"]
    v.raise_if_errors()

    number = parent.version_number + 1
    child = Submittal(
        project_id=parent.project_id, number=parent.number, title=parent.title,
        description=parent.description, submittal_type=parent.submittal_type,
        spec_section=parent.spec_section, spec_section_title=parent.spec_section_title,
        required_on_site=parent.required_on_site, lead_time_days=parent.lead_time_days,
        procurement_deadline=parent.procurement_deadline,
        submitted_by_org_id=parent.submitted_by_org_id,
        version=version_label(number), version_number=number,
        parent_submittal_id=parent.id, status="draft", current_stage="draft",
        created_by_id=user.id,
    )
    db.session.add(child)
    db.session.flush()
    db.session.add(SubmittalVersion(submittal_id=child.id, version=child.version,
                                    version_number=number, notes=notes, uploaded_by_id=user.id))
    db.session.commit()
    logger.info("Resubmittal %s %s created", child.number, child.version,
                extra={"user_id": user.id, "project_id": child.project_id})
    return child.to_dict()


@server_action
def delete_submittal(*, user, submittal_id):
    submittal = _load(user, submittal_id)
    if submittal.status != "draft":
        raise ValidationError("Only draft submittals can be deleted")
    if submittal.created_by_id != user.id and not permission_service.is_project_manager(
            user.id, submittal.project_id):
        raise ForbiddenError("Only the creator or project manager can delete this submittal",
                             public=True)
    submittal.soft_delete()
    db.session.commit()
    return {"id": submittal_id, "deleted": True}


# ── Attachments ──────────────────────────────────────────────────────────────

@server_action
def upload_attachment(*, user, submittal_id, upload, data=None):
    submittal = _load(user, submittal_id)
    if submittal.created_by_id != user.id and submittal.current_reviewer_id != user.id:
        raise ForbiddenError("Only the creator or current reviewer can add attachments",
                             public=True)
    v = FieldValidator(data)
    attachment_type = v.choice("attachment_type", ATTACHMENT_TYPES, default="other")
    v.raise_if_errors()

    storage_service.validate_upload("submittals", upload)
    path = storage_service.save("submittals", submittal.project_id, upload)
    attachment = SubmittalAttachment(
        submittal_id=submittal.id, version_number=submittal.version_number,
        attachment_type=attachment_type, file_path=path, file_name=upload.filename,
        file_size=upload.size, mime_type=upload.content_type, uploaded_by_id=user.id,
    )
    db.session.add(attachment)
    db.session.commit()
    return attachment.to_dict()


@server_action
def delete_attachment(*, user, attachment_id):
    attachment = db.session.get(SubmittalAttachment, attachment_id)
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    submittal = _load(user, attachment.submittal_id)
    if attachment.uploaded_by_id != user.id:
        raise ForbiddenError("Only the uploader can delete this attachment", public=True)
    if submittal.status != "draft":
        raise ValidationError("Attachments can only be removed while the submittal is a draft")
    storage_service.delete("submittals", attachment.file_path)
    db.session.delete(attachment)
    db.session.commit()
    return {"id": attachment_id, "deleted": True}
