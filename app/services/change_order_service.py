"""
Change order lifecycle, line-item pricing and versioning.

    contemplated / potential ──submit──▶ proposed ──approve──▶ approved ──▶ invoiced
                                            └──────reject───▶ rejected ──new version──▶ potential
    (anything but invoiced) ──cancel──▶ cancelled

Line items belong to a version of the change order. The change order's
``cost_impact`` is always the sum of its current-version line items.
"""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal

from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.change_order import (
    CO_ATTACHMENT_CATEGORIES,
    CO_STATUSES,
    CO_TYPES,
    DRAFT_STATUSES,
    LOCKED_STATUSES,
    ORIGINATING_EVENT_TYPES,
    ChangeOrder,
    ChangeOrderApproval,
    ChangeOrderAttachment,
    ChangeOrderLineItem,
    ChangeOrderVersion,
)
from app.services import permission_service, storage_service
from app.utils.helpers import utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^CO-(\d+)$")
_CENT = Decimal("0.01")


def line_item_total(quantity, unit_cost, sub_cost=0, markup_percent=0, tax_rate=0):
    """(quantity × unit_cost + sub_cost) × (1 + markup%) × (1 + tax%), to the cent."""
    base = Decimal(str(quantity or 0)) * Decimal(str(unit_cost or 0)) + Decimal(str(sub_cost or 0))
    marked_up = base * (1 + Decimal(str(markup_percent or 0)) / 100)
    taxed = marked_up * (1 + Decimal(str(tax_rate or 0)) / 100)
    return float(taxed.quantize(_CENT, rounding=ROUND_HALF_UP))


def next_co_number(project_id):
    highest = 0
    for (number,) in db.session.query(ChangeOrder.number).filter(ChangeOrder.project_id == project_id):
        match = _NUMBER_RE.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"CO-{highest + 1:03d}"


def _recalculate(co):
    co.cost_impact = round(sum(li.total or 0 for li in co.current_line_items()), 2)


def _get(co_id):
    co = ChangeOrder.get_active(co_id)
    if co is None:
        raise NotFoundError("Change order", co_id)
    return co


def _load(user, co_id, permission="view_change_orders"):
    co = _get(co_id)
    permission_service.ensure_project_access(user, co.project_id, permission)
    return co


def _ensure_current_version(co, item):
    if item.version != co.current_version:
        raise ValidationError("Only line items of the current version can be changed")


def _ensure_editable(co, what="edit"):
    if co.status in LOCKED_STATUSES:
        raise ValidationError(f"Cannot {what} approved or invoiced change orders")


def _get_line_item(line_item_id):
    item = db.session.get(ChangeOrderLineItem, line_item_id)
    if item is None:
        raise NotFoundError("Line item", line_item_id)
    return item


# ── Queries ──────────────────────────────────────────────────────────────────

@server_action
def list_change_orders(*, user, project_id, status=None, co_type=None):
    permission_service.ensure_project_access(user, project_id, "view_change_orders")
    query = ChangeOrder.query_active().filter(ChangeOrder.project_id == project_id)
    statuses = [s for s in (status.split(",") if isinstance(status, str) else status or []) if s]
    if statuses:
        invalid = [s for s in statuses if s not in CO_STATUSES]
        if invalid:
            raise ValidationError("Invalid status", details={"status": ["Invalid status"]})
        query = query.filter(ChangeOrder.status.in_(statuses))
    if co_type:
        query = query.filter(ChangeOrder.type == co_type)
    return [co.to_dict() for co in query.order_by(ChangeOrder.created_at.desc(), ChangeOrder.id.desc())]


@server_action
def get_change_order(*, user, co_id):
    co = _load(user, co_id)
    return co.to_dict(include_children=True)


# ── Lifecycle ────────────────────────────────────────────────────────────────

@server_action
def create_change_order(*, user, project_id, data):
    permission_service.ensure_project_access(user, project_id, "create_change_order")
    v = FieldValidator(data)
    v.string("title", required=True, min_len=3, max_len=500)
    v.string("description")
    v.choice("type", CO_TYPES, required=True)
    status = v.choice("status", DRAFT_STATUSES, default="contemplated")
    v.choice("originating_event_type", ORIGINATING_EVENT_TYPES)
    v.integer_id("originating_event_id")
    v.number("schedule_impact_days", integer=True)
    v.date("new_completion_date")
    v.raise_if_errors()

    fields = dict(v.cleaned)
    fields["status"] = status
    co = ChangeOrder(project_id=project_id, number=next_co_number(project_id),
                     created_by_id=user.id, cost_impact=0, current_version=1, **fields)
    db.session.add(co)
    db.session.commit()
    logger.info("Change order %s created", co.number,
                extra={"user_id": user.id, "project_id": project_id})
    return co.to_dict()


@server_action
def update_change_order(*, user, co_id, data):
    co = _load(user, co_id, "create_change_order")
    _ensure_editable(co)
    v = FieldValidator(data, partial=True)
    v.string("title", required=True, min_len=3, max_len=500)
    v.string("description")
    v.choice("type", CO_TYPES, required=True)
    v.number("schedule_impact_days", integer=True)
    v.date("new_completion_date")
    v.raise_if_errors()
    for key, value in v.cleaned.items():
        setattr(co, key, value)
    db.session.commit()
    return co.to_dict()


@server_action
def delete_change_order(*, user, co_id):
    co = _load(user, co_id, "create_change_order")
    if co.status not in DRAFT_STATUSES:
        raise ValidationError("Can only delete draft change orders")
    co.soft_delete()
    db.session.commit()
    return {"id": co_id, "deleted": True}


@server_action
def submit_for_approval(*, user, co_id):
    co = _load(user, co_id, "create_change_order")
    if co.status not in DRAFT_STATUSES:
        raise ValidationError("Can only submit draft change orders")
    if not co.current_line_items():
        raise ValidationError("Change order must have at least one line item before submission")
    co.status = "proposed"
    co.submitted_at = utcnow()
    db.session.add(ChangeOrderApproval(change_order_id=co.id, version=co.current_version,
                                       stage="gc_review", status="pending"))
    db.session.commit()
    logger.info("Change order %s submitted for approval", co.number,
                extra={"user_id": user.id, "project_id": co.project_id})
    return co.to_dict(include_children=True)


def _pending_approval(approval_id):
    approval = db.session.get(ChangeOrderApproval, approval_id)
    if approval is None:
        raise NotFoundError("Approval", approval_id)
    return approval


@server_action
def approve_change_order(*, user, approval_id, data=None):
    approval = _pending_approval(approval_id)
    co = _load(user, approval.change_order_id, "approve_change_order")
    v = FieldValidator(data)
    notes = v.string("notes", max_len=2000)
    v.raise_if_errors()
    if approval.status != "pending":
        raise ValidationError(f"Cannot approve an approval with status: {approval.status}")

    now = utcnow()
    approval.status = "approved"
    approval.approver_id = user.id
    approval.decision_at = now
    approval.notes = notes
    co.status = "approved"
    co.approved_at = now
    db.session.commit()
    logger.info("Change order %s approved", co.number,
                extra={"user_id": user.id, "project_id": co.project_id})
    return co.to_dict(include_children=True)


@server_action
def reject_change_order(*, user, approval_id, data):
    approval = _pending_approval(approval_id)
    co = _load(user, approval.change_order_id, "approve_change_order")
    v = FieldValidator(data)
    reason = v.string("reason", required=True, min_len=10, max_len=2000)
    v.raise_if_errors()
    if approval.status != "pending":
        raise ValidationError(f"Cannot reject an approval with status: {approval.status}")

    now = utcnow()
    approval.status = "rejected"
    approval.approver_id = user.id
    approval.decision_at = now
    approval.notes = reason
    co.status = "rejected"
    co.rejected_at = now
    db.session.commit()
    logger.info("Change order %s rejected", co.number,
                extra={"user_id": user.id, "project_id": co.project_id})
    return co.to_dict(include_children=True)


@server_action
def cancel_change_order(*, user, co_id, data):
    co = _load(user, co_id, "create_change_order")
    v = FieldValidator(data)
    reason = v.string("reason", required=True, min_len=10, max_len=2000)
    if "reason" in v.errors and v.data.get("reason"):
        v.errors["reason"] = ["Cancellation reason must be at least 10 characters"]
    v.raise_if_errors()
    if co.status == "invoiced":
        raise ValidationError("Cannot cancel invoiced change orders")
    if co.status == "cancelled":
        raise ValidationError("Change order is already cancelled")
    co.status = "cancelled"
    co.cancelled_at = utcnow()
    co.cancellation_reason = reason
    for approval in co.approvals:
        if approval.status == "pending":
            approval.status = "skipped"
    db.session.commit()
    return co.to_dict()


# ── Versions ─────────────────────────────────────────────────────────────────

@server_action
def create_new_version(*, user, co_id, data):
    co = _load(user, co_id, "create_change_order")
    if co.status != "rejected":
        raise ValidationError("Can only create new version for rejected change orders")
    v = FieldValidator(data)
    reason = v.string("reason", required=True, min_len=1, max_len=2000)
    v.raise_if_errors()

    new_number = co.current_version + 1
    db.session.add(ChangeOrderVersion(
        change_order_id=co.id, version_number=new_number, reason=reason,
        cost_impact=co.cost_impact, schedule_impact_days=co.schedule_impact_days,
        created_by_id=user.id,
    ))
    for item in co.current_line_items():
        db.session.add(ChangeOrderLineItem(
            change_order_id=co.id, version=new_number, description=item.description,
            csi_section=item.csi_section, quantity=item.quantity, unit=item.unit,
            unit_cost=item.unit_cost, sub_cost=item.sub_cost,
            gc_markup_percent=item.gc_markup_percent, tax_rate=item.tax_rate,
            total=item.total, sort_order=item.sort_order,
        ))
    co.current_version = new_number
    co.status = "potential"
    db.session.flush()
    _recalculate(co)
    db.session.commit()
    logger.info("Change order %s now at version %d", co.number, new_number,
                extra={"user_id": user.id, "project_id": co.project_id})
    return {"version_number": new_number, "change_order": co.to_dict()}


@server_action
def list_versions(*, user, co_id):
    co = _load(user, co_id)
    return [v.to_dict() for v in co.versions]


def _version_snapshot(co, version):
    items = co.line_items.filter_by(version=version).all()
    return {
        "version_number": version,
        "line_items": [li.to_dict() for li in items],
        "total_cost": round(sum(li.total or 0 for li in items), 2),
    }


@server_action
def compare_versions(*, user, co_id, version1, version2):
    co = _load(user, co_id)
    for version in (version1, version2):
        if not 1 <= version <= co.current_version:
            raise NotFoundError("Version", version)
    first = _version_snapshot(co, version1)
    second = _version_snapshot(co, version2)
    return {
        "version1": first,
        "version2": second,
        "cost_difference": round(second["total_cost"] - first["total_cost"], 2),
    }


# ── Line items ───────────────────────────────────────────────────────────────

def _validate_line_item(v):
    v.string("description", required=True, min_len=3, max_len=1000)
    v.number("quantity", required=True, greater_than=0)
    v.string("unit", max_len=50)
    v.money("unit_cost", min_value=0)
    v.money("sub_cost", min_value=0)
    v.number("gc_markup_percent", min_value=0, max_value=100)
    v.number("tax_rate", min_value=0, max_value=100)
    v.string("csi_section", max_len=20)


def _price(item):
    item.total = line_item_total(item.quantity, item.unit_cost, item.sub_cost,
                                 item.gc_markup_percent, item.tax_rate)


@server_action
def add_line_item(*, user, co_id, data):
    co = _load(user, co_id, "create_change_order")
    _ensure_editable(co, "add line items to")
    v = FieldValidator(data)
    _validate_line_item(v)
    v.raise_if_errors()

    fields = {k: val for k, val in v.cleaned.items() if val is not None}
    fields.setdefault("unit", "ea")
    fields.setdefault("unit_cost", 0)
    fields.setdefault("sub_cost", 0)
    fields.setdefault("gc_markup_percent", 0)
    fields.setdefault("tax_rate", 0)
    sort_order = co.line_items.filter_by(version=co.current_version).count()
    item = ChangeOrderLineItem(change_order_id=co.id, version=co.current_version,
                               sort_order=sort_order, **fields)
    _price(item)
    db.session.add(item)
    db.session.flush()
    _recalculate(co)
    db.session.commit()
    return item.to_dict()


@server_action
def update_line_item(*, user, line_item_id, data):
    item = _get_line_item(line_item_id)
    co = _load(user, item.change_order_id, "create_change_order")
    _ensure_editable(co, "edit line items of")
    _ensure_current_version(co, item)
    v = FieldValidator(data, partial=True)
    _validate_line_item(v)
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        if value is None and key in ("unit_cost", "sub_cost", "gc_markup_percent", "tax_rate"):
            value = 0
        if value is None and key == "unit":
            value = "ea"
        setattr(item, key, value)
    _price(item)
    db.session.flush()
    _recalculate(co)
    db.session.commit()
    return item.to_dict()


@server_action
def delete_line_item(*, user, line_item_id):
    item = _get_line_item(line_item_id)
    co = _load(user, item.change_order_id, "create_change_order")
    _ensure_editable(co, "delete line items of")
    _ensure_current_version(co, item)
    db.session.delete(item)
    db.session.flush()
    _recalculate(co)
    db.session.commit()
    return {"id": line_item_id, "deleted": True}


@server_action
def reorder_line_items(*, user, co_id, data):
    co = _load(user, co_id, "create_change_order")
    _ensure_editable(co, "reorder line items of")
    ids = (data or {}).get("line_item_ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("At least one line item required",
                              details={"line_item_ids": ["At least one line item required"]})
    items = {li.id: li for li in co.current_line_items()}
    unknown = [i for i in ids if i not in items]
    if unknown:
        raise ValidationError("Line items do not belong to this change order",
                              details={"line_item_ids": [f"Unknown line item ids: {unknown}"]})
    for position, item_id in enumerate(ids):
        items[item_id].sort_order = position
    db.session.commit()
    return [li.to_dict() for li in co.current_line_items()]


# ── Attachments ──────────────────────────────────────────────────────────────

@server_action
def upload_attachment(*, user, co_id, upload, data=None):
    co = _load(user, co_id, "create_change_order")
    v = FieldValidator(data)
    category = v.choice("category", CO_ATTACHMENT_CATEGORIES, default="other")
    v.raise_if_errors()
    storage_service.validate_upload("change-orders", upload)
    path = storage_service.save("change-orders", co.project_id, upload)
    attachment = ChangeOrderAttachment(
        change_order_id=co.id, version=co.current_version, category=category,
        file_path=path, file_name=upload.filename, file_size=upload.size,
        mime_type=upload.content_type, uploaded_by_id=user.id,
    )
    db.session.add(attachment)
    db.session.commit()
    return attachment.to_dict()


@server_action
def delete_attachment(*, user, attachment_id):
    attachment = db.session.get(ChangeOrderAttachment, attachment_id)
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    _load(user, attachment.change_order_id)
    if attachment.uploaded_by_id != user.id:
        raise ForbiddenError("Only the uploader can delete this attachment", public=True)
    storage_service.delete("change-orders", attachment.file_path)
    db.session.delete(attachment)
    db.session.commit()
    return {"id": attachment_id, "deleted": True}
