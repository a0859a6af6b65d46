"""
Vendor invoices: upload, AI parse, approval workflow.

Lifecycle: pending → approved | rejected. Only pending invoices can be
approved or rejected; approved invoices count toward budget spend.
"""

import logging

from app.ai.extraction import VISION_MIME_TYPES, ExtractionError, extract_invoice
from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.budget import BUDGET_CATEGORIES, INVOICE_STATUSES, Invoice
from app.services import permission_service, storage_service
from app.utils.helpers import parse_date, utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)


def _validate_metadata(v):
    v.string("vendor_name", max_len=200)
    v.string("invoice_number", max_len=100)
    v.date("invoice_date")
    v.string("description", max_len=1000)


def _get_invoice(project_id, invoice_id):
    invoice = Invoice.get_active(invoice_id)
    if invoice is None or invoice.project_id != project_id:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


def _ensure_manager(user, project_id, verb):
    permission_service.ensure_project_access(user, project_id)
    if not permission_service.has_permission(user.id, project_id, "approve_invoice"):
        raise ForbiddenError(f"Only managers can {verb} invoices", public=True)


@server_action
def upload_invoice(*, user, project_id, data, upload):
    permission_service.ensure_project_access(user, project_id, "upload_invoice")
    v = FieldValidator(data)
    category = v.choice("category", BUDGET_CATEGORIES, required=True)
    amount = v.money("amount", required=True, greater_than=0)
    _validate_metadata(v)
    v.raise_if_errors()

    storage_service.validate_upload("invoices", upload)
    path = storage_service.save("invoices", project_id, upload)

    metadata = {k: val for k, val in v.cleaned.items() if k not in ("category", "amount")}
    invoice = Invoice(
        project_id=project_id, budget_category=category, amount=amount,
        file_path=path, file_name=upload.filename, file_size=upload.size,
        mime_type=upload.content_type, status="pending", uploaded_by_id=user.id,
        **metadata,
    )
    db.session.add(invoice)
    db.session.commit()
    logger.info("Invoice %s uploaded (%s %.2f)", invoice.id, category, amount,
                extra={"user_id": user.id, "project_id": project_id})
    return invoice.to_dict()


@server_action
def list_invoices(*, user, project_id, status=None, category=None):
    permission_service.ensure_project_access(user, project_id, "view_invoices")
    query = Invoice.query_active().filter(Invoice.project_id == project_id)
    if status:
        if status not in INVOICE_STATUSES:
            raise ValidationError("Invalid status", details={"status": ["Invalid status"]})
        query = query.filter(Invoice.status == status)
    if category:
        query = query.filter(Invoice.budget_category == category)
    return [i.to_dict() for i in query.order_by(Invoice.created_at.desc(), Invoice.id.desc())]


@server_action
def get_invoice(*, user, project_id, invoice_id):
    permission_service.ensure_project_access(user, project_id, "view_invoices")
    return _get_invoice(project_id, invoice_id).to_dict()


@server_action
def update_invoice(*, user, project_id, invoice_id, data):
    permission_service.ensure_project_access(user, project_id, "upload_invoice")
    invoice = _get_invoice(project_id, invoice_id)
    if invoice.status != "pending":
        raise ValidationError(f"Cannot edit invoice with status: {invoice.status}")
    v = FieldValidator(data, partial=True)
    _validate_metadata(v)
    v.money("amount", required=True, greater_than=0)
    category = v.choice("category", BUDGET_CATEGORIES, required=True)
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        if key == "category":
            invoice.budget_category = category
        else:
            setattr(invoice, key, value)
    db.session.commit()
    return invoice.to_dict()


@server_action
def parse_invoice(*, user, project_id, invoice_id, gateway=None):
    """Run AI extraction on the stored file and fill fields the user left empty."""
    permission_service.ensure_project_access(user, project_id, "upload_invoice")
    invoice = _get_invoice(project_id, invoice_id)
    if invoice.mime_type not in VISION_MIME_TYPES:
        raise ValidationError(
            "AI parsing supports JPEG, PNG and HEIC images only",
            details={"file": ["AI parsing supports JPEG, PNG and HEIC images only"]})

    data = storage_service.read("invoices", invoice.file_path)
    try:
        extracted = extract_invoice(data, invoice.mime_type, gateway=gateway)
    except ExtractionError as exc:
        logger.warning("Invoice %s extraction failed: %s", invoice_id, exc,
                       extra={"project_id": project_id})
        raise ValidationError(f"Failed to parse invoice: {exc}. Please enter data manually.")

    invoice.vendor_name = invoice.vendor_name or extracted["vendor_name"]
    invoice.invoice_number = invoice.invoice_number or extracted["invoice_number"]
    invoice.invoice_date = invoice.invoice_date or parse_date(extracted["invoice_date"])
    invoice.description = invoice.description or extracted["description"]
    invoice.ai_parsed = True
    invoice.ai_confidence = extracted["confidence"]
    invoice.ai_raw = extracted["raw"]
    db.session.commit()

    body = invoice.to_dict()
    body["extracted"] = {k: val for k, val in extracted.items() if k != "raw"}
    return body


@server_action
def approve_invoice(*, user, project_id, invoice_id):
    _ensure_manager(user, project_id, "approve")
    invoice = _get_invoice(project_id, invoice_id)
    if invoice.status != "pending":
        raise ValidationError(f"Cannot approve invoice with status: {invoice.status}")
    invoice.status = "approved"
    invoice.approved_by_id = user.id
    invoice.approved_at = utcnow()
    db.session.commit()
    logger.info("Invoice %s approved", invoice_id,
                extra={"user_id": user.id, "project_id": project_id})
    return invoice.to_dict()


@server_action
def reject_invoice(*, user, project_id, invoice_id, data):
    _ensure_manager(user, project_id, "reject")
    invoice = _get_invoice(project_id, invoice_id)
    v = FieldValidator(data)
    reason = v.string("reason", required=True, min_len=10, max_len=500)
    v.raise_if_errors()
    if invoice.status != "pending":
        raise ValidationError(f"Cannot reject invoice with status: {invoice.status}")
    invoice.status = "rejected"
    invoice.rejection_reason = reason
    db.session.commit()
    logger.info("Invoice %s rejected", invoice_id,
                extra={"user_id": user.id, "project_id": project_id})
    return invoice.to_dict()


@server_action
def delete_invoice(*, user, project_id, invoice_id):
    _ensure_manager(user, project_id, "delete")
    invoice = _get_invoice(project_id, invoice_id)
    invoice.soft_delete()
    db.session.commit()
    return {"id": invoice_id, "deleted": True}
