"""
Vendor quotes and budget line items.

Flow: upload quote → AI parse (preview, nothing stored) → user reviews the
extracted rows → confirm writes verified BudgetLineItem rows. Line items can
also be added and edited by hand.
"""

import logging

from sqlalchemy import func

from app.ai.extraction import VISION_MIME_TYPES, ExtractionError, extract_quote
from app.core.actions import server_action
from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.budget import BUDGET_CATEGORIES, BudgetLineItem, ProjectQuote
from app.services import permission_service, storage_service
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

LINE_TOTAL_TOLERANCE = 0.01
SEARCH_LIMIT = 100


def _get_quote(project_id, quote_id):
    quote = db.session.get(ProjectQuote, quote_id)
    if quote is None or quote.project_id != project_id:
        raise NotFoundError("Quote", quote_id)
    return quote


def _get_line_item(project_id, item_id):
    item = db.session.get(BudgetLineItem, item_id)
    if item is None or item.project_id != project_id:
        raise NotFoundError("Line item", item_id)
    return item


def _next_line_number(project_id):
    current = (db.session.query(func.max(BudgetLineItem.line_number))
               .filter(BudgetLineItem.project_id == project_id).scalar())
    return (current or 0) + 1


def check_line_total(quantity, unit_price, line_total):
    """Return an error message when ``line_total`` disagrees with qty × price."""
    if quantity is None or unit_price is None or line_total is None:
        return None
    expected = round(quantity * unit_price, 2)
    if abs(expected - line_total) > LINE_TOTAL_TOLERANCE:
        return f"Line total mismatch: expected {expected:.2f}, got {line_total:.2f}"
    return None


def _validate_line_item(v, prefix=""):
    """Validate one line item payload; field errors are keyed with ``prefix``."""
    v.string("description", required=True, min_len=1, max_len=1000)
    v.number("quantity", min_value=0)
    v.string("unit_of_measure", max_len=50)
    v.money("unit_price", min_value=0)
    v.money("line_total", required=True, min_value=0)
    v.choice("category", BUDGET_CATEGORIES)
    if prefix:
        v.errors = {f"{prefix}{k}": msgs for k, msgs in v.errors.items()}


# ── Quotes ───────────────────────────────────────────────────────────────────

@server_action
def upload_quote(*, user, project_id, data, upload):
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    v = FieldValidator(data)
    vendor = v.string("vendor_name", max_len=200)
    v.raise_if_errors()
    storage_service.validate_upload("quotes", upload)
    path = storage_service.save("quotes", project_id, upload)

    quote = ProjectQuote(
        project_id=project_id, file_path=path, file_name=upload.filename,
        file_size=upload.size, mime_type=upload.content_type,
        vendor_name=vendor, uploaded_by_id=user.id,
    )
    db.session.add(quote)
    db.session.commit()
    logger.info("Quote %s uploaded", quote.id, extra={"user_id": user.id, "project_id": project_id})
    return quote.to_dict()


@server_action
def list_quotes(*, user, project_id):
    permission_service.ensure_project_access(user, project_id, "view_budget")
    quotes = (ProjectQuote.query.filter_by(project_id=project_id)
              .order_by(ProjectQuote.created_at.desc(), ProjectQuote.id.desc()).all())
    return [q.to_dict() for q in quotes]


@server_action
def parse_quote(*, user, project_id, quote_id, gateway=None):
    """Extract line items for review. Nothing is persisted until confirm."""
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    quote = _get_quote(project_id, quote_id)
    if quote.mime_type not in VISION_MIME_TYPES:
        raise ValidationError(
            "AI parsing supports JPEG, PNG and HEIC images only",
            details={"file": ["AI parsing supports JPEG, PNG and HEIC images only"]})
    data = storage_service.read("quotes", quote.file_path)
    try:
        extracted = extract_quote(data, quote.mime_type, gateway=gateway)
    except ExtractionError as exc:
        logger.warning("Quote %s extraction failed: %s", quote_id, exc,
                       extra={"project_id": project_id})
        raise ValidationError(f"Failed to parse quote: {exc}")

    return {"quote_id": quote.id, **extracted}


@server_action
def confirm_line_items(*, user, project_id, data):
    """Persist reviewed line items: ``{"quote_id", "vendor_name"?, "line_items": [...]}``."""
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    data = data or {}
    v = FieldValidator(data)
    quote_id = v.integer_id("quote_id", required=True)
    vendor = v.string("vendor_name", max_len=200)
    rows = data.get("line_items")
    if not isinstance(rows, list) or not rows:
        v.add_error("line_items", "At least one line item is required")
        rows = []

    cleaned_rows = []
    for index, row in enumerate(rows):
        rv = FieldValidator(row if isinstance(row, dict) else {})
        _validate_line_item(rv, prefix=f"line_items.{index}.")
        mismatch = check_line_total(rv.cleaned.get("quantity"), rv.cleaned.get("unit_price"),
                                    rv.cleaned.get("line_total"))
        if mismatch:
            rv.add_error(f"line_items.{index}.line_total", mismatch)
        for field, messages in rv.errors.items():
            for message in messages:
                v.add_error(field, message)
        cleaned_rows.append((rv.cleaned, row))
    v.raise_if_errors()

    quote = _get_quote(project_id, quote_id)

    line_number = _next_line_number(project_id)
    items = []
    for cleaned, raw in cleaned_rows:
        item = BudgetLineItem(
            project_id=project_id, quote_id=quote.id, line_number=line_number,
            description=cleaned["description"], quantity=cleaned.get("quantity"),
            unit_of_measure=cleaned.get("unit_of_measure"),
            unit_price=cleaned.get("unit_price"), line_total=cleaned["line_total"],
            category=cleaned.get("category") or "other",
            ai_confidence=raw.get("confidence"),
            original_extraction=raw.get("original"),
            is_verified=True, created_by_id=user.id,
        )
        db.session.add(item)
        items.append(item)
        line_number += 1

    quote.ai_parsed = True
    if vendor:
        quote.vendor_name = vendor
    confidences = [i.ai_confidence for i in items if i.ai_confidence is not None]
    if confidences:
        quote.ai_confidence = round(sum(confidences) / len(confidences), 2)
    db.session.commit()
    logger.info("Confirmed %d line item(s) from quote %s", len(items), quote.id,
                extra={"user_id": user.id, "project_id": project_id})
    return {"quote": quote.to_dict(), "line_items": [i.to_dict() for i in items]}


# ── Line items ───────────────────────────────────────────────────────────────

@server_action
def list_line_items(*, user, project_id, category=None):
    permission_service.ensure_project_access(user, project_id, "view_budget")
    query = BudgetLineItem.query.filter(BudgetLineItem.project_id == project_id)
    if category:
        query = query.filter(BudgetLineItem.category == category)
    return [i.to_dict() for i in query.order_by(BudgetLineItem.line_number)]


@server_action
def add_line_item(*, user, project_id, data):
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    v = FieldValidator(data)
    _validate_line_item(v)
    mismatch = check_line_total(v.cleaned.get("quantity"), v.cleaned.get("unit_price"),
                                v.cleaned.get("line_total"))
    if mismatch:
        v.add_error("line_total", mismatch)
    v.raise_if_errors()

    fields = dict(v.cleaned)
    fields["category"] = fields.get("category") or "other"
    item = BudgetLineItem(project_id=project_id, line_number=_next_line_number(project_id),
                          is_verified=True, created_by_id=user.id, **fields)
    db.session.add(item)
    db.session.commit()
    return item.to_dict()


@server_action
def update_line_item(*, user, project_id, item_id, data):
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    item = _get_line_item(project_id, item_id)
    v = FieldValidator(data, partial=True)
    _validate_line_item(v)
    if "category" in v.cleaned and v.cleaned["category"] is None:
        v.cleaned["category"] = "other"
    merged = {
        "quantity": v.cleaned.get("quantity", item.quantity),
        "unit_price": v.cleaned.get("unit_price", item.unit_price),
        "line_total": v.cleaned.get("line_total", item.line_total),
    }
    mismatch = check_line_total(**merged)
    if mismatch:
        v.add_error("line_total", mismatch)
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        setattr(item, key, value)
    item.is_verified = True
    db.session.commit()
    return item.to_dict()


@server_action
def delete_line_item(*, user, project_id, item_id):
    permission_service.ensure_project_access(user, project_id, "edit_budget")
    item = _get_line_item(project_id, item_id)
    db.session.delete(item)
    db.session.commit()
    return {"id": item_id, "deleted": True}


@server_action
def search_line_items(*, user, project_id, query="", category=None,
                      min_amount=None, max_amount=None):
    permission_service.ensure_project_access(user, project_id, "view_budget")
    q = BudgetLineItem.query.filter(BudgetLineItem.project_id == project_id)
    text = (query or "").strip()
    if text:
        pattern = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        q = q.filter(BudgetLineItem.description.ilike(f"%{pattern}%", escape="\\"))
    if category:
        if category not in BUDGET_CATEGORIES:
            raise ValidationError("Invalid category", details={"category": ["Invalid category"]})
        q = q.filter(BudgetLineItem.category == category)
    if min_amount is not None:
        q = q.filter(BudgetLineItem.line_total >= min_amount)
    if max_amount is not None:
        q = q.filter(BudgetLineItem.line_total <= max_amount)
    items = q.order_by(BudgetLineItem.line_total.desc()).limit(SEARCH_LIMIT).all()
    return {"items": [i.to_dict() for i in items], "count": len(items)}
