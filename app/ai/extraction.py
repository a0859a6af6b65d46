"""
Siteline — AI document extraction.

Turns a scanned invoice or quote image into structured fields through the
LLM gateway. Model output is untrusted: code fences are stripped, JSON is
parsed strictly, and every field is coerced and defaulted here before a
service sees it.

Invoice confidence starts at 1.0 and loses:
    vendor missing        -0.20
    invoice number        -0.15
    invoice date          -0.15
    amount missing / 0    -0.30
    description           -0.10
    no line items         -0.10
clamped to [0, 1].
"""

import json
import logging
import re
from datetime import date, datetime

from app.ai.gateway import LLMGateway
from app.models.budget import BUDGET_CATEGORIES

logger = logging.getLogger(__name__)

VISION_MIME_TYPES = ("image/jpeg", "image/png", "image/heic")

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?|\n?```\s*$")
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y")


class ExtractionError(Exception):
    """The model could not be called or returned something unusable."""


INVOICE_SYSTEM_PROMPT = """You are an expert at extracting structured data from invoices.
Extract the following information from the invoice image:
- Vendor name (company that issued the invoice)
- Invoice number
- Invoice date (convert to YYYY-MM-DD format)
- Total amount (as a number, no currency symbols)
- Brief description of services/products
- Line items if available (description, quantity, unit price, amount)

Return the data as a JSON object with this exact structure:
{
  "vendorName": "string",
  "invoiceNumber": "string",
  "invoiceDate": "YYYY-MM-DD",
  "amount": number,
  "description": "string",
  "lineItems": [{"description": "string", "quantity": number, "unitPrice": number, "amount": number}]
}

If you cannot find a field, use reasonable defaults:
- vendorName: "Unknown Vendor"
- invoiceNumber: "N/A"
- invoiceDate: today's date
- amount: 0
- description: "No description available"
- lineItems: []"""

QUOTE_SYSTEM_PROMPT = """You are an expert at extracting line items from construction quotes and estimates.

Extract all line items from this quote document and return structured JSON.

Required fields per line item:
- line_number: Sequential number (1, 2, 3, ...)
- description: Full item description/specification
- quantity: Numeric quantity (decimal allowed, null if not found)
- unit_of_measure: Unit abbreviation (EA, LF, SF, HR, etc., null if not found)
- unit_price: Price per unit (decimal, null if not found)
- line_total: Total for this line (quantity x unit_price, or best estimate)
- category_hint: one of "labor", "materials", "equipment", "other", or null
- confidence: Your confidence in this line item extraction (0.0 to 1.0)

Also extract quote-level metadata: vendor, quote_number, quote_date (YYYY-MM-DD),
total_amount, and an overall confidence 0.0-1.0.

Return JSON:
{"vendor": ..., "quote_number": ..., "quote_date": ..., "line_items": [...],
 "total_amount": 0.00, "confidence": 0.95}

If uncertain about a field, set it to null. Extract ALL line items."""


# ── Parsing helpers ──────────────────────────────────────────────────────────

def strip_code_fences(content: str) -> str:
    return _FENCE_RE.sub("", content.strip()).strip()


def parse_json_content(content: str | None) -> dict:
    if not content:
        raise ExtractionError("No response from AI provider")
    try:
        parsed = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as exc:
        raise ExtractionError("AI response was not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise ExtractionError("AI response was not a JSON object")
    return parsed


def normalize_date(value) -> str | None:
    """Best-effort date → YYYY-MM-DD, None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return None


def _number(value, default=None):
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _clamp(value, low=0.0, high=1.0):
    return max(low, min(high, value))


def _category_hint(value):
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in BUDGET_CATEGORIES else None


def _call(system_prompt, user_prompt, data, mime_type, *, purpose, max_tokens, gateway=None):
    if mime_type not in VISION_MIME_TYPES:
        raise ExtractionError(
            f"Invalid MIME type: {mime_type}. Only images are supported. "
            "PDFs must be converted first.")
    gw = gateway or LLMGateway()
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt,
         "images": [{"data": data, "mime_type": mime_type}]},
    ]
    try:
        result = gw.chat(messages, purpose=purpose, max_tokens=max_tokens, temperature=0.1)
    except RuntimeError as exc:
        raise ExtractionError(str(exc)) from exc
    return result


# ── Invoice ──────────────────────────────────────────────────────────────────

def invoice_confidence(parsed: dict) -> float:
    confidence = 1.0
    vendor = parsed.get("vendorName")
    if not vendor or vendor == "Unknown Vendor":
        confidence -= 0.2
    number = parsed.get("invoiceNumber")
    if not number or number == "N/A":
        confidence -= 0.15
    if not normalize_date(parsed.get("invoiceDate")):
        confidence -= 0.15
    if not _number(parsed.get("amount")):
        confidence -= 0.3
    if not parsed.get("description"):
        confidence -= 0.1
    if not parsed.get("lineItems"):
        confidence -= 0.1
    return round(_clamp(confidence), 2)


def normalize_invoice(parsed: dict, today: date | None = None) -> dict:
    """Apply defaults and confidence to a raw model payload."""
    today = today or date.today()
    line_items = []
    for item in parsed.get("lineItems") or []:
        if not isinstance(item, dict):
            continue
        line_items.append({
            "description": str(item.get("description") or ""),
            "quantity": _number(item.get("quantity")),
            "unit_price": _number(item.get("unitPrice")),
            "amount": _number(item.get("amount"), 0.0),
        })
    return {
        "vendor_name": parsed.get("vendorName") or "Unknown Vendor",
        "invoice_number": parsed.get("invoiceNumber") or "N/A",
        "invoice_date": normalize_date(parsed.get("invoiceDate")) or today.isoformat(),
        "amount": _number(parsed.get("amount"), 0.0) or 0.0,
        "description": parsed.get("description") or "No description available",
        "line_items": line_items,
        "confidence": invoice_confidence(parsed),
    }


def extract_invoice(data: bytes, mime_type: str, *, gateway=None) -> dict:
    result = _call(INVOICE_SYSTEM_PROMPT,
                   "Please extract all invoice information from this image.",
                   data, mime_type, purpose="invoice_extraction", max_tokens=1000,
                   gateway=gateway)
    parsed = parse_json_content(result["content"])
    invoice = normalize_invoice(parsed)
    invoice["raw"] = {"content": result["content"], "model": result.get("model"),
                      "provider": result.get("provider")}
    logger.info("Invoice extraction complete: confidence=%.2f", invoice["confidence"])
    return invoice


# ── Quote ────────────────────────────────────────────────────────────────────

def normalize_quote(parsed: dict) -> dict:
    items = []
    for index, item in enumerate(parsed.get("line_items") or []):
        if not isinstance(item, dict):
            continue
        quantity = _number(item.get("quantity"))
        unit_price = _number(item.get("unit_price"))
        line_total = _number(item.get("line_total"), 0.0) or 0.0
        if quantity is not None and unit_price is not None:
            calculated = quantity * unit_price
            if abs(calculated - line_total) > 0.01:
                logger.debug("Recalculated line_total for line %s: %s → %s",
                             index + 1, line_total, calculated)
                line_total = calculated
        items.append({
            "line_number": int(_number(item.get("line_number")) or index + 1),
            "description": str(item.get("description") or "No description"),
            "quantity": quantity,
            "unit_of_measure": item.get("unit_of_measure") or None,
            "unit_price": unit_price,
            "line_total": round(line_total, 2),
            "category_hint": _category_hint(item.get("category_hint")),
            "confidence": _clamp(_number(item.get("confidence")) or 0.5),
        })
    return {
        "vendor": parsed.get("vendor") or None,
        "quote_number": parsed.get("quote_number") or None,
        "quote_date": normalize_date(parsed.get("quote_date")),
        "line_items": items,
        "total_amount": _number(parsed.get("total_amount"), 0.0) or 0.0,
        "confidence": _clamp(_number(parsed.get("confidence")) or 0.5),
    }


def extract_quote(data: bytes, mime_type: str, *, gateway=None) -> dict:
    result = _call(QUOTE_SYSTEM_PROMPT,
                   "Please extract all line items and metadata from this construction quote/estimate.",
                   data, mime_type, purpose="quote_extraction", max_tokens=4000,
                   gateway=gateway)
    quote = normalize_quote(parse_json_content(result["content"]))
    logger.info("Quote extraction complete: %d line items, confidence=%.2f",
                len(quote["line_items"]), quote["confidence"])
    return quote
