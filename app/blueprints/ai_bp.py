"""
AI extraction blueprint — vision LLM parsing of uploaded documents.

Rate limited separately (10/minute) in app/middleware/rate_limiter.py.

Endpoints:
    POST /api/v1/projects/<pid>/invoices/<invoice_id>/parse   fills invoice fields
    POST /api/v1/projects/<pid>/quotes/<quote_id>/parse       preview line items
"""

from flask import Blueprint

from app.blueprints import current_user
from app.core.actions import respond
from app.services import invoice_service, quote_service

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1")


@ai_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>/parse", methods=["POST"])
def parse_invoice(pid, invoice_id):
    return respond(invoice_service.parse_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id))


@ai_bp.route("/projects/<int:pid>/quotes/<int:quote_id>/parse", methods=["POST"])
def parse_quote(pid, quote_id):
    return respond(quote_service.parse_quote(
        user=current_user(), project_id=pid, quote_id=quote_id))
