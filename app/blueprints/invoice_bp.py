"""
Invoice blueprint.

Endpoints:
    /api/v1/projects/<pid>/invoices                       GET (?status=&category=), POST (multipart)
    /api/v1/projects/<pid>/invoices/<invoice_id>          GET, PATCH, DELETE
    /api/v1/projects/<pid>/invoices/<invoice_id>/approve  POST
    /api/v1/projects/<pid>/invoices/<invoice_id>/reject   POST  {reason}
"""

from flask import Blueprint, request

from app.blueprints import current_user, form_or_json, json_body, uploaded_file
from app.core.actions import respond
from app.services import invoice_service

invoice_bp = Blueprint("invoice", __name__, url_prefix="/api/v1")


@invoice_bp.route("/projects/<int:pid>/invoices", methods=["GET"])
def list_invoices(pid):
    return respond(invoice_service.list_invoices(
        user=current_user(), project_id=pid,
        status=request.args.get("status"), category=request.args.get("category")))


@invoice_bp.route("/projects/<int:pid>/invoices", methods=["POST"])
def upload_invoice(pid):
    return respond(invoice_service.upload_invoice(
        user=current_user(), project_id=pid, data=form_or_json(),
        upload=uploaded_file()), 201)


@invoice_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>", methods=["GET"])
def get_invoice(pid, invoice_id):
    return respond(invoice_service.get_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id))


@invoice_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>", methods=["PATCH"])
def update_invoice(pid, invoice_id):
    return respond(invoice_service.update_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id, data=json_body()))


@invoice_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>", methods=["DELETE"])
def delete_invoice(pid, invoice_id):
    return respond(invoice_service.delete_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id))


@invoice_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>/approve", methods=["POST"])
def approve_invoice(pid, invoice_id):
    return respond(invoice_service.approve_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id))


@invoice_bp.route("/projects/<int:pid>/invoices/<int:invoice_id>/reject", methods=["POST"])
def reject_invoice(pid, invoice_id):
    return respond(invoice_service.reject_invoice(
        user=current_user(), project_id=pid, invoice_id=invoice_id, data=json_body()))
