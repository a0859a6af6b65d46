"""
RFI blueprint — requests for information, responses, attachments, SLA.

Endpoints:
    RFI      /api/v1/projects/<pid>/rfis               GET (?status=&priority=&assigned_to_me=&overdue=), POST
             /api/v1/projects/<pid>/rfis/sla           GET
             /api/v1/rfis/<rfi_id>                     GET, PATCH, DELETE
             /api/v1/rfis/<rfi_id>/submit              POST  {assigned_to_id | assigned_to_org_id}
             /api/v1/rfis/<rfi_id>/assign              POST
             /api/v1/rfis/<rfi_id>/responses           POST
             /api/v1/rfis/<rfi_id>/close               POST
             /api/v1/rfis/<rfi_id>/cancel              POST

    FILES    /api/v1/rfis/<rfi_id>/attachments         POST (multipart)
             /api/v1/rfi-attachments/<attachment_id>   DELETE
"""

from flask import Blueprint, request

from app.blueprints import arg_bool, current_user, form_or_json, json_body, uploaded_file
from app.core.actions import respond
from app.services import rfi_service

rfi_bp = Blueprint("rfi", __name__, url_prefix="/api/v1")


# ── Project scope ────────────────────────────────────────────────────────────

@rfi_bp.route("/projects/<int:pid>/rfis", methods=["GET"])
def list_rfis(pid):
    return respond(rfi_service.list_rfis(
        user=current_user(), project_id=pid,
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        assigned_to_me=arg_bool("assigned_to_me"),
        overdue=arg_bool("overdue"),
    ))


@rfi_bp.route("/projects/<int:pid>/rfis", methods=["POST"])
def create_rfi(pid):
    return respond(rfi_service.create_rfi(user=current_user(), project_id=pid, data=json_body()), 201)


@rfi_bp.route("/projects/<int:pid>/rfis/sla", methods=["GET"])
def sla_summary(pid):
    return respond(rfi_service.get_sla_summary(user=current_user(), project_id=pid))


# ── Single RFI ───────────────────────────────────────────────────────────────

@rfi_bp.route("/rfis/<int:rfi_id>", methods=["GET"])
def get_rfi(rfi_id):
    return respond(rfi_service.get_rfi(user=current_user(), rfi_id=rfi_id))


@rfi_bp.route("/rfis/<int:rfi_id>", methods=["PATCH"])
def update_rfi(rfi_id):
    return respond(rfi_service.update_rfi(user=current_user(), rfi_id=rfi_id, data=json_body()))


@rfi_bp.route("/rfis/<int:rfi_id>", methods=["DELETE"])
def delete_rfi(rfi_id):
    return respond(rfi_service.delete_rfi(user=current_user(), rfi_id=rfi_id))


@rfi_bp.route("/rfis/<int:rfi_id>/submit", methods=["POST"])
def submit_rfi(rfi_id):
    return respond(rfi_service.submit_rfi(user=current_user(), rfi_id=rfi_id, data=json_body()))


@rfi_bp.route("/rfis/<int:rfi_id>/assign", methods=["POST"])
def assign_rfi(rfi_id):
    return respond(rfi_service.assign_rfi(user=current_user(), rfi_id=rfi_id, data=json_body()))


@rfi_bp.route("/rfis/<int:rfi_id>/responses", methods=["POST"])
def add_response(rfi_id):
    return respond(rfi_service.add_response(
        user=current_user(), rfi_id=rfi_id, data=json_body()), 201)


@rfi_bp.route("/rfis/<int:rfi_id>/close", methods=["POST"])
def close_rfi(rfi_id):
    return respond(rfi_service.close_rfi(user=current_user(), rfi_id=rfi_id))


@rfi_bp.route("/rfis/<int:rfi_id>/cancel", methods=["POST"])
def cancel_rfi(rfi_id):
    return respond(rfi_service.cancel_rfi(user=current_user(), rfi_id=rfi_id))


# ── Attachments ──────────────────────────────────────────────────────────────

@rfi_bp.route("/rfis/<int:rfi_id>/attachments", methods=["POST"])
def upload_attachment(rfi_id):
    return respond(rfi_service.upload_attachment(
        user=current_user(), rfi_id=rfi_id, upload=uploaded_file(), data=form_or_json()), 201)


@rfi_bp.route("/rfi-attachments/<int:attachment_id>", methods=["DELETE"])
def delete_attachment(attachment_id):
    return respond(rfi_service.delete_attachment(user=current_user(), attachment_id=attachment_id))
