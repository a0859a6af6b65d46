"""
Change order blueprint.

Endpoints:
    PROJECT  /api/v1/projects/<pid>/change-orders            GET (?status=a,b&type=), POST
    CO       /api/v1/change-orders/<co_id>                   GET, PATCH, DELETE
             /api/v1/change-orders/<co_id>/submit            POST
             /api/v1/change-orders/<co_id>/cancel            POST  {reason}
             /api/v1/change-orders/<co_id>/versions          GET, POST {reason}
             /api/v1/change-orders/<co_id>/versions/compare  GET   (?v1=&v2=)
    APPROVAL /api/v1/change-order-approvals/<approval_id>/approve  POST {notes?}
             /api/v1/change-order-approvals/<approval_id>/reject   POST {reason}
    LINES    /api/v1/change-orders/<co_id>/line-items        POST
             /api/v1/change-orders/<co_id>/line-items/order  PUT   {line_item_ids}
             /api/v1/change-order-line-items/<line_item_id>  PATCH, DELETE
    FILES    /api/v1/change-orders/<co_id>/attachments       POST (multipart)
             /api/v1/change-order-attachments/<attachment_id> DELETE
"""

from flask import Blueprint, request

from app.blueprints import arg_int, current_user, form_or_json, json_body, uploaded_file
from app.core.actions import ActionResult, respond
from app.services import change_order_service

change_order_bp = Blueprint("change_order", __name__, url_prefix="/api/v1")


# ── Change orders ────────────────────────────────────────────────────────────

@change_order_bp.route("/projects/<int:pid>/change-orders", methods=["GET"])
def list_change_orders(pid):
    return respond(change_order_service.list_change_orders(
        user=current_user(), project_id=pid,
        status=request.args.get("status"), co_type=request.args.get("type")))


@change_order_bp.route("/projects/<int:pid>/change-orders", methods=["POST"])
def create_change_order(pid):
    return respond(change_order_service.create_change_order(
        user=current_user(), project_id=pid, data=json_body()), 201)


@change_order_bp.route("/change-orders/<int:co_id>", methods=["GET"])
def get_change_order(co_id):
    return respond(change_order_service.get_change_order(user=current_user(), co_id=co_id))


@change_order_bp.route("/change-orders/<int:co_id>", methods=["PATCH"])
def update_change_order(co_id):
    return respond(change_order_service.update_change_order(
        user=current_user(), co_id=co_id, data=json_body()))


@change_order_bp.route("/change-orders/<int:co_id>", methods=["DELETE"])
def delete_change_order(co_id):
    return respond(change_order_service.delete_change_order(user=current_user(), co_id=co_id))


@change_order_bp.route("/change-orders/<int:co_id>/submit", methods=["POST"])
def submit_for_approval(co_id):
    return respond(change_order_service.submit_for_approval(user=current_user(), co_id=co_id))


@change_order_bp.route("/change-orders/<int:co_id>/cancel", methods=["POST"])
def cancel_change_order(co_id):
    return respond(change_order_service.cancel_change_order(
        user=current_user(), co_id=co_id, data=json_body()))


# ── Versions ─────────────────────────────────────────────────────────────────

@change_order_bp.route("/change-orders/<int:co_id>/versions", methods=["GET"])
def list_versions(co_id):
    return respond(change_order_service.list_versions(user=current_user(), co_id=co_id))


@change_order_bp.route("/change-orders/<int:co_id>/versions", methods=["POST"])
def create_new_version(co_id):
    return respond(change_order_service.create_new_version(
        user=current_user(), co_id=co_id, data=json_body()), 201)


@change_order_bp.route("/change-orders/<int:co_id>/versions/compare", methods=["GET"])
def compare_versions(co_id):
    v1, v2 = arg_int("v1"), arg_int("v2")
    if v1 is None or v2 is None:
        return respond(ActionResult.fail("v1 and v2 query parameters are required", 422))
    return respond(change_order_service.compare_versions(
        user=current_user(), co_id=co_id, version1=v1, version2=v2))


# ── Approvals ────────────────────────────────────────────────────────────────

@change_order_bp.route("/change-order-approvals/<int:approval_id>/approve", methods=["POST"])
def approve_change_order(approval_id):
    return respond(change_order_service.approve_change_order(
        user=current_user(), approval_id=approval_id, data=json_body()))


@change_order_bp.route("/change-order-approvals/<int:approval_id>/reject", methods=["POST"])
def reject_change_order(approval_id):
    return respond(change_order_service.reject_change_order(
        user=current_user(), approval_id=approval_id, data=json_body()))


# ── Line items ───────────────────────────────────────────────────────────────

@change_order_bp.route("/change-orders/<int:co_id>/line-items", methods=["POST"])
def add_line_item(co_id):
    return respond(change_order_service.add_line_item(
        user=current_user(), co_id=co_id, data=json_body()), 201)


@change_order_bp.route("/change-orders/<int:co_id>/line-items/order", methods=["PUT"])
def reorder_line_items(co_id):
    return respond(change_order_service.reorder_line_items(
        user=current_user(), co_id=co_id, data=json_body()))


@change_order_bp.route("/change-order-line-items/<int:line_item_id>", methods=["PATCH"])
def update_line_item(line_item_id):
    return respond(change_order_service.update_line_item(
        user=current_user(), line_item_id=line_item_id, data=json_body()))


@change_order_bp.route("/change-order-line-items/<int:line_item_id>", methods=["DELETE"])
def delete_line_item(line_item_id):
    return respond(change_order_service.delete_line_item(
        user=current_user(), line_item_id=line_item_id))


# ── Attachments ──────────────────────────────────────────────────────────────

@change_order_bp.route("/change-orders/<int:co_id>/attachments", methods=["POST"])
def upload_attachment(co_id):
    return respond(change_order_service.upload_attachment(
        user=current_user(), co_id=co_id, upload=uploaded_file(), data=form_or_json()), 201)


@change_order_bp.route("/change-order-attachments/<int:attachment_id>", methods=["DELETE"])
def delete_attachment(attachment_id):
    return respond(change_order_service.delete_attachment(
        user=current_user(), attachment_id=attachment_id))
