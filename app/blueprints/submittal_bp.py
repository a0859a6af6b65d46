"""
Submittal blueprint — shop drawings, product data and samples through
GC → A/E → owner review.

Endpoints:
    PROJECT  /api/v1/projects/<pid>/submittals             GET, POST
             /api/v1/projects/<pid>/submittals/analytics   GET
    MINE     /api/v1/submittals/my-reviews                 GET (?limit=)
    ITEM     /api/v1/submittals/<sid>                      GET, PATCH, DELETE
             /api/v1/submittals/<sid>/submit               POST  {reviewer_id}
             /api/v1/submittals/<sid>/review               POST  {action, comments, next_reviewer_id?}
             /api/v1/submittals/<sid>/resubmit             POST  {notes}
    FILES    /api/v1/submittals/<sid>/attachments          POST (multipart)
             /api/v1/submittal-attachments/<attachment_id> DELETE

List query params: status, stage, spec_section (prefix), overdue,
assigned_to_me, limit (≤ 100), offset.
"""

from flask import Blueprint, request

from app.blueprints import arg_bool, arg_int, current_user, form_or_json, json_body, uploaded_file
from app.core.actions import respond
from app.services import submittal_analytics, submittal_service

submittal_bp = Blueprint("submittal", __name__, url_prefix="/api/v1")


@submittal_bp.route("/projects/<int:pid>/submittals", methods=["GET"])
def list_submittals(pid):
    return respond(submittal_service.list_submittals(
        user=current_user(), project_id=pid,
        status=request.args.get("status"),
        stage=request.args.get("stage"),
        spec_section=request.args.get("spec_section"),
        overdue=arg_bool("overdue"),
        assigned_to_me=arg_bool("assigned_to_me"),
        limit=arg_int("limit", submittal_service.DEFAULT_LIST_LIMIT),
        offset=arg_int("offset", 0),
    ))


@submittal_bp.route("/projects/<int:pid>/submittals", methods=["POST"])
def create_submittal(pid):
    return respond(submittal_service.create_submittal(
        user=current_user(), project_id=pid, data=json_body()), 201)


@submittal_bp.route("/projects/<int:pid>/submittals/analytics", methods=["GET"])
def analytics(pid):
    return respond(submittal_analytics.get_analytics(user=current_user(), project_id=pid))


@submittal_bp.route("/submittals/my-reviews", methods=["GET"])
def my_pending_reviews():
    return respond(submittal_service.my_pending_reviews(
        user=current_user(), limit=arg_int("limit", 20)))


@submittal_bp.route("/submittals/<int:sid>", methods=["GET"])
def get_submittal(sid):
    return respond(submittal_service.get_submittal(user=current_user(), submittal_id=sid))


@submittal_bp.route("/submittals/<int:sid>", methods=["PATCH"])
def update_submittal(sid):
    return respond(submittal_service.update_submittal(
        user=current_user(), submittal_id=sid, data=json_body()))


@submittal_bp.route("/submittals/<int:sid>", methods=["DELETE"])
def delete_submittal(sid):
    return respond(submittal_service.delete_submittal(user=current_user(), submittal_id=sid))


@submittal_bp.route("/submittals/<int:sid>/submit", methods=["POST"])
def submit_for_review(sid):
    return respond(submittal_service.submit_for_review(
        user=current_user(), submittal_id=sid, data=json_body()))


@submittal_bp.route("/submittals/<int:sid>/review", methods=["POST"])
def review_submittal(sid):
    return respond(submittal_service.review_submittal(
        user=current_user(), submittal_id=sid, data=json_body()))


@submittal_bp.route("/submittals/<int:sid>/resubmit", methods=["POST"])
def create_resubmittal(sid):
    return respond(submittal_service.create_resubmittal(
        user=current_user(), submittal_id=sid, data=json_body()), 201)


@submittal_bp.route("/submittals/<int:sid>/attachments", methods=["POST"])
def upload_attachment(sid):
    return respond(submittal_service.upload_attachment(
        user=current_user(), submittal_id=sid, upload=uploaded_file(), data=form_or_json()), 201)


@submittal_bp.route("/submittal-attachments/<int:attachment_id>", methods=["DELETE"])
def delete_attachment(attachment_id):
    return respond(submittal_service.delete_attachment(
        user=current_user(), attachment_id=attachment_id))
