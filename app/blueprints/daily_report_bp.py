"""
Daily report blueprint.

Endpoints:
    PROJECT  /api/v1/projects/<pid>/daily-reports                 GET (?status=&start_date=&end_date=), POST
             /api/v1/projects/<pid>/daily-reports/copy            POST  {report_date}
             /api/v1/projects/<pid>/daily-reports/weather-analytics  GET (?start_date=&end_date=)
             /api/v1/projects/<pid>/daily-reports/export/<kind>   GET   labor | equipment (CSV)
    REPORT   /api/v1/daily-reports/<rid>                          GET, PATCH, DELETE
             /api/v1/daily-reports/<rid>/submit                   POST
             /api/v1/daily-reports/<rid>/approve                  POST
             /api/v1/daily-reports/<rid>/pdf                      GET
             /api/v1/daily-reports/<rid>/quickbooks               GET   (time tracking CSV)
    ENTRIES  /api/v1/daily-reports/<rid>/<entry_type>             POST  crew | equipment | material | incident
             /api/v1/daily-reports/<rid>/<entry_type>/<entry_id>  DELETE
    PHOTOS   /api/v1/daily-reports/<rid>/photos                   POST (multipart)
             /api/v1/daily-reports/<rid>/photos/<photo_id>        DELETE
"""

from flask import Blueprint, request

from app.blueprints import current_user, download, form_or_json, json_body, uploaded_file
from app.core.actions import respond
from app.services import daily_report_service
from app.utils.helpers import parse_date

daily_report_bp = Blueprint("daily_report", __name__, url_prefix="/api/v1")

ENTRY_TYPES = "<any(crew, equipment, material, incident):entry_type>"


def _range_args():
    return {"start_date": request.args.get("start_date"),
            "end_date": request.args.get("end_date")}


# ── Project scope ────────────────────────────────────────────────────────────

@daily_report_bp.route("/projects/<int:pid>/daily-reports", methods=["GET"])
def list_reports(pid):
    return respond(daily_report_service.list_reports(
        user=current_user(), project_id=pid,
        status=request.args.get("status"),
        start_date=parse_date(request.args.get("start_date")),
        end_date=parse_date(request.args.get("end_date")),
    ))


@daily_report_bp.route("/projects/<int:pid>/daily-reports", methods=["POST"])
def create_report(pid):
    return respond(daily_report_service.create_report(
        user=current_user(), project_id=pid, data=json_body()), 201)


@daily_report_bp.route("/projects/<int:pid>/daily-reports/copy", methods=["POST"])
def copy_from_previous(pid):
    return respond(daily_report_service.copy_from_previous(
        user=current_user(), project_id=pid, data=json_body()), 201)


@daily_report_bp.route("/projects/<int:pid>/daily-reports/weather-analytics", methods=["GET"])
def weather_analytics(pid):
    return respond(daily_report_service.get_weather_analytics(
        user=current_user(), project_id=pid, data=_range_args()))


@daily_report_bp.route("/projects/<int:pid>/daily-reports/export/<kind>", methods=["GET"])
def export_summary(pid, kind):
    return download(daily_report_service.export_quickbooks_summary(
        user=current_user(), project_id=pid, kind=kind, data=_range_args()), "text/csv")


# ── Single report ────────────────────────────────────────────────────────────

@daily_report_bp.route("/daily-reports/<int:rid>", methods=["GET"])
def get_report(rid):
    return respond(daily_report_service.get_report(user=current_user(), report_id=rid))


@daily_report_bp.route("/daily-reports/<int:rid>", methods=["PATCH"])
def update_report(rid):
    return respond(daily_report_service.update_report(
        user=current_user(), report_id=rid, data=json_body()))


@daily_report_bp.route("/daily-reports/<int:rid>", methods=["DELETE"])
def delete_report(rid):
    return respond(daily_report_service.delete_report(user=current_user(), report_id=rid))


@daily_report_bp.route("/daily-reports/<int:rid>/submit", methods=["POST"])
def submit_report(rid):
    return respond(daily_report_service.submit_report(user=current_user(), report_id=rid))


@daily_report_bp.route("/daily-reports/<int:rid>/approve", methods=["POST"])
def approve_report(rid):
    return respond(daily_report_service.approve_report(user=current_user(), report_id=rid))


@daily_report_bp.route("/daily-reports/<int:rid>/pdf", methods=["GET"])
def export_pdf(rid):
    return download(daily_report_service.export_pdf(user=current_user(), report_id=rid),
                    "application/pdf")


@daily_report_bp.route("/daily-reports/<int:rid>/quickbooks", methods=["GET"])
def export_quickbooks(rid):
    return download(daily_report_service.export_quickbooks(user=current_user(), report_id=rid),
                    "text/csv")


# ── Photos ───────────────────────────────────────────────────────────────────

@daily_report_bp.route("/daily-reports/<int:rid>/photos", methods=["POST"])
def upload_photo(rid):
    return respond(daily_report_service.upload_photo(
        user=current_user(), report_id=rid, upload=uploaded_file(), data=form_or_json()), 201)


@daily_report_bp.route("/daily-reports/<int:rid>/photos/<int:photo_id>", methods=["DELETE"])
def delete_photo(rid, photo_id):
    return respond(daily_report_service.delete_photo(
        user=current_user(), report_id=rid, photo_id=photo_id))


# ── Entries ──────────────────────────────────────────────────────────────────

@daily_report_bp.route(f"/daily-reports/<int:rid>/{ENTRY_TYPES}", methods=["POST"])
def add_entry(rid, entry_type):
    return respond(daily_report_service.add_entry(
        user=current_user(), report_id=rid, entry_type=entry_type, data=json_body()), 201)


@daily_report_bp.route(f"/daily-reports/<int:rid>/{ENTRY_TYPES}/<int:entry_id>",
                       methods=["DELETE"])
def delete_entry(rid, entry_type, entry_id):
    return respond(daily_report_service.delete_entry(
        user=current_user(), report_id=rid, entry_type=entry_type, entry_id=entry_id))
