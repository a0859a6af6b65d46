"""
Budget blueprint — allocations, costs, quotes and budget line items.

Endpoints:
    BUDGET   /api/v1/projects/<pid>/budget                    GET   (breakdown)
             /api/v1/projects/<pid>/budget/allocations        PUT
             /api/v1/projects/<pid>/budget/history            GET
             /api/v1/projects/<pid>/budget/burn-rate          GET
             /api/v1/projects/<pid>/budget/export             GET   (XLSX)

    COSTS    /api/v1/projects/<pid>/costs                     GET (?category=), POST (multipart)
             /api/v1/projects/<pid>/costs/<cost_id>           PATCH, DELETE

    QUOTES   /api/v1/projects/<pid>/quotes                    GET, POST (multipart)
             /api/v1/projects/<pid>/quotes/confirm            POST  (reviewed line items)

    LINES    /api/v1/projects/<pid>/line-items                GET (?category=), POST
             /api/v1/projects/<pid>/line-items/search         GET (?q=&category=&min=&max=)
             /api/v1/projects/<pid>/line-items/<item_id>      PATCH, DELETE

AI parsing of quotes lives in ai_bp (separate rate limit).
"""

from flask import Blueprint, request

from app.blueprints import current_user, download, form_or_json, json_body, uploaded_file, uploaded_files
from app.core.actions import respond
from app.services import budget_service, cost_service, quote_service

budget_bp = Blueprint("budget", __name__, url_prefix="/api/v1")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ── Budget ───────────────────────────────────────────────────────────────────

@budget_bp.route("/projects/<int:pid>/budget", methods=["GET"])
def get_breakdown(pid):
    return respond(budget_service.get_breakdown(user=current_user(), project_id=pid))


@budget_bp.route("/projects/<int:pid>/budget/allocations", methods=["PUT"])
def update_allocations(pid):
    return respond(budget_service.update_allocations(
        user=current_user(), project_id=pid, data=json_body()))


@budget_bp.route("/projects/<int:pid>/budget/history", methods=["GET"])
def allocation_history(pid):
    return respond(budget_service.get_allocation_history(user=current_user(), project_id=pid))


@budget_bp.route("/projects/<int:pid>/budget/burn-rate", methods=["GET"])
def burn_rate(pid):
    return respond(budget_service.get_burn_rate(user=current_user(), project_id=pid))


@budget_bp.route("/projects/<int:pid>/budget/export", methods=["GET"])
def export_cost_report(pid):
    return download(budget_service.export_cost_report(user=current_user(), project_id=pid),
                    XLSX_MIMETYPE)


# ── Costs ────────────────────────────────────────────────────────────────────

@budget_bp.route("/projects/<int:pid>/costs", methods=["GET"])
def list_costs(pid):
    return respond(cost_service.list_costs(
        user=current_user(), project_id=pid, category=request.args.get("category")))


@budget_bp.route("/projects/<int:pid>/costs", methods=["POST"])
def create_cost(pid):
    return respond(cost_service.create_cost(
        user=current_user(), project_id=pid, data=form_or_json(),
        receipts=uploaded_files("receipts")), 201)


@budget_bp.route("/projects/<int:pid>/costs/<int:cost_id>", methods=["PATCH"])
def update_cost(pid, cost_id):
    return respond(cost_service.update_cost(
        user=current_user(), project_id=pid, cost_id=cost_id, data=json_body()))


@budget_bp.route("/projects/<int:pid>/costs/<int:cost_id>", methods=["DELETE"])
def delete_cost(pid, cost_id):
    return respond(cost_service.delete_cost(user=current_user(), project_id=pid, cost_id=cost_id))


# ── Quotes ───────────────────────────────────────────────────────────────────

@budget_bp.route("/projects/<int:pid>/quotes", methods=["GET"])
def list_quotes(pid):
    return respond(quote_service.list_quotes(user=current_user(), project_id=pid))


@budget_bp.route("/projects/<int:pid>/quotes", methods=["POST"])
def upload_quote(pid):
    return respond(quote_service.upload_quote(
        user=current_user(), project_id=pid, data=form_or_json(),
        upload=uploaded_file()), 201)


@budget_bp.route("/projects/<int:pid>/quotes/confirm", methods=["POST"])
def confirm_line_items(pid):
    return respond(quote_service.confirm_line_items(
        user=current_user(), project_id=pid, data=json_body()), 201)


# ── Line items ───────────────────────────────────────────────────────────────

@budget_bp.route("/projects/<int:pid>/line-items", methods=["GET"])
def list_line_items(pid):
    return respond(quote_service.list_line_items(
        user=current_user(), project_id=pid, category=request.args.get("category")))


@budget_bp.route("/projects/<int:pid>/line-items", methods=["POST"])
def add_line_item(pid):
    return respond(quote_service.add_line_item(
        user=current_user(), project_id=pid, data=json_body()), 201)


@budget_bp.route("/projects/<int:pid>/line-items/search", methods=["GET"])
def search_line_items(pid):
    return respond(quote_service.search_line_items(
        user=current_user(), project_id=pid,
        query=request.args.get("q", ""),
        category=request.args.get("category"),
        min_amount=request.args.get("min", type=float),
        max_amount=request.args.get("max", type=float),
    ))


@budget_bp.route("/projects/<int:pid>/line-items/<int:item_id>", methods=["PATCH"])
def update_line_item(pid, item_id):
    return respond(quote_service.update_line_item(
        user=current_user(), project_id=pid, item_id=item_id, data=json_body()))


@budget_bp.route("/projects/<int:pid>/line-items/<int:item_id>", methods=["DELETE"])
def delete_line_item(pid, item_id):
    return respond(quote_service.delete_line_item(
        user=current_user(), project_id=pid, item_id=item_id))
