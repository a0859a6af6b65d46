"""
Project blueprint — projects, permissions, team, health and dashboard.

Endpoints:
    PROJECT  /api/v1/organizations/<org_id>/projects        GET (?status=), POST
             /api/v1/projects/<project_id>                  GET, PATCH, DELETE
             /api/v1/projects/<project_id>/health           GET
             /api/v1/projects/<project_id>/dashboard        GET

    PERMS    /api/v1/projects/<project_id>/permissions        GET
             /api/v1/projects/<project_id>/permissions/check  POST

    TEAM     /api/v1/projects/<project_id>/team               GET, POST
             /api/v1/projects/<project_id>/team/<access_id>   PATCH, DELETE
"""

from flask import Blueprint, request

from app.blueprints import current_user, json_body
from app.core.actions import respond
from app.services import project_health_service, project_service

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


# ── Projects ─────────────────────────────────────────────────────────────────

@project_bp.route("/organizations/<int:org_id>/projects", methods=["GET"])
def list_projects(org_id):
    return respond(project_service.list_projects(
        user=current_user(), org_id=org_id, status=request.args.get("status")))


@project_bp.route("/organizations/<int:org_id>/projects", methods=["POST"])
def create_project(org_id):
    return respond(project_service.create_project(
        user=current_user(), org_id=org_id, data=json_body()), 201)


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return respond(project_service.get_project(user=current_user(), project_id=project_id))


@project_bp.route("/projects/<int:project_id>", methods=["PATCH"])
def update_project(project_id):
    return respond(project_service.update_project(
        user=current_user(), project_id=project_id, data=json_body()))


@project_bp.route("/projects/<int:project_id>", methods=["DELETE"])
def delete_project(project_id):
    return respond(project_service.delete_project(user=current_user(), project_id=project_id))


@project_bp.route("/projects/<int:project_id>/health", methods=["GET"])
def project_health(project_id):
    return respond(project_health_service.get_project_health(
        user=current_user(), project_id=project_id))


@project_bp.route("/projects/<int:project_id>/dashboard", methods=["GET"])
def dashboard(project_id):
    return respond(project_health_service.get_dashboard_summary(
        user=current_user(), project_id=project_id))


# ── Permissions ──────────────────────────────────────────────────────────────

@project_bp.route("/projects/<int:project_id>/permissions", methods=["GET"])
def get_permissions(project_id):
    return respond(project_service.get_permissions(user=current_user(), project_id=project_id))


@project_bp.route("/projects/<int:project_id>/permissions/check", methods=["POST"])
def check_permission(project_id):
    return respond(project_service.check_permission(
        user=current_user(), project_id=project_id, data=json_body()))


# ── Team ─────────────────────────────────────────────────────────────────────

@project_bp.route("/projects/<int:project_id>/team", methods=["GET"])
def list_team(project_id):
    return respond(project_service.list_team(user=current_user(), project_id=project_id))


@project_bp.route("/projects/<int:project_id>/team", methods=["POST"])
def add_team_member(project_id):
    return respond(project_service.add_team_member(
        user=current_user(), project_id=project_id, data=json_body()), 201)


@project_bp.route("/projects/<int:project_id>/team/<int:access_id>", methods=["PATCH"])
def update_team_member(project_id, access_id):
    return respond(project_service.update_team_member(
        user=current_user(), project_id=project_id, access_id=access_id, data=json_body()))


@project_bp.route("/projects/<int:project_id>/team/<int:access_id>", methods=["DELETE"])
def remove_team_member(project_id, access_id):
    return respond(project_service.remove_team_member(
        user=current_user(), project_id=project_id, access_id=access_id))
