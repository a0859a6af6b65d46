"""
Organization blueprint.

Endpoints:
    ORGS     /api/v1/organizations                          GET, POST
             /api/v1/organizations/<org_id>                 GET, PATCH, DELETE
             /api/v1/organizations/<org_id>/projects-health GET
             /api/v1/organizations/<org_id>/kpis            GET

    MEMBERS  /api/v1/organizations/<org_id>/members               GET, POST (invite)
             /api/v1/organizations/<org_id>/members/accept        POST
             /api/v1/organizations/<org_id>/members/<member_id>   PATCH, DELETE
"""

from flask import Blueprint

from app.blueprints import current_user, json_body
from app.core.actions import respond
from app.services import organization_service, project_health_service

organization_bp = Blueprint("organization", __name__, url_prefix="/api/v1")


# ── Organizations ────────────────────────────────────────────────────────────

@organization_bp.route("/organizations", methods=["GET"])
def list_organizations():
    return respond(organization_service.list_my_organizations(user=current_user()))


@organization_bp.route("/organizations", methods=["POST"])
def create_organization():
    return respond(organization_service.create_organization(
        user=current_user(), data=json_body()), 201)


@organization_bp.route("/organizations/<int:org_id>", methods=["GET"])
def get_organization(org_id):
    return respond(organization_service.get_organization(user=current_user(), org_id=org_id))


@organization_bp.route("/organizations/<int:org_id>", methods=["PATCH"])
def update_organization(org_id):
    return respond(organization_service.update_organization(
        user=current_user(), org_id=org_id, data=json_body()))


@organization_bp.route("/organizations/<int:org_id>", methods=["DELETE"])
def delete_organization(org_id):
    return respond(organization_service.delete_organization(user=current_user(), org_id=org_id))


@organization_bp.route("/organizations/<int:org_id>/projects-health", methods=["GET"])
def projects_health(org_id):
    return respond(project_health_service.get_org_projects_health(
        user=current_user(), org_id=org_id))


@organization_bp.route("/organizations/<int:org_id>/kpis", methods=["GET"])
def org_kpis(org_id):
    return respond(project_health_service.get_org_kpis(user=current_user(), org_id=org_id))


# ── Members ──────────────────────────────────────────────────────────────────

@organization_bp.route("/organizations/<int:org_id>/members", methods=["GET"])
def list_members(org_id):
    return respond(organization_service.list_members(user=current_user(), org_id=org_id))


@organization_bp.route("/organizations/<int:org_id>/members", methods=["POST"])
def invite_member(org_id):
    return respond(organization_service.invite_member(
        user=current_user(), org_id=org_id, data=json_body()), 201)


@organization_bp.route("/organizations/<int:org_id>/members/accept", methods=["POST"])
def accept_invitation(org_id):
    return respond(organization_service.accept_invitation(user=current_user(), org_id=org_id))


@organization_bp.route("/organizations/<int:org_id>/members/<int:member_id>", methods=["PATCH"])
def update_member(org_id, member_id):
    return respond(organization_service.update_member_role(
        user=current_user(), org_id=org_id, member_id=member_id, data=json_body()))


@organization_bp.route("/organizations/<int:org_id>/members/<int:member_id>", methods=["DELETE"])
def remove_member(org_id, member_id):
    return respond(organization_service.remove_member(
        user=current_user(), org_id=org_id, member_id=member_id))
