"""Project CRUD and team access, scoped to an organization."""

import logging

from app.core.actions import server_action
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import OrganizationMember
from app.models.project import PROJECT_ROLES, PROJECT_STATUSES, Project, ProjectAccess
from app.services import permission_service
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

LAST_MANAGER_ERROR = "Cannot remove the last project manager. Assign another manager first."


def _validate_project(v):
    v.string("name", required=True, min_len=2, max_len=200)
    v.string("number", max_len=50)
    v.string("address", max_len=500)
    v.choice("status", PROJECT_STATUSES, required=v.partial)
    v.money("budget", min_value=0)
    start = v.date("start_date")
    end = v.date("end_date")
    v.number("latitude", min_value=-90, max_value=90)
    v.number("longitude", min_value=-180, max_value=180)
    return start, end


def _check_dates(v, start, end):
    if start and end and start > end:
        v.add_error("end_date", "End date must be after start date")


@server_action
def create_project(*, user, org_id, data):
    permission_service.ensure_org_member(user, org_id, admin=True)
    v = FieldValidator(data)
    start, end = _validate_project(v)
    _check_dates(v, start, end)
    v.raise_if_errors()

    fields = dict(v.cleaned)
    fields["status"] = fields.get("status") or "planning"
    project = Project(organization_id=org_id, created_by_id=user.id, **fields)
    db.session.add(project)
    db.session.flush()
    db.session.add(ProjectAccess(project_id=project.id, user_id=user.id,
                                 role="manager", granted_by_id=user.id))
    db.session.commit()
    permission_service.invalidate_cache(user.id)
    logger.info("Project %s created", project.name,
                extra={"user_id": user.id, "org_id": org_id, "project_id": project.id})
    return project.to_dict()


@server_action
def list_projects(*, user, org_id, status=None):
    permission_service.ensure_org_member(user, org_id)
    ids = permission_service.accessible_project_ids(user.id, org_id)
    if not ids:
        return []
    query = Project.query_active().filter(Project.id.in_(ids))
    if status:
        query = query.filter(Project.status == status)
    projects = query.order_by(Project.created_at.desc()).all()
    return [
        {**p.to_dict(), "role": permission_service.get_project_role(user.id, p.id)}
        for p in projects
    ]


@server_action
def get_project(*, user, project_id):
    project = permission_service.ensure_project_access(user, project_id)
    body = project.to_dict()
    body["role"] = permission_service.get_project_role(user.id, project_id)
    body["permissions"] = sorted(permission_service.get_user_permissions(user.id, project_id))
    return body


@server_action
def update_project(*, user, project_id, data):
    project = permission_service.ensure_project_access(user, project_id, "edit_project")
    v = FieldValidator(data, partial=True)
    start, end = _validate_project(v)
    _check_dates(v, start if "start_date" in v.cleaned else project.start_date,
                 end if "end_date" in v.cleaned else project.end_date)
    v.raise_if_errors()

    for key, value in v.cleaned.items():
        setattr(project, key, value)
    db.session.commit()
    return project.to_dict()


@server_action
def delete_project(*, user, project_id):
    project = permission_service.ensure_project_access(user, project_id, "delete_project")
    project.soft_delete()
    db.session.commit()
    permission_service.invalidate_project_cache(project_id)
    logger.info("Project %s deleted", project_id,
                extra={"user_id": user.id, "project_id": project_id})
    return {"id": project_id, "deleted": True}


# ── Permissions ──────────────────────────────────────────────────────────────

@server_action
def get_permissions(*, user, project_id):
    permission_service.ensure_project_access(user, project_id)
    return {
        "role": permission_service.get_project_role(user.id, project_id),
        "permissions": sorted(permission_service.get_user_permissions(user.id, project_id)),
    }


@server_action
def check_permission(*, user, project_id, data):
    v = FieldValidator(data)
    codename = v.choice("permission", sorted(permission_service.ALL_PERMISSIONS), required=True)
    v.raise_if_errors()
    permission_service.ensure_project_access(user, project_id)
    return {"permission": codename,
            "allowed": permission_service.has_permission(user.id, project_id, codename)}


# ── Team ─────────────────────────────────────────────────────────────────────

@server_action
def list_team(*, user, project_id):
    permission_service.ensure_project_access(user, project_id, "view_team")
    rows = (ProjectAccess.query.filter_by(project_id=project_id)
            .order_by(ProjectAccess.created_at).all())
    return [row.to_dict() for row in rows]


@server_action
def add_team_member(*, user, project_id, data):
    project = permission_service.ensure_project_access(user, project_id, "manage_team")
    v = FieldValidator(data)
    target_id = v.integer_id("user_id", required=True)
    role = v.choice("role", PROJECT_ROLES, required=True)
    trade = v.string("trade", max_len=100)
    v.raise_if_errors()

    org_member = OrganizationMember.query.filter_by(
        organization_id=project.organization_id, user_id=target_id).first()
    if org_member is None or org_member.joined_at is None:
        raise ValidationError("User must be an organization member before being added to projects")
    if ProjectAccess.query.filter_by(project_id=project_id, user_id=target_id).first():
        raise ConflictError("ProjectAccess", "user_id", target_id)

    access = ProjectAccess(project_id=project_id, user_id=target_id, role=role,
                           trade=trade, granted_by_id=user.id)
    db.session.add(access)
    db.session.commit()
    permission_service.invalidate_cache(target_id)
    logger.info("Granted %s on project %s to user %s", role, project_id, target_id,
                extra={"user_id": user.id, "project_id": project_id})
    return access.to_dict()


def _get_access(project_id, access_id):
    access = ProjectAccess.query.filter_by(id=access_id, project_id=project_id).first()
    if access is None:
        raise NotFoundError("Project access record", access_id)
    return access


def _is_last_manager(access):
    if access.role != "manager":
        return False
    managers = ProjectAccess.query.filter_by(project_id=access.project_id, role="manager").count()
    return managers <= 1


@server_action
def update_team_member(*, user, project_id, access_id, data):
    permission_service.ensure_project_access(user, project_id, "manage_team")
    access = _get_access(project_id, access_id)
    v = FieldValidator(data, partial=True)
    role = v.choice("role", PROJECT_ROLES, required=True)
    v.string("trade", max_len=100)
    v.raise_if_errors()

    if role is not None and role != "manager" and _is_last_manager(access):
        raise ValidationError(LAST_MANAGER_ERROR)
    for key, value in v.cleaned.items():
        setattr(access, key, value)
    db.session.commit()
    permission_service.invalidate_cache(access.user_id)
    return access.to_dict()


@server_action
def remove_team_member(*, user, project_id, access_id):
    permission_service.ensure_project_access(user, project_id, "manage_team")
    access = _get_access(project_id, access_id)
    if _is_last_manager(access):
        raise ValidationError(LAST_MANAGER_ERROR)
    removed_user_id = access.user_id
    db.session.delete(access)
    db.session.commit()
    permission_service.invalidate_cache(removed_user_id)
    return {"id": access_id, "removed": True}
