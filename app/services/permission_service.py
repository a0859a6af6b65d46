"""
Permission Service — project-scoped RBAC with an in-process cache.

Two role layers decide what a user may do on a project:

  organization role (owner, admin, member)   — from OrganizationMember
  project role (manager, supervisor, viewer) — from ProjectAccess

Evaluation is deny-by-default:
  - org owners/admins get every permission on their organization's projects
  - otherwise the project role's codename set applies
  - no ProjectAccess row and no admin org role → no access at all

Results are cached per (user, project) for CACHE_TTL seconds and must be
invalidated whenever team membership or roles change.
"""

import logging
import threading
import time
from typing import Optional

from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.auth import ORG_ADMIN_ROLES, OrganizationMember
from app.models.project import Project, ProjectAccess
from app.utils.errors import ErrorMessages

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

# ── Permission codenames ─────────────────────────────────────────────────

ALL_PERMISSIONS = frozenset({
    "view_project", "edit_project", "delete_project",
    "view_budget", "edit_budget",
    "view_costs", "create_cost", "edit_cost", "delete_cost",
    "view_invoices", "upload_invoice", "approve_invoice",
    "view_change_orders", "create_change_order", "approve_change_order",
    "view_daily_reports", "create_daily_report", "edit_daily_report", "approve_daily_report",
    "view_rfis", "submit_rfi", "respond_to_rfi", "close_rfi",
    "view_submittals", "create_submittal", "review_submittal",
    "view_team", "manage_team",
})

_VIEW_PERMISSIONS = frozenset({
    "view_project", "view_budget", "view_costs", "view_invoices",
    "view_change_orders", "view_daily_reports", "view_rfis",
    "view_submittals", "view_team",
})

ROLE_PERMISSIONS: dict[str, frozenset] = {
    "manager": ALL_PERMISSIONS,
    "supervisor": _VIEW_PERMISSIONS | {
        "edit_budget", "create_cost", "edit_cost", "upload_invoice",
        "create_change_order", "create_daily_report", "edit_daily_report",
        "submit_rfi", "respond_to_rfi", "create_submittal", "review_submittal",
    },
    "viewer": _VIEW_PERMISSIONS | {"respond_to_rfi", "review_submittal"},
}

# Cache key: (user_id, project_id) → (cached_at, role, permissions)
_permission_cache: dict[tuple[int, int], tuple[float, Optional[str], frozenset]] = {}
_cache_lock = threading.Lock()


def _get_cached(key):
    with _cache_lock:
        entry = _permission_cache.get(key)
        if entry is None:
            return None
        cached_at, role, perms = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[key]
            return None
        return role, perms


def _set_cached(key, role, perms):
    with _cache_lock:
        _permission_cache[key] = (time.time(), role, perms)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        for k in [k for k in _permission_cache if k[0] == user_id]:
            _permission_cache.pop(k, None)


def invalidate_project_cache(project_id: int) -> None:
    with _cache_lock:
        for k in [k for k in _permission_cache if k[1] == project_id]:
            _permission_cache.pop(k, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


# ═════════════════════════════════════════════════════════════════════════════
# Role resolution
# ═════════════════════════════════════════════════════════════════════════════


def get_org_role(user_id: int, org_id: int) -> Optional[str]:
    """Role of a joined member, or None (pending invites do not count)."""
    member = OrganizationMember.query.filter(
        OrganizationMember.organization_id == org_id,
        OrganizationMember.user_id == user_id,
        OrganizationMember.joined_at.isnot(None),
    ).first()
    return member.role if member else None


def _resolve(user_id: int, project_id: int) -> tuple[Optional[str], frozenset]:
    key = (user_id, project_id)
    cached = _get_cached(key)
    if cached is not None:
        return cached

    project = Project.get_active(project_id)
    if project is None:
        return None, frozenset()

    access = ProjectAccess.query.filter_by(project_id=project_id, user_id=user_id).first()
    role = access.role if access else None
    perms = ROLE_PERMISSIONS.get(role, frozenset())

    org_role = get_org_role(user_id, project.organization_id)
    if org_role in ORG_ADMIN_ROLES:
        perms = ALL_PERMISSIONS
        role = role or "manager"

    _set_cached(key, role, perms)
    return role, perms


def get_project_role(user_id: int, project_id: int) -> Optional[str]:
    """Effective project role ("manager" for org admins without an explicit grant)."""
    return _resolve(user_id, project_id)[0]


def get_user_permissions(user_id: int, project_id: int) -> set[str]:
    return set(_resolve(user_id, project_id)[1])


def has_permission(user_id: int, project_id: int, codename: str) -> bool:
    return codename in _resolve(user_id, project_id)[1]


def can_access_project(user_id: int, project_id: int) -> bool:
    return bool(_resolve(user_id, project_id)[1])


def is_project_manager(user_id: int, project_id: int) -> bool:
    return get_project_role(user_id, project_id) == "manager"


# ═════════════════════════════════════════════════════════════════════════════
# Service-layer guards (raise instead of returning bools)
# ═════════════════════════════════════════════════════════════════════════════


def ensure_project_access(user, project_id: int, permission: str | None = None) -> Project:
    """Return the active project or raise.

    NotFoundError when the project does not exist; ForbiddenError (with the
    user-facing access message) when the user has no access or lacks
    ``permission``.
    """
    project = Project.get_active(project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    if not can_access_project(user.id, project_id):
        logger.warning("User %s denied access to project %s", user.id, project_id,
                       extra={"user_id": user.id, "project_id": project_id})
        raise ForbiddenError(ErrorMessages.PROJECT_NO_ACCESS, public=True)
    if permission and not has_permission(user.id, project_id, permission):
        logger.info("User %s lacks %s on project %s", user.id, permission, project_id,
                    extra={"user_id": user.id, "project_id": project_id})
        raise ForbiddenError(f"Missing permission {permission}")
    return project


def ensure_org_member(user, org_id: int, *, admin: bool = False) -> str:
    """Return the caller's org role or raise (not-found hides foreign orgs)."""
    role = get_org_role(user.id, org_id)
    if role is None:
        raise NotFoundError("Organization", org_id)
    if admin and role not in ORG_ADMIN_ROLES:
        raise ForbiddenError(ErrorMessages.ORG_ADMIN_REQUIRED, public=True)
    return role


def accessible_project_ids(user_id: int, org_id: int) -> list[int]:
    """Project ids in ``org_id`` the user can see."""
    query = Project.query_active().filter(Project.organization_id == org_id)
    if get_org_role(user_id, org_id) not in ORG_ADMIN_ROLES:
        query = query.join(ProjectAccess, ProjectAccess.project_id == Project.id).filter(
            ProjectAccess.user_id == user_id
        )
    return [pid for (pid,) in query.with_entities(Project.id).all()]
