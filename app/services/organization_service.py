"""
Organization service.

Organizations own projects. Membership roles: owner (creator), admin,
member. Invites attach an existing user with ``joined_at`` NULL; the
membership only counts once the invitee accepts.
"""

import logging

from app.core.actions import server_action
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import Organization, OrganizationMember, User
from app.models.project import Project, ProjectAccess
from app.services import notifications, permission_service
from app.utils.errors import ErrorMessages
from app.utils.helpers import utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

SLUG_PATTERN = r"^[a-z0-9-]+$"
INVITE_ROLES = ("admin", "member")


def _get_org(org_id):
    org = Organization.get_active(org_id)
    if org is None:
        raise NotFoundError("Organization", org_id)
    return org


def _validate_slug(v):
    slug = v.string("slug", required=True, min_len=3, max_len=30, lower=True,
                    pattern=SLUG_PATTERN,
                    pattern_message="Slug must contain only lowercase letters, numbers, and hyphens")
    if slug and "slug" not in v.errors and (slug.startswith("-") or slug.endswith("-")):
        v.add_error("slug", "Slug cannot start or end with a hyphen")
    return slug


# ── Organizations ────────────────────────────────────────────────────────────

@server_action
def create_organization(*, user, data):
    v = FieldValidator(data)
    name = v.string("name", required=True, min_len=2, max_len=100)
    slug = _validate_slug(v)
    v.raise_if_errors()

    if Organization.query.filter_by(slug=slug).first():
        raise ValidationError(ErrorMessages.ORG_SLUG_IN_USE,
                              details={"slug": [ErrorMessages.ORG_SLUG_IN_USE]})

    org = Organization(name=name, slug=slug, created_by_id=user.id)
    db.session.add(org)
    db.session.flush()
    now = utcnow()
    db.session.add(OrganizationMember(
        organization_id=org.id, user_id=user.id, role="owner",
        invited_by_id=user.id, invited_at=now, joined_at=now,
    ))
    db.session.commit()
    logger.info("Organization %s created", slug, extra={"user_id": user.id, "org_id": org.id})
    return org.to_dict()


@server_action
def list_my_organizations(*, user):
    rows = (
        db.session.query(Organization, OrganizationMember)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .filter(OrganizationMember.user_id == user.id, Organization.deleted_at.is_(None))
        .order_by(Organization.name)
        .all()
    )
    return [
        {**org.to_dict(), "role": member.role, "joined": member.joined_at is not None}
        for org, member in rows
    ]


@server_action
def get_organization(*, user, org_id):
    org = _get_org(org_id)
    role = permission_service.ensure_org_member(user, org_id)
    body = org.to_dict()
    body["role"] = role
    body["member_count"] = org.members.filter(OrganizationMember.joined_at.isnot(None)).count()
    return body


@server_action
def update_organization(*, user, org_id, data):
    org = _get_org(org_id)
    permission_service.ensure_org_member(user, org_id, admin=True)
    v = FieldValidator(data, partial=True)
    name = v.string("name", min_len=2, max_len=100)
    v.raise_if_errors()
    if name is not None:
        org.name = name
    db.session.commit()
    return org.to_dict()


@server_action
def delete_organization(*, user, org_id):
    org = _get_org(org_id)
    role = permission_service.ensure_org_member(user, org_id)
    if role != "owner":
        raise ForbiddenError(ErrorMessages.ORG_OWNER_REQUIRED, public=True)
    org.soft_delete()
    db.session.commit()
    permission_service.invalidate_all_cache()
    logger.info("Organization %s deleted", org.slug, extra={"user_id": user.id, "org_id": org.id})
    return {"id": org.id, "deleted": True}


# ── Members ──────────────────────────────────────────────────────────────────

@server_action
def list_members(*, user, org_id):
    _get_org(org_id)
    permission_service.ensure_org_member(user, org_id)
    members = (OrganizationMember.query.filter_by(organization_id=org_id)
               .order_by(OrganizationMember.invited_at).all())
    return [m.to_dict() for m in members]


@server_action
def invite_member(*, user, org_id, data):
    org = _get_org(org_id)
    permission_service.ensure_org_member(user, org_id, admin=True)
    v = FieldValidator(data)
    email = v.email("email", required=True)
    role = v.choice("role", INVITE_ROLES, default="member")
    v.raise_if_errors()

    invitee = User.query.filter_by(email=email).first()
    if invitee is None:
        raise ValidationError("User not found with this email address",
                              details={"email": ["User not found with this email address"]})
    if OrganizationMember.query.filter_by(organization_id=org_id, user_id=invitee.id).first():
        raise ConflictError("OrganizationMember", "email", email)

    member = OrganizationMember(organization_id=org_id, user_id=invitee.id, role=role,
                                invited_by_id=user.id, invited_at=utcnow())
    db.session.add(member)
    db.session.commit()
    logger.info("Invited %s to org %s as %s", email, org_id, role,
                extra={"user_id": user.id, "org_id": org_id})
    notifications.notify_org_invite(org, invitee, user, role)
    return member.to_dict()


@server_action
def accept_invitation(*, user, org_id):
    _get_org(org_id)
    member = OrganizationMember.query.filter_by(organization_id=org_id, user_id=user.id).first()
    if member is None:
        raise NotFoundError("Invitation", org_id)
    if member.joined_at is None:
        member.joined_at = utcnow()
        db.session.commit()
        permission_service.invalidate_cache(user.id)
    return member.to_dict()


def _get_member(org_id, member_id):
    member = OrganizationMember.query.filter_by(id=member_id, organization_id=org_id).first()
    if member is None:
        raise NotFoundError("Member", member_id)
    return member


@server_action
def update_member_role(*, user, org_id, member_id, data):
    _get_org(org_id)
    permission_service.ensure_org_member(user, org_id, admin=True)
    member = _get_member(org_id, member_id)
    v = FieldValidator(data)
    role = v.choice("role", INVITE_ROLES, required=True)
    v.raise_if_errors()

    if member.user_id == user.id:
        raise ValidationError(ErrorMessages.MEMBER_CANNOT_CHANGE_OWN_ROLE)
    if member.role == "owner":
        raise ValidationError("Cannot change the organization owner's role")

    member.role = role
    db.session.commit()
    permission_service.invalidate_cache(member.user_id)
    return member.to_dict()


@server_action
def remove_member(*, user, org_id, member_id):
    _get_org(org_id)
    permission_service.ensure_org_member(user, org_id, admin=True)
    member = _get_member(org_id, member_id)
    if member.role == "owner":
        raise ValidationError(ErrorMessages.MEMBER_CANNOT_REMOVE_OWNER)

    removed_user_id = member.user_id
    project_ids = [pid for (pid,) in
                   db.session.query(Project.id).filter(Project.organization_id == org_id)]
    if project_ids:
        ProjectAccess.query.filter(ProjectAccess.user_id == removed_user_id,
                                   ProjectAccess.project_id.in_(project_ids)).delete(synchronize_session=False)
    db.session.delete(member)
    db.session.commit()
    permission_service.invalidate_cache(removed_user_id)
    logger.info("Removed member %s from org %s", removed_user_id, org_id,
                extra={"user_id": user.id, "org_id": org_id})
    return {"id": member_id, "removed": True}
