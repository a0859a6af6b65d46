"""
Siteline — identity and organization models.

Models:
    - User: login identity (email + bcrypt password hash)
    - Organization: tenant boundary; every project belongs to one
    - OrganizationMember: user ↔ organization link with an org-level role
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

ORG_ROLES = ("owner", "admin", "member")
ORG_ADMIN_ROLES = ("owner", "admin")


class User(db.Model):
    """Platform user. Email is the login handle and is stored lower-cased."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    memberships = db.relationship("OrganizationMember", back_populates="user",
                                  foreign_keys="OrganizationMember.user_id",
                                  lazy="dynamic")

    @property
    def display_name(self):
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Organization(SoftDeleteMixin, db.Model):
    """A general contractor, owner or design firm using the platform."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(30), unique=True, nullable=False, index=True,
                     comment="URL handle: lowercase letters, digits, hyphens")
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    members = db.relationship("OrganizationMember", back_populates="organization",
                              lazy="dynamic", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.slug}>"


class OrganizationMember(db.Model):
    """Membership row. ``joined_at`` stays NULL until an invite is accepted."""

    __tablename__ = "organization_members"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_orgmember_org_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer,
                                db.ForeignKey("organizations.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="member",
                     comment="owner, admin, member")
    invited_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    invited_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    joined_at = db.Column(db.DateTime(timezone=True), nullable=True)

    organization = db.relationship("Organization", back_populates="members")
    user = db.relationship("User", back_populates="memberships", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "email": self.user.email if self.user else None,
            "full_name": self.user.full_name if self.user else None,
            "role": self.role,
            "invited_by_id": self.invited_by_id,
            "invited_at": self.invited_at.isoformat() if self.invited_at else None,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f"<OrganizationMember org={self.organization_id} user={self.user_id} {self.role}>"
