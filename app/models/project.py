"""
Siteline — project and team-access models.

Models:
    - Project: a construction job owned by an organization
    - ProjectAccess: per-project role grant (manager, supervisor, viewer)
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = ("planning", "active", "on_hold", "completed", "archived")
PROJECT_ROLES = ("manager", "supervisor", "viewer")


class Project(SoftDeleteMixin, db.Model):
    """Construction project. ``budget`` is the contract value used as the allocation cap."""

    __tablename__ = "projects"
    __table_args__ = (
        db.Index("ix_projects_org_status", "organization_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer,
                                db.ForeignKey("organizations.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    number = db.Column(db.String(50), nullable=True, comment="Job number used by accounting")
    address = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planning")
    budget = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    latitude = db.Column(db.Float, nullable=True, comment="Site location for weather lookups")
    longitude = db.Column(db.Float, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization")
    access = db.relationship("ProjectAccess", back_populates="project",
                             lazy="dynamic", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "number": self.number,
            "address": self.address,
            "status": self.status,
            "budget": self.budget,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectAccess(db.Model):
    """Grants a user a role on one project. ``trade`` is informational (e.g. Electrical)."""

    __tablename__ = "project_access"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_access_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="viewer",
                     comment="manager, supervisor, viewer")
    trade = db.Column(db.String(100), nullable=True)
    granted_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project", back_populates="access")
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "email": self.user.email if self.user else None,
            "full_name": self.user.full_name if self.user else None,
            "role": self.role,
            "trade": self.trade,
            "granted_by_id": self.granted_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ProjectAccess project={self.project_id} user={self.user_id} {self.role}>"
