"""
Siteline — RFI (Request for Information) models.

Models:
    - Rfi: question raised on a project, numbered RFI-001, RFI-002, ...
    - RfiResponse: threaded answer; one may be flagged as the official answer
    - RfiAttachment: supporting file on the RFI or on a specific response

Lifecycle:
    draft → submitted → under_review → answered → closed
    (cancelled reachable from any open status)
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

RFI_STATUSES = ("draft", "submitted", "under_review", "answered", "closed", "cancelled")
RFI_PRIORITIES = ("low", "medium", "high", "critical")
RFI_OPEN_STATUSES = ("submitted", "under_review")


def _iso(value):
    return value.isoformat() if value else None


class Rfi(SoftDeleteMixin, db.Model):
    __tablename__ = "rfis"
    __table_args__ = (
        db.UniqueConstraint("project_id", "number", name="uq_rfi_project_number"),
        db.Index("ix_rfis_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    number = db.Column(db.String(20), nullable=False, comment="RFI-001 style, per project")
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    discipline = db.Column(db.String(100), nullable=True)
    spec_section = db.Column(db.String(100), nullable=True)
    drawing_reference = db.Column(db.String(500), nullable=True)
    cost_impact = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    schedule_impact = db.Column(db.Integer, nullable=True, comment="Days")

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True, index=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True, index=True)
    assigned_to_org_id = db.Column(db.Integer,
                                   db.ForeignKey("organizations.id", ondelete="SET NULL"),
                                   nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    response_due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    answered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    responses = db.relationship("RfiResponse", back_populates="rfi",
                                order_by="RfiResponse.created_at",
                                cascade="all, delete-orphan")
    attachments = db.relationship("RfiAttachment", back_populates="rfi",
                                  cascade="all, delete-orphan")

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "discipline": self.discipline,
            "spec_section": self.spec_section,
            "drawing_reference": self.drawing_reference,
            "cost_impact": self.cost_impact,
            "schedule_impact": self.schedule_impact,
            "created_by_id": self.created_by_id,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to_org_id": self.assigned_to_org_id,
            "due_date": _iso(self.due_date),
            "response_due_date": _iso(self.response_due_date),
            "submitted_at": _iso(self.submitted_at),
            "answered_at": _iso(self.answered_at),
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["responses"] = [r.to_dict() for r in self.responses]
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    def __repr__(self):
        return f"<Rfi {self.number} [{self.status}]>"


class RfiResponse(db.Model):
    __tablename__ = "rfi_responses"

    id = db.Column(db.Integer, primary_key=True)
    rfi_id = db.Column(db.Integer, db.ForeignKey("rfis.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                          nullable=True)
    content = db.Column(db.Text, nullable=False)
    is_official_answer = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    rfi = db.relationship("Rfi", back_populates="responses")
    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "rfi_id": self.rfi_id,
            "author_id": self.author_id,
            "author_name": self.author.display_name if self.author else None,
            "content": self.content,
            "is_official_answer": self.is_official_answer,
            "created_at": _iso(self.created_at),
        }


class RfiAttachment(db.Model):
    __tablename__ = "rfi_attachments"

    id = db.Column(db.Integer, primary_key=True)
    rfi_id = db.Column(db.Integer, db.ForeignKey("rfis.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    response_id = db.Column(db.Integer, db.ForeignKey("rfi_responses.id", ondelete="SET NULL"),
                            nullable=True)
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    drawing_sheet = db.Column(db.String(100), nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    rfi = db.relationship("Rfi", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "rfi_id": self.rfi_id,
            "response_id": self.response_id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "drawing_sheet": self.drawing_sheet,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
