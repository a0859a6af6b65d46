"""
Siteline — submittal models.

A submittal is a package of product data, shop drawings or samples that
the contractor sends through a fixed review chain before procurement:

    draft → gc_review → ae_review → owner_review → complete

Each reviewer either closes the submittal with a decision (approved,
approved_as_noted, revise_resubmit, rejected) or forwards it to the next
stage. A revise/reject decision can be answered with a resubmittal: a new
row with the same number and the next revision label (Rev A, Rev B, ...).

Models:
    - Submittal
    - SubmittalReview: one row per reviewer decision (history)
    - SubmittalVersion: revision notes for resubmittals
    - SubmittalAttachment: files, tagged with the revision they belong to
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

SUBMITTAL_TYPES = ("product_data", "shop_drawings", "samples", "mixed")
SUBMITTAL_STATUSES = (
    "draft", "submitted", "gc_review", "ae_review", "owner_review",
    "approved", "approved_as_noted", "revise_resubmit", "rejected", "cancelled",
)
SUBMITTAL_STAGES = ("draft", "gc_review", "ae_review", "owner_review", "complete")
REVIEW_STAGES = ("gc_review", "ae_review", "owner_review")
REVIEW_ACTIONS = ("approved", "approved_as_noted", "revise_resubmit", "rejected", "forwarded")
ATTACHMENT_TYPES = ("product_data", "shop_drawing", "sample_photo", "specification", "other")
CLOSED_STATUSES = ("approved", "approved_as_noted", "rejected", "cancelled")


def _iso(value):
    return value.isoformat() if value else None


class Submittal(SoftDeleteMixin, db.Model):
    __tablename__ = "submittals"
    __table_args__ = (
        db.UniqueConstraint("project_id", "number", "version_number",
                            name="uq_submittal_project_number_version"),
        db.Index("ix_submittals_project_stage", "project_id", "current_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    number = db.Column(db.String(30), nullable=False, comment="{spec_section}-NNN")
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    submittal_type = db.Column(db.String(30), nullable=False)
    spec_section = db.Column(db.String(8), nullable=False, comment="CSI MasterFormat, e.g. 03 30 00")
    spec_section_title = db.Column(db.String(200), nullable=True)

    status = db.Column(db.String(30), nullable=False, default="draft")
    current_stage = db.Column(db.String(20), nullable=False, default="draft")
    version = db.Column(db.String(10), nullable=False, default="Rev 0")
    version_number = db.Column(db.Integer, nullable=False, default=0)
    parent_submittal_id = db.Column(db.Integer,
                                    db.ForeignKey("submittals.id", ondelete="SET NULL"),
                                    nullable=True)

    required_on_site = db.Column(db.Date, nullable=True)
    lead_time_days = db.Column(db.Integer, nullable=True)
    procurement_deadline = db.Column(db.Date, nullable=True,
                                     comment="required_on_site - lead_time_days")

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True, index=True)
    submitted_by_org_id = db.Column(db.Integer,
                                    db.ForeignKey("organizations.id", ondelete="SET NULL"),
                                    nullable=True)
    current_reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                                    nullable=True, index=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    current_reviewer = db.relationship("User", foreign_keys=[current_reviewer_id])
    reviews = db.relationship("SubmittalReview", back_populates="submittal",
                              order_by="SubmittalReview.reviewed_at",
                              cascade="all, delete-orphan")
    attachments = db.relationship("SubmittalAttachment", back_populates="submittal",
                                  cascade="all, delete-orphan")

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "submittal_type": self.submittal_type,
            "spec_section": self.spec_section,
            "spec_section_title": self.spec_section_title,
            "status": self.status,
            "current_stage": self.current_stage,
            "version": self.version,
            "version_number": self.version_number,
            "parent_submittal_id": self.parent_submittal_id,
            "required_on_site": _iso(self.required_on_site),
            "lead_time_days": self.lead_time_days,
            "procurement_deadline": _iso(self.procurement_deadline),
            "created_by_id": self.created_by_id,
            "submitted_by_org_id": self.submitted_by_org_id,
            "current_reviewer_id": self.current_reviewer_id,
            "submitted_at": _iso(self.submitted_at),
            "reviewed_at": _iso(self.reviewed_at),
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["reviews"] = [r.to_dict() for r in self.reviews]
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    def __repr__(self):
        return f"<Submittal {self.number} {self.version} [{self.status}/{self.current_stage}]>"


class SubmittalReview(db.Model):
    __tablename__ = "submittal_reviews"

    id = db.Column(db.Integer, primary_key=True)
    submittal_id = db.Column(db.Integer, db.ForeignKey("submittals.id", ondelete="CASCADE"),
                             nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False)
    stage = db.Column(db.String(20), nullable=False)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                            nullable=True)
    action = db.Column(db.String(30), nullable=False)
    comments = db.Column(db.Text, nullable=False)
    reviewed_at = db.Column(db.DateTime(timezone=True),
                            default=lambda: datetime.now(timezone.utc))

    submittal = db.relationship("Submittal", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "submittal_id": self.submittal_id,
            "version_number": self.version_number,
            "stage": self.stage,
            "reviewer_id": self.reviewer_id,
            "action": self.action,
            "comments": self.comments,
            "reviewed_at": _iso(self.reviewed_at),
        }


class SubmittalVersion(db.Model):
    __tablename__ = "submittal_versions"

    id = db.Column(db.Integer, primary_key=True)
    submittal_id = db.Column(db.Integer, db.ForeignKey("submittals.id", ondelete="CASCADE"),
                             nullable=False, index=True)
    version = db.Column(db.String(10), nullable=False)
    version_number = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "submittal_id": self.submittal_id,
            "version": self.version,
            "version_number": self.version_number,
            "notes": self.notes,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }


class SubmittalAttachment(db.Model):
    __tablename__ = "submittal_attachments"

    id = db.Column(db.Integer, primary_key=True)
    submittal_id = db.Column(db.Integer, db.ForeignKey("submittals.id", ondelete="CASCADE"),
                             nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False, default=0)
    attachment_type = db.Column(db.String(30), nullable=False, default="other")
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    submittal = db.relationship("Submittal", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "submittal_id": self.submittal_id,
            "version_number": self.version_number,
            "attachment_type": self.attachment_type,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
