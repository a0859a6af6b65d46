"""
Siteline — change order models.

Models:
    - ChangeOrder: scope/cost/schedule change, numbered CO-001, CO-002, ...
    - ChangeOrderLineItem: priced line, scoped to a CO version
    - ChangeOrderApproval: one approval step (gc_review, owner_approval, ...)
    - ChangeOrderVersion: snapshot written when a rejected CO is revised
    - ChangeOrderAttachment: quotes, drawings, photos, contracts

Lifecycle:
    contemplated → potential → proposed → approved → invoiced
                                        ↘ rejected → (new version) potential
    cancelled reachable from anything but invoiced
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

CO_STATUSES = ("contemplated", "potential", "proposed", "approved", "rejected",
               "cancelled", "invoiced")
CO_TYPES = ("scope_change", "design_change", "site_condition", "owner_requested",
            "time_extension", "cost_only", "schedule_only")
ORIGINATING_EVENT_TYPES = ("rfi", "submittal", "daily_report", "manual")
APPROVAL_STAGES = ("gc_review", "owner_approval", "architect_approval")
APPROVAL_STATUSES = ("pending", "approved", "rejected", "skipped")
CO_ATTACHMENT_CATEGORIES = ("quote", "drawing", "photo", "contract", "other")
DRAFT_STATUSES = ("contemplated", "potential")
LOCKED_STATUSES = ("approved", "invoiced")


def _iso(value):
    return value.isoformat() if value else None


class ChangeOrder(SoftDeleteMixin, db.Model):
    __tablename__ = "change_orders"
    __table_args__ = (
        db.UniqueConstraint("project_id", "number", name="uq_change_order_project_number"),
        db.Index("ix_change_orders_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    number = db.Column(db.String(20), nullable=False, comment="CO-001 style, per project")
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="contemplated")
    originating_event_type = db.Column(db.String(20), nullable=True,
                                       comment="rfi, submittal, daily_report, manual")
    originating_event_id = db.Column(db.Integer, nullable=True)

    cost_impact = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    schedule_impact_days = db.Column(db.Integer, nullable=True)
    new_completion_date = db.Column(db.Date, nullable=True)
    current_version = db.Column(db.Integer, nullable=False, default=1)
    custom_fields = db.Column(db.JSON, default=dict)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(2000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    line_items = db.relationship("ChangeOrderLineItem", back_populates="change_order",
                                 order_by="ChangeOrderLineItem.sort_order",
                                 cascade="all, delete-orphan", lazy="dynamic")
    approvals = db.relationship("ChangeOrderApproval", back_populates="change_order",
                                order_by="ChangeOrderApproval.id",
                                cascade="all, delete-orphan")
    versions = db.relationship("ChangeOrderVersion", back_populates="change_order",
                               order_by="ChangeOrderVersion.version_number",
                               cascade="all, delete-orphan")
    attachments = db.relationship("ChangeOrderAttachment", back_populates="change_order",
                                  cascade="all, delete-orphan")

    def current_line_items(self):
        return self.line_items.filter_by(version=self.current_version).all()

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "originating_event_type": self.originating_event_type,
            "originating_event_id": self.originating_event_id,
            "cost_impact": self.cost_impact,
            "schedule_impact_days": self.schedule_impact_days,
            "new_completion_date": _iso(self.new_completion_date),
            "current_version": self.current_version,
            "custom_fields": self.custom_fields or {},
            "created_by_id": self.created_by_id,
            "submitted_at": _iso(self.submitted_at),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["line_items"] = [li.to_dict() for li in self.current_line_items()]
            d["approvals"] = [a.to_dict() for a in self.approvals]
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    def __repr__(self):
        return f"<ChangeOrder {self.number} v{self.current_version} [{self.status}]>"


class ChangeOrderLineItem(db.Model):
    __tablename__ = "change_order_line_items"
    __table_args__ = (
        db.Index("ix_co_line_items_co_version", "change_order_id", "version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    change_order_id = db.Column(db.Integer,
                                db.ForeignKey("change_orders.id", ondelete="CASCADE"),
                                nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    description = db.Column(db.String(1000), nullable=False)
    csi_section = db.Column(db.String(20), nullable=True)
    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(50), nullable=False, default="ea")
    unit_cost = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    sub_cost = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    gc_markup_percent = db.Column(db.Float, nullable=False, default=0)
    tax_rate = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    change_order = db.relationship("ChangeOrder", back_populates="line_items")

    def to_dict(self):
        return {
            "id": self.id,
            "change_order_id": self.change_order_id,
            "version": self.version,
            "description": self.description,
            "csi_section": self.csi_section,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_cost": self.unit_cost,
            "sub_cost": self.sub_cost,
            "gc_markup_percent": self.gc_markup_percent,
            "tax_rate": self.tax_rate,
            "total": self.total,
            "sort_order": self.sort_order,
        }


class ChangeOrderApproval(db.Model):
    __tablename__ = "change_order_approvals"

    id = db.Column(db.Integer, primary_key=True)
    change_order_id = db.Column(db.Integer,
                                db.ForeignKey("change_orders.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False)
    stage = db.Column(db.String(30), nullable=False, default="gc_review")
    status = db.Column(db.String(20), nullable=False, default="pending")
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                            nullable=True)
    decision_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(2000), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    change_order = db.relationship("ChangeOrder", back_populates="approvals")

    def to_dict(self):
        return {
            "id": self.id,
            "change_order_id": self.change_order_id,
            "version": self.version,
            "stage": self.stage,
            "status": self.status,
            "approver_id": self.approver_id,
            "decision_at": _iso(self.decision_at),
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


class ChangeOrderVersion(db.Model):
    __tablename__ = "change_order_versions"
    __table_args__ = (
        db.UniqueConstraint("change_order_id", "version_number", name="uq_co_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    change_order_id = db.Column(db.Integer,
                                db.ForeignKey("change_orders.id", ondelete="CASCADE"),
                                nullable=False)
    version_number = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(2000), nullable=False)
    cost_impact = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    schedule_impact_days = db.Column(db.Integer, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    change_order = db.relationship("ChangeOrder", back_populates="versions")

    def to_dict(self):
        return {
            "id": self.id,
            "change_order_id": self.change_order_id,
            "version_number": self.version_number,
            "reason": self.reason,
            "cost_impact": self.cost_impact,
            "schedule_impact_days": self.schedule_impact_days,
            "created_by_id": self.created_by_id,
            "created_at": _iso(self.created_at),
        }


class ChangeOrderAttachment(db.Model):
    __tablename__ = "change_order_attachments"

    id = db.Column(db.Integer, primary_key=True)
    change_order_id = db.Column(db.Integer,
                                db.ForeignKey("change_orders.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    category = db.Column(db.String(20), nullable=False, default="other")
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    change_order = db.relationship("ChangeOrder", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "change_order_id": self.change_order_id,
            "version": self.version,
            "category": self.category,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
