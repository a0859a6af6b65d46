"""
Siteline — budget, cost, quote and invoice models.

Models:
    - ProjectBudget: allocated amount per budget category
    - BudgetAllocationHistory: audit trail of allocation changes
    - ProjectCost: manually recorded spend with receipt attachments
    - ProjectQuote: uploaded vendor quote (source of AI-extracted line items)
    - BudgetLineItem: itemised budget line (manual or extracted from a quote)
    - Invoice: uploaded vendor invoice with approval status
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

BUDGET_CATEGORIES = ("labor", "materials", "equipment", "other")
INVOICE_STATUSES = ("pending", "approved", "rejected")


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Allocation
# ═════════════════════════════════════════════════════════════════════════════


class ProjectBudget(db.Model):
    __tablename__ = "project_budgets"
    __table_args__ = (
        db.UniqueConstraint("project_id", "category", name="uq_project_budget_category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    category = db.Column(db.String(20), nullable=False,
                         comment="labor, materials, equipment, other")
    allocated_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "category": self.category,
            "allocated_amount": self.allocated_amount,
            "updated_by_id": self.updated_by_id,
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProjectBudget project={self.project_id} {self.category}={self.allocated_amount}>"


class BudgetAllocationHistory(db.Model):
    __tablename__ = "budget_allocation_history"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    category = db.Column(db.String(20), nullable=False)
    old_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    new_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    changed_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "category": self.category,
            "old_amount": self.old_amount,
            "new_amount": self.new_amount,
            "reason": self.reason,
            "changed_by_id": self.changed_by_id,
            "changed_at": _iso(self.changed_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Spend
# ═════════════════════════════════════════════════════════════════════════════


class ProjectCost(SoftDeleteMixin, db.Model):
    __tablename__ = "project_costs"
    __table_args__ = (
        db.Index("ix_project_costs_project_category", "project_id", "category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    category = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    description = db.Column(db.Text, nullable=False)
    cost_date = db.Column(db.Date, nullable=False)
    receipts = db.Column(db.JSON, default=list, comment="Storage paths of receipt files")
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
            "cost_date": _iso(self.cost_date),
            "receipts": self.receipts or [],
            "created_by_id": self.created_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProjectCost {self.id}: {self.category} {self.amount}>"


class ProjectQuote(db.Model):
    __tablename__ = "project_quotes"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    vendor_name = db.Column(db.String(200), nullable=True)
    ai_parsed = db.Column(db.Boolean, default=False, nullable=False)
    ai_confidence = db.Column(db.Float, nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "vendor_name": self.vendor_name,
            "ai_parsed": self.ai_parsed,
            "ai_confidence": self.ai_confidence,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }


class BudgetLineItem(db.Model):
    __tablename__ = "budget_line_items"
    __table_args__ = (
        db.Index("ix_budget_line_items_project_line", "project_id", "line_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("project_quotes.id", ondelete="SET NULL"),
                         nullable=True, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Float, nullable=True)
    unit_of_measure = db.Column(db.String(50), nullable=True)
    unit_price = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    line_total = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    category = db.Column(db.String(20), nullable=False, default="other")
    ai_confidence = db.Column(db.Float, nullable=True)
    original_extraction = db.Column(db.JSON, nullable=True,
                                    comment="Raw AI output kept for audit after user edits")
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "quote_id": self.quote_id,
            "line_number": self.line_number,
            "description": self.description,
            "quantity": self.quantity,
            "unit_of_measure": self.unit_of_measure,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "category": self.category,
            "ai_confidence": self.ai_confidence,
            "is_verified": self.is_verified,
            "created_by_id": self.created_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Invoice(SoftDeleteMixin, db.Model):
    """Vendor invoice. Counts toward spend only once approved."""

    __tablename__ = "project_invoices"
    __table_args__ = (
        db.Index("ix_project_invoices_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    budget_category = db.Column(db.String(20), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    vendor_name = db.Column(db.String(200), nullable=True)
    invoice_number = db.Column(db.String(100), nullable=True)
    invoice_date = db.Column(db.Date, nullable=True)
    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending, approved, rejected")

    ai_parsed = db.Column(db.Boolean, default=False, nullable=False)
    ai_confidence = db.Column(db.Float, nullable=True)
    ai_raw = db.Column(db.JSON, nullable=True)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(500), nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "budget_category": self.budget_category,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "vendor_name": self.vendor_name,
            "invoice_number": self.invoice_number,
            "invoice_date": _iso(self.invoice_date),
            "amount": self.amount,
            "description": self.description,
            "status": self.status,
            "ai_parsed": self.ai_parsed,
            "ai_confidence": self.ai_confidence,
            "approved_by_id": self.approved_by_id,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Invoice {self.id}: {self.vendor_name} {self.amount} [{self.status}]>"
