"""
Soft delete mixin.

Projects, organizations, costs, invoices, RFIs, submittals and change
orders are never physically removed: they get a ``deleted_at`` stamp and
disappear from every list and lookup that goes through ``query_active``.

Usage:
    class Rfi(SoftDeleteMixin, db.Model):
        ...

    rfi.soft_delete()
    db.session.commit()

    Rfi.query_active().filter_by(project_id=pid).all()
"""

from datetime import datetime, timezone

from app.models import db


class SoftDeleteMixin:
    """Adds ``deleted_at`` plus active/deleted query helpers."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Query that hides soft-deleted rows."""
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def get_active(cls, pk):
        """Return the row with primary key ``pk`` unless it is deleted."""
        obj = db.session.get(cls, pk)
        if obj is None or obj.deleted_at is not None:
            return None
        return obj
