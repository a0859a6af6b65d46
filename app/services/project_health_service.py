"""
Project health and dashboard summaries.

Health compares total spend (costs + approved invoices) against the
project budget: critical at 90 %, warning at 70 %, otherwise healthy.
The dashboard summary counts RFIs, submittals, change orders and daily
reports by status for one project.
Organization KPIs roll the same numbers up over every project the caller
can see in one organization.
"""

import logging

from sqlalchemy import func

from app.core.actions import server_action
from app.models import db
from app.models.auth import OrganizationMember
from app.models.budget import BUDGET_CATEGORIES, Invoice
from app.models.change_order import ChangeOrder
from app.models.daily_report import DailyReport
from app.models.project import Project
from app.models.rfi import RFI_OPEN_STATUSES, Rfi
from app.models.submittal import REVIEW_STAGES, Submittal
from app.services import budget_service, permission_service, rfi_service
from app.utils.helpers import round_money

logger = logging.getLogger(__name__)

CRITICAL_PERCENT = 90
WARNING_PERCENT = 70


def health_status(percent_spent):
    if percent_spent >= CRITICAL_PERCENT:
        return "critical"
    if percent_spent >= WARNING_PERCENT:
        return "warning"
    return "healthy"


def _invoice_stats(project_id):
    rows = (db.session.query(Invoice.status, func.count(Invoice.id), func.max(Invoice.created_at))
            .filter(Invoice.project_id == project_id, Invoice.deleted_at.is_(None))
            .group_by(Invoice.status).all())
    counts = {"total": 0, "approved": 0, "pending": 0, "rejected": 0}
    latest = None
    for status, count, created in rows:
        counts[status] = counts.get(status, 0) + count
        counts["total"] += count
        if created is not None and (latest is None or created > latest):
            latest = created
    return counts, latest


def project_health(project):
    """Health snapshot for one project (no permission check)."""
    allocated = budget_service.allocated_by_category(project.id)
    spent = budget_service.spent_by_category(project.id)
    total_spent = sum(spent.values())
    total_allocated = sum(allocated.values())
    budget = float(project.budget or 0)
    percent = round(total_spent / budget * 100, 2) if budget > 0 else 0
    invoices, latest = _invoice_stats(project.id)
    return {
        "id": project.id,
        "name": project.name,
        "number": project.number,
        "status": project.status,
        "budget": round_money(budget),
        "total_spent": round_money(total_spent),
        "total_allocated": round_money(total_allocated),
        "percent_spent": percent,
        "health_status": health_status(percent),
        "invoice_count": invoices,
        "latest_invoice_date": latest.isoformat() if latest else None,
        "category_breakdown": {c: round_money(spent.get(c, 0)) for c in BUDGET_CATEGORIES},
    }


@server_action
def get_project_health(*, user, project_id):
    project = permission_service.ensure_project_access(user, project_id, "view_budget")
    return project_health(project)


@server_action
def get_org_projects_health(*, user, org_id):
    """Every project in the org the caller can see, newest first."""
    permission_service.ensure_org_member(user, org_id)
    ids = permission_service.accessible_project_ids(user.id, org_id)
    if not ids:
        return []
    projects = (Project.query_active().filter(Project.id.in_(ids))
                .order_by(Project.created_at.desc()).all())
    return [project_health(p) for p in projects]


PENDING_SUBMITTAL_STATUSES = ("submitted",) + REVIEW_STAGES


def _count(model, project_ids, statuses):
    return (db.session.query(func.count(model.id))
            .filter(model.project_id.in_(project_ids), model.deleted_at.is_(None),
                    model.status.in_(statuses))
            .scalar()) or 0


@server_action
def get_org_kpis(*, user, org_id):
    permission_service.ensure_org_member(user, org_id)
    ids = permission_service.accessible_project_ids(user.id, org_id)
    projects = Project.query_active().filter(Project.id.in_(ids)).all() if ids else []
    total_budget = sum(float(p.budget or 0) for p in projects)
    total_spent = sum(sum(budget_service.spent_by_category(p.id).values()) for p in projects)
    team_members = (OrganizationMember.query
                    .filter(OrganizationMember.organization_id == org_id,
                            OrganizationMember.joined_at.isnot(None))
                    .count())
    return {
        "total_projects": len(projects),
        "active_projects": sum(1 for p in projects if p.status == "active"),
        "team_members": team_members,
        "open_rfis": _count(Rfi, ids, RFI_OPEN_STATUSES) if ids else 0,
        "pending_submittals": _count(Submittal, ids, PENDING_SUBMITTAL_STATUSES) if ids else 0,
        "total_budget": round_money(total_budget),
        "total_spent": round_money(total_spent),
        "budget_utilization": round(total_spent / total_budget * 100, 2) if total_budget > 0 else 0,
    }


def _status_counts(model, project_id, soft_deleted=True):
    query = (db.session.query(model.status, func.count(model.id))
             .filter(model.project_id == project_id))
    if soft_deleted:
        query = query.filter(model.deleted_at.is_(None))
    return {status: count for status, count in query.group_by(model.status).all()}


@server_action
def get_dashboard_summary(*, user, project_id):
    project = permission_service.ensure_project_access(user, project_id)
    rfis = rfi_service.rfi_counts(project_id)
    submittals = _status_counts(Submittal, project_id)
    change_orders = _status_counts(ChangeOrder, project_id)
    reports = _status_counts(DailyReport, project_id, soft_deleted=False)
    approved_co_total = (db.session.query(func.coalesce(func.sum(ChangeOrder.cost_impact), 0))
                         .filter(ChangeOrder.project_id == project_id,
                                 ChangeOrder.deleted_at.is_(None),
                                 ChangeOrder.status.in_(("approved", "invoiced")))
                         .scalar())
    return {
        "project": {"id": project.id, "name": project.name, "status": project.status},
        "rfis": {"by_status": rfis, "total": sum(rfis.values()),
                 "open": sum(rfis.get(s, 0) for s in ("submitted", "under_review"))},
        "submittals": {"by_status": submittals, "total": sum(submittals.values())},
        "change_orders": {"by_status": change_orders, "total": sum(change_orders.values()),
                          "approved_cost_impact": round_money(approved_co_total)},
        "daily_reports": {"by_status": reports, "total": sum(reports.values())},
    }
