"""
Budget allocation, breakdown and burn-rate forecast.

Spent per category = non-deleted ProjectCost rows + approved invoices.
Allocations are capped by the project's contract budget when one is set.
"""

import logging
from collections import defaultdict
from datetime import date

from sqlalchemy import func

from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, ValidationError
from app.models import db
from app.models.budget import (
    BUDGET_CATEGORIES,
    BudgetAllocationHistory,
    Invoice,
    ProjectBudget,
    ProjectCost,
)
from app.services import export_service, permission_service
from app.utils.helpers import round_money
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

ALLOCATION_ROLE_ERROR = "Only project managers and supervisors can update budget allocations"
WARNING_OVERRUN_RATIO = 0.10


# ── Aggregates (shared with project health and exports) ─────────────────────

def spent_by_category(project_id):
    """{category: spent} from non-deleted costs plus approved invoices."""
    totals = defaultdict(float)
    cost_rows = (
        db.session.query(ProjectCost.category, func.coalesce(func.sum(ProjectCost.amount), 0))
        .filter(ProjectCost.project_id == project_id, ProjectCost.deleted_at.is_(None))
        .group_by(ProjectCost.category)
        .all()
    )
    invoice_rows = (
        db.session.query(Invoice.budget_category, func.coalesce(func.sum(Invoice.amount), 0))
        .filter(Invoice.project_id == project_id, Invoice.deleted_at.is_(None),
                Invoice.status == "approved")
        .group_by(Invoice.budget_category)
        .all()
    )
    for category, amount in list(cost_rows) + list(invoice_rows):
        totals[category] += float(amount or 0)
    return dict(totals)


def allocated_by_category(project_id):
    rows = ProjectBudget.query.filter_by(project_id=project_id).all()
    return {row.category: float(row.allocated_amount or 0) for row in rows}


def build_breakdown(project_id):
    allocated = allocated_by_category(project_id)
    spent = spent_by_category(project_id)
    categories = []
    for category in BUDGET_CATEGORIES:
        a = allocated.get(category, 0.0)
        s = spent.get(category, 0.0)
        categories.append({
            "category": category,
            "allocated": round_money(a),
            "spent": round_money(s),
            "remaining": round_money(a - s),
            "percent_spent": round(s / a * 100, 2) if a > 0 else 0,
        })
    total_allocated = sum(c["allocated"] for c in categories)
    total_spent = sum(c["spent"] for c in categories)
    return {
        "categories": categories,
        "totals": {
            "allocated": round_money(total_allocated),
            "spent": round_money(total_spent),
            "remaining": round_money(total_allocated - total_spent),
            "percent_spent": round(total_spent / total_allocated * 100, 2) if total_allocated > 0 else 0,
        },
    }


def forecast_burn_rate(project, total_spent, total_allocated, today=None):
    """Linear spend projection over the project's scheduled duration."""
    today = today or date.today()
    days_total = 0
    days_elapsed = 0
    if project.start_date and project.end_date:
        days_total = max((project.end_date - project.start_date).days, 0)
        days_elapsed = min(max((today - project.start_date).days, 0), days_total)
    days_remaining = max(days_total - days_elapsed, 0)

    daily_burn_rate = total_spent / days_elapsed if days_elapsed > 0 else 0.0
    forecasted_total = daily_burn_rate * days_total if days_elapsed > 0 else total_spent
    baseline = float(project.budget) if project.budget else total_allocated
    forecasted_overrun = forecasted_total - baseline

    if forecasted_overrun <= 0:
        status = "on_track"
    elif baseline > 0 and forecasted_overrun / baseline <= WARNING_OVERRUN_RATIO:
        status = "warning"
    else:
        status = "critical"

    return {
        "days_elapsed": days_elapsed,
        "days_total": days_total,
        "days_remaining": days_remaining,
        "total_spent": round_money(total_spent),
        "daily_burn_rate": round_money(daily_burn_rate),
        "forecasted_total": round_money(forecasted_total),
        "forecasted_overrun": round_money(forecasted_overrun),
        "status": status,
    }


# ── Actions ──────────────────────────────────────────────────────────────────

def _ensure_can_allocate(user, project_id):
    project = permission_service.ensure_project_access(user, project_id)
    role = permission_service.get_project_role(user.id, project_id)
    if role not in ("manager", "supervisor"):
        raise ForbiddenError(ALLOCATION_ROLE_ERROR, public=True)
    return project


def _validate_allocations(data):
    v = FieldValidator(data)
    reason = v.string("reason", max_len=500)
    raw = (data or {}).get("allocations")
    allocations = []
    if not isinstance(raw, list) or not raw:
        v.add_error("allocations", "At least one budget allocation is required")
    else:
        seen = set()
        for index, entry in enumerate(raw):
            item = FieldValidator(entry if isinstance(entry, dict) else {})
            category = item.choice("category", BUDGET_CATEGORIES, required=True)
            amount = item.money("amount", required=True, min_value=0)
            for field, messages in item.errors.items():
                for message in messages:
                    v.add_error(f"allocations.{index}.{field}", message)
            if category in seen:
                v.add_error(f"allocations.{index}.category", "Duplicate category")
            seen.add(category)
            if not item.errors:
                allocations.append((category, amount))
    v.raise_if_errors()
    return allocations, reason


@server_action
def update_allocations(*, user, project_id, data):
    project = _ensure_can_allocate(user, project_id)
    allocations, reason = _validate_allocations(data)

    current = {row.category: row for row in ProjectBudget.query.filter_by(project_id=project_id)}
    merged = {c: float(row.allocated_amount or 0) for c, row in current.items()}
    merged.update(dict(allocations))
    total_allocated = sum(merged.values())
    if project.budget and total_allocated > float(project.budget) + 0.005:
        raise ValidationError(
            f"Total allocation (${total_allocated:,.2f}) exceeds project budget "
            f"(${float(project.budget):,.2f})")

    for category, amount in allocations:
        row = current.get(category)
        old_amount = float(row.allocated_amount) if row else None
        if row is None:
            row = ProjectBudget(project_id=project_id, category=category)
            db.session.add(row)
        row.allocated_amount = amount
        row.updated_by_id = user.id
        if old_amount != amount:
            db.session.add(BudgetAllocationHistory(
                project_id=project_id, category=category, old_amount=old_amount,
                new_amount=amount, reason=reason, changed_by_id=user.id,
            ))
    db.session.commit()
    logger.info("Budget allocations updated (%d categories)", len(allocations),
                extra={"user_id": user.id, "project_id": project_id})
    return build_breakdown(project_id)


@server_action
def get_breakdown(*, user, project_id):
    permission_service.ensure_project_access(user, project_id, "view_budget")
    return build_breakdown(project_id)


@server_action
def get_burn_rate(*, user, project_id, today=None):
    project = permission_service.ensure_project_access(user, project_id, "view_budget")
    breakdown = build_breakdown(project_id)
    return forecast_burn_rate(project, breakdown["totals"]["spent"],
                              breakdown["totals"]["allocated"], today=today)


@server_action
def get_allocation_history(*, user, project_id):
    permission_service.ensure_project_access(user, project_id, "view_budget")
    rows = (BudgetAllocationHistory.query.filter_by(project_id=project_id)
            .order_by(BudgetAllocationHistory.changed_at.desc(), BudgetAllocationHistory.id.desc())
            .all())
    return [row.to_dict() for row in rows]


@server_action
def export_cost_report(*, user, project_id):
    """XLSX cost report; returns ``{"filename", "content"}`` with raw bytes."""
    project = permission_service.ensure_project_access(user, project_id, "view_costs")
    breakdown = build_breakdown(project_id)
    burn = forecast_burn_rate(project, breakdown["totals"]["spent"],
                              breakdown["totals"]["allocated"])
    content = export_service.generate_cost_report_xlsx(project, breakdown, burn)
    slug = (project.number or f"project-{project.id}").replace(" ", "-")
    return {"filename": f"cost-report-{slug}.xlsx", "content": content}
