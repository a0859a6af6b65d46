"""Manually recorded project costs with receipt attachments."""

import logging

from app.core.actions import server_action
from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.budget import BUDGET_CATEGORIES, ProjectCost
from app.services import permission_service, storage_service
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

MAX_RECEIPTS = 5


def _validate(v):
    v.choice("category", BUDGET_CATEGORIES, required=True)
    v.money("amount", required=True, greater_than=0)
    v.string("description", required=True, min_len=5, max_len=1000)
    v.date("cost_date", required=True)


def _get_cost(project_id, cost_id):
    cost = ProjectCost.get_active(cost_id)
    if cost is None or cost.project_id != project_id:
        raise NotFoundError("Cost", cost_id)
    return cost


@server_action
def create_cost(*, user, project_id, data, receipts=None):
    permission_service.ensure_project_access(user, project_id, "create_cost")
    v = FieldValidator(data)
    _validate(v)
    receipts = receipts or []
    if len(receipts) > MAX_RECEIPTS:
        v.add_error("receipts", f"Maximum {MAX_RECEIPTS} attachments allowed")
    v.raise_if_errors()

    for upload in receipts:
        storage_service.validate_upload("costs", upload)
    paths = [
        {"file_path": storage_service.save("costs", project_id, upload),
         "file_name": upload.filename}
        for upload in receipts
    ]

    cost = ProjectCost(project_id=project_id, created_by_id=user.id, receipts=paths, **v.cleaned)
    db.session.add(cost)
    db.session.commit()
    logger.info("Cost %s recorded: %s %.2f", cost.id, cost.category, cost.amount,
                extra={"user_id": user.id, "project_id": project_id})
    return cost.to_dict()


@server_action
def list_costs(*, user, project_id, category=None):
    permission_service.ensure_project_access(user, project_id, "view_costs")
    query = ProjectCost.query_active().filter(ProjectCost.project_id == project_id)
    if category:
        if category not in BUDGET_CATEGORIES:
            raise ValidationError("Invalid category", details={"category": ["Invalid category"]})
        query = query.filter(ProjectCost.category == category)
    return [c.to_dict() for c in query.order_by(ProjectCost.cost_date.desc(), ProjectCost.id.desc())]


@server_action
def update_cost(*, user, project_id, cost_id, data):
    permission_service.ensure_project_access(user, project_id, "edit_cost")
    cost = _get_cost(project_id, cost_id)
    v = FieldValidator(data, partial=True)
    _validate(v)
    v.raise_if_errors()
    for key, value in v.cleaned.items():
        setattr(cost, key, value)
    db.session.commit()
    return cost.to_dict()


@server_action
def delete_cost(*, user, project_id, cost_id):
    permission_service.ensure_project_access(user, project_id, "delete_cost")
    cost = _get_cost(project_id, cost_id)
    cost.soft_delete()
    db.session.commit()
    logger.info("Cost %s deleted", cost_id, extra={"user_id": user.id, "project_id": project_id})
    return {"id": cost_id, "deleted": True}
