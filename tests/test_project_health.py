"""
Project health rollups, organization KPIs and the per-project dashboard summary.
"""

from datetime import date

import pytest

from app.models import db
from app.models.budget import Invoice, ProjectCost
from app.models.auth import OrganizationMember, User
from app.models.change_order import ChangeOrder
from app.models.project import Project
from app.models.rfi import Rfi
from app.models.submittal import Submittal
from app.services.project_health_service import health_status


def _cost(project, owner, category, amount):
    db.session.add(ProjectCost(project_id=project.id, category=category, amount=amount,
                               description="Recorded in test", cost_date=date(2024, 3, 1),
                               created_by_id=owner.id))
    db.session.commit()


def _invoice(project, amount, status="approved", category="materials"):
    db.session.add(Invoice(project_id=project.id, budget_category=category, amount=amount,
                           status=status, file_path="1/invoices/x.png", file_name="x.png",
                           file_size=10, mime_type="image/png"))
    db.session.commit()


@pytest.mark.parametrize("percent, status", [
    (0, "healthy"), (69.99, "healthy"), (70, "warning"), (89.5, "warning"),
    (90, "critical"), (120, "critical"),
])
def test_health_thresholds(percent, status):
    assert health_status(percent) == status


class TestProjectHealth:
    def test_spend_includes_approved_invoices_only(self, client, project, owner, owner_headers):
        _cost(project, owner, "labor", 50000)
        _invoice(project, 25000)
        _invoice(project, 9000, status="pending")
        res = client.get(f"/api/v1/projects/{project.id}/health", headers=owner_headers)
        data = res.get_json()["data"]
        assert data["total_spent"] == 75000
        assert data["percent_spent"] == 75.0
        assert data["health_status"] == "warning"
        assert data["category_breakdown"]["materials"] == 25000
        assert data["invoice_count"]["total"] == 2
        assert data["invoice_count"]["pending"] == 1

    def test_no_budget_is_healthy(self, client, project, owner, owner_headers):
        project.budget = None
        db.session.commit()
        _cost(project, owner, "labor", 500)
        data = client.get(f"/api/v1/projects/{project.id}/health",
                          headers=owner_headers).get_json()["data"]
        assert data["percent_spent"] == 0
        assert data["health_status"] == "healthy"

    def test_org_rollup_respects_access(self, client, org, project, owner_headers, make_user,
                                        add_member, auth_headers):
        client.post(f"/api/v1/organizations/{org.id}/projects", headers=owner_headers,
                    json={"name": "Harbor Point Tower", "budget": 500000})
        res = client.get(f"/api/v1/organizations/{org.id}/projects-health", headers=owner_headers)
        assert {p["name"] for p in res.get_json()["data"]} == {
            "Riverside Medical Office", "Harbor Point Tower"}

        viewer = add_member(project, make_user("viewer@example.com"), "viewer")
        res = client.get(f"/api/v1/organizations/{org.id}/projects-health",
                         headers=auth_headers(viewer))
        assert [p["name"] for p in res.get_json()["data"]] == ["Riverside Medical Office"]

    def test_org_rollup_requires_membership(self, client, org, make_user, auth_headers):
        outsider = make_user("outsider@example.com")
        res = client.get(f"/api/v1/organizations/{org.id}/projects-health",
                         headers=auth_headers(outsider))
        assert res.status_code == 404


class TestOrgKpis:
    @pytest.fixture()
    def portfolio(self, org, project, owner):
        other = Project(organization_id=org.id, name="Harbor Point Tower", status="on_hold",
                        budget=100000, created_by_id=owner.id)
        db.session.add(other)
        _cost(project, owner, "labor", 30000)
        _invoice(project, 10000)
        _invoice(project, 5000, status="pending")
        for number, status in (("RFI-001", "submitted"), ("RFI-002", "under_review"),
                               ("RFI-003", "closed"), ("RFI-004", "submitted")):
            db.session.add(Rfi(project_id=project.id, number=number, title="Q",
                               description="Q", status=status, created_by_id=owner.id))
        for number, status in (("03 30 00-001", "submitted"), ("03 30 00-002", "draft"),
                               ("03 30 00-003", "approved")):
            db.session.add(Submittal(project_id=project.id, number=number, title="Mix design",
                                     submittal_type="product_data", spec_section="03 30 00",
                                     status=status, created_by_id=owner.id))
        invitee = User(email="pending@example.com", password_hash="x")
        db.session.add(invitee)
        db.session.flush()
        db.session.add(OrganizationMember(organization_id=org.id, user_id=invitee.id,
                                          role="member", invited_by_id=owner.id))
        db.session.commit()
        Rfi.query.filter_by(number="RFI-004").one().soft_delete()
        db.session.commit()
        return other

    def test_rollup_for_org_owner(self, client, org, owner_headers, portfolio):
        res = client.get(f"/api/v1/organizations/{org.id}/kpis", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["data"] == {
            "total_projects": 2,
            "active_projects": 1,
            "team_members": 1,
            "open_rfis": 2,
            "pending_submittals": 1,
            "total_budget": 200000,
            "total_spent": 40000,
            "budget_utilization": 20.0,
        }

    def test_member_sees_only_their_projects(self, client, org, project, portfolio, make_user,
                                             add_member, auth_headers):
        viewer = add_member(project, make_user("viewer@example.com"), "viewer")
        data = client.get(f"/api/v1/organizations/{org.id}/kpis",
                          headers=auth_headers(viewer)).get_json()["data"]
        assert data["total_projects"] == 1
        assert data["team_members"] == 2
        assert data["total_budget"] == 100000
        assert data["budget_utilization"] == 40.0

    def test_empty_org(self, client, org, owner_headers):
        data = client.get(f"/api/v1/organizations/{org.id}/kpis",
                          headers=owner_headers).get_json()["data"]
        assert data["total_projects"] == 0
        assert data["open_rfis"] == 0
        assert data["budget_utilization"] == 0

    def test_requires_membership(self, client, org, make_user, auth_headers):
        outsider = make_user("outsider@example.com")
        res = client.get(f"/api/v1/organizations/{org.id}/kpis", headers=auth_headers(outsider))
        assert res.status_code == 404


class TestDashboard:
    def test_counts_by_status(self, client, project, owner, owner_headers):
        for number, status in (("RFI-001", "submitted"), ("RFI-002", "under_review"),
                               ("RFI-003", "closed")):
            db.session.add(Rfi(project_id=project.id, number=number, title="Q",
                               description="Q", status=status, created_by_id=owner.id))
        db.session.add(ChangeOrder(project_id=project.id, number="CO-001", title="Footing",
                                   type="site_condition", status="approved", cost_impact=4200,
                                   current_version=1, created_by_id=owner.id))
        db.session.add(ChangeOrder(project_id=project.id, number="CO-002", title="Upgrade",
                                   type="owner_requested", status="proposed", cost_impact=900,
                                   current_version=1, created_by_id=owner.id))
        db.session.commit()

        res = client.get(f"/api/v1/projects/{project.id}/dashboard", headers=owner_headers)
        data = res.get_json()["data"]
        assert data["rfis"]["total"] == 3
        assert data["rfis"]["open"] == 2
        assert data["change_orders"]["by_status"] == {"approved": 1, "proposed": 1}
        assert data["change_orders"]["approved_cost_impact"] == 4200
        assert data["submittals"]["total"] == 0
        assert data["daily_reports"]["by_status"] == {}
