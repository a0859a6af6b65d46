"""
RFI tests.

Covers:
    - numbering, create/edit/submit permissions
    - response workflow (under_review, official answer, close, cancel)
    - assignment emails (user vs organization assignee)
    - attachments
    - SLA helpers: overdue, days overdue / until due, response time,
      compliance, ball-in-court
"""

import io
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.models import db
from app.models.rfi import Rfi
from app.models.scheduling import EmailLog
from app.services import rfi_sla
from app.services.rfi_service import next_rfi_number

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)

RFI_BODY = {
    "title": "Beam pocket depth",
    "description": "Drawing S-201 shows a 6in pocket; detail 4/S-501 shows 8in. Which governs?",
    "priority": "high",
    "discipline": "Structural",
}


@pytest.fixture()
def architect(project, make_user, add_member):
    return add_member(project, make_user("architect@example.com", "Ari Architect"), "viewer")


@pytest.fixture()
def draft(client, project, owner_headers):
    res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers, json=RFI_BODY)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


DUE = "2030-06-01T17:00:00Z"


def _submit(client, rfi, headers, **body):
    body.setdefault("response_due_date", DUE)
    return client.post(f"/api/v1/rfis/{rfi['id']}/submit", headers=headers, json=body)


# ═════════════════════════════════════════════════════════════════════════════
# Creation & numbering
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_numbers_are_sequential(self, client, project, owner_headers, draft):
        assert draft["number"] == "RFI-001"
        assert draft["status"] == "draft"
        res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers,
                          json=RFI_BODY)
        assert res.get_json()["data"]["number"] == "RFI-002"

    def test_deleted_numbers_are_not_reused(self, client, project, owner_headers, draft):
        client.delete(f"/api/v1/rfis/{draft['id']}", headers=owner_headers)
        assert next_rfi_number(project.id) == "RFI-002"

    def test_only_managers_create(self, client, project, architect, auth_headers):
        res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=auth_headers(architect),
                          json=RFI_BODY)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Only project managers can create RFIs"

    def test_validation(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers,
                          json={"title": "Hi", "description": "short", "priority": "urgent"})
        assert res.status_code == 422
        assert {"title", "description", "priority"} <= set(res.get_json()["field_errors"])

    def test_assignee_must_have_project_access(self, client, project, owner_headers, make_user):
        stranger = make_user("stranger@example.com")
        res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers,
                          json={**RFI_BODY, "assigned_to_id": stranger.id})
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["assigned_to_id"] == [
            "Assignee must be a member of this project"]

    def test_edit_only_drafts(self, client, owner_headers, architect, draft):
        url = f"/api/v1/rfis/{draft['id']}"
        res = client.patch(url, headers=owner_headers, json={"priority": "critical"})
        assert res.get_json()["data"]["priority"] == "critical"

        _submit(client, draft, owner_headers, assigned_to_id=architect.id)
        res = client.patch(url, headers=owner_headers, json={"priority": "low"})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Only draft RFIs can be edited"


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflow:
    def test_submit_requires_assignee(self, client, owner_headers, draft):
        res = _submit(client, draft, owner_headers)
        assert res.status_code == 422
        assert res.get_json()["error"] == "Must assign to either a user or organization"

    def test_submit_requires_response_due_date(self, client, owner_headers, architect, draft):
        res = client.post(f"/api/v1/rfis/{draft['id']}/submit", headers=owner_headers,
                          json={"assigned_to_id": architect.id})
        assert res.status_code == 422
        assert res.get_json()["field_errors"] == {
            "response_due_date": ["Response due date is required to submit"]}
        assert db.session.get(Rfi, draft["id"]).status == "draft"

    def test_due_date_set_at_creation_is_enough(self, client, project, owner_headers, architect):
        res = client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers,
                          json={**RFI_BODY, "response_due_date": DUE})
        rfi_id = res.get_json()["data"]["id"]
        res = client.post(f"/api/v1/rfis/{rfi_id}/submit", headers=owner_headers,
                          json={"assigned_to_id": architect.id})
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "submitted"

    def test_submit_emails_assignee(self, client, owner_headers, architect, draft):
        res = _submit(client, draft, owner_headers, assigned_to_id=architect.id,
                      response_due_date="2024-06-01T17:00:00Z")
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "submitted"
        assert data["submitted_at"] is not None
        assert data["response_due_date"].startswith("2024-06-01T17:00:00")

        log = EmailLog.query.filter_by(recipient_email=architect.email).one()
        assert log.template_name == "rfi_assignment"
        assert log.category == "rfi"
        assert "RFI-001" in log.subject

    def test_org_assignment_sends_no_email(self, client, org, owner_headers, draft):
        res = _submit(client, draft, owner_headers, assigned_to_org_id=org.id)
        assert res.status_code == 200
        assert EmailLog.query.filter_by(template_name="rfi_assignment").count() == 0

    def test_only_creator_submits(self, client, architect, auth_headers, draft):
        res = _submit(client, draft, auth_headers(architect), assigned_to_id=architect.id)
        assert res.status_code == 403

    def test_full_lifecycle(self, client, owner, owner_headers, architect, auth_headers, draft):
        _submit(client, draft, owner_headers, assigned_to_id=architect.id)
        url = f"/api/v1/rfis/{draft['id']}"

        res = client.post(f"{url}/responses", headers=auth_headers(architect),
                          json={"content": "Checking with the engineer of record."})
        assert res.status_code == 201
        assert client.get(url, headers=owner_headers).get_json()["data"]["status"] == "under_review"

        res = client.post(f"{url}/close", headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["error"] == "RFI must be answered before closing"

        client.post(f"{url}/responses", headers=auth_headers(architect),
                    json={"content": "Use 8in per detail 4/S-501.", "is_official_answer": True})
        data = client.get(url, headers=owner_headers).get_json()["data"]
        assert data["status"] == "answered"
        assert len(data["responses"]) == 2
        assert data["ball_in_court"]["user_id"] == owner.id
        assert data["response_time_hours"] is not None

        responses = EmailLog.query.filter_by(template_name="rfi_response",
                                             recipient_email=owner.email).all()
        assert len(responses) == 2

        res = client.post(f"{url}/close", headers=owner_headers)
        assert res.get_json()["data"]["status"] == "closed"

        res = client.post(f"{url}/responses", headers=auth_headers(architect),
                          json={"content": "Late note"})
        assert res.status_code == 422

    def test_notification_log_survives_later_rollback(self, client, owner_headers, architect,
                                                       auth_headers, draft):
        _submit(client, draft, owner_headers, assigned_to_id=architect.id)
        # a rejected action rolls the session back
        res = client.post(f"/api/v1/rfis/{draft['id']}/close", headers=owner_headers)
        assert res.status_code == 422
        db.session.rollback()
        db.session.remove()

        assert EmailLog.query.filter_by(template_name="rfi_assignment",
                                        recipient_email=architect.email).count() == 1

    def test_creator_reply_keeps_submitted(self, client, owner_headers, architect, draft):
        _submit(client, draft, owner_headers, assigned_to_id=architect.id)
        client.post(f"/api/v1/rfis/{draft['id']}/responses", headers=owner_headers,
                    json={"content": "Adding a photo of the pocket."})
        rfi = db.session.get(Rfi, draft["id"])
        assert rfi.status == "submitted"

    def test_cancel(self, client, owner_headers, architect, auth_headers, draft):
        url = f"/api/v1/rfis/{draft['id']}/cancel"
        assert client.post(url, headers=auth_headers(architect)).status_code == 403
        res = client.post(url, headers=owner_headers)
        assert res.get_json()["data"]["status"] == "cancelled"
        assert client.post(url, headers=owner_headers).status_code == 422

    def test_reassign_rejects_both_targets(self, client, org, owner_headers, architect, draft):
        res = client.post(f"/api/v1/rfis/{draft['id']}/assign", headers=owner_headers,
                          json={"assigned_to_id": architect.id, "assigned_to_org_id": org.id})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Cannot assign to both user and organization"

    def test_list_filters(self, client, project, owner_headers, architect, auth_headers, draft):
        _submit(client, draft, owner_headers, assigned_to_id=architect.id)
        client.post(f"/api/v1/projects/{project.id}/rfis", headers=owner_headers,
                    json={**RFI_BODY, "priority": "low"})
        base = f"/api/v1/projects/{project.id}/rfis"
        res = client.get(f"{base}?assigned_to_me=true", headers=auth_headers(architect))
        assert [r["number"] for r in res.get_json()["data"]] == ["RFI-001"]
        res = client.get(f"{base}?priority=low", headers=owner_headers)
        assert [r["number"] for r in res.get_json()["data"]] == ["RFI-002"]
        assert client.get(f"{base}?status=open", headers=owner_headers).status_code == 422


class TestAttachments:
    def test_upload_and_delete(self, client, owner_headers, architect, auth_headers, draft):
        url = f"/api/v1/rfis/{draft['id']}/attachments"
        res = client.post(url, headers=owner_headers, content_type="multipart/form-data",
                          data={"drawing_sheet": "S-201",
                                "file": (io.BytesIO(b"%PDF-1.4 sheet"), "S-201.pdf",
                                         "application/pdf")})
        assert res.status_code == 201
        attachment = res.get_json()["data"]
        assert attachment["drawing_sheet"] == "S-201"

        res = client.delete(f"/api/v1/rfi-attachments/{attachment['id']}",
                            headers=auth_headers(architect))
        assert res.status_code == 403
        res = client.delete(f"/api/v1/rfi-attachments/{attachment['id']}", headers=owner_headers)
        assert res.status_code == 200

    def test_rejects_disallowed_type(self, client, owner_headers, draft):
        res = client.post(f"/api/v1/rfis/{draft['id']}/attachments", headers=owner_headers,
                          content_type="multipart/form-data",
                          data={"file": (io.BytesIO(b"zip"), "bundle.zip", "application/zip")})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Invalid file type. Allowed: PDF, JPEG, PNG, DOCX, XLSX"


# ═════════════════════════════════════════════════════════════════════════════
# SLA
# ═════════════════════════════════════════════════════════════════════════════


def _rfi(status="submitted", due=None, answered=None, submitted=None, **extra):
    values = {"id": 1, "status": status, "response_due_date": due, "answered_at": answered,
              "submitted_at": submitted, "created_by_id": 7, "assigned_to_id": 9,
              "assigned_to_org_id": None}
    values.update(extra)
    return SimpleNamespace(**values)


class TestSla:
    def test_overdue_open(self):
        rfi = _rfi(due=NOW - timedelta(days=3, hours=5))
        assert rfi_sla.is_overdue(rfi, NOW) is True
        assert rfi_sla.days_overdue(rfi, NOW) == 3
        assert rfi_sla.days_until_due(rfi, NOW) == -3

    def test_not_overdue_without_due_date_or_when_inactive(self):
        assert rfi_sla.is_overdue(_rfi(), NOW) is False
        assert rfi_sla.is_overdue(_rfi("draft", due=NOW - timedelta(days=1)), NOW) is False
        assert rfi_sla.is_overdue(_rfi("closed", due=NOW - timedelta(days=1)), NOW) is False

    def test_answered_late_stays_overdue(self):
        due = NOW - timedelta(days=10)
        rfi = _rfi("answered", due=due, answered=due + timedelta(days=2, hours=1))
        assert rfi_sla.is_overdue(rfi, NOW) is True
        assert rfi_sla.days_overdue(rfi, NOW) == 2

    def test_days_until_due_rounds_up(self):
        rfi = _rfi(due=NOW + timedelta(days=1, hours=1))
        assert rfi_sla.days_until_due(rfi, NOW) == 2
        assert rfi_sla.days_until_due(_rfi("cancelled", due=NOW), NOW) is None

    def test_naive_datetimes_are_treated_as_utc(self):
        naive_due = (NOW - timedelta(days=1)).replace(tzinfo=None)
        assert rfi_sla.is_overdue(_rfi(due=naive_due), NOW) is True

    def test_response_time_and_compliance(self):
        due = NOW
        on_time = _rfi("answered", due=due, submitted=due - timedelta(hours=30),
                       answered=due - timedelta(hours=6))
        late = _rfi("closed", due=due, submitted=due - timedelta(hours=10),
                    answered=due + timedelta(hours=2))
        assert rfi_sla.response_time_hours(on_time) == 24.0
        assert rfi_sla.average_response_time([on_time, late]) == 18.0
        assert rfi_sla.sla_compliance([on_time, late]) == {"total": 2, "compliant": 1,
                                                            "percentage": 50}
        assert rfi_sla.sla_compliance([]) == {"total": 0, "compliant": 0, "percentage": 0}

    @pytest.mark.parametrize("status, user_id, action", [
        ("draft", 7, "Complete and submit RFI"),
        ("under_review", 9, "Review and provide response"),
        ("answered", 7, "Review answer and close RFI"),
        ("closed", None, "No action required"),
    ])
    def test_ball_in_court(self, status, user_id, action):
        court = rfi_sla.ball_in_court(_rfi(status))
        assert court["user_id"] == user_id
        assert court["suggested_action"] == action

    def test_unassigned_open_rfi_is_blocked(self):
        court = rfi_sla.ball_in_court(_rfi(assigned_to_id=None))
        assert court["is_blocked"] is True

    def test_summary_endpoint(self, client, project, owner, owner_headers, architect, draft):
        _submit(client, draft, owner_headers, assigned_to_id=architect.id,
                response_due_date="2020-01-01T00:00:00Z")
        res = client.get(f"/api/v1/projects/{project.id}/rfis/sla", headers=owner_headers)
        data = res.get_json()["data"]
        assert data["total"] == 1
        assert data["open"] == 1
        assert data["overdue_ids"] == [draft["id"]]

        res = client.get(f"/api/v1/projects/{project.id}/rfis?overdue=true", headers=owner_headers)
        rows = res.get_json()["data"]
        assert rows[0]["is_overdue"] is True
        assert rows[0]["days_until_due"] < 0
