"""
Submittal tests: numbering, the GC → A/E → owner review chain,
resubmittals, attachments, reviewer queue and analytics.
"""

import io
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.models import db
from app.models.scheduling import EmailLog
from app.models.submittal import Submittal
from app.services import submittal_analytics
from app.services.submittal_service import procurement_deadline, version_label

BODY = {
    "title": "Cast-in-place concrete mix design",
    "submittal_type": "product_data",
    "spec_section": "03 30 00",
    "spec_section_title": "Cast-in-Place Concrete",
}


@pytest.fixture()
def gc(project, make_user, add_member):
    return add_member(project, make_user("gc@example.com", "Gail Contractor"), "viewer")


@pytest.fixture()
def architect(project, make_user, add_member):
    return add_member(project, make_user("architect@example.com", "Ari Architect"), "viewer")


@pytest.fixture()
def draft(client, project, owner_headers):
    res = client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers, json=BODY)
    assert res.status_code == 201
    return res.get_json()["data"]


def _attach(client, submittal_id, headers, name="mix-design.pdf"):
    return client.post(f"/api/v1/submittals/{submittal_id}/attachments", headers=headers,
                       content_type="multipart/form-data",
                       data={"attachment_type": "product_data",
                             "file": (io.BytesIO(b"%PDF-1.4 mix"), name, "application/pdf")})


def _submit(client, submittal_id, headers, reviewer_id):
    return client.post(f"/api/v1/submittals/{submittal_id}/submit", headers=headers,
                       json={"reviewer_id": reviewer_id})


def _review(client, submittal_id, headers, action, **extra):
    body = {"action": action, "comments": "Reviewed against spec section."}
    body.update(extra)
    return client.post(f"/api/v1/submittals/{submittal_id}/review", headers=headers, json=body)


class TestHelpers:
    @pytest.mark.parametrize("n, label", [(0, "Rev 0"), (1, "Rev A"), (2, "Rev B"), (26, "Rev Z")])
    def test_version_label(self, n, label):
        assert version_label(n) == label

    def test_procurement_deadline(self):
        assert procurement_deadline(date(2024, 9, 30), 45) == date(2024, 8, 16)
        assert procurement_deadline(date(2024, 9, 30), None) is None


class TestCreate:
    def test_numbering_per_spec_section(self, client, project, owner_headers, draft):
        assert draft["number"] == "03 30 00-001"
        assert draft["status"] == "draft"
        assert draft["version"] == "Rev 0"
        res = client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers,
                          json=dict(BODY, title="Rebar shop drawings",
                                    submittal_type="shop_drawings"))
        assert res.get_json()["data"]["number"] == "03 30 00-002"
        res = client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers,
                          json=dict(BODY, spec_section="05 12 00"))
        assert res.get_json()["data"]["number"] == "05 12 00-001"

    def test_spec_section_format(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers,
                          json=dict(BODY, spec_section="033000"))
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["spec_section"] == [
            'Invalid spec section format (e.g., "03 30 00")']

    def test_unknown_type(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers,
                          json=dict(BODY, submittal_type="mockup"))
        assert res.status_code == 422
        assert "submittal_type" in res.get_json()["field_errors"]

    def test_viewer_cannot_create(self, client, project, gc, auth_headers):
        res = client.post(f"/api/v1/projects/{project.id}/submittals",
                          headers=auth_headers(gc), json=BODY)
        assert res.status_code == 403


class TestReviewChain:
    def test_submit_requires_attachment(self, client, draft, gc, owner_headers):
        res = _submit(client, draft["id"], owner_headers, gc.id)
        assert res.status_code == 422
        assert res.get_json()["error"] == (
            "At least one attachment is required before submitting for review")

    def test_reviewer_must_have_project_access(self, client, draft, make_user, owner_headers):
        stranger = make_user("stranger@example.com")
        _attach(client, draft["id"], owner_headers)
        res = _submit(client, draft["id"], owner_headers, stranger.id)
        assert res.status_code == 422
        assert "reviewer_id" in res.get_json()["field_errors"]

    def test_submit_emails_reviewer(self, client, draft, gc, owner_headers):
        assert _attach(client, draft["id"], owner_headers).status_code == 201
        res = _submit(client, draft["id"], owner_headers, gc.id)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "submitted"
        assert data["current_stage"] == "gc_review"
        log = EmailLog.query.filter_by(recipient_email="gc@example.com").one()
        assert log.template_name == "submittal_review_required"

    def test_forward_through_every_stage(self, client, draft, owner, gc, architect,
                                         owner_headers, auth_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)

        res = _review(client, draft["id"], auth_headers(gc), "forwarded",
                      next_reviewer_id=architect.id)
        data = res.get_json()["data"]
        assert (data["status"], data["current_stage"]) == ("submitted", "ae_review")

        res = _review(client, draft["id"], auth_headers(architect), "forwarded",
                      next_reviewer_id=owner.id)
        assert res.get_json()["data"]["current_stage"] == "owner_review"

        res = _review(client, draft["id"], owner_headers, "forwarded", next_reviewer_id=gc.id)
        assert res.status_code == 422
        assert res.get_json()["error"] == "Cannot forward from current stage"

        res = _review(client, draft["id"], owner_headers, "approved_as_noted")
        data = res.get_json()["data"]
        assert data["status"] == "approved_as_noted"
        assert data["current_stage"] == "complete"
        assert data["closed_at"] is not None

        detail = client.get(f"/api/v1/submittals/{draft['id']}",
                            headers=owner_headers).get_json()["data"]
        assert [r["stage"] for r in detail["reviews"]] == ["gc_review", "ae_review", "owner_review"]

    def test_forward_needs_next_reviewer(self, client, draft, gc, owner_headers, auth_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        res = _review(client, draft["id"], auth_headers(gc), "forwarded")
        assert res.status_code == 422
        assert "next_reviewer_id" in res.get_json()["field_errors"]

    def test_only_current_reviewer_reviews(self, client, draft, gc, architect, owner_headers,
                                           auth_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        res = _review(client, draft["id"], auth_headers(architect), "approved")
        assert res.status_code == 403
        assert res.get_json()["error"] == "You are not the assigned reviewer for this submittal"

    @pytest.mark.parametrize("action, template", [
        ("approved", "submittal_approved"),
        ("revise_resubmit", "submittal_revision_required"),
        ("rejected", "submittal_rejected"),
    ])
    def test_decision_emails_creator(self, client, draft, gc, owner_headers, auth_headers,
                                     action, template):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        _review(client, draft["id"], auth_headers(gc), action)
        log = EmailLog.query.filter_by(recipient_email="owner@example.com").one()
        assert log.template_name == template


class TestResubmittal:
    def _rejected(self, client, draft, gc, owner_headers, auth_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        _review(client, draft["id"], auth_headers(gc), "revise_resubmit")

    def test_resubmittal_gets_next_revision(self, client, draft, gc, owner_headers, auth_headers):
        self._rejected(client, draft, gc, owner_headers, auth_headers)
        res = client.post(f"/api/v1/submittals/{draft['id']}/resubmit", headers=owner_headers,
                          json={"notes": "Revised water-cement ratio to 0.45"})
        assert res.status_code == 201
        child = res.get_json()["data"]
        assert child["number"] == draft["number"]
        assert child["version"] == "Rev A"
        assert child["status"] == "draft"
        assert child["parent_submittal_id"] == draft["id"]

        detail = client.get(f"/api/v1/submittals/{child['id']}",
                            headers=owner_headers).get_json()["data"]
        assert detail["versions"][0]["notes"] == "Revised water-cement ratio to 0.45"

    def test_resubmittal_requires_notes(self, client, draft, gc, owner_headers, auth_headers):
        self._rejected(client, draft, gc, owner_headers, auth_headers)
        res = client.post(f"/api/v1/submittals/{draft['id']}/resubmit", headers=owner_headers,
                          json={})
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["notes"] == [
            "Please describe what changed in this revision"]

    def test_resubmittal_only_after_revision_request(self, client, draft, owner_headers):
        res = client.post(f"/api/v1/submittals/{draft['id']}/resubmit", headers=owner_headers,
                          json={"notes": "Too early"})
        assert res.status_code == 422


class TestAttachmentsAndDelete:
    def test_uploader_removes_attachment_while_draft(self, client, draft, owner_headers):
        attachment = _attach(client, draft["id"], owner_headers).get_json()["data"]
        res = client.delete(f"/api/v1/submittal-attachments/{attachment['id']}",
                            headers=owner_headers)
        assert res.status_code == 200

    def test_outsider_cannot_attach(self, client, draft, gc, auth_headers):
        res = _attach(client, draft["id"], auth_headers(gc))
        assert res.status_code == 403

    def test_delete_only_drafts(self, client, draft, gc, owner_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        res = client.delete(f"/api/v1/submittals/{draft['id']}", headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["error"] == "Only draft submittals can be deleted"


class TestListing:
    def test_list_paginates(self, client, project, owner_headers, draft):
        client.post(f"/api/v1/projects/{project.id}/submittals", headers=owner_headers,
                    json=dict(BODY, title="Second"))
        res = client.get(f"/api/v1/projects/{project.id}/submittals?limit=1",
                         headers=owner_headers)
        data = res.get_json()["data"]
        assert data["total"] == 2
        assert len(data["items"]) == 1
        assert data["limit"] == 1

    @pytest.mark.parametrize("query", ["limit=0", "limit=101", "offset=-1",
                                       "status=pending", "stage=final"])
    def test_list_rejects_bad_params(self, client, project, owner_headers, query):
        res = client.get(f"/api/v1/projects/{project.id}/submittals?{query}",
                         headers=owner_headers)
        assert res.status_code == 422

    def test_my_reviews(self, client, draft, gc, owner_headers, auth_headers):
        _attach(client, draft["id"], owner_headers)
        _submit(client, draft["id"], owner_headers, gc.id)
        submittal = db.session.get(Submittal, draft["id"])
        submittal.submitted_at = datetime.now(timezone.utc) - timedelta(days=9)
        db.session.commit()

        res = client.get("/api/v1/submittals/my-reviews", headers=auth_headers(gc))
        data = res.get_json()["data"]
        assert data["total"] == 1
        assert data["reviews"][0]["days_pending"] == 9
        assert data["reviews"][0]["is_overdue"] is True

        res = client.get("/api/v1/submittals/my-reviews", headers=owner_headers)
        assert res.get_json()["data"]["total"] == 0


def _submittal(**overrides):
    base = dict(id=1, number="03 30 00-001", title="Mix design", spec_section="03 30 00",
                status="approved", current_stage="complete", parent_submittal_id=None,
                version_number=0, reviews=[], procurement_deadline=None,
                submitted_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                closed_at=datetime(2024, 3, 11, tzinfo=timezone.utc))
    base.update(overrides)
    return SimpleNamespace(**base)


def _review_row(stage, day):
    return SimpleNamespace(stage=stage, version_number=0,
                           reviewed_at=datetime(2024, 3, day, tzinfo=timezone.utc))


class TestAnalytics:
    def test_pipeline_counts_stages(self):
        counts = submittal_analytics.pipeline([
            _submittal(current_stage="gc_review"), _submittal(current_stage="gc_review"),
            _submittal(),
        ])
        assert counts["gc_review"] == 2
        assert counts["complete"] == 1
        assert counts["total"] == 3

    def test_stage_durations_from_history(self):
        s = _submittal(reviews=[_review_row("ae_review", 8), _review_row("gc_review", 4)])
        assert submittal_analytics.stage_durations(s) == {"gc_review": 3, "ae_review": 4}

    def test_cycle_times(self):
        rows = [_submittal(), _submittal(closed_at=datetime(2024, 3, 21, tzinfo=timezone.utc)),
                _submittal(status="rejected")]
        result = submittal_analytics.cycle_times(rows)
        assert result["avg_days_to_approval"] == 15
        assert result["avg_days_in_owner_review"] == 0

    def test_resubmittal_rate(self):
        rows = [_submittal(), _submittal(parent_submittal_id=1), _submittal(), _submittal()]
        assert submittal_analytics.resubmittal_rate(rows)["resubmittal_rate"] == 25

    def test_by_division(self):
        rows = [_submittal(), _submittal(spec_section="26 05 00")]
        result = submittal_analytics.cycle_times_by_division(rows)
        assert [r["division_title"] for r in result] == ["Concrete", "Electrical"]

    def test_overdue_procurement_skips_closed(self):
        today = date(2024, 6, 1)
        rows = [
            _submittal(status="submitted", procurement_deadline=date(2024, 5, 20)),
            _submittal(id=2, procurement_deadline=date(2024, 5, 1)),
        ]
        result = submittal_analytics.overdue_procurement(rows, today)
        assert [r["days_overdue"] for r in result] == [12]

    def test_endpoint(self, client, project, owner_headers, draft):
        res = client.get(f"/api/v1/projects/{project.id}/submittals/analytics",
                         headers=owner_headers)
        data = res.get_json()["data"]
        assert data["pipeline"]["draft"] == 1
        assert data["resubmittals"]["total_submittals"] == 1
