"""
Budget API tests: allocations and history, burn rate, costs with receipts,
vendor invoices (approval + AI parse), quotes and budget line items, and
the XLSX cost report.
"""

import io
import json
from datetime import date

import pytest
from openpyxl import load_workbook

from app.models import db
from app.models.budget import BudgetLineItem, Invoice, ProjectCost
from app.services import budget_service, invoice_service, quote_service
from app.services.storage_service import UploadedFile
from app.utils.validation import FieldValidator

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _file(name="scan.png", mime="image/png", data=PNG_BYTES):
    return (io.BytesIO(data), name, mime)


def _cost(project, owner, category, amount, day=date(2024, 3, 1)):
    cost = ProjectCost(project_id=project.id, category=category, amount=amount,
                       description="Recorded in test", cost_date=day, created_by_id=owner.id)
    db.session.add(cost)
    db.session.commit()
    return cost


def _upload_invoice(project, owner, **fields):
    data = {"category": "materials", "amount": 1500}
    data.update(fields)
    result = invoice_service.upload_invoice(
        user=owner, project_id=project.id, data=data,
        upload=UploadedFile(filename="invoice.png", content_type="image/png", data=PNG_BYTES))
    assert result.success, result.error
    return result.data


# ═════════════════════════════════════════════════════════════════════════════
# Allocations
# ═════════════════════════════════════════════════════════════════════════════


class TestAllocations:
    def test_allocate_and_breakdown(self, client, project, owner, owner_headers):
        res = client.put(f"/api/v1/projects/{project.id}/budget/allocations", headers=owner_headers,
                         json={"allocations": [{"category": "labor", "amount": 40000},
                                               {"category": "materials", "amount": 30000}],
                               "reason": "Initial budget"})
        assert res.status_code == 200
        _cost(project, owner, "labor", 10000)

        res = client.get(f"/api/v1/projects/{project.id}/budget", headers=owner_headers)
        data = res.get_json()["data"]
        labor = next(c for c in data["categories"] if c["category"] == "labor")
        assert labor == {"category": "labor", "allocated": 40000, "spent": 10000,
                         "remaining": 30000, "percent_spent": 25.0}
        assert data["totals"]["allocated"] == 70000
        assert [c["category"] for c in data["categories"]] == ["labor", "materials", "equipment", "other"]

    def test_total_cannot_exceed_project_budget(self, client, project, owner_headers):
        res = client.put(f"/api/v1/projects/{project.id}/budget/allocations", headers=owner_headers,
                         json={"allocations": [{"category": "labor", "amount": 60000},
                                               {"category": "materials", "amount": 50000}]})
        assert res.status_code == 422
        assert res.get_json()["error"] == (
            "Total allocation ($110,000.00) exceeds project budget ($100,000.00)")

    def test_existing_allocations_count_toward_cap(self, client, project, owner_headers):
        url = f"/api/v1/projects/{project.id}/budget/allocations"
        client.put(url, headers=owner_headers,
                   json={"allocations": [{"category": "labor", "amount": 80000}]})
        res = client.put(url, headers=owner_headers,
                         json={"allocations": [{"category": "equipment", "amount": 30000}]})
        assert res.status_code == 422

    def test_entry_errors_are_indexed(self, client, project, owner_headers):
        res = client.put(f"/api/v1/projects/{project.id}/budget/allocations", headers=owner_headers,
                         json={"allocations": [{"category": "labor", "amount": -5},
                                               {"category": "snacks", "amount": 10}]})
        assert res.status_code == 422
        errors = res.get_json()["field_errors"]
        assert "allocations.0.amount" in errors
        assert "allocations.1.category" in errors

    def test_viewer_cannot_allocate(self, client, project, make_user, add_member, auth_headers):
        viewer = add_member(project, make_user("viewer@example.com"), "viewer")
        res = client.put(f"/api/v1/projects/{project.id}/budget/allocations",
                         headers=auth_headers(viewer),
                         json={"allocations": [{"category": "labor", "amount": 100}]})
        assert res.status_code == 403
        assert res.get_json()["error"] == budget_service.ALLOCATION_ROLE_ERROR

    def test_history_records_changes_only(self, client, project, owner_headers):
        url = f"/api/v1/projects/{project.id}/budget/allocations"
        client.put(url, headers=owner_headers,
                   json={"allocations": [{"category": "labor", "amount": 1000}]})
        client.put(url, headers=owner_headers,
                   json={"allocations": [{"category": "labor", "amount": 1000}]})
        client.put(url, headers=owner_headers, json={
            "allocations": [{"category": "labor", "amount": 2500}], "reason": "Added crew"})

        res = client.get(f"/api/v1/projects/{project.id}/budget/history", headers=owner_headers)
        history = res.get_json()["data"]
        assert len(history) == 2
        assert history[0]["old_amount"] == 1000
        assert history[0]["new_amount"] == 2500
        assert history[0]["reason"] == "Added crew"
        assert history[1]["old_amount"] is None


# ═════════════════════════════════════════════════════════════════════════════
# Burn rate
# ═════════════════════════════════════════════════════════════════════════════


class TestBurnRate:
    @pytest.mark.parametrize("spent, status", [
        (18200, "on_track"),
        (54600, "warning"),
        (91000, "critical"),
    ])
    def test_status_thresholds(self, project, owner, spent, status):
        _cost(project, owner, "labor", spent)
        result = budget_service.get_burn_rate(user=owner, project_id=project.id,
                                              today=date(2024, 7, 1))
        assert result.success
        assert result.data["days_elapsed"] == 182
        assert result.data["days_total"] == 365
        assert result.data["status"] == status

    def test_before_start_uses_spend_as_forecast(self, project, owner):
        _cost(project, owner, "labor", 5000)
        data = budget_service.get_burn_rate(user=owner, project_id=project.id,
                                            today=date(2023, 12, 1)).data
        assert data["days_elapsed"] == 0
        assert data["daily_burn_rate"] == 0
        assert data["forecasted_total"] == 5000
        assert data["status"] == "on_track"

    def test_endpoint(self, client, project, owner_headers):
        res = client.get(f"/api/v1/projects/{project.id}/budget/burn-rate", headers=owner_headers)
        assert res.status_code == 200
        assert "forecasted_overrun" in res.get_json()["data"]


# ═════════════════════════════════════════════════════════════════════════════
# Costs
# ═════════════════════════════════════════════════════════════════════════════


class TestCosts:
    def test_create_with_receipts(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          data={"category": "equipment", "amount": "850.25",
                                "description": "Scissor lift rental", "cost_date": "2024-02-10",
                                "receipts": [_file("r1.png"), _file("r2.pdf", "application/pdf")]},
                          content_type="multipart/form-data")
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["amount"] == 850.25
        assert [r["file_name"] for r in data["receipts"]] == ["r1.png", "r2.pdf"]

    def test_json_body_without_receipts(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          json={"category": "labor", "amount": 120, "description": "Overtime crew",
                                "cost_date": "2024-02-11"})
        assert res.status_code == 201
        assert res.get_json()["data"]["receipts"] == []

    def test_validation(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          json={"category": "labor", "amount": 0, "description": "tiny",
                                "cost_date": "02/11/2024"})
        assert res.status_code == 422
        assert set(res.get_json()["field_errors"]) == {"amount", "description", "cost_date"}

    @pytest.mark.parametrize("amount", ["NaN", "inf", "-Infinity", "1e999"])
    def test_non_finite_amount_rejected(self, client, project, owner_headers, amount):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          json={"category": "labor", "amount": amount,
                                "description": "Overtime crew", "cost_date": "2024-02-11"})
        assert res.status_code == 422
        assert res.get_json()["field_errors"] == {"amount": ["Amount must be a number"]}
        assert ProjectCost.query.count() == 0

    @pytest.mark.parametrize("raw", ["nan", "Infinity", float("inf"), float("nan")])
    def test_validator_rejects_non_finite(self, raw):
        v = FieldValidator({"cost_impact": raw})
        assert v.number("cost_impact") is None
        assert v.errors == {"cost_impact": ["Cost impact must be a number"]}

    def test_too_many_receipts(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          data={"category": "labor", "amount": "10", "description": "Receipts",
                                "cost_date": "2024-02-11",
                                "receipts": [_file(f"r{i}.png") for i in range(6)]},
                          content_type="multipart/form-data")
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["receipts"] == ["Maximum 5 attachments allowed"]

    def test_receipt_type(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/costs", headers=owner_headers,
                          data={"category": "labor", "amount": "10", "description": "Receipts",
                                "cost_date": "2024-02-11",
                                "receipts": [_file("notes.txt", "text/plain", b"hello")]},
                          content_type="multipart/form-data")
        assert res.status_code == 422
        assert "PDF, JPEG, PNG, or HEIC" in res.get_json()["error"]

    def test_filter_update_delete(self, client, project, owner, owner_headers):
        labor = _cost(project, owner, "labor", 100)
        _cost(project, owner, "materials", 200)
        res = client.get(f"/api/v1/projects/{project.id}/costs?category=labor",
                         headers=owner_headers)
        assert [c["id"] for c in res.get_json()["data"]] == [labor.id]

        res = client.patch(f"/api/v1/projects/{project.id}/costs/{labor.id}",
                           headers=owner_headers, json={"amount": 150})
        assert res.get_json()["data"]["amount"] == 150

        res = client.delete(f"/api/v1/projects/{project.id}/costs/{labor.id}",
                            headers=owner_headers)
        assert res.status_code == 200
        assert budget_service.spent_by_category(project.id) == {"materials": 200}

    def test_supervisor_cannot_delete(self, client, project, owner, make_user, add_member,
                                      auth_headers):
        cost = _cost(project, owner, "labor", 100)
        supervisor = add_member(project, make_user("super@example.com"), "supervisor")
        res = client.delete(f"/api/v1/projects/{project.id}/costs/{cost.id}",
                            headers=auth_headers(supervisor))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Invoices
# ═════════════════════════════════════════════════════════════════════════════


class TestInvoices:
    def test_upload_is_pending(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/invoices", headers=owner_headers,
                          data={"category": "materials", "amount": "2400",
                                "vendor_name": "Ready Mix Co", "file": _file()},
                          content_type="multipart/form-data")
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["status"] == "pending"
        assert data["vendor_name"] == "Ready Mix Co"
        assert data["mime_type"] == "image/png"

    def test_upload_requires_file(self, client, project, owner_headers):
        res = client.post(f"/api/v1/projects/{project.id}/invoices", headers=owner_headers,
                          data={"category": "materials", "amount": "2400"},
                          content_type="multipart/form-data")
        assert res.status_code == 422
        assert res.get_json()["error"] == "File is required"

    def test_approval_counts_toward_spend(self, client, project, owner, owner_headers):
        invoice = _upload_invoice(project, owner)
        assert budget_service.spent_by_category(project.id) == {}

        res = client.post(f"/api/v1/projects/{project.id}/invoices/{invoice['id']}/approve",
                          headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["approved_by_id"] == owner.id
        assert budget_service.spent_by_category(project.id) == {"materials": 1500}

        res = client.post(f"/api/v1/projects/{project.id}/invoices/{invoice['id']}/approve",
                          headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["error"] == "Cannot approve invoice with status: approved"

    def test_only_managers_approve(self, client, project, owner, make_user, add_member,
                                   auth_headers):
        invoice = _upload_invoice(project, owner)
        supervisor = add_member(project, make_user("super@example.com"), "supervisor")
        res = client.post(f"/api/v1/projects/{project.id}/invoices/{invoice['id']}/approve",
                          headers=auth_headers(supervisor))
        assert res.status_code == 403
        assert res.get_json()["error"] == "Only managers can approve invoices"

    def test_reject_requires_reason(self, client, project, owner, owner_headers):
        invoice = _upload_invoice(project, owner)
        url = f"/api/v1/projects/{project.id}/invoices/{invoice['id']}/reject"
        assert client.post(url, headers=owner_headers, json={"reason": "bad"}).status_code == 422
        res = client.post(url, headers=owner_headers,
                          json={"reason": "Duplicate of invoice 1042"})
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "rejected"

    def test_edit_only_while_pending(self, client, project, owner, owner_headers):
        invoice = _upload_invoice(project, owner)
        url = f"/api/v1/projects/{project.id}/invoices/{invoice['id']}"
        res = client.patch(url, headers=owner_headers, json={"amount": 1600, "category": "labor"})
        assert res.get_json()["data"]["budget_category"] == "labor"
        client.post(f"{url}/approve", headers=owner_headers)
        res = client.patch(url, headers=owner_headers, json={"amount": 1})
        assert res.status_code == 422

    def test_list_filters(self, client, project, owner, owner_headers):
        first = _upload_invoice(project, owner)
        _upload_invoice(project, owner, category="labor")
        invoice_service.approve_invoice(user=owner, project_id=project.id, invoice_id=first["id"])
        res = client.get(f"/api/v1/projects/{project.id}/invoices?status=approved",
                         headers=owner_headers)
        assert [i["id"] for i in res.get_json()["data"]] == [first["id"]]
        res = client.get(f"/api/v1/projects/{project.id}/invoices?status=paid",
                         headers=owner_headers)
        assert res.status_code == 422

    def test_soft_delete(self, client, project, owner, owner_headers):
        invoice = _upload_invoice(project, owner)
        url = f"/api/v1/projects/{project.id}/invoices/{invoice['id']}"
        assert client.delete(url, headers=owner_headers).status_code == 200
        assert client.get(url, headers=owner_headers).status_code == 404
        assert db.session.get(Invoice, invoice["id"]).deleted_at is not None


class TestInvoiceParsing:
    def test_fills_only_empty_fields(self, project, owner, fake_gateway):
        invoice = _upload_invoice(project, owner, vendor_name="Typed Vendor LLC")
        content = "```json\n" + json.dumps({
            "vendorName": "Model Vendor", "invoiceNumber": "INV-88",
            "invoiceDate": "03/15/2024", "amount": 1500, "description": "Rebar",
            "lineItems": [{"description": "#4 rebar", "quantity": 10, "unitPrice": 150,
                           "amount": 1500}],
        }) + "\n```"
        gateway = fake_gateway(content=content)
        result = invoice_service.parse_invoice(user=owner, project_id=project.id,
                                               invoice_id=invoice["id"], gateway=gateway)
        assert result.success, result.error
        data = result.data
        assert data["vendor_name"] == "Typed Vendor LLC"
        assert data["invoice_number"] == "INV-88"
        assert data["invoice_date"] == "2024-03-15"
        assert data["ai_parsed"] is True
        assert data["ai_confidence"] == 1.0
        assert data["extracted"]["line_items"][0]["unit_price"] == 150
        assert gateway.calls[0]["purpose"] == "invoice_extraction"
        image = gateway.calls[0]["messages"][1]["images"][0]
        assert image["mime_type"] == "image/png"

    def test_gateway_failure_is_validation_error(self, project, owner, fake_gateway):
        invoice = _upload_invoice(project, owner)
        result = invoice_service.parse_invoice(user=owner, project_id=project.id,
                                               invoice_id=invoice["id"],
                                               gateway=fake_gateway(error="provider down"))
        assert result.status == 422
        assert result.error.startswith("Failed to parse invoice: provider down")

    def test_pdf_is_not_parsed(self, project, owner):
        result = invoice_service.upload_invoice(
            user=owner, project_id=project.id, data={"category": "labor", "amount": 10},
            upload=UploadedFile(filename="inv.pdf", content_type="application/pdf",
                                data=b"%PDF-1.4 test"))
        parsed = invoice_service.parse_invoice(user=owner, project_id=project.id,
                                               invoice_id=result.data["id"])
        assert parsed.status == 422
        assert "images only" in parsed.error

    def test_endpoint_uses_local_stub(self, client, project, owner, owner_headers):
        invoice = _upload_invoice(project, owner)
        res = client.post(f"/api/v1/projects/{project.id}/invoices/{invoice['id']}/parse",
                          headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["vendor_name"] == "Unknown Vendor"
        assert data["ai_confidence"] == 0.0


# ═════════════════════════════════════════════════════════════════════════════
# Quotes & line items
# ═════════════════════════════════════════════════════════════════════════════


class TestQuotes:
    def _quote(self, client, project, headers):
        res = client.post(f"/api/v1/projects/{project.id}/quotes", headers=headers,
                          data={"vendor_name": "Steel Supply", "file": _file("quote.png")},
                          content_type="multipart/form-data")
        assert res.status_code == 201
        return res.get_json()["data"]

    def test_parse_is_a_preview(self, client, project, owner, owner_headers, fake_gateway):
        quote = self._quote(client, project, owner_headers)
        gateway = fake_gateway(content=json.dumps({
            "vendor": "Steel Supply", "quote_number": "Q-7", "quote_date": "2024-04-02",
            "line_items": [
                {"line_number": 1, "description": "W8x10 beam", "quantity": 4,
                 "unit_of_measure": "EA", "unit_price": 250, "line_total": 999,
                 "category_hint": "Materials", "confidence": 0.9},
            ],
            "total_amount": 1000, "confidence": 0.85,
        }))
        result = quote_service.parse_quote(user=owner, project_id=project.id,
                                           quote_id=quote["id"], gateway=gateway)
        assert result.success
        item = result.data["line_items"][0]
        assert item["line_total"] == 1000  # recomputed from qty x price
        assert item["category_hint"] == "materials"
        assert BudgetLineItem.query.count() == 0

    def test_confirm_persists_verified_rows(self, client, project, owner_headers):
        quote = self._quote(client, project, owner_headers)
        res = client.post(f"/api/v1/projects/{project.id}/quotes/confirm", headers=owner_headers,
                          json={"quote_id": quote["id"], "line_items": [
                              {"description": "Beam", "quantity": 4, "unit_price": 250,
                               "line_total": 1000, "category": "materials", "confidence": 0.9},
                              {"description": "Crane time", "line_total": 800,
                               "category": "equipment", "confidence": 0.7},
                          ]})
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert [i["line_number"] for i in data["line_items"]] == [1, 2]
        assert all(i["is_verified"] for i in data["line_items"])
        assert data["quote"]["ai_confidence"] == 0.8

    def test_confirm_rejects_mismatched_total(self, client, project, owner_headers):
        quote = self._quote(client, project, owner_headers)
        res = client.post(f"/api/v1/projects/{project.id}/quotes/confirm", headers=owner_headers,
                          json={"quote_id": quote["id"], "line_items": [
                              {"description": "Beam", "quantity": 4, "unit_price": 250,
                               "line_total": 900}]})
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["line_items.0.line_total"] == [
            "Line total mismatch: expected 1000.00, got 900.00"]


class TestLineItems:
    def _add(self, client, project, headers, **body):
        res = client.post(f"/api/v1/projects/{project.id}/line-items", headers=headers, json=body)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["data"]

    def test_manual_add_numbers_sequentially(self, client, project, owner_headers):
        first = self._add(client, project, owner_headers, description="Drywall", line_total=500)
        second = self._add(client, project, owner_headers, description="Paint", line_total=200)
        assert (first["line_number"], second["line_number"]) == (1, 2)
        assert first["category"] == "other"

    def test_update_checks_merged_total(self, client, project, owner_headers):
        item = self._add(client, project, owner_headers, description="Pipe", quantity=10,
                         unit_price=5, line_total=50)
        url = f"/api/v1/projects/{project.id}/line-items/{item['id']}"
        assert client.patch(url, headers=owner_headers, json={"quantity": 12}).status_code == 422
        res = client.patch(url, headers=owner_headers, json={"quantity": 12, "line_total": 60})
        assert res.get_json()["data"]["quantity"] == 12

    def test_search(self, client, project, owner_headers):
        self._add(client, project, owner_headers, description="Copper pipe", line_total=900,
                  category="materials")
        self._add(client, project, owner_headers, description="PVC pipe", line_total=90,
                  category="materials")
        self._add(client, project, owner_headers, description="Labor", line_total=5000,
                  category="labor")
        res = client.get(f"/api/v1/projects/{project.id}/line-items/search?q=PIPE&min=100",
                         headers=owner_headers)
        data = res.get_json()["data"]
        assert data["count"] == 1
        assert data["items"][0]["description"] == "Copper pipe"

    @pytest.mark.parametrize("q", ["%", "_", "\\"])
    def test_search_treats_wildcards_literally(self, client, project, owner_headers, q):
        self._add(client, project, owner_headers, description="Copper pipe", line_total=900)
        self._add(client, project, owner_headers, description="Fill 100% grout", line_total=40)
        res = client.get(f"/api/v1/projects/{project.id}/line-items/search",
                         query_string={"q": q}, headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        expected = ["Fill 100% grout"] if q == "%" else []
        assert [item["description"] for item in data["items"]] == expected

    def test_delete(self, client, project, owner_headers):
        item = self._add(client, project, owner_headers, description="Temp", line_total=1)
        res = client.delete(f"/api/v1/projects/{project.id}/line-items/{item['id']}",
                            headers=owner_headers)
        assert res.status_code == 200
        assert BudgetLineItem.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Cost report export
# ═════════════════════════════════════════════════════════════════════════════


class TestCostReport:
    def test_xlsx_download(self, client, project, owner, owner_headers):
        _cost(project, owner, "labor", 1234.5)
        res = client.get(f"/api/v1/projects/{project.id}/budget/export", headers=owner_headers)
        assert res.status_code == 200
        assert res.headers["Content-Disposition"] == 'attachment; filename="cost-report-RMO-2401.xlsx"'
        wb = load_workbook(io.BytesIO(res.data))
        assert wb.sheetnames == ["Summary", "Costs", "Invoices"]
        assert wb["Summary"]["A1"].value == "Cost Report - Riverside Medical Office"
        assert wb["Costs"]["D2"].value == 1234.5

    def test_export_denied_to_outsider(self, client, project, make_user, auth_headers):
        stranger = make_user("stranger@example.com")
        res = client.get(f"/api/v1/projects/{project.id}/budget/export",
                         headers=auth_headers(stranger))
        assert res.status_code == 403
