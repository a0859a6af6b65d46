import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.models.budget import BudgetLineItem, Invoice, ProjectCost

HEALTH_FILLS = {
    "healthy": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
    "warning": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "critical": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
}
WHITE_FONT = Font(color="FFFFFF", bold=True)
HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
MONEY_FORMAT = "#,##0.00"

logger = logging.getLogger(__name__)


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _write_table(ws, start_row: int, headers: list[str], rows: list[list],
                 money_cols: tuple[int, ...] = ()) -> int:
    """Write a header + rows block; returns the next free row."""
    for col, header in enumerate(headers, 1):
        ws.cell(row=start_row, column=col, value=header)
    _apply_header_style(ws, start_row, len(headers))
    row_num = start_row
    for row_num, values in enumerate(rows, start_row + 1):
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row_num, column=col, value=value)
            cell.border = THIN_BORDER
            if col in money_cols:
                cell.number_format = MONEY_FORMAT
    return row_num + 1


# ═════════════════════════════════════════════════════════════════════════════
# Cost report (XLSX)
# ═════════════════════════════════════════════════════════════════════════════


def generate_cost_report_xlsx(project, breakdown: dict, burn_rate: dict | None = None) -> bytes:
    """
    Build the project cost report workbook.

    Sheets: Summary (per-category budget vs spend), Costs, Invoices,
    Line Items. ``breakdown`` is the dict produced by
    ``budget_service.build_breakdown``.
    """
    wb = Workbook()

    # ── Sheet 1: Summary ─────────────────────────────────────────────────
    ws = wb.active
    ws.title = "Summary"
    ws.merge_cells("A1:E1")
    ws["A1"] = f"Cost Report - {project.name}"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")
    if project.budget is not None:
        ws["A3"] = "Project Budget"
        ws["B3"] = project.budget
        ws["B3"].number_format = MONEY_FORMAT

    rows = [
        [c["category"].capitalize(), c["allocated"], c["spent"], c["remaining"],
         c["percent_spent"]]
        for c in breakdown["categories"]
    ]
    totals = breakdown["totals"]
    rows.append(["Total", totals["allocated"], totals["spent"], totals["remaining"],
                 totals["percent_spent"]])
    next_row = _write_table(ws, 5, ["Category", "Allocated", "Spent", "Remaining", "% Spent"],
                            rows, money_cols=(2, 3, 4))
    for col in range(1, 6):
        ws.cell(row=next_row - 1, column=col).font = Font(bold=True)

    if burn_rate:
        ws.cell(row=next_row + 1, column=1, value="Burn Rate Status").font = Font(bold=True)
        status_cell = ws.cell(row=next_row + 1, column=2, value=burn_rate["status"].upper())
        fill_key = {"on_track": "healthy"}.get(burn_rate["status"], burn_rate["status"])
        status_cell.fill = HEALTH_FILLS.get(fill_key, HEALTH_FILLS["warning"])
        status_cell.font = WHITE_FONT
        ws.cell(row=next_row + 2, column=1, value="Daily Burn Rate")
        ws.cell(row=next_row + 2, column=2, value=burn_rate["daily_burn_rate"]).number_format = MONEY_FORMAT
        ws.cell(row=next_row + 3, column=1, value="Forecasted Total")
        ws.cell(row=next_row + 3, column=2, value=burn_rate["forecasted_total"]).number_format = MONEY_FORMAT
    _auto_width(ws)

    # ── Sheet 2: Costs ───────────────────────────────────────────────────
    costs = (ProjectCost.query_active().filter(ProjectCost.project_id == project.id)
             .order_by(ProjectCost.cost_date, ProjectCost.id).all())
    ws2 = wb.create_sheet("Costs")
    _write_table(ws2, 1, ["Date", "Category", "Description", "Amount", "Receipts"], [
        [c.cost_date.isoformat() if c.cost_date else "", c.category, c.description,
         c.amount, len(c.receipts or [])]
        for c in costs
    ], money_cols=(4,))
    _auto_width(ws2)

    # ── Sheet 3: Invoices ────────────────────────────────────────────────
    invoices = (Invoice.query_active().filter(Invoice.project_id == project.id)
                .order_by(Invoice.created_at, Invoice.id).all())
    ws3 = wb.create_sheet("Invoices")
    _write_table(ws3, 1, ["Vendor", "Invoice #", "Date", "Category", "Amount", "Status"], [
        [i.vendor_name or "", i.invoice_number or "",
         i.invoice_date.isoformat() if i.invoice_date else "", i.budget_category,
         i.amount, i.status]
        for i in invoices
    ], money_cols=(5,))
    _auto_width(ws3)

    # ── Sheet 4: Line Items ──────────────────────────────────────────────
    items = (BudgetLineItem.query.filter(BudgetLineItem.project_id == project.id)
             .order_by(BudgetLineItem.line_number).all())
    if items:
        ws4 = wb.create_sheet("Line Items")
        _write_table(ws4, 1, ["#", "Description", "Qty", "Unit", "Unit Price", "Total", "Category"], [
            [i.line_number, i.description, i.quantity, i.unit_of_measure or "",
             i.unit_price, i.line_total, i.category]
            for i in items
        ], money_cols=(5, 6))
        _auto_width(ws4)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Cost report generated", extra={"project_id": project.id})
    return buf.getvalue()


# ═════════════════════════════════════════════════════════════════════════════
# QuickBooks CSV (daily reports)
# ═════════════════════════════════════════════════════════════════════════════


def _qb_date(value) -> str:
    """QuickBooks expects M/D/YYYY without zero padding."""
    return f"{value.month}/{value.day}/{value.year}"


def _to_csv(rows: list[list]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue().rstrip("\n")


def generate_quickbooks_time_tracking_csv(report, project) -> str:
    """One row per crew and equipment entry of a single daily report."""
    rows = [["Date", "Resource Name", "Service Item", "Hours", "Rate", "Amount",
             "Description", "Customer/Project"]]
    day = _qb_date(report.report_date)
    customer = project.number or project.name

    for entry in report.crew_entries:
        hours = entry.hours_worked or 0
        rate = entry.hourly_rate or 0
        rows.append([
            day, entry.trade, entry.classification or "Labor",
            f"{hours:.2f}", f"{rate:.2f}", f"{hours * rate:.2f}",
            f"{entry.headcount} workers - {entry.trade}", customer,
        ])
    for entry in report.equipment_entries:
        hours = entry.hours_used or 0
        rate = entry.hourly_rate or 0
        description = entry.equipment_description
        if entry.equipment_id:
            description = f"{description} ({entry.equipment_id})"
        rows.append([
            day, entry.equipment_description, "Equipment Rental",
            f"{hours:.2f}", f"{rate:.2f}", f"{hours * rate:.2f}",
            description, customer,
        ])
    return _to_csv(rows)


def generate_quickbooks_labor_summary_csv(reports, project) -> str:
    rows = [["Date", "Project", "Trade", "Classification", "Headcount", "Total Hours",
             "Avg Hours per Worker"]]
    for report in reports:
        day = _qb_date(report.report_date)
        for entry in report.crew_entries:
            hours = entry.hours_worked or 0
            avg = hours / entry.headcount if entry.headcount else 0
            rows.append([day, project.name, entry.trade, entry.classification or "-",
                         str(entry.headcount), f"{hours:.2f}", f"{avg:.2f}"])
    return _to_csv(rows)


def generate_quickbooks_equipment_summary_csv(reports, project) -> str:
    rows = [["Date", "Project", "Equipment", "Equipment ID", "Quantity", "Hours Used"]]
    for report in reports:
        day = _qb_date(report.report_date)
        for entry in report.equipment_entries:
            rows.append([day, project.name, entry.equipment_description,
                         entry.equipment_id or "-", str(entry.quantity),
                         f"{entry.hours_used or 0:.2f}"])
    return _to_csv(rows)
