"""
PDF rendering for daily reports (reportlab platypus).

    generate_daily_report_pdf(report, project) → bytes

Layout: title, long-form date, project, status, then one section per
populated part of the report (weather, work performed, crew, equipment,
material deliveries, incidents, delays, safety, visitors). Every page
gets a "Generated <date>" / "Page N" footer.
"""

import io
from datetime import date

from markupsafe import escape
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

TABLE_STYLE = TableStyle([
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2980B9")),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 9),
    ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F5F5F5")]),
    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
])


def _text(value):
    """Paragraph markup is XML-ish; user text must be escaped and keep its line breaks."""
    return str(escape(value or "")).replace("\n", "<br/>")


def _cell(value):
    return "" if value is None else str(value)


def _long_date(day):
    return f"{day:%A, %B} {day.day}, {day.year}"


def _footer(canvas, doc):
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    canvas.drawString(doc.leftMargin, 0.5 * inch, f"Generated {date.today().strftime('%m/%d/%Y')}")
    canvas.drawRightString(letter[0] - doc.rightMargin, 0.5 * inch, f"Page {doc.page}")
    canvas.restoreState()


def _table(elements, rows):
    table = Table(rows, repeatRows=1, hAlign="LEFT")
    table.setStyle(TABLE_STYLE)
    elements.append(table)
    elements.append(Spacer(1, 12))


def _weather_lines(report):
    lines = [f"Condition: {report.weather_condition.replace('_', ' ')}"]
    if report.temperature_high is not None and report.temperature_low is not None:
        lines.append(f"Temperature: {report.temperature_high}°F / {report.temperature_low}°F")
    if report.precipitation is not None:
        lines.append(f'Precipitation: {report.precipitation}"')
    if report.wind_speed is not None:
        lines.append(f"Wind Speed: {report.wind_speed} mph")
    if report.humidity is not None:
        lines.append(f"Humidity: {report.humidity}%")
    if report.weather_delays:
        lines.append("Weather delays: yes")
        if report.weather_delay_notes:
            lines.append(_text(report.weather_delay_notes))
    return lines


def generate_daily_report_pdf(report, project):
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter,
                            title=f"Daily Report {report.report_date.isoformat()}")
    styles = getSampleStyleSheet()
    h2 = styles["Heading2"]
    body = styles["Normal"]
    elements = [
        Paragraph("Daily Construction Report", styles["Title"]),
        Paragraph(_long_date(report.report_date), styles["Heading3"]),
        Paragraph(_text(project.name), body),
        Paragraph(f"<b>Status: {report.status.upper()}</b>", body),
        Spacer(1, 16),
    ]
    if report.work_hours_start and report.work_hours_end:
        elements.insert(4, Paragraph(
            f"Work hours: {report.work_hours_start} to {report.work_hours_end}", body))

    if report.weather_condition:
        elements.append(Paragraph("Weather Conditions", h2))
        elements.extend(Paragraph(line, body) for line in _weather_lines(report))
        elements.append(Spacer(1, 12))

    if report.narrative:
        elements.append(Paragraph("Work Performed", h2))
        elements.append(Paragraph(_text(report.narrative), body))
        elements.append(Spacer(1, 12))

    if report.crew_entries:
        elements.append(Paragraph(f"Crew (Total: {report.total_crew_count})", h2))
        rows = [["Trade", "Classification", "Headcount", "Hours"]]
        rows += [[e.trade, _cell(e.classification), _cell(e.headcount), _cell(e.hours_worked)]
                 for e in report.crew_entries]
        _table(elements, rows)

    if report.equipment_entries:
        elements.append(Paragraph("Equipment", h2))
        rows = [["Description", "Equipment ID", "Quantity", "Hours"]]
        rows += [[e.equipment_description, _cell(e.equipment_id), _cell(e.quantity),
                  _cell(e.hours_used)] for e in report.equipment_entries]
        _table(elements, rows)

    if report.material_entries:
        elements.append(Paragraph("Material Deliveries", h2))
        rows = [["Material", "Supplier", "Quantity", "Unit"]]
        rows += [[e.material_description, _cell(e.supplier), _cell(e.quantity), e.unit]
                 for e in report.material_entries]
        _table(elements, rows)

    if report.incidents:
        elements.append(Paragraph("Incidents &amp; Notes", h2))
        for incident in report.incidents:
            heading = incident.incident_type.upper()
            if incident.severity:
                heading += f" ({incident.severity})"
            if incident.time_occurred:
                heading += f" at {incident.time_occurred}"
            elements.append(Paragraph(f"<b>{heading}</b>", body))
            elements.append(Paragraph(_text(incident.description), body))
            if incident.corrective_action:
                elements.append(Paragraph(
                    f"<i>Action:</i> {_text(incident.corrective_action)}", body))
            elements.append(Spacer(1, 6))
        elements.append(Spacer(1, 6))

    for title, value in (("Delays &amp; Challenges", report.delays_challenges),
                         ("Safety Notes", report.safety_notes),
                         ("Visitors &amp; Inspections", report.visitors_inspections)):
        if value:
            elements.append(Paragraph(title, h2))
            elements.append(Paragraph(_text(value), body))
            elements.append(Spacer(1, 12))

    doc.build(elements, onFirstPage=_footer, onLaterPages=_footer)
    return buffer.getvalue()
