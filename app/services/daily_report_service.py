"""
Daily field reports.

A report starts as a draft for one project and date. Weather is filled
from the cache or the weather API when a location is known; any weather
failure falls back to manual entry and never blocks report creation.
Only one non-draft report may exist per project and date.
"""

import logging

from app.core.actions import server_action
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.integrations import weather
from app.models import db
from app.models.auth import User
from app.models.daily_report import (
    INCIDENT_SEVERITIES,
    INCIDENT_TYPES,
    PHOTO_CATEGORIES,
    REPORT_STATUSES,
    WEATHER_CONDITIONS,
    DailyReport,
    DailyReportAttachment,
    DailyReportCrewEntry,
    DailyReportEquipmentEntry,
    DailyReportIncident,
    DailyReportMaterialEntry,
)
from app.services import (
    export_service,
    pdf_service,
    permission_service,
    storage_service,
    weather_analytics,
)
from app.utils.helpers import parse_datetime, utcnow
from app.utils.validation import FieldValidator

logger = logging.getLogger(__name__)

FINAL_STATUSES = ("submitted", "approved", "archived")

ENTRY_MODELS = {
    "crew": DailyReportCrewEntry,
    "equipment": DailyReportEquipmentEntry,
    "material": DailyReportMaterialEntry,
    "incident": DailyReportIncident,
}


def _get(report_id):
    report = db.session.get(DailyReport, report_id)
    if report is None:
        raise NotFoundError("Daily report", report_id)
    return report


def _load(user, report_id, permission="view_daily_reports"):
    report = _get(report_id)
    permission_service.ensure_project_access(user, report.project_id, permission)
    return report


def _require_draft_owner(user, report, message):
    if report.status != "draft":
        raise ValidationError("Cannot edit daily report after submission")
    if report.created_by_id != user.id:
        raise ForbiddenError(message, public=True)


def _existing_final(project_id, report_date, exclude_id=None):
    query = DailyReport.query.filter(
        DailyReport.project_id == project_id,
        DailyReport.report_date == report_date,
        DailyReport.status.in_(FINAL_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(DailyReport.id != exclude_id)
    return query.first()


def _validate_weather(v):
    v.choice("weather_condition", WEATHER_CONDITIONS)
    v.number("temperature_high")
    v.number("temperature_low")
    v.number("precipitation", min_value=0)
    v.number("wind_speed", min_value=0)
    v.number("humidity", min_value=0, max_value=100, integer=True)


def _validate_narrative(v):
    v.string("narrative", max_len=10000)
    v.string("delays_challenges", max_len=5000)
    v.string("safety_notes", max_len=5000)
    v.string("visitors_inspections", max_len=5000)
    v.time("work_hours_start")
    v.time("work_hours_end")
    v.boolean("weather_delays")
    v.string("weather_delay_notes", max_len=2000)


def fetch_weather(latitude, longitude, report_date):
    """Return ``(fields, source)``; ``({}, "manual")`` when the lookup fails."""
    try:
        data = weather.weather_client.get_weather(latitude, longitude, report_date)
    except (weather.WeatherAPIError, weather.WeatherRateLimitError) as exc:
        logger.warning("Weather lookup failed, falling back to manual entry: %s", exc)
        return {}, "manual"
    fields = {
        "weather_condition": data.get("condition"),
        "temperature_high": data.get("temperature_high"),
        "temperature_low": data.get("temperature_low"),
        "precipitation": data.get("precipitation"),
        "wind_speed": data.get("wind_speed"),
        "humidity": data.get("humidity"),
        "weather_fetched_at": parse_datetime(data.get("fetched_at")) or utcnow(),
    }
    return fields, data.get("source", "api")


# ── Queries ──────────────────────────────────────────────────────────────────

@server_action
def list_reports(*, user, project_id, status=None, start_date=None, end_date=None):
    permission_service.ensure_project_access(user, project_id, "view_daily_reports")
    query = DailyReport.query.filter(DailyReport.project_id == project_id)
    if status:
        if status not in REPORT_STATUSES:
            raise ValidationError("Invalid status", details={"status": ["Invalid status"]})
        query = query.filter(DailyReport.status == status)
    if start_date:
        query = query.filter(DailyReport.report_date >= start_date)
    if end_date:
        query = query.filter(DailyReport.report_date <= end_date)
    reports = query.order_by(DailyReport.report_date.desc(), DailyReport.id.desc()).all()
    return [dict(r.to_dict(), total_crew_count=r.total_crew_count) for r in reports]


@server_action
def get_report(*, user, report_id):
    return _load(user, report_id).to_dict(include_children=True)


# ── Lifecycle ────────────────────────────────────────────────────────────────

@server_action
def create_report(*, user, project_id, data):
    project = permission_service.ensure_project_access(user, project_id, "create_daily_report")
    v = FieldValidator(data)
    report_date = v.date("report_date", required=True)
    latitude = v.number("latitude", min_value=-90, max_value=90)
    longitude = v.number("longitude", min_value=-180, max_value=180)
    _validate_weather(v)
    _validate_narrative(v)
    v.raise_if_errors()

    existing = _existing_final(project_id, report_date)
    if existing is not None:
        raise ValidationError(f"A {existing.status} report already exists for this date")

    fields = dict(v.cleaned)
    fields.pop("report_date")
    if latitude is None or longitude is None:
        latitude, longitude = project.latitude, project.longitude
    fields["latitude"], fields["longitude"] = latitude, longitude

    if fields.get("weather_condition"):
        fields["weather_source"] = "manual"
    elif latitude is not None and longitude is not None:
        weather_fields, source = fetch_weather(latitude, longitude, report_date)
        for key, value in weather_fields.items():
            if fields.get(key) is None:
                fields[key] = value
        fields["weather_source"] = source
    else:
        fields["weather_source"] = "manual"

    report = DailyReport(project_id=project_id, report_date=report_date, status="draft",
                         created_by_id=user.id, **fields)
    db.session.add(report)
    db.session.commit()
    logger.info("Daily report %s created for %s (weather: %s)", report.id, report_date,
                report.weather_source, extra={"user_id": user.id, "project_id": project_id})
    body = report.to_dict()
    body["weather_fetched"] = report.weather_source in ("api", "cache")
    return body


@server_action
def update_report(*, user, report_id, data):
    report = _load(user, report_id, "edit_daily_report")
    _require_draft_owner(user, report, "Only the creator can update this draft report")
    v = FieldValidator(data, partial=True)
    _validate_weather(v)
    _validate_narrative(v)
    v.raise_if_errors()

    weather_keys = {"weather_condition", "temperature_high", "temperature_low",
                    "precipitation", "wind_speed", "humidity"}
    for key, value in v.cleaned.items():
        setattr(report, key, value)
    if weather_keys & v.cleaned.keys():
        report.weather_source = "manual"
    db.session.commit()
    return report.to_dict()


@server_action
def submit_report(*, user, report_id):
    report = _load(user, report_id)
    if report.created_by_id != user.id:
        raise ForbiddenError("Only the creator can submit this report", public=True)
    if report.status != "draft":
        raise ValidationError(f"Cannot submit report with status: {report.status}")
    if not report.weather_condition:
        raise ValidationError("Weather condition is required before submission")
    if not report.crew_entries and not report.equipment_entries and not (report.narrative or "").strip():
        raise ValidationError(
            "Report must include at least one crew entry, equipment entry, or narrative")

    existing = _existing_final(report.project_id, report.report_date, exclude_id=report.id)
    if existing is not None:
        submitter = db.session.get(User, existing.submitted_by_id) if existing.submitted_by_id else None
        name = submitter.display_name if submitter else "another user"
        raise ValidationError(f"A report for this date has already been submitted by {name}")

    report.status = "submitted"
    report.submitted_at = utcnow()
    report.submitted_by_id = user.id
    db.session.commit()
    logger.info("Daily report %s submitted", report.id,
                extra={"user_id": user.id, "project_id": report.project_id})
    return report.to_dict()


@server_action
def approve_report(*, user, report_id):
    report = _load(user, report_id, "approve_daily_report")
    if report.status != "submitted":
        raise ValidationError(f"Cannot approve report with status: {report.status}")
    report.status = "approved"
    report.approved_at = utcnow()
    report.approved_by_id = user.id
    db.session.commit()
    logger.info("Daily report %s approved", report.id,
                extra={"user_id": user.id, "project_id": report.project_id})
    return report.to_dict()


@server_action
def delete_report(*, user, report_id):
    report = _load(user, report_id)
    if report.status != "draft":
        raise ValidationError("Only draft reports can be deleted")
    if report.created_by_id != user.id and not permission_service.is_project_manager(
            user.id, report.project_id):
        raise ForbiddenError("Only the creator or project manager can delete this report",
                             public=True)
    for photo in report.attachments:
        storage_service.delete("daily-reports", photo.file_path)
    db.session.delete(report)
    db.session.commit()
    return {"id": report_id, "deleted": True}


@server_action
def copy_from_previous(*, user, project_id, data):
    """New draft for ``report_date`` seeded with the latest report's crew and equipment."""
    permission_service.ensure_project_access(user, project_id, "create_daily_report")
    v = FieldValidator(data)
    report_date = v.date("report_date", required=True)
    v.raise_if_errors()

    previous = (DailyReport.query
                .filter(DailyReport.project_id == project_id,
                        DailyReport.report_date < report_date)
                .order_by(DailyReport.report_date.desc(), DailyReport.id.desc())
                .first())
    if previous is None:
        raise ValidationError("No previous report found to copy from")
    existing = _existing_final(project_id, report_date)
    if existing is not None:
        raise ValidationError(f"A {existing.status} report already exists for this date")

    report = DailyReport(
        project_id=project_id, report_date=report_date, status="draft",
        created_by_id=user.id, latitude=previous.latitude, longitude=previous.longitude,
        work_hours_start=previous.work_hours_start, work_hours_end=previous.work_hours_end,
    )
    for entry in previous.crew_entries:
        report.crew_entries.append(DailyReportCrewEntry(
            trade=entry.trade, classification=entry.classification,
            headcount=entry.headcount, hours_worked=entry.hours_worked,
            hourly_rate=entry.hourly_rate,
        ))
    for entry in previous.equipment_entries:
        report.equipment_entries.append(DailyReportEquipmentEntry(
            equipment_description=entry.equipment_description,
            equipment_id=entry.equipment_id, quantity=entry.quantity,
            hours_used=entry.hours_used, hourly_rate=entry.hourly_rate,
        ))
    db.session.add(report)
    db.session.commit()
    return {
        "report": report.to_dict(include_children=True),
        "copied_from_id": previous.id,
        "crew_copied": len(report.crew_entries),
        "equipment_copied": len(report.equipment_entries),
    }


# ── Entries ──────────────────────────────────────────────────────────────────

def _validate_entry(entry_type, v):
    if entry_type == "crew":
        v.string("trade", required=True, min_len=1, max_len=100)
        v.string("classification", max_len=100)
        v.number("headcount", required=True, greater_than=0, integer=True)
        v.number("hours_worked", required=True, min_value=0)
        v.money("hourly_rate", min_value=0)
    elif entry_type == "equipment":
        v.string("equipment_description", required=True, min_len=1, max_len=200)
        v.string("equipment_id", max_len=50)
        v.number("quantity", required=True, greater_than=0, integer=True)
        v.number("hours_used", min_value=0)
        v.money("hourly_rate", min_value=0)
    elif entry_type == "material":
        v.string("material_description", required=True, min_len=1, max_len=200)
        v.string("supplier", max_len=100)
        v.number("quantity", required=True, greater_than=0)
        v.string("unit", required=True, min_len=1, max_len=50)
        v.time("delivery_time")
        v.string("delivery_ticket", max_len=100)
        v.string("location", max_len=200)
    else:
        v.choice("incident_type", INCIDENT_TYPES, required=True)
        v.choice("severity", INCIDENT_SEVERITIES)
        v.time("time_occurred")
        v.string("description", required=True, min_len=1, max_len=2000)
        v.string("involved_parties", max_len=500)
        v.string("corrective_action", max_len=1000)
        v.string("reported_to", max_len=200)
        v.boolean("follow_up_required")
        v.boolean("osha_recordable")
    v.string("notes", max_len=1000 if entry_type == "incident" else 500)


@server_action
def add_entry(*, user, report_id, entry_type, data):
    if entry_type not in ENTRY_MODELS:
        raise NotFoundError("Entry type", entry_type)
    report = _load(user, report_id, "edit_daily_report")
    if report.status != "draft":
        raise ValidationError("Entries can only be added to draft reports")
    v = FieldValidator(data)
    _validate_entry(entry_type, v)
    v.raise_if_errors()

    entry = ENTRY_MODELS[entry_type](daily_report_id=report.id, **v.cleaned)
    db.session.add(entry)
    db.session.commit()
    return entry.to_dict()


@server_action
def delete_entry(*, user, report_id, entry_type, entry_id):
    model = ENTRY_MODELS.get(entry_type)
    if model is None:
        raise NotFoundError("Entry type", entry_type)
    report = _load(user, report_id, "edit_daily_report")
    if report.status != "draft":
        raise ValidationError("Entries can only be removed from draft reports")
    entry = db.session.get(model, entry_id)
    if entry is None or entry.daily_report_id != report.id:
        raise NotFoundError("Entry", entry_id)
    db.session.delete(entry)
    db.session.commit()
    return {"id": entry_id, "deleted": True}


# ── Photos ───────────────────────────────────────────────────────────────────

@server_action
def upload_photo(*, user, report_id, upload, data=None):
    report = _load(user, report_id, "edit_daily_report")
    v = FieldValidator(data)
    v.string("caption", max_len=500)
    category = v.choice("category", PHOTO_CATEGORIES, default="progress")
    v.number("latitude", min_value=-90, max_value=90)
    v.number("longitude", min_value=-180, max_value=180)
    v.datetime("date_taken")
    v.string("camera_make", max_len=100)
    v.string("camera_model", max_len=100)
    v.raise_if_errors()

    storage_service.validate_upload("daily-reports", upload)
    path = storage_service.save("daily-reports", report.project_id, upload)
    fields = dict(v.cleaned)
    fields["category"] = category
    photo = DailyReportAttachment(
        daily_report_id=report.id, file_path=path, file_name=upload.filename,
        file_size=upload.size, mime_type=upload.content_type, uploaded_by_id=user.id,
        **fields,
    )
    db.session.add(photo)
    db.session.commit()
    return photo.to_dict()


@server_action
def delete_photo(*, user, report_id, photo_id):
    report = _load(user, report_id)
    photo = db.session.get(DailyReportAttachment, photo_id)
    if photo is None or photo.daily_report_id != report.id:
        raise NotFoundError("Photo", photo_id)
    if photo.uploaded_by_id != user.id and not permission_service.is_project_manager(
            user.id, report.project_id):
        raise ForbiddenError("Only the uploader or project manager can delete this photo",
                             public=True)
    storage_service.delete("daily-reports", photo.file_path)
    db.session.delete(photo)
    db.session.commit()
    return {"id": photo_id, "deleted": True}


# ── Exports & analytics ──────────────────────────────────────────────────────

QUICKBOOKS_EXPORTS = {
    "labor": ("labor-summary", export_service.generate_quickbooks_labor_summary_csv),
    "equipment": ("equipment-summary", export_service.generate_quickbooks_equipment_summary_csv),
}


def _range_reports(project_id, start_date, end_date, statuses=None):
    query = DailyReport.query.filter(
        DailyReport.project_id == project_id,
        DailyReport.report_date >= start_date,
        DailyReport.report_date <= end_date,
    )
    if statuses:
        query = query.filter(DailyReport.status.in_(statuses))
    return query.order_by(DailyReport.report_date, DailyReport.id).all()


def _date_range(data):
    v = FieldValidator(data)
    start = v.date("start_date", required=True)
    end = v.date("end_date", required=True)
    if start and end and start > end:
        v.add_error("end_date", "End date must be on or after start date")
    v.raise_if_errors()
    return start, end


@server_action
def export_pdf(*, user, report_id):
    report = _load(user, report_id)
    content = pdf_service.generate_daily_report_pdf(report, report.project)
    return {"filename": f"daily-report-{report.report_date.isoformat()}.pdf",
            "content": content}


@server_action
def export_quickbooks(*, user, report_id):
    """Time-tracking CSV for a single report."""
    report = _load(user, report_id)
    content = export_service.generate_quickbooks_time_tracking_csv(report, report.project)
    return {"filename": f"quickbooks-time-{report.report_date.isoformat()}.csv",
            "content": content}


@server_action
def export_quickbooks_summary(*, user, project_id, kind, data):
    """Labor or equipment summary CSV over submitted/approved reports in a date range."""
    if kind not in QUICKBOOKS_EXPORTS:
        raise NotFoundError("Export", kind)
    project = permission_service.ensure_project_access(user, project_id, "view_daily_reports")
    start, end = _date_range(data)
    reports = _range_reports(project_id, start, end, statuses=("submitted", "approved"))
    label, generate = QUICKBOOKS_EXPORTS[kind]
    return {"filename": f"quickbooks-{label}-{start.isoformat()}-to-{end.isoformat()}.csv",
            "content": generate(reports, project), "report_count": len(reports)}


@server_action
def get_weather_analytics(*, user, project_id, data):
    permission_service.ensure_project_access(user, project_id, "view_daily_reports")
    start, end = _date_range(data)
    reports = _range_reports(project_id, start, end)
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "summary": weather_analytics.analyze_weather_patterns(reports),
        "monthly": weather_analytics.monthly_summary(reports),
        "days": [
            {"date": r.report_date.isoformat(), "condition": r.weather_condition,
             **weather_analytics.weather_impact_severity(r)}
            for r in reports
        ],
    }
