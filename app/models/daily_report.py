"""
Siteline — daily field report models.

One report per project per calendar day once it leaves draft. A report
carries the day's weather (fetched from the weather API or entered by
hand), a narrative and itemised entries.

Models:
    - DailyReport
    - DailyReportCrewEntry: trade headcount and hours
    - DailyReportEquipmentEntry
    - DailyReportMaterialEntry: deliveries received on site
    - DailyReportIncident: safety / delay / quality / visitor / inspection events
    - DailyReportAttachment: site photos with optional GPS and camera metadata
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

REPORT_STATUSES = ("draft", "submitted", "approved", "archived")
WEATHER_CONDITIONS = ("clear", "partly_cloudy", "overcast", "rain", "snow", "fog", "wind")
WEATHER_SOURCES = ("api", "cache", "manual")
PHOTO_CATEGORIES = ("progress", "safety", "quality", "site_conditions", "other")
INCIDENT_TYPES = ("safety", "delay", "quality", "visitor", "inspection", "other")
INCIDENT_SEVERITIES = ("low", "medium", "high", "critical")


def _iso(value):
    return value.isoformat() if value else None


class DailyReport(db.Model):
    __tablename__ = "daily_reports"
    __table_args__ = (
        db.Index("ix_daily_reports_project_date", "project_id", "report_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    report_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")

    work_hours_start = db.Column(db.String(5), nullable=True, comment="HH:MM")
    work_hours_end = db.Column(db.String(5), nullable=True, comment="HH:MM")
    narrative = db.Column(db.Text, nullable=True)
    delays_challenges = db.Column(db.Text, nullable=True)
    safety_notes = db.Column(db.Text, nullable=True)
    visitors_inspections = db.Column(db.Text, nullable=True)

    # Weather
    weather_condition = db.Column(db.String(20), nullable=True)
    temperature_high = db.Column(db.Float, nullable=True, comment="°F")
    temperature_low = db.Column(db.Float, nullable=True, comment="°F")
    precipitation = db.Column(db.Float, nullable=True, comment="inches")
    wind_speed = db.Column(db.Float, nullable=True, comment="mph")
    humidity = db.Column(db.Integer, nullable=True, comment="percent")
    weather_source = db.Column(db.String(10), nullable=True, comment="api, cache, manual")
    weather_fetched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    weather_delays = db.Column(db.Boolean, default=False, nullable=False)
    weather_delay_notes = db.Column(db.Text, nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                                nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    crew_entries = db.relationship("DailyReportCrewEntry", back_populates="report",
                                   order_by="DailyReportCrewEntry.id",
                                   cascade="all, delete-orphan")
    equipment_entries = db.relationship("DailyReportEquipmentEntry", back_populates="report",
                                        order_by="DailyReportEquipmentEntry.id",
                                        cascade="all, delete-orphan")
    material_entries = db.relationship("DailyReportMaterialEntry", back_populates="report",
                                       order_by="DailyReportMaterialEntry.id",
                                       cascade="all, delete-orphan")
    incidents = db.relationship("DailyReportIncident", back_populates="report",
                                order_by="DailyReportIncident.id",
                                cascade="all, delete-orphan")
    attachments = db.relationship("DailyReportAttachment", back_populates="report",
                                  cascade="all, delete-orphan")

    @property
    def total_crew_count(self):
        return sum(e.headcount or 0 for e in self.crew_entries)

    @property
    def total_crew_hours(self):
        return sum(e.hours_worked or 0 for e in self.crew_entries)

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "report_date": _iso(self.report_date),
            "status": self.status,
            "work_hours_start": self.work_hours_start,
            "work_hours_end": self.work_hours_end,
            "narrative": self.narrative,
            "delays_challenges": self.delays_challenges,
            "safety_notes": self.safety_notes,
            "visitors_inspections": self.visitors_inspections,
            "weather_condition": self.weather_condition,
            "temperature_high": self.temperature_high,
            "temperature_low": self.temperature_low,
            "precipitation": self.precipitation,
            "wind_speed": self.wind_speed,
            "humidity": self.humidity,
            "weather_source": self.weather_source,
            "weather_fetched_at": _iso(self.weather_fetched_at),
            "weather_delays": self.weather_delays,
            "weather_delay_notes": self.weather_delay_notes,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_by_id": self.created_by_id,
            "submitted_at": _iso(self.submitted_at),
            "submitted_by_id": self.submitted_by_id,
            "approved_at": _iso(self.approved_at),
            "approved_by_id": self.approved_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["crew_entries"] = [e.to_dict() for e in self.crew_entries]
            d["equipment_entries"] = [e.to_dict() for e in self.equipment_entries]
            d["material_entries"] = [e.to_dict() for e in self.material_entries]
            d["incidents"] = [e.to_dict() for e in self.incidents]
            d["attachments"] = [a.to_dict() for a in self.attachments]
            d["total_crew_count"] = self.total_crew_count
            d["total_crew_hours"] = round(self.total_crew_hours, 2)
        return d

    def __repr__(self):
        return f"<DailyReport project={self.project_id} {self.report_date} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════════════


class DailyReportCrewEntry(db.Model):
    __tablename__ = "daily_report_crew_entries"

    id = db.Column(db.Integer, primary_key=True)
    daily_report_id = db.Column(db.Integer,
                                db.ForeignKey("daily_reports.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    trade = db.Column(db.String(100), nullable=False)
    classification = db.Column(db.String(100), nullable=True)
    headcount = db.Column(db.Integer, nullable=False)
    hours_worked = db.Column(db.Float, nullable=False, default=0)
    hourly_rate = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    report = db.relationship("DailyReport", back_populates="crew_entries")

    def to_dict(self):
        return {
            "id": self.id,
            "daily_report_id": self.daily_report_id,
            "trade": self.trade,
            "classification": self.classification,
            "headcount": self.headcount,
            "hours_worked": self.hours_worked,
            "hourly_rate": self.hourly_rate,
            "notes": self.notes,
        }


class DailyReportEquipmentEntry(db.Model):
    __tablename__ = "daily_report_equipment_entries"

    id = db.Column(db.Integer, primary_key=True)
    daily_report_id = db.Column(db.Integer,
                                db.ForeignKey("daily_reports.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    equipment_description = db.Column(db.String(200), nullable=False)
    equipment_id = db.Column(db.String(50), nullable=True, comment="Fleet / rental tag")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    hours_used = db.Column(db.Float, nullable=True)
    hourly_rate = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    report = db.relationship("DailyReport", back_populates="equipment_entries")

    def to_dict(self):
        return {
            "id": self.id,
            "daily_report_id": self.daily_report_id,
            "equipment_description": self.equipment_description,
            "equipment_id": self.equipment_id,
            "quantity": self.quantity,
            "hours_used": self.hours_used,
            "hourly_rate": self.hourly_rate,
            "notes": self.notes,
        }


class DailyReportMaterialEntry(db.Model):
    __tablename__ = "daily_report_material_entries"

    id = db.Column(db.Integer, primary_key=True)
    daily_report_id = db.Column(db.Integer,
                                db.ForeignKey("daily_reports.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    material_description = db.Column(db.String(200), nullable=False)
    supplier = db.Column(db.String(100), nullable=True)
    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(50), nullable=False)
    delivery_time = db.Column(db.String(5), nullable=True, comment="HH:MM")
    delivery_ticket = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    report = db.relationship("DailyReport", back_populates="material_entries")

    def to_dict(self):
        return {
            "id": self.id,
            "daily_report_id": self.daily_report_id,
            "material_description": self.material_description,
            "supplier": self.supplier,
            "quantity": self.quantity,
            "unit": self.unit,
            "delivery_time": self.delivery_time,
            "delivery_ticket": self.delivery_ticket,
            "location": self.location,
            "notes": self.notes,
        }


class DailyReportIncident(db.Model):
    __tablename__ = "daily_report_incidents"

    id = db.Column(db.Integer, primary_key=True)
    daily_report_id = db.Column(db.Integer,
                                db.ForeignKey("daily_reports.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    incident_type = db.Column(db.String(20), nullable=False)
    severity = db.Column(db.String(20), nullable=True)
    time_occurred = db.Column(db.String(5), nullable=True, comment="HH:MM")
    description = db.Column(db.String(2000), nullable=False)
    involved_parties = db.Column(db.String(500), nullable=True)
    corrective_action = db.Column(db.String(1000), nullable=True)
    reported_to = db.Column(db.String(200), nullable=True)
    follow_up_required = db.Column(db.Boolean, default=False, nullable=False)
    osha_recordable = db.Column(db.Boolean, default=False, nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    report = db.relationship("DailyReport", back_populates="incidents")

    def to_dict(self):
        return {
            "id": self.id,
            "daily_report_id": self.daily_report_id,
            "incident_type": self.incident_type,
            "severity": self.severity,
            "time_occurred": self.time_occurred,
            "description": self.description,
            "involved_parties": self.involved_parties,
            "corrective_action": self.corrective_action,
            "reported_to": self.reported_to,
            "follow_up_required": self.follow_up_required,
            "osha_recordable": self.osha_recordable,
            "notes": self.notes,
        }


class DailyReportAttachment(db.Model):
    __tablename__ = "daily_report_attachments"

    id = db.Column(db.Integer, primary_key=True)
    daily_report_id = db.Column(db.Integer,
                                db.ForeignKey("daily_reports.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    caption = db.Column(db.String(500), nullable=True)
    category = db.Column(db.String(20), nullable=False, default="progress")
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    date_taken = db.Column(db.DateTime(timezone=True), nullable=True)
    camera_make = db.Column(db.String(100), nullable=True)
    camera_model = db.Column(db.String(100), nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    report = db.relationship("DailyReport", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "daily_report_id": self.daily_report_id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "caption": self.caption,
            "category": self.category,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "date_taken": _iso(self.date_taken),
            "camera_make": self.camera_make,
            "camera_model": self.camera_model,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
