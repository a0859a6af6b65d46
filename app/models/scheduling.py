"""
Siteline — background job and outbound email models.

Models:
    - ScheduledJob: one row per registered job (cron expression, on/off switch)
    - JobRun: one row per execution, whatever triggered it
    - EmailLog: audit trail of every notification email, sent or not
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

RUN_TRIGGERS = ("cron", "cli", "manual")
RUN_STATUSES = ("running", "success", "failed")
EMAIL_STATUSES = ("queued", "sent", "failed")


def _now():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    A registered job.

    Siteline never runs its own timer. ``schedule`` documents the cron
    expression the hosting platform is configured with; the platform hits
    the cron endpoint (or an operator runs ``flask run-job``).
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule = db.Column(db.String(100), nullable=True)
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    runs = db.relationship("JobRun", backref="job", lazy="dynamic",
                           cascade="all, delete-orphan",
                           order_by="desc(JobRun.id)")

    @property
    def last_run(self):
        return self.runs.first()

    def to_dict(self, include_runs=0):
        last = self.last_run
        data = {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule": self.schedule,
            "is_enabled": self.is_enabled,
            "run_count": self.runs.count(),
            "failure_count": self.runs.filter_by(status="failed").count(),
            "last_run": last.to_dict() if last else None,
        }
        if include_runs:
            data["recent_runs"] = [r.to_dict() for r in self.runs.limit(include_runs)]
        return data

    def __repr__(self):
        return f"<ScheduledJob {self.job_name}{'' if self.is_enabled else ' (off)'}>"


class JobRun(db.Model):
    __tablename__ = "job_runs"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("scheduled_jobs.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    trigger = db.Column(db.String(20), nullable=False, default="manual")
    status = db.Column(db.String(20), nullable=False, default="running")
    started_at = db.Column(db.DateTime(timezone=True), default=_now, nullable=False)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    result = db.Column(db.JSON, nullable=True)
    error = db.Column(db.Text, nullable=True)

    def finish(self, status, duration_ms, result=None, error=None):
        self.status = status
        self.finished_at = _now()
        self.duration_ms = duration_ms
        self.result = result
        self.error = error

    def to_dict(self):
        return {
            "id": self.id,
            "trigger": self.trigger,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
        }


class EmailLog(db.Model):
    """One row per outbound email. ``status`` is queued → sent | failed."""

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(200), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(30), default="system",
                         comment="rfi, submittal, organization, digest, system")
    status = db.Column(db.String(20), default="queued")
    error_message = db.Column(db.Text, nullable=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"),
                           nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "category": self.category,
            "status": self.status,
            "error_message": self.error_message,
            "project_id": self.project_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"
