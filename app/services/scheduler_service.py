"""
Siteline — Scheduler Service.

Jobs are plain functions registered by name together with the cron
expression the hosting platform should use. Siteline does not tick a clock
itself: the platform's cron hits ``/api/v1/cron/...`` or an operator runs
``flask run-job <name>``, and every execution is stored as a JobRun.

    @register_job("rfi_overdue_digest", schedule="0 13 * * *")
    def rfi_overdue_digest(app):
        ...

    SchedulerService.run_job("rfi_overdue_digest", trigger="cli")
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable

from flask import Flask, current_app, has_app_context

from app.models import db
from app.models.scheduling import RUN_TRIGGERS, JobRun, ScheduledJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredJob:
    name: str
    fn: Callable[[Flask], Any]
    schedule: str

    @property
    def description(self) -> str:
        return (self.fn.__doc__ or f"Scheduled job: {self.name}").strip()[:500]


_job_registry: dict[str, RegisteredJob] = {}


def register_job(name: str, schedule: str = "0 0 * * *"):
    """Decorator adding ``fn(app)`` to the registry under ``name``."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = RegisteredJob(name=name, fn=fn, schedule=schedule)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, RegisteredJob]:
    return dict(_job_registry)


class SchedulerService:
    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler ready: %s", ", ".join(sorted(_job_registry)) or "no jobs")

    @classmethod
    def _target_app(cls) -> Flask | None:
        if has_app_context():
            return current_app._get_current_object()
        return cls._app

    @staticmethod
    def _context(app: Flask):
        # Reuse the caller's context (request or CLI) so one session sees the run
        return nullcontext() if has_app_context() else app.app_context()

    @classmethod
    def _job_row(cls, job: RegisteredJob) -> ScheduledJob:
        row = ScheduledJob.query.filter_by(job_name=job.name).first()
        if row is None:
            row = ScheduledJob(job_name=job.name, description=job.description,
                               schedule=job.schedule, is_enabled=True)
            db.session.add(row)
            db.session.flush()
        return row

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Create the ScheduledJob rows missing for registered jobs; returns their names."""
        app = cls._target_app()
        if app is None:
            return []
        with cls._context(app):
            known = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            missing = [job for name, job in _job_registry.items() if name not in known]
            for job in missing:
                cls._job_row(job)
            if missing:
                db.session.commit()
                logger.info("Registered %d scheduled job(s)", len(missing))
        return [job.name for job in missing]

    @classmethod
    def run_job(cls, job_name: str, trigger: str = "manual") -> dict:
        """
        Execute one job and record the run.

        Returns ``{"job_name", "status", "duration_ms", "result", "error"}``
        where status is success, failed, skipped (job switched off) or error
        (unknown job / scheduler not initialised). Job exceptions are caught
        and reported as ``failed``.
        """
        job = _job_registry.get(job_name)
        if job is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if trigger not in RUN_TRIGGERS:
            raise ValueError(f"Unknown trigger: {trigger}")
        app = cls._target_app()
        if app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        log_extra = {"job_name": job_name}
        with cls._context(app):
            row = cls._job_row(job)
            if not row.is_enabled:
                db.session.commit()
                logger.info("Skipping disabled job %s", job_name, extra=log_extra)
                return {"job_name": job_name, "status": "skipped", "error": "Job is disabled"}

            run = JobRun(job_id=row.id, trigger=trigger)
            db.session.add(run)
            db.session.commit()
            run_id = run.id

            start = time.monotonic()
            result = error = None
            status = "success"
            try:
                result = job.fn(app)
            except Exception as exc:
                db.session.rollback()
                status, error = "failed", str(exc)
                logger.exception("Job %s failed", job_name, extra=log_extra)
            duration_ms = int((time.monotonic() - start) * 1000)

            run = db.session.get(JobRun, run_id)
            run.finish(status, duration_ms,
                       result=result if isinstance(result, dict) else None, error=error)
            db.session.commit()

        logger.info("Job %s (%s) finished: %s", job_name, trigger, status,
                    extra={**log_extra, "duration_ms": duration_ms})
        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def list_jobs(cls, include_runs: int = 0) -> list[dict]:
        rows = {r.job_name: r for r in ScheduledJob.query.all()}
        out = []
        for name, job in sorted(_job_registry.items()):
            row = rows.get(name)
            out.append(row.to_dict(include_runs=include_runs) if row else {
                "job_name": name, "description": job.description, "schedule": job.schedule,
                "is_enabled": True, "run_count": 0, "failure_count": 0, "last_run": None,
            })
        return out

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        job = _job_registry.get(job_name)
        if job is None:
            return None
        row = cls._job_row(job)
        row.is_enabled = enabled
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "disabled",
                    extra={"job_name": job_name})
        return row.to_dict()
