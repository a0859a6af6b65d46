"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/live   — dependency report; 503 only when the database is down

Cache, weather quota and background jobs are reported but never fail the
probe: each of them has a fallback path.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.integrations.weather import weather_client
from app.models import db
from app.services import cache_service
from app.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "service": "siteline"}), 200


def _database():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _jobs():
    jobs = {}
    for job in SchedulerService.list_jobs():
        last = job["last_run"]
        jobs[job["job_name"]] = {
            "enabled": job["is_enabled"],
            "last_status": last["status"] if last else None,
            "last_run_at": last["started_at"] if last else None,
        }
    return jobs


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _database(),
        "cache": cache_service.health_check(),
    }
    healthy = checks["database"]["status"] == "ok"
    if healthy:
        checks["weather_quota"] = weather_client.limiter.stats()
        checks["jobs"] = _jobs()
    checks["app"] = {
        "name": "Siteline",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    status = "ok" if healthy else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if healthy else 503
