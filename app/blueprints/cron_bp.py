"""
Cron blueprint — endpoints hit by an external scheduler.

Auth is a shared secret, not a user JWT (jwt_auth skips /api/v1/cron/):
    Authorization: Bearer <CRON_SECRET>
When CRON_SECRET is unset every caller is accepted (local development).

Each endpoint runs its job through SchedulerService so the call shows up
in the job's run history next to CLI runs.

Endpoints:
    GET /api/v1/cron/rfi-overdue-digest
"""

import hmac
import logging

from flask import Blueprint, current_app, jsonify, request

from app.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/v1/cron")


def _authorized():
    secret = current_app.config.get("CRON_SECRET")
    if not secret:
        return True
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header.encode(), f"Bearer {secret}".encode())


def _run(job_name):
    if not _authorized():
        logger.warning("Rejected cron call from %s", request.remote_addr,
                       extra={"job_name": job_name})
        return jsonify({"error": "Unauthorized"}), 401

    outcome = SchedulerService.run_job(job_name, trigger="cron")
    if outcome["status"] == "skipped":
        return jsonify({"success": True, "message": outcome["error"], "sent": 0}), 200
    if outcome["status"] != "success":
        return jsonify({"error": "Internal server error", "message": outcome["error"]}), 500
    return jsonify(outcome["result"]), 200


@cron_bp.route("/rfi-overdue-digest", methods=["GET"])
def rfi_overdue_digest():
    return _run("rfi_overdue_digest")
