"""
Siteline — Scheduled Jobs.

Importing this module registers every job with the scheduler.

Jobs:
    - rfi_overdue_digest: email each assignee the RFIs past their due date
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("rfi_overdue_digest", schedule="0 13 * * *")
def rfi_overdue_digest(app) -> dict[str, Any]:
    """Send one overdue-RFI digest email per assignee."""
    from app.services.digest_service import send_overdue_rfi_digests

    return send_overdue_rfi_digests()
