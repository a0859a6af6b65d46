"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter
instance is created in app/__init__.py with no default limits; this
module applies limits per route category after blueprints are registered.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AI_LIMIT = "10/minute"
AUTH_LIMIT = "20/minute"
API_LIMIT = "120/minute"

# Domain blueprints sharing the general API limit
API_BLUEPRINTS = (
    "organization", "project", "budget", "invoice", "rfi",
    "submittal", "daily_report", "change_order",
)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP).

        - AI extraction:    10/minute  (vision LLM calls are expensive)
        - Auth:             20/minute  (credential stuffing)
        - Domain APIs:     120/minute
        - Health, cron:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("ai")
    if bp:
        limiter.limit(AI_LIMIT)(bp)

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(API_LIMIT)(bp)

    for bp_name in ("health", "cron"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    app.logger.info("Rate limiter configured — AI: %s, auth: %s, api: %s",
                    AI_LIMIT, AUTH_LIMIT, API_LIMIT)
