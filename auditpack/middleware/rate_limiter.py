"""
Rate limiting configuration.

The Limiter instance is created in auditpack/__init__.py with no default
limits; this module applies AUTH_RATE_LIMIT to the credential endpoints,
keyed by client IP. Disabled in testing via RATELIMIT_ENABLED.

Usage:
    from auditpack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Endpoints that accept credentials or send mail
LIMITED_ENDPOINTS = (
    "auth_bp.sign_in",
    "auth_bp.sign_up",
    "auth_bp.password_reset",
    "auth_bp.password_reset_confirm",
)


def init_rate_limits(app, limiter):
    """Wrap the credential endpoints with the AUTH_RATE_LIMIT limit."""
    limit = app.config.get("AUTH_RATE_LIMIT", "10/minute")
    for endpoint in LIMITED_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view is None:
            logger.warning("Rate limit target missing: %s", endpoint)
            continue
        app.view_functions[endpoint] = limiter.limit(limit)(view)
    logger.debug("Auth rate limit %s on %d endpoints", limit, len(LIMITED_ENDPOINTS))
