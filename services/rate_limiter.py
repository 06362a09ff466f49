"""
Rate Limiter Service for the Plaid Test Kit
Provides rate limiting that can be shared across blueprints
"""

import logging

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = "30 per minute"

# Created unbound so blueprints can decorate routes at import time.
# Storage and enablement come from app.config in init_limiter().
limiter = Limiter(key_func=get_remote_address)


def init_limiter(app):
    """
    Bind the shared limiter to the Flask app.

    Reads RATELIMIT_STORAGE_URI (memory:// unless configured) and
    RATELIMIT_ENABLED from app.config.
    """
    app.config.setdefault('RATELIMIT_STORAGE_URI', 'memory://')
    app.config.setdefault('RATELIMIT_HEADERS_ENABLED', True)
    limiter.init_app(app)
    logger.info(
        f"Rate limiter initialized with storage: {app.config['RATELIMIT_STORAGE_URI']} "
        f"(enabled={app.config.get('RATELIMIT_ENABLED', True)})"
    )
    return limiter


def webhook_limit() -> str:
    """Per-IP limit for the webhook receiver, taken from settings."""
    return current_app.config.get('WEBHOOK_RATE_LIMIT', DEFAULT_LIMIT)


def rate_limit(limit_value):
    """
    Decorator factory for rate limiting.

    Usage:
        @rate_limit("30 per minute")
        def my_endpoint():
            ...

    Args:
        limit_value: Limit string or a callable returning one
    """
    return limiter.limit(limit_value)


def get_limiter():
    """Get the limiter instance (for use with blueprints)."""
    return limiter
