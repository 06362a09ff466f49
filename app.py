#!/usr/bin/env python3
"""
Plaid Test Kit
==============

Flask application factory.

Run locally:
    python app.py

Run under gunicorn (Railway):
    gunicorn "app:create_app()" --bind 0.0.0.0:$PORT --threads 8
"""

import atexit
import logging
from datetime import timedelta
from typing import Callable, Optional

from cachelib import FileSystemCache
from flask import Flask, jsonify, session
from flask_session import Session
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config.settings import Settings, get_settings, validate_settings
from logging_config import flask_request_logger, init_logging
from routes import register_blueprints
from routes.responses import error_response, timestamp
from services.container import EXTENSION_KEY, ServiceContainer, get_services
from services.credential_codec import CredentialCodec, CredentialRecord
from services.errors import AppError, DecryptionError
from services.item_registry import ItemRegistry
from services.link_state import LinkStateStore
from services.rate_limiter import init_limiter
from services.session_credentials import SessionCredentialStore, reap_session_files
from services.webhook_ingestor import WebhookIngestor
from services.webhook_store import WebhookStore

logger = logging.getLogger(__name__)

# Requests larger than this are rejected before any parsing
MAX_CONTENT_LENGTH = 1 * 1024 * 1024
SESSION_FILE_THRESHOLD = 10000

HTTP_ERROR_TYPES = {
    400: 'BAD_REQUEST',
    404: 'NOT_FOUND',
    405: 'METHOD_NOT_ALLOWED',
    413: 'PAYLOAD_TOO_LARGE',
    429: 'RATE_LIMIT_EXCEEDED',
}


def default_gateway_factory(settings: Settings) -> Callable[[CredentialRecord], object]:
    """Build real Plaid gateways, importing plaid-python only when the app needs it."""
    from services.plaid_gateway import PlaidGateway

    def factory(record: CredentialRecord):
        return PlaidGateway(record, base_url=settings.BASE_URL)

    return factory


def _encryption_secret(settings: Settings) -> str:
    if settings.ENCRYPTION_KEY:
        return settings.ENCRYPTION_KEY
    # validate_settings() already rejects this in production
    logger.warning("ENCRYPTION_KEY not set - deriving credential key from SECRET_KEY (development only)")
    return settings.SECRET_KEY


def build_services(settings: Settings, gateway_factory: Optional[Callable] = None) -> ServiceContainer:
    """Create one fresh set of stores for an app instance."""
    codec = CredentialCodec(_encryption_secret(settings))
    items = ItemRegistry(ttl_seconds=settings.ITEM_TTL_SECONDS, max_items=settings.ITEM_MAX_ENTRIES)
    webhooks = WebhookStore(retention=timedelta(seconds=settings.WEBHOOK_RETENTION_SECONDS))

    return ServiceContainer(
        settings=settings,
        codec=codec,
        credentials=SessionCredentialStore(
            codec,
            cookie_name=settings.CREDENTIALS_COOKIE_NAME,
            max_age=settings.SESSION_TTL_SECONDS,
            secure=settings.is_production,
        ),
        items=items,
        webhooks=webhooks,
        ingestor=WebhookIngestor(webhooks, items, settings.webhook_allowed_ips),
        link_state=LinkStateStore(ttl_seconds=settings.SESSION_TTL_SECONDS),
        gateway_factory=gateway_factory or default_gateway_factory(settings),
    )


def seed_test_item(services: ServiceContainer) -> bool:
    """Register TEST_ITEM_ID in development so webhooks can be exercised without linking."""
    settings = services.settings
    if not settings.is_development or not settings.TEST_ITEM_ID:
        return False

    try:
        owner = CredentialRecord.from_dict({
            'api_key_id': settings.TEST_CLIENT_ID,
            'api_secret': settings.TEST_SECRET,
            'environment': settings.TEST_ENV,
        })
    except ValueError as e:
        logger.warning(f"TEST_ITEM_ID set but test credentials are incomplete: {e}")
        return False

    return services.items.seed(settings.TEST_ITEM_ID, owner)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def register_error_handlers(app: Flask, settings: Settings) -> None:
    include_details = settings.is_development

    @app.errorhandler(AppError)
    def handle_app_error(error):
        """Expected service-layer failures"""
        if isinstance(error, DecryptionError):
            get_services().credentials.clear(session)
        if error.status_code >= 500:
            logger.error(f"{error.error_type}: {error.message}")
        else:
            logger.info(f"{error.error_type} ({error.status_code}): {error.message}")
        return jsonify({**error.to_dict(include_details), 'timestamp': timestamp()}), error.status_code

    @app.errorhandler(429)
    def rate_limit_error(error):
        """Handle Flask-Limiter rejections"""
        logger.warning(f"Rate limit exceeded: {error.description}")
        return error_response('Too many requests. Please try again later.', 429, 'RATE_LIMIT_EXCEEDED')

    @app.errorhandler(HTTPException)
    def http_error(error):
        """Handle 404/405/413 and other werkzeug errors"""
        error_type = HTTP_ERROR_TYPES.get(error.code, 'HTTP_ERROR')
        return error_response(error.description or error.name, error.code, error_type)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle all uncaught exceptions"""
        logger.exception(f"Unhandled exception: {error}")
        extra = {'message': str(error)} if include_details else None
        return error_response('An unexpected error occurred', 500, 'INTERNAL_ERROR', extra)


# =============================================================================
# BACKGROUND JOBS
# =============================================================================

def start_scheduler(app: Flask, services: ServiceContainer):
    """Hourly maintenance: expired items, stale session files and old webhooks."""
    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    settings = services.settings
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        func=services.items.sweep,
        trigger=IntervalTrigger(seconds=settings.ITEM_SWEEP_INTERVAL_SECONDS),
        id='item_sweep_job',
        name='Evict expired item registrations',
        replace_existing=True
    )
    scheduler.add_job(
        func=reap_session_files,
        args=[settings.SESSION_DIR, settings.SESSION_TTL_SECONDS],
        trigger=IntervalTrigger(seconds=settings.SESSION_REAP_INTERVAL_SECONDS),
        id='session_reap_job',
        name='Remove expired session files',
        replace_existing=True
    )
    scheduler.add_job(
        func=services.webhooks.purge_expired,
        trigger=IntervalTrigger(seconds=settings.ITEM_SWEEP_INTERVAL_SECONDS),
        id='webhook_purge_job',
        name='Purge webhooks past retention',
        replace_existing=True
    )
    scheduler.start()
    logger.info("Background maintenance scheduler started")

    # Shut down scheduler when app exits
    atexit.register(lambda: scheduler.shutdown(wait=False) if scheduler.running else None)
    app.extensions['scheduler'] = scheduler
    return scheduler


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(settings: Optional[Settings] = None,
               gateway_factory: Optional[Callable[[CredentialRecord], object]] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        settings: Settings instance; defaults to get_settings()
        gateway_factory: Callable turning a CredentialRecord into a Plaid gateway
    """
    settings = settings or get_settings()
    validate_settings(settings)

    if not settings.TESTING:
        init_logging(settings)

    app = Flask(__name__)

    # Configure app to trust Railway proxy headers (for HTTPS detection and client IPs)
    if settings.RAILWAY_ENVIRONMENT:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    app.config.update(
        SECRET_KEY=settings.SECRET_KEY,
        TESTING=settings.TESTING,
        DEBUG=settings.DEBUG,
        MAX_CONTENT_LENGTH=MAX_CONTENT_LENGTH,
        # Server-side sessions
        SESSION_TYPE='cachelib',
        SESSION_CACHELIB=FileSystemCache(
            settings.SESSION_DIR,
            threshold=SESSION_FILE_THRESHOLD,
            default_timeout=settings.SESSION_TTL_SECONDS,
        ),
        SESSION_PERMANENT=True,
        PERMANENT_SESSION_LIFETIME=timedelta(seconds=settings.SESSION_TTL_SECONDS),
        SESSION_COOKIE_NAME=settings.SESSION_COOKIE_NAME,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SECURE=settings.is_production,
        SESSION_COOKIE_SAMESITE='Lax',
        # Rate limiting
        RATELIMIT_ENABLED=settings.RATELIMIT_ENABLED,
        RATELIMIT_STORAGE_URI=settings.RATELIMIT_STORAGE_URI,
        WEBHOOK_RATE_LIMIT=settings.WEBHOOK_RATE_LIMIT,
    )

    Session(app)
    flask_request_logger(app)
    init_limiter(app)

    services = build_services(settings, gateway_factory)
    app.extensions[EXTENSION_KEY] = services

    register_blueprints(app)
    register_error_handlers(app, settings)

    seed_test_item(services)

    if not settings.TESTING:
        start_scheduler(app, services)
    else:
        logger.info("Background scheduler disabled under testing")

    logger.info(f"Plaid Test Kit initialized ({settings.ENVIRONMENT})")
    return app


if __name__ == '__main__':
    settings = get_settings()
    application = create_app(settings)
    application.run(host=settings.HOST, port=settings.PORT, debug=settings.DEBUG,
                    threaded=True, use_reloader=False)
