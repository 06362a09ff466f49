"""
Health and index routes
"""

import time
import platform
from flask import Blueprint, jsonify

from auth import credentials_required, current_credentials
from routes.responses import success_response, timestamp
from services.rate_limiter import rate_limit, DEFAULT_LIMIT

VERSION = '2.0.0'

health_bp = Blueprint('health', __name__)

_started_at = time.monotonic()


@health_bp.route('/health', methods=['GET'])
@rate_limit(DEFAULT_LIMIT)
def health():
    """Liveness probe for Railway. Public."""
    return jsonify({
        'status': 'OK',
        'timestamp': timestamp(),
        'uptime': int(time.monotonic() - _started_at),
        'environment': 'sandbox',
        'version': VERSION,
        'python_version': platform.python_version(),
    })


@health_bp.route('/', methods=['GET'])
@credentials_required
def index():
    """Landing document for an authenticated caller."""
    record = current_credentials()
    return success_response({
        'service': 'Plaid Test Kit',
        'client_id': record.masked_key_id(),
        'environment': record.environment,
        'endpoints': {
            'link': ['/api/create-link-token', '/api/exchange-token', '/api/set-token'],
            'testers': ['/api/get-accounts', '/api/test-identity', '/api/test-auth', '/api/test-balance'],
            'webhooks': ['/api/webhooks', '/api/webhooks/stats', '/api/webhooks/export'],
        },
    }, 'Plaid Test Kit')
