"""
Plaid Test Kit Authentication Module
Guards routes behind the caller's encrypted Plaid credentials
"""

import logging
from functools import wraps
from typing import Optional

from flask import session, redirect, request, g

from logging_config import AuthLogger
from routes.responses import error_response
from services.container import get_services
from services.credential_codec import CredentialRecord
from services.errors import AuthenticationError, DecryptionError

logger = logging.getLogger(__name__)
auth_log = AuthLogger()

AUTH_PAGE = '/auth'


def wants_html() -> bool:
    """True when the client prefers an HTML page over a JSON body."""
    if request.is_json:
        return False
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'text/html'


def current_credentials() -> Optional[CredentialRecord]:
    """Credentials resolved for this request by credentials_required."""
    return g.get('credentials')


def credentials_required(f):
    """
    Decorator to require stored Plaid credentials.

    No credentials: HTML clients are redirected to /auth, everyone else gets
    a 401. Credentials that fail to decrypt are cleared first and reported
    as an invalid session.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        store = get_services().credentials
        had_credentials = store.has_credentials(session, request.cookies)
        record = store.load(session, request.cookies)

        if record is None:
            error = DecryptionError() if had_credentials else AuthenticationError()
            auth_log.event('access_denied', path=request.path, reason=error.error_type)
            if wants_html():
                target = f"{AUTH_PAGE}?error=session_invalid" if had_credentials else AUTH_PAGE
                return redirect(target)
            return error_response(error.public_message(), error.status_code, error.error_type)

        g.credentials = record
        return f(*args, **kwargs)
    return decorated_function
