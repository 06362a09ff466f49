"""
Authentication Routes for the Plaid Test Kit
Credential entry form, key validation, logout and auth status
"""

import logging
from flask import Blueprint, request, session, redirect, render_template_string

from auth import credentials_required, current_credentials, wants_html
from logging_config import AuthLogger
from routes.responses import success_response, error_response
from services.container import get_services
from services.credential_codec import CredentialRecord, SUPPORTED_ENVIRONMENTS
from services.errors import ValidationError, VendorError
from services.validation import json_object, validate_required

# Configure logging
logger = logging.getLogger(__name__)
auth_log = AuthLogger()

# Create Blueprint
auth_bp = Blueprint('auth', __name__)

AUTH_ERROR_MESSAGES = {
    'invalid': 'Invalid credentials or authentication failed',
    'session_invalid': 'Session expired or corrupted. Please login again.',
    'validation_failed': 'Unable to validate credentials with Plaid servers',
    'format_error': 'Credential format is incorrect',
}
DEFAULT_AUTH_ERROR = 'Authentication failed'

AUTH_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Plaid Test Kit - Secure Authentication</title>
</head>
<body>
  <main style="max-width: 600px; margin: 50px auto; font-family: sans-serif;">
    <h1>Plaid Test Kit</h1>
    <p>Enter your Plaid API credentials below to get started.</p>
    {% if error_message %}<div class="status status-error" role="alert">{{ error_message }}</div>{% endif %}
    {% if notice %}<div class="status status-info">{{ notice }}</div>{% endif %}
    <form method="POST" action="/api/validate-key" id="authForm">
      <label>Plaid Client ID:
        <input type="text" name="clientId" required autocomplete="off">
      </label>
      <label>Plaid Secret:
        <input type="password" name="secret" required autocomplete="new-password">
      </label>
      <label>Environment:
        <select name="environment" required>
          {% for env in environments %}<option value="{{ env }}">{{ env|capitalize }}</option>{% endfor %}
        </select>
      </label>
      <label><input type="checkbox" name="remember" value="1"> Remember credentials for 24 hours</label>
      <button type="submit">Access the Test Kit</button>
    </form>
    <p><small>Credentials are encrypted with AES-256, verified against Plaid before storage
    and expire after 24 hours. Only the Sandbox environment is supported.</small></p>
  </main>
</body>
</html>
"""

AUTH_NOTICES = {
    'logged_out': 'You have been logged out.',
    'reauth_requested': 'Please enter your credentials again.',
}


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'on', 'yes')


# =============================================================================
# CREDENTIAL FORM
# =============================================================================

@auth_bp.route('/auth', methods=['GET'])
def auth_page():
    """Server-rendered credential form."""
    error = request.args.get('error')
    error_message = AUTH_ERROR_MESSAGES.get(error, DEFAULT_AUTH_ERROR) if error else None
    notice = AUTH_NOTICES.get(request.args.get('message', ''))
    return render_template_string(
        AUTH_PAGE_TEMPLATE,
        error_message=error_message,
        notice=notice,
        environments=SUPPORTED_ENVIRONMENTS,
    )


@auth_bp.route('/api/validate-key', methods=['POST'])
def validate_key():
    """
    Verify credentials against Plaid and store them encrypted.

    Accepts a form post (redirects) or a JSON body (JSON response).
    Fields: clientId, secret, environment, remember.
    """
    is_json = request.is_json
    data = request.form

    try:
        if is_json:
            data = json_object(request.get_json(silent=True))
        validate_required(data, ['clientId', 'secret', 'environment'])
        environment = data.get('environment')
        if environment not in SUPPORTED_ENVIRONMENTS:
            raise ValidationError('Invalid environment', field='environment')
        record = CredentialRecord(
            api_key_id=str(data['clientId']).strip(),
            api_secret=str(data['secret']).strip(),
            environment=environment,
        )
    except ValidationError:
        if is_json:
            raise
        return redirect('/auth?error=format_error')

    services = get_services()
    try:
        services.gateway_for(record).validate_credentials()
    except VendorError as e:
        auth_log.event('login_failed', record.api_key_id,
                       environment=environment, error_code=e.error_code)
        if is_json:
            return error_response(e.public_message(), 401, 'VALIDATION_FAILED',
                                  {'code': e.error_code} if e.error_code else None)
        return redirect('/auth?error=validation_failed' if e.error_code else '/auth?error=invalid')

    remember = _truthy(data.get('remember'))
    services.credentials.store(session, record, remember=remember)
    auth_log.event('login_successful', record.api_key_id, environment=environment)

    if is_json:
        return success_response({
            'environment': record.environment,
            'remembered': remember,
            'redirect': '/',
        }, 'Credentials validated successfully')
    return redirect('/')


@auth_bp.route('/api/logout', methods=['POST'])
def logout():
    """Clear stored credentials. Works whether or not the caller is logged in."""
    services = get_services()
    data = json_object(request.get_json(silent=True))
    return_url = data.get('returnUrl') or request.form.get('returnUrl') or request.args.get('returnUrl') or '/auth'
    if not isinstance(return_url, str) or not return_url.startswith('/') or return_url.startswith('//'):
        return_url = '/auth'

    record = services.credentials.load(session, request.cookies)
    if record is not None:
        services.link_state.clear_owner(record.api_key_id)
    services.credentials.clear(session)
    auth_log.event('logout', record.api_key_id if record else None)

    if wants_html():
        return redirect(f"{return_url}?message=logged_out")
    return success_response({'redirect': return_url}, 'Logged out successfully')


# =============================================================================
# AUTH STATUS
# =============================================================================

@auth_bp.route('/api/auth-status', methods=['GET'])
@credentials_required
def auth_status():
    status = get_services().credentials.status(session, request.cookies)
    return success_response(status)


@auth_bp.route('/api/force-reauth', methods=['POST'])
@credentials_required
def force_reauth():
    """Drop everything stored for the caller and send them back to /auth."""
    services = get_services()
    record = current_credentials()
    services.link_state.clear_owner(record.api_key_id)
    services.credentials.clear(session)
    auth_log.event('force_reauth', record.api_key_id)

    if wants_html():
        return redirect('/auth?message=reauth_requested')
    return success_response({'redirect': '/auth'}, 'Please re-authenticate')
