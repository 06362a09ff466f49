#!/usr/bin/env python3
"""
API Tests for Authentication Routes
===================================

Credential form, validate-key, logout, auth-status and the
credentials_required guard.
"""

import pytest

from conftest import BAD_SECRET, CLIENT_ID, OTHER_CLIENT_ID, SECRET, login
from services.session_credentials import SESSION_KEY


# =============================================================================
# AUTH PAGE
# =============================================================================

class TestAuthPage:

    def test_form_renders(self, client):
        response = client.get('/auth')
        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert 'action="/api/validate-key"' in html
        assert 'value="sandbox"' in html

    @pytest.mark.parametrize("code,message", [
        ("session_invalid", "Session expired or corrupted"),
        ("validation_failed", "Unable to validate credentials"),
        ("format_error", "Credential format is incorrect"),
        ("invalid", "Invalid credentials"),
        ("something-else", "Authentication failed"),
    ])
    def test_error_messages(self, client, code, message):
        response = client.get(f'/auth?error={code}')
        assert message in response.get_data(as_text=True)

    def test_error_code_is_escaped(self, client):
        response = client.get('/auth?error=<script>')
        assert '<script>' not in response.get_data(as_text=True)


# =============================================================================
# VALIDATE KEY
# =============================================================================

class TestValidateKey:

    def test_json_login(self, client, gateway):
        response = login(client)
        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['environment'] == 'sandbox'
        assert 'timestamp' in data
        assert gateway.called('validate_credentials')
        assert gateway.records[-1].api_key_id == CLIENT_ID

    def test_form_login_redirects_home(self, client):
        response = client.post('/api/validate-key', data={
            'clientId': CLIENT_ID, 'secret': SECRET, 'environment': 'sandbox',
        })
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/')

    def test_session_never_holds_plaintext(self, app, client):
        login(client)
        with client.session_transaction() as sess:
            blob = sess[SESSION_KEY]
        assert SECRET not in blob
        assert CLIENT_ID not in blob

    def test_remember_sets_cookie(self, client):
        login(client, remember=True)
        cookie = client.get_cookie('plaidCredentials')
        assert cookie is not None
        assert SECRET not in cookie.value

    def test_no_cookie_without_remember(self, client):
        login(client)
        assert client.get_cookie('plaidCredentials') is None

    def test_login_without_remember_drops_earlier_remembered_cookie(self, app, client):
        login(client, remember=True)
        login(client, client_id=OTHER_CLIENT_ID)
        assert client.get_cookie('plaidCredentials') is None

        # Server-side session lost: nothing may fall back to the first login
        client.delete_cookie(app.config['SESSION_COOKIE_NAME'])
        assert client.get('/api/auth-status').status_code == 401

    @pytest.mark.parametrize("body", [['x'], [], 'clientId', 42])
    def test_non_object_json_body(self, client, body):
        response = client.post('/api/validate-key', json=body)
        assert response.status_code == 400
        assert response.get_json()['type'] == 'VALIDATION_ERROR'

    def test_missing_fields_json(self, client):
        response = client.post('/api/validate-key', json={'clientId': CLIENT_ID})
        assert response.status_code == 400
        data = response.get_json()
        assert data['success'] is False
        assert data['type'] == 'VALIDATION_ERROR'
        assert set(data['missing_fields']) == {'secret', 'environment'}

    def test_missing_fields_form_redirects(self, client):
        response = client.post('/api/validate-key', data={'clientId': CLIENT_ID})
        assert response.status_code == 302
        assert 'error=format_error' in response.headers['Location']

    def test_unsupported_environment(self, client):
        response = client.post('/api/validate-key', json={
            'clientId': CLIENT_ID, 'secret': SECRET, 'environment': 'production',
        })
        assert response.status_code == 400
        assert response.get_json()['field'] == 'environment'

    def test_rejected_by_plaid_json(self, client):
        response = login(client, secret=BAD_SECRET)
        assert response.status_code == 401
        data = response.get_json()
        assert data['type'] == 'VALIDATION_FAILED'
        assert data['code'] == 'INVALID_API_KEYS'
        assert client.get('/api/auth-status').status_code == 401

    def test_rejected_by_plaid_form(self, client):
        response = client.post('/api/validate-key', data={
            'clientId': CLIENT_ID, 'secret': BAD_SECRET, 'environment': 'sandbox',
        })
        assert response.status_code == 302
        assert 'error=validation_failed' in response.headers['Location']


# =============================================================================
# GUARD
# =============================================================================

class TestCredentialsRequired:

    def test_json_client_gets_401(self, client):
        response = client.get('/api/auth-status')
        assert response.status_code == 401
        data = response.get_json()
        assert data['success'] is False
        assert data['type'] == 'AUTH_ERROR'

    def test_html_client_redirected(self, client):
        response = client.get('/api/auth-status', headers={'Accept': 'text/html'})
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/auth')

    def test_corrupt_session_html_redirect(self, client):
        with client.session_transaction() as sess:
            sess[SESSION_KEY] = 'not-a-valid-blob'
        response = client.get('/', headers={'Accept': 'text/html'})
        assert response.status_code == 302
        assert 'error=session_invalid' in response.headers['Location']

    def test_corrupt_session_json_401_and_cleared(self, client):
        with client.session_transaction() as sess:
            sess[SESSION_KEY] = 'not-a-valid-blob'
        response = client.get('/api/auth-status')
        assert response.status_code == 401
        assert response.get_json()['type'] == 'SESSION_INVALID'
        with client.session_transaction() as sess:
            assert SESSION_KEY not in sess

    def test_tampered_cookie_rejected(self, client):
        login(client, remember=True)
        cookie = client.get_cookie('plaidCredentials').value
        tampered = ('0' if cookie[0] != '0' else '1') + cookie[1:]
        client.post('/api/logout', json={})
        client.set_cookie('plaidCredentials', tampered)

        response = client.get('/api/auth-status')
        assert response.status_code == 401
        assert client.get_cookie('plaidCredentials') is None

    def test_cookie_restores_session(self, app, client):
        login(client, remember=True)
        cookie = client.get_cookie('plaidCredentials').value

        # Fresh browser session, remembered cookie only
        fresh = app.test_client()
        fresh.set_cookie('plaidCredentials', cookie)
        response = fresh.get('/api/auth-status')
        assert response.status_code == 200
        data = response.get_json()
        assert data['authenticated'] is True
        # Restored into the session before the handler ran
        assert data['has_session'] is True
        assert data['has_cookie'] is True

        with fresh.session_transaction() as sess:
            assert sess[SESSION_KEY] == cookie


# =============================================================================
# STATUS & LOGOUT
# =============================================================================

class TestStatusAndLogout:

    def test_auth_status(self, auth_client):
        response = auth_client.get('/api/auth-status')
        assert response.status_code == 200
        data = response.get_json()
        assert data['authenticated'] is True
        assert data['has_session'] is True
        assert data['has_cookie'] is False
        assert data['environment'] == 'sandbox'

    def test_logout_json(self, auth_client):
        response = auth_client.post('/api/logout', json={})
        assert response.status_code == 200
        assert response.get_json()['redirect'] == '/auth'
        assert auth_client.get('/api/auth-status').status_code == 401

    def test_logout_clears_remembered_cookie(self, client):
        login(client, remember=True)
        client.post('/api/logout', json={})
        assert client.get_cookie('plaidCredentials') is None

    def test_logout_html_redirect(self, auth_client):
        response = auth_client.post('/api/logout', headers={'Accept': 'text/html'})
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/auth?message=logged_out')

    def test_logout_rejects_external_return_url(self, auth_client):
        response = auth_client.post('/api/logout', json={'returnUrl': 'https://evil.example'})
        assert response.get_json()['redirect'] == '/auth'

    def test_logout_when_anonymous(self, client):
        response = client.post('/api/logout', json={})
        assert response.status_code == 200

    def test_logout_non_object_json_body(self, auth_client):
        response = auth_client.post('/api/logout', json=['/auth'])
        assert response.status_code == 400
        assert response.get_json()['type'] == 'VALIDATION_ERROR'

    def test_logout_non_string_return_url(self, auth_client):
        response = auth_client.post('/api/logout', json={'returnUrl': 7})
        assert response.get_json()['redirect'] == '/auth'

    def test_force_reauth(self, auth_client):
        response = auth_client.post('/api/force-reauth', json={})
        assert response.status_code == 200
        assert response.get_json()['redirect'] == '/auth'
        assert auth_client.get('/api/auth-status').status_code == 401

    def test_logout_forgets_access_token(self, auth_client, services):
        services.link_state.set_access_token(CLIENT_ID, 'access-token')
        auth_client.post('/api/logout', json={})
        assert services.link_state.get_access_token(CLIENT_ID) is None
