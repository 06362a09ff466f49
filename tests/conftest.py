#!/usr/bin/env python3
"""
Plaid Test Kit Test Configuration and Fixtures
==============================================

Provides shared fixtures, a fake Plaid gateway, and test utilities for the
entire test suite.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from config.settings import TestingSettings, PLAID_WEBHOOK_IPS
from services.container import EXTENSION_KEY
from services.credential_codec import CredentialCodec, CredentialRecord
from services.errors import VendorError


# =============================================================================
# CONSTANTS
# =============================================================================

CLIENT_ID = "5f8a1b2c3d4e5f6a7b8c9d0e"
SECRET = "0123456789abcdef0123456789abcdef01234567"
OTHER_CLIENT_ID = "6a7b8c9d0e1f2a3b4c5d6e7f"
BAD_SECRET = "bad-secret"

PLAID_IP = PLAID_WEBHOOK_IPS[0]
ACCESS_TOKEN = "access-sandbox-11111111-2222-3333-4444-555555555555"
ITEM_ID = "item-sandbox-abc123"


# =============================================================================
# FAKE PLAID GATEWAY
# =============================================================================

SANDBOX_ACCOUNTS = [
    {
        'account_id': 'acc-checking',
        'name': 'Plaid Checking',
        'official_name': 'Plaid Gold Standard 0% Interest Checking',
        'type': 'depository',
        'subtype': 'checking',
        'mask': '0000',
        'index': 0,
    },
    {
        'account_id': 'acc-savings',
        'name': 'Plaid Saving',
        'official_name': 'Plaid Silver Standard 0.1% Interest Saving',
        'type': 'depository',
        'subtype': 'savings',
        'mask': '1111',
        'index': 1,
    },
]


class FakeGateway:
    """In-process stand-in for PlaidGateway. Records every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.records: List[CredentialRecord] = []
        self.item_id = ITEM_ID
        self.access_token = ACCESS_TOKEN
        self.fail_with: Optional[VendorError] = None

    def bind(self, record: CredentialRecord) -> 'FakeGateway':
        self.records.append(record)
        return self

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def validate_credentials(self) -> bool:
        self.calls.append(('validate_credentials',))
        if self.records and self.records[-1].api_secret == BAD_SECRET:
            raise VendorError('invalid client_id or secret provided',
                              error_code='INVALID_API_KEYS', status_code=400)
        return True

    def create_link_token(self, options=None, custom_config=None) -> Dict[str, Any]:
        self.calls.append(('create_link_token', options, custom_config))
        self._maybe_fail()
        return {
            'link_token': 'link-sandbox-token',
            'hosted_link_url': None,
            'configuration_used': {**(custom_config or {}), **(options or {})},
        }

    def exchange_public_token(self, public_token: str) -> Dict[str, str]:
        self.calls.append(('exchange_public_token', public_token))
        self._maybe_fail()
        return {'access_token': self.access_token, 'item_id': self.item_id}

    def validate_access_token(self, access_token: str) -> bool:
        self.calls.append(('validate_access_token', access_token))
        if access_token != self.access_token:
            raise VendorError('the provided access token is invalid', error_code='INVALID_ACCESS_TOKEN',
                              status_code=400)
        return True

    def get_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        self.calls.append(('get_accounts', access_token))
        self._maybe_fail()
        return [dict(a) for a in SANDBOX_ACCOUNTS]

    def get_item(self, access_token: str) -> Dict[str, Any]:
        self.calls.append(('get_item', access_token))
        self._maybe_fail()
        return {'item_id': self.item_id}

    def get_identity(self, access_token, user_data, account_index=0) -> Dict[str, Any]:
        self.calls.append(('get_identity', access_token, user_data, account_index))
        self._maybe_fail()
        return {'selected_account': {'index': account_index}, 'match': {'name_score': 90}}

    def get_auth(self, access_token, account_index=0) -> Dict[str, Any]:
        self.calls.append(('get_auth', access_token, account_index))
        self._maybe_fail()
        return {'selected_account': {'index': account_index},
                'auth_data': {'account_number': '1111222233330000', 'routing_number': '011401533'}}

    def get_balance(self, access_token, account_index=0) -> Dict[str, Any]:
        self.calls.append(('get_balance', access_token, account_index))
        self._maybe_fail()
        return {'selected_account': {'index': account_index},
                'balance_data': {'available': 100, 'current': 110}}

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


# =============================================================================
# APP FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Isolated settings: sessions under tmp_path, rate limiting off."""
    return TestingSettings(SESSION_DIR=str(tmp_path / "sessions"))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, gateway):
    """Create application for testing."""
    app = create_app(settings, gateway_factory=gateway.bind)
    yield app


@pytest.fixture
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def login(client, client_id: str = CLIENT_ID, secret: str = SECRET, remember: bool = False):
    return client.post('/api/validate-key', json={
        'clientId': client_id,
        'secret': secret,
        'environment': 'sandbox',
        'remember': remember,
    })


@pytest.fixture
def auth_client(client):
    """Test client holding valid credentials in its session."""
    response = login(client)
    assert response.status_code == 200
    return client


@pytest.fixture
def owner():
    return CredentialRecord(api_key_id=CLIENT_ID, api_secret=SECRET)


@pytest.fixture
def codec():
    return CredentialCodec("unit-test-secret")


# =============================================================================
# HELPERS
# =============================================================================

def post_webhook(client, payload, ip: str = PLAID_IP):
    """POST a webhook as if it came from `ip`."""
    body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
    return client.post(
        '/webhooks',
        data=body,
        content_type='application/json',
        environ_base={'REMOTE_ADDR': ip},
    )
