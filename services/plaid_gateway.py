"""
Plaid Gateway for the Plaid Test Kit
====================================

Narrow adapter over plaid-python, built per request from the caller's
CredentialRecord. Every call returns plain dicts shaped for the browser
front end; plaid.ApiException is converted to VendorError carrying Plaid's
error_code.

Only the sandbox host is supported.

Usage:
    from services.plaid_gateway import PlaidGateway

    gateway = PlaidGateway(record, base_url='https://example.up.railway.app')
    result = gateway.create_link_token()
    exchanged = gateway.exchange_public_token('public-sandbox-xxx')
"""

import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional

import plaid
from plaid.api import plaid_api
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.link_token_create_request_update import LinkTokenCreateRequestUpdate
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_balance_get_request_options import AccountsBalanceGetRequestOptions
from plaid.model.auth_get_request import AuthGetRequest
from plaid.model.auth_get_request_options import AuthGetRequestOptions
from plaid.model.identity_get_request import IdentityGetRequest
from plaid.model.identity_get_request_options import IdentityGetRequestOptions
from plaid.model.identity_match_request import IdentityMatchRequest
from plaid.model.identity_match_request_options import IdentityMatchRequestOptions
from plaid.model.identity_match_user import IdentityMatchUser
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.products import Products

from logging_config import PlaidLogger, log_timing
from services.credential_codec import CredentialRecord
from services.errors import ValidationError, VendorError

logger = logging.getLogger(__name__)
plaid_log = PlaidLogger()

PLAID_HOSTS = {
    'sandbox': plaid.Environment.Sandbox,
}

CLIENT_NAME = 'Plaid Test Kit'
DEFAULT_PRODUCTS = ['auth']
DEFAULT_COUNTRY_CODES = ['US']
DEFAULT_LANGUAGE = 'en'

# Link token fields a caller may override, beyond the ones built here
PASSTHROUGH_LINK_FIELDS = ('client_name', 'language', 'webhook', 'link_customization_name')
PRODUCT_LIST_FIELDS = ('products', 'additional_consented_products', 'required_if_supported_products',
                       'optional_products')


# =============================================================================
# RESPONSE RESHAPING
# =============================================================================

def _first(values: Optional[List[Any]]) -> Any:
    return values[0] if values else None


def reshape_accounts(accounts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Account list with the index the front end uses to pick one."""
    return [
        {
            'account_id': account.get('account_id'),
            'name': account.get('name'),
            'official_name': account.get('official_name'),
            'type': account.get('type'),
            'subtype': account.get('subtype'),
            'mask': account.get('mask'),
            'index': index,
        }
        for index, account in enumerate(accounts)
    ]


def select_account(accounts: List[Dict[str, Any]], account_index: int) -> Dict[str, Any]:
    if not accounts:
        raise VendorError('No accounts found', status_code=404)
    if account_index < 0 or account_index >= len(accounts):
        raise ValidationError(f'Selected account index {account_index} is out of range',
                              field='account_index')
    return accounts[account_index]


def reshape_identity(selected: Dict[str, Any], account_index: int,
                     identity_get: Dict[str, Any], identity_match: Dict[str, Any]) -> Dict[str, Any]:
    """Combine identity/get and identity/match into one comparison document."""
    identity_accounts = identity_get.get('accounts') or []
    match_accounts = identity_match.get('accounts') or []
    if not identity_accounts:
        raise VendorError('No accounts found in identity/get response', status_code=404)
    if not match_accounts:
        raise VendorError('No accounts found in identity/match response', status_code=404)

    identity_account = identity_accounts[0]
    match_data = match_accounts[0]
    owner = _first(identity_account.get('owners')) or {}
    address = (_first(owner.get('addresses')) or {}).get('data') or {}

    legal_name = match_data.get('legal_name') or {}
    match_address = match_data.get('address') or {}

    return {
        'selected_account': {
            'index': account_index,
            'name': selected.get('name'),
            'official_name': selected.get('official_name'),
            'account_id': selected.get('account_id'),
        },
        'account': {
            'id': identity_account.get('account_id') or '',
            'name': identity_account.get('name') or '',
            'mask': identity_account.get('mask') or '',
        },
        'identity': {
            'name': _first(owner.get('names')) or '',
            'email': (_first(owner.get('emails')) or {}).get('data') or '',
            'phone': (_first(owner.get('phone_numbers')) or {}).get('data') or '',
            'address': {
                'street': address.get('street') or '',
                'city': address.get('city') or '',
                'region': address.get('region') or '',
                'postal_code': address.get('postal_code') or '',
                'country': address.get('country') or '',
            },
        },
        'match': {
            'name_score': legal_name.get('score'),
            'email_score': (match_data.get('email_address') or {}).get('score'),
            'phone_score': (match_data.get('phone_number') or {}).get('score'),
            'address_score': match_address.get('score'),
            'is_postal_code_match': bool(match_address.get('is_postal_code_match')),
            'is_nickname_match': bool(legal_name.get('is_nickname_match')),
            'is_first_name_or_last_name_match': bool(legal_name.get('is_first_name_or_last_name_match')),
            'is_business_name_detected': bool(legal_name.get('is_business_name_detected')),
        },
        'raw_response': {
            'identity_get': identity_get,
            'identity_match': identity_match,
        },
    }


def reshape_auth(selected: Dict[str, Any], account_index: int, auth: Dict[str, Any]) -> Dict[str, Any]:
    """ACH numbers and balances for the selected account."""
    auth_accounts = auth.get('accounts') or []
    if not auth_accounts:
        raise VendorError('No accounts found in auth/get response', status_code=404)

    auth_account = auth_accounts[0]
    ach = _first((auth.get('numbers') or {}).get('ach')) or {}
    balances = auth_account.get('balances') or {}

    return {
        'selected_account': {
            'index': account_index,
            'name': selected.get('name'),
            'official_name': selected.get('official_name'),
            'account_id': selected.get('account_id'),
            'mask': selected.get('mask'),
        },
        'auth_data': {
            'account_number': ach.get('account'),
            'routing_number': ach.get('routing'),
            'wire_routing_number': ach.get('wire_routing'),
            'account_type': auth_account.get('type'),
            'account_subtype': auth_account.get('subtype'),
        },
        'balance_data': {
            'available': balances.get('available'),
            'current': balances.get('current'),
            'iso_currency_code': balances.get('iso_currency_code'),
            'unofficial_currency_code': balances.get('unofficial_currency_code'),
        },
        'item_id': (auth.get('item') or {}).get('item_id'),
        'request_id': auth.get('request_id'),
        'raw_response': auth,
    }


def reshape_balance(selected: Dict[str, Any], account_index: int, balance: Dict[str, Any]) -> Dict[str, Any]:
    """Real-time balance for the selected account."""
    balance_accounts = balance.get('accounts') or []
    if not balance_accounts:
        raise VendorError('No accounts found in balance/get response', status_code=404)

    balances = balance_accounts[0].get('balances') or {}

    return {
        'selected_account': {
            'index': account_index,
            'name': selected.get('name'),
            'official_name': selected.get('official_name'),
            'account_id': selected.get('account_id'),
            'type': selected.get('type'),
            'subtype': selected.get('subtype'),
        },
        'balance_data': {
            'available': balances.get('available'),
            'current': balances.get('current'),
            'limit': balances.get('limit'),
            'iso_currency_code': balances.get('iso_currency_code'),
            'unofficial_currency_code': balances.get('unofficial_currency_code'),
            'last_updated_datetime': balances.get('last_updated_datetime'),
        },
        'item_id': (balance.get('item') or {}).get('item_id'),
        'request_id': balance.get('request_id'),
        'raw_response': balance,
    }


def build_link_config(options: Optional[Dict[str, Any]] = None,
                      custom_config: Optional[Dict[str, Any]] = None,
                      base_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge the default Link token configuration with a stored custom config
    and per-request overrides.

    Precedence, lowest first: defaults, custom_config, request options.
    update_mode plus access_token switches to update mode; hosted_link gets a
    completion redirect under base_url when it has none.
    """
    options = dict(options or {})
    update_mode = options.pop('update_mode', False)
    access_token = options.pop('access_token', None)
    hosted_link = options.pop('hosted_link', None)
    options.pop('custom_config', None)

    client_user_id = f"test-kit-user-{int(time.time() * 1000)}"
    config: Dict[str, Any] = {
        'user': {'client_user_id': client_user_id},
        'client_name': CLIENT_NAME,
        'products': list(DEFAULT_PRODUCTS),
        'country_codes': list(DEFAULT_COUNTRY_CODES),
        'language': DEFAULT_LANGUAGE,
    }

    if custom_config:
        config.update(custom_config)
        user = dict(config.get('user') or {})
        user.setdefault('client_user_id', client_user_id)
        config['user'] = user

    config.update(options)

    if base_url:
        config['redirect_uri'] = f"{base_url}/oauth-redirect"

    if hosted_link is not None:
        hosted = dict(hosted_link) if isinstance(hosted_link, dict) else {}
        if base_url:
            hosted.setdefault('completion_redirect_uri', f"{base_url}/hosted-link-complete")
        config['hosted_link'] = hosted

    if update_mode and access_token:
        config['access_token'] = access_token
        config['update'] = {'account_selection_enabled': True}

    return config


def _error_from_api_exception(e: plaid.ApiException) -> VendorError:
    """Pull Plaid's error body out of an ApiException."""
    try:
        body = json.loads(e.body) if e.body else {}
    except (TypeError, ValueError):
        logger.warning("Plaid error response was not JSON")
        body = {}
    if not isinstance(body, dict):
        body = {}

    status = getattr(e, 'status', None)
    return VendorError(
        body.get('error_message') or str(e.reason or 'Plaid request failed'),
        error_code=body.get('error_code'),
        status_code=status if isinstance(status, int) and 400 <= status < 600 else None,
        details={
            'error_type': body.get('error_type'),
            'request_id': body.get('request_id'),
        },
    )


# =============================================================================
# GATEWAY
# =============================================================================

class PlaidGateway:
    """
    Plaid API access for one set of caller credentials.

    Each instance owns its own ApiClient; nothing is shared between
    callers.
    """

    def __init__(self, record: CredentialRecord, base_url: Optional[str] = None):
        if record.environment not in PLAID_HOSTS:
            raise ValidationError(f'Unsupported environment: {record.environment}', field='environment')

        self.record = record
        self.base_url = base_url

        configuration = plaid.Configuration(
            host=PLAID_HOSTS[record.environment],
            api_key={
                'clientId': record.api_key_id,
                'secret': record.api_secret,
            }
        )
        self._client = plaid.ApiClient(configuration)
        self._api = plaid_api.PlaidApi(self._client)

    def _call(self, endpoint: str, method: Callable, request: Any, **log_details) -> Dict[str, Any]:
        try:
            with log_timing(logger, f"Plaid {endpoint}"):
                response = method(request)
        except plaid.ApiException as e:
            error = _error_from_api_exception(e)
            plaid_log.call(endpoint, success=False, error_code=error.error_code, **log_details)
            raise error from e

        plaid_log.call(endpoint, success=True, **log_details)
        return response.to_dict()

    # =========================================================================
    # LINK
    # =========================================================================

    def _link_request(self, config: Dict[str, Any]) -> LinkTokenCreateRequest:
        user = config.get('user') or {}
        if not isinstance(user, dict) or not user.get('client_user_id'):
            raise ValidationError('user.client_user_id is required', field='user')

        request_args: Dict[str, Any] = {
            'user': LinkTokenCreateRequestUser(client_user_id=str(user['client_user_id'])),
            'country_codes': [CountryCode(c) for c in config.get('country_codes', DEFAULT_COUNTRY_CODES)],
        }

        for name in PRODUCT_LIST_FIELDS:
            if config.get(name):
                request_args[name] = [Products(p) for p in config[name]]

        for name in PASSTHROUGH_LINK_FIELDS:
            if config.get(name):
                request_args[name] = config[name]
        request_args.setdefault('client_name', CLIENT_NAME)
        request_args.setdefault('language', DEFAULT_LANGUAGE)

        if config.get('redirect_uri'):
            request_args['redirect_uri'] = config['redirect_uri']

        if config.get('access_token'):
            request_args['access_token'] = config['access_token']
            if config.get('update'):
                request_args['update'] = LinkTokenCreateRequestUpdate(
                    account_selection_enabled=bool(config['update'].get('account_selection_enabled'))
                )

        if 'hosted_link' in config:
            from plaid.model.link_token_create_hosted_link import LinkTokenCreateHostedLink
            request_args['hosted_link'] = LinkTokenCreateHostedLink(**config['hosted_link'])

        ignored = set(config) - set(request_args) - {'update', 'products'}
        if ignored:
            logger.debug(f"Ignoring unsupported Link token fields: {sorted(ignored)}")

        return LinkTokenCreateRequest(**request_args)

    def create_link_token(self, options: Optional[Dict[str, Any]] = None,
                          custom_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Create a Link token.

        Args:
            options: Request body overrides (update_mode, access_token, hosted_link, ...)
            custom_config: Stored per-caller Link configuration

        Returns:
            Dict with link_token, hosted_link_url and the configuration used
        """
        config = build_link_config(options, custom_config, self.base_url)
        request = self._link_request(config)
        response = self._call('linkTokenCreate', self._api.link_token_create, request,
                              has_hosted_link='hosted_link' in config)
        return {
            'link_token': response.get('link_token'),
            'hosted_link_url': response.get('hosted_link_url'),
            'configuration_used': config,
        }

    def validate_credentials(self) -> bool:
        """Check the credentials by creating a throwaway Link token."""
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=f"validation-test-{int(time.time() * 1000)}"),
            client_name=f"{CLIENT_NAME} - Validation",
            products=[Products('auth')],
            country_codes=[CountryCode('US')],
            language=DEFAULT_LANGUAGE,
        )
        self._call('linkTokenCreate', self._api.link_token_create, request, purpose='validation')
        return True

    # =========================================================================
    # ITEMS & ACCOUNTS
    # =========================================================================

    def exchange_public_token(self, public_token: str) -> Dict[str, str]:
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call('itemPublicTokenExchange', self._api.item_public_token_exchange, request)
        return {
            'access_token': response['access_token'],
            'item_id': response['item_id'],
        }

    def _raw_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        request = AccountsGetRequest(access_token=access_token)
        response = self._call('accountsGet', self._api.accounts_get, request)
        return response.get('accounts') or []

    def get_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        return reshape_accounts(self._raw_accounts(access_token))

    def validate_access_token(self, access_token: str) -> bool:
        self._raw_accounts(access_token)
        return True

    def get_item(self, access_token: str) -> Dict[str, Any]:
        request = ItemGetRequest(access_token=access_token)
        response = self._call('itemGet', self._api.item_get, request)
        item = response.get('item') or {}
        return {'item_id': item.get('item_id')}

    # =========================================================================
    # PRODUCT TESTS
    # =========================================================================

    def get_identity(self, access_token: str, user_data: Dict[str, Any],
                     account_index: int = 0) -> Dict[str, Any]:
        """
        Run identity/get and identity/match against one account.

        Args:
            access_token: Item access token
            user_data: Optional name, email, phone and address to match
            account_index: Position in the item's account list
        """
        selected = select_account(self._raw_accounts(access_token), account_index)
        account_ids = [selected['account_id']]

        get_request = IdentityGetRequest(
            access_token=access_token,
            options=IdentityGetRequestOptions(account_ids=account_ids),
        )
        identity_get = self._call('identityGet', self._api.identity_get, get_request,
                                  account_index=account_index)

        match_request = IdentityMatchRequest(
            access_token=access_token,
            user=self._match_user(user_data),
            options=IdentityMatchRequestOptions(account_ids=account_ids),
        )
        identity_match = self._call('identityMatch', self._api.identity_match, match_request,
                                    account_index=account_index)

        return reshape_identity(selected, account_index, identity_get, identity_match)

    @staticmethod
    def _match_user(user_data: Dict[str, Any]) -> IdentityMatchUser:
        args: Dict[str, Any] = {}
        if user_data.get('name'):
            args['legal_name'] = user_data['name']
        if user_data.get('email'):
            args['email_address'] = user_data['email']
        if user_data.get('phone'):
            args['phone_number'] = user_data['phone']

        address = user_data.get('address')
        if address:
            from plaid.model.address_data_not_required import AddressDataNotRequired
            args['address'] = AddressDataNotRequired(
                street=address['street'],
                city=address['city'],
                region=address['state'],
                postal_code=address['zip'],
                country=address.get('country') or 'US',
            )

        return IdentityMatchUser(**args)

    def get_auth(self, access_token: str, account_index: int = 0) -> Dict[str, Any]:
        selected = select_account(self._raw_accounts(access_token), account_index)
        request = AuthGetRequest(
            access_token=access_token,
            options=AuthGetRequestOptions(account_ids=[selected['account_id']]),
        )
        auth = self._call('authGet', self._api.auth_get, request, account_index=account_index)
        return reshape_auth(selected, account_index, auth)

    def get_balance(self, access_token: str, account_index: int = 0) -> Dict[str, Any]:
        selected = select_account(self._raw_accounts(access_token), account_index)
        request = AccountsBalanceGetRequest(
            access_token=access_token,
            options=AccountsBalanceGetRequestOptions(account_ids=[selected['account_id']]),
        )
        balance = self._call('accountsBalanceGet', self._api.accounts_balance_get, request,
                             account_index=account_index)
        return reshape_balance(selected, account_index, balance)
