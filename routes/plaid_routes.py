"""
Plaid API Routes
Link token creation, token exchange and the identity / auth / balance testers
"""

import logging
from typing import Any, Mapping

from flask import Blueprint, request

from auth import credentials_required, current_credentials
from routes.responses import success_response
from services.container import get_services
from services.errors import ValidationError, VendorError
from services.validation import (
    json_object,
    parse_account_index,
    validate_identity_input,
    validate_link_config,
    validate_required,
)

logger = logging.getLogger(__name__)

plaid_bp = Blueprint('plaid', __name__, url_prefix='/api')

NO_ACCESS_TOKEN = 'No access token available. Please exchange a public token first.'


def _body() -> Mapping[str, Any]:
    return json_object(request.get_json(silent=True))


def _require_access_token() -> str:
    """Current caller's access token, or a 400 telling them to link first."""
    token = get_services().link_state.get_access_token(current_credentials().api_key_id)
    if not token:
        raise ValidationError(NO_ACCESS_TOKEN, field='access_token')
    return token


# =============================================================================
# STATUS
# =============================================================================

@plaid_bp.route('/status', methods=['GET'])
@credentials_required
def status():
    services = get_services()
    record = current_credentials()
    access_token = services.link_state.get_access_token(record.api_key_id)
    link_config = services.link_state.get_link_config(record.api_key_id)

    return success_response({
        'has_access_token': bool(access_token),
        'access_token': access_token,
        'has_custom_link_config': link_config is not None,
        'custom_link_config': link_config,
        'environment': 'sandbox',
        'authenticated': True,
        'user_environment': record.environment,
    })


# =============================================================================
# LINK & TOKEN EXCHANGE
# =============================================================================

@plaid_bp.route('/create-link-token', methods=['POST'])
@credentials_required
def create_link_token():
    services = get_services()
    record = current_credentials()
    custom_config = services.link_state.get_link_config(record.api_key_id)

    result = services.gateway_for(record).create_link_token(_body(), custom_config=custom_config)
    return success_response(result, 'Link token created successfully')


@plaid_bp.route('/exchange-token', methods=['POST'])
@credentials_required
def exchange_token():
    """Exchange a public token and register the item for webhook routing."""
    data = _body()
    validate_required(data, ['public_token'])

    services = get_services()
    record = current_credentials()
    result = services.gateway_for(record).exchange_public_token(data['public_token'])

    services.items.register(result['item_id'], record)
    services.link_state.set_access_token(record.api_key_id, result['access_token'])

    return success_response({
        'item_id': result['item_id'],
        'access_token': result['access_token'],
    }, 'Token exchanged successfully')


@plaid_bp.route('/set-token', methods=['POST'])
@credentials_required
def set_token():
    """Use an existing access token after checking it against Plaid."""
    data = _body()
    validate_required(data, ['access_token'])

    services = get_services()
    record = current_credentials()
    access_token = data['access_token']

    try:
        services.gateway_for(record).validate_access_token(access_token)
    except VendorError as e:
        logger.warning(f"Rejected access token (code={e.error_code})")
        raise ValidationError('Invalid access token', field='access_token') from e

    services.link_state.set_access_token(record.api_key_id, access_token)
    return success_response({'access_token': access_token}, 'Access token set successfully')


@plaid_bp.route('/clear-token', methods=['POST'])
@credentials_required
def clear_token():
    get_services().link_state.clear_access_token(current_credentials().api_key_id)
    return success_response(message='Access token cleared successfully')


# =============================================================================
# PRODUCT TESTERS
# =============================================================================

@plaid_bp.route('/get-accounts', methods=['POST'])
@credentials_required
def get_accounts():
    access_token = _require_access_token()
    accounts = get_services().gateway_for(current_credentials()).get_accounts(access_token)
    return success_response({'accounts': accounts})


@plaid_bp.route('/test-identity', methods=['POST'])
@credentials_required
def test_identity():
    access_token = _require_access_token()
    data = _body()
    user_data = validate_identity_input(data)
    account_index = parse_account_index(data.get('account_index'))

    result = get_services().gateway_for(current_credentials()).get_identity(
        access_token, user_data, account_index
    )
    return success_response(result)


@plaid_bp.route('/test-auth', methods=['POST'])
@credentials_required
def test_auth():
    access_token = _require_access_token()
    account_index = parse_account_index(_body().get('account_index'))
    result = get_services().gateway_for(current_credentials()).get_auth(access_token, account_index)
    return success_response(result)


@plaid_bp.route('/test-balance', methods=['POST'])
@credentials_required
def test_balance():
    access_token = _require_access_token()
    account_index = parse_account_index(_body().get('account_index'))
    result = get_services().gateway_for(current_credentials()).get_balance(access_token, account_index)
    return success_response(result)


# =============================================================================
# LINK CONFIGURATION
# =============================================================================

@plaid_bp.route('/set-link-config', methods=['POST'])
@credentials_required
def set_link_config():
    data = _body()
    validate_required(data, ['config'])
    config = validate_link_config(data['config'])

    record = current_credentials()
    get_services().link_state.set_link_config(record.api_key_id, config)
    logger.info(f"Link configuration saved (products={config['products']}, "
                f"country_codes={config['country_codes']})")

    return success_response({'config': config}, 'Link token configuration saved successfully')


@plaid_bp.route('/get-link-config', methods=['GET'])
@credentials_required
def get_link_config():
    config = get_services().link_state.get_link_config(current_credentials().api_key_id)
    return success_response({
        'config': config,
        'has_custom_config': config is not None,
    })


@plaid_bp.route('/clear-link-config', methods=['POST'])
@credentials_required
def clear_link_config():
    get_services().link_state.clear_link_config(current_credentials().api_key_id)
    return success_response(message='Link token configuration cleared successfully')


# =============================================================================
# ITEMS
# =============================================================================

@plaid_bp.route('/get-item', methods=['POST'])
@credentials_required
def get_item():
    data = _body()
    validate_required(data, ['access_token'])
    result = get_services().gateway_for(current_credentials()).get_item(data['access_token'])
    return success_response(result)


@plaid_bp.route('/set-item-id', methods=['POST'])
@credentials_required
def set_item_id():
    """Register an already-linked item so its webhooks are accepted."""
    data = _body()
    validate_required(data, ['item_id'])

    item_id = str(data['item_id']).strip()
    created = get_services().items.register(item_id, current_credentials())

    return success_response({
        'item_id': item_id,
        'already_registered': not created,
    }, 'Item ID stored successfully')
