"""
Request validation helpers shared by the route modules.

Helpers either return a cleaned value or raise services.errors.ValidationError,
which the app-level error handler renders as a 400.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from services.errors import ValidationError

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_RE = re.compile(r'^\+?[\d\s\-\(\)]{10,}$')

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip')
LINK_CONFIG_FIELDS = ('client_name', 'products', 'country_codes', 'user')

MAX_STRING_LENGTH = 1000
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _is_blank(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


def json_object(data: Any) -> Mapping[str, Any]:
    """Return a request body as a mapping. None is an empty body; any other non-object is rejected."""
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValidationError('Request body must be a JSON object')
    return data


def validate_required(data: Optional[Mapping[str, Any]], fields: Iterable[str]) -> None:
    """Raise ValidationError listing every field that is missing or blank."""
    data = json_object(data)
    missing = [f for f in fields if _is_blank(data.get(f))]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email))


def is_valid_phone(phone: str) -> bool:
    return bool(phone) and bool(PHONE_RE.match(phone))


def sanitize_string(value: Any) -> str:
    """Trim, strip angle brackets and cap the length of free-text input."""
    if not isinstance(value, str):
        return ''
    return re.sub(r'[<>]', '', value.strip())[:MAX_STRING_LENGTH]


def has_address(address: Any) -> bool:
    """True if the caller filled in at least one address field."""
    if not isinstance(address, dict):
        return False
    return any(isinstance(v, str) and v.strip() for v in address.values())


def validate_address(address: Any) -> Dict[str, str]:
    """Validate and sanitize a postal address. Country defaults to US."""
    if not isinstance(address, dict):
        raise ValidationError('Address must be an object', field='address')

    validate_required(address, ADDRESS_FIELDS)

    return {
        'street': sanitize_string(address.get('street')),
        'city': sanitize_string(address.get('city')),
        'state': sanitize_string(address.get('state')),
        'zip': sanitize_string(address.get('zip')),
        'country': sanitize_string(address.get('country')) or 'US',
    }


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_pagination(args: Mapping[str, Any]) -> Tuple[int, int]:
    """
    Clamp page/limit query parameters.

    page is at least 1; limit is between 1 and 100 and defaults to 10.
    Unparsable values fall back to the defaults.
    """
    page = max(1, _to_int(args.get('page')) or 1)
    limit = min(MAX_PAGE_SIZE, max(1, _to_int(args.get('limit')) or DEFAULT_PAGE_SIZE))
    return page, limit


def parse_limit(value: Any) -> Optional[int]:
    """Optional positive result limit; anything else means no limit."""
    limit = _to_int(value)
    return limit if limit and limit > 0 else None


def parse_account_index(value: Any) -> int:
    """Account index from a request body. Missing or unparsable means the first account."""
    index = _to_int(value)
    if index is None:
        return 0
    if index < 0:
        raise ValidationError('account_index must not be negative', field='account_index')
    return index


def parse_timestamp(value: Optional[str], field: str) -> Optional[datetime]:
    """Parse an ISO-8601 query parameter into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid date format for {field}', field=field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_link_config(config: Any) -> Dict[str, Any]:
    """Check a custom Link token configuration before it is stored."""
    if not isinstance(config, dict) or not config:
        raise ValidationError('Valid configuration object is required', field='config')

    missing = [f for f in LINK_CONFIG_FIELDS if _is_blank(config.get(f))]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )

    if not isinstance(config['products'], list) or not config['products']:
        raise ValidationError('Products must be a non-empty array', field='products')

    if not isinstance(config['country_codes'], list) or not config['country_codes']:
        raise ValidationError('Country codes must be a non-empty array', field='country_codes')

    return config


def validate_identity_input(body: Mapping[str, Any]) -> Dict[str, Any]:
    """Collect the optional identity-match fields, validating the ones supplied."""
    email = body.get('email')
    phone = body.get('phone')

    if email and not is_valid_email(email):
        raise ValidationError('Invalid email format', field='email')
    if phone and not is_valid_phone(phone):
        raise ValidationError('Invalid phone format', field='phone')

    user_data: Dict[str, Any] = {}
    if body.get('name'):
        user_data['name'] = body['name']
    if email:
        user_data['email'] = email
    if phone:
        user_data['phone'] = phone
    if has_address(body.get('address')):
        user_data['address'] = validate_address(body['address'])
    return user_data
