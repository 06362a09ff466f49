"""
Error taxonomy for the Plaid Test Kit
=====================================

Every error the service layer raises derives from AppError, which carries the
HTTP status code and the message that is safe to show to end users. The Flask
error handlers in app.py translate these into the standard JSON error body.
"""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Base exception for all expected application errors"""

    status_code = 500
    error_type = 'GENERIC_ERROR'
    user_message = 'An unexpected error occurred. Please try again.'

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.details = details or {}

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        data = {
            'success': False,
            'error': self.public_message(),
            'type': self.error_type,
        }
        if include_details:
            data['message'] = self.message
            if self.details:
                data['details'] = self.details
        return data

    def public_message(self) -> str:
        return self.user_message


class ValidationError(AppError):
    """Missing or invalid request fields"""

    status_code = 400
    error_type = 'VALIDATION_ERROR'

    def __init__(self, message: str, field: Optional[str] = None,
                 missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.field = field
        self.missing_fields = missing_fields

    def public_message(self) -> str:
        # Validation messages describe the caller's own input, so they are safe to echo
        return self.message

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        data = super().to_dict(include_details)
        if self.field:
            data['field'] = self.field
        if self.missing_fields:
            data['missing_fields'] = self.missing_fields
        return data


class MalformedPayloadError(AppError):
    """Webhook body is not a JSON object"""

    status_code = 400
    error_type = 'MALFORMED_PAYLOAD'
    user_message = 'Invalid JSON in webhook payload'


class AuthenticationError(AppError):
    status_code = 401
    error_type = 'AUTH_ERROR'
    user_message = 'Authentication required'


class DecryptionError(AuthenticationError):
    """
    Stored credential blob could not be decrypted.

    Callers treat this exactly like "no credentials": the stored value is
    cleared and the user is sent back to re-authenticate.
    """

    error_type = 'SESSION_INVALID'
    user_message = 'Session invalid, please re-authenticate'


class ForbiddenSourceError(AppError):
    """Webhook sender is not on the allow-list"""

    status_code = 403
    error_type = 'FORBIDDEN_SOURCE'
    user_message = 'Unauthorized IP'


class UnknownItemError(AppError):
    """Webhook references an item this service never registered"""

    status_code = 422
    error_type = 'UNKNOWN_ITEM'
    user_message = 'Unknown item_id'

    def __init__(self, item_id: str):
        super().__init__(f"Unknown item_id: {item_id}")
        self.item_id = item_id


class RegistryFullError(AppError):
    """Item registry is at capacity and will not evict live owners"""

    status_code = 503
    error_type = 'REGISTRY_FULL'
    user_message = 'Item registry is full, please try again later'


class EncryptionError(AppError):
    status_code = 500
    error_type = 'ENCRYPTION_ERROR'
    user_message = 'Failed to secure credentials'


# Plaid error codes mapped to messages that are safe to show to users
PLAID_ERROR_MESSAGES = {
    'INVALID_CREDENTIALS': 'Invalid Plaid credentials provided',
    'INVALID_API_KEYS': 'Invalid Plaid credentials provided',
    'INVALID_ACCESS_TOKEN': 'Access token is invalid or expired',
    'INVALID_PUBLIC_TOKEN': 'Public token is invalid or expired',
    'ITEM_NOT_FOUND': 'Item not found or no longer accessible',
    'INSUFFICIENT_CREDENTIALS': 'Additional authentication required',
    'INVALID_REQUEST': 'Invalid request parameters',
    'RATE_LIMIT_EXCEEDED': 'Too many requests. Please try again later.',
    'API_ERROR': 'Plaid service temporarily unavailable',
    'ITEM_LOGIN_REQUIRED': 'User needs to re-authenticate with their bank',
    'WEBHOOK_ERROR': 'Webhook configuration error',
}


class VendorError(AppError):
    """Wrapped failure from the Plaid API"""

    status_code = 502
    error_type = 'PLAID_ERROR'
    user_message = 'An error occurred while communicating with Plaid'

    def __init__(self, message: str, error_code: Optional[str] = None,
                 status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.error_code = error_code
        if status_code:
            self.status_code = status_code

    def public_message(self) -> str:
        if self.error_code in PLAID_ERROR_MESSAGES:
            return PLAID_ERROR_MESSAGES[self.error_code]
        return self.message or self.user_message

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        data = super().to_dict(include_details)
        if self.error_code:
            data['code'] = self.error_code
        return data
