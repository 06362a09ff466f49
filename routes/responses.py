"""
Standard JSON response bodies shared by every blueprint.

    success:   {"success": true, "message": ..., ...data, "timestamp": ...}
    paginated: success body plus "data" and "pagination"
    error:     {"success": false, "error": ..., "type": ..., "timestamp": ...}
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask import jsonify


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(data: Optional[Dict[str, Any]] = None, message: str = 'Success',
                     status: int = 200):
    body: Dict[str, Any] = {'success': True, 'message': message}
    body.update(data or {})
    body['timestamp'] = timestamp()
    return jsonify(body), status


def paginated_response(items: List[Any], page: int, limit: int, total: int,
                       message: str = 'Success'):
    total_pages = math.ceil(total / limit) if limit else 0
    return success_response({
        'data': items,
        'pagination': {
            'total': total,
            'page': page,
            'limit': limit,
            'total_pages': total_pages,
            'has_next': page < total_pages,
            'has_prev': page > 1,
        },
    }, message)


def error_body(error: str, error_type: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {'success': False, 'error': error, 'type': error_type}
    body.update(extra or {})
    body['timestamp'] = timestamp()
    return body


def error_response(error: str, status: int, error_type: str = 'GENERIC_ERROR',
                   extra: Optional[Dict[str, Any]] = None):
    return jsonify(error_body(error, error_type, extra)), status
