"""
Webhook Routes
==============

POST /webhooks             - public receiver for Plaid (IP allow-listed, rate limited)
GET  /api/webhooks/health  - public storage health

Everything else under /api/webhooks needs stored credentials.
"""

import logging
from datetime import datetime, timezone
from flask import Blueprint, Response, request

from auth import credentials_required, current_credentials
from routes.responses import success_response, paginated_response
from services.container import get_services
from services.rate_limiter import rate_limit, webhook_limit
from services.validation import parse_limit, parse_timestamp, validate_pagination

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)

SEARCH_PARAMS = ('webhook_type', 'item_id', 'client_id', 'after', 'before')
DEFAULT_SEARCH_LIMIT = 50

# Storage health thresholds
STORAGE_WARNING_THRESHOLD = 10000
DEGRADED_THRESHOLD = 50000

EXPORT_CONTENT_TYPES = {
    'json': 'application/json',
    'csv': 'text/csv',
}


def _serialize(records):
    return [r.to_dict() for r in records]


# =============================================================================
# PUBLIC
# =============================================================================

@webhooks_bp.route('/webhooks', methods=['POST'])
@rate_limit(webhook_limit)
def receive_webhook():
    """Plaid webhook receiver. Errors map to 400/403/422 through the app error handlers."""
    record = get_services().ingestor.ingest(request.remote_addr, request.get_data())
    return success_response({
        'webhook_type': record.webhook_type,
        'item_id': record.item_id,
    }, 'Webhook processed successfully')


@webhooks_bp.route('/api/webhooks/health', methods=['GET'])
def webhooks_health():
    stats = get_services().webhooks.stats()
    health = {
        'status': 'healthy',
        'total_webhooks': stats['total'],
        'recent_webhooks': stats['last_hour_count'],
        'unique_types': stats['unique_types'],
        'last_webhook': stats['newest'],
        'storage_health': 'good' if stats['total'] < STORAGE_WARNING_THRESHOLD else 'warning',
    }
    if stats['total'] > DEGRADED_THRESHOLD:
        health['status'] = 'degraded'
        health['warning'] = 'High webhook volume detected'
    return success_response(health, 'Webhook service health')


# =============================================================================
# LISTING & SEARCH
# =============================================================================

@webhooks_bp.route('/api/webhooks', methods=['GET'])
@credentials_required
def list_webhooks():
    """
    Search when any filter is given, otherwise paginate.

    Query params:
        webhook_type, item_id, client_id: exact matches
        after, before: ISO-8601 instants (exclusive)
        limit: max results for a search, page size otherwise
        page: 1-based page number
    """
    store = get_services().webhooks
    args = request.args

    if any(args.get(p) for p in SEARCH_PARAMS):
        criteria = {p: args.get(p) for p in SEARCH_PARAMS if args.get(p)}
        if args.get('limit'):
            criteria['limit'] = parse_limit(args.get('limit')) or DEFAULT_SEARCH_LIMIT

        records = store.filter(
            webhook_type=args.get('webhook_type') or None,
            item_id=args.get('item_id') or None,
            owner_key_id=args.get('client_id') or None,
            after=parse_timestamp(args.get('after'), 'after'),
            before=parse_timestamp(args.get('before'), 'before'),
            limit=criteria.get('limit'),
        )
        logger.debug(f"Webhook search returned {len(records)} results")
        return success_response({'webhooks': _serialize(records), 'criteria': criteria})

    page, limit = validate_pagination(args)
    records, total = store.paginate(page, limit)
    return paginated_response(_serialize(records), page, limit, total)


@webhooks_bp.route('/api/webhooks/stats', methods=['GET'])
@credentials_required
def webhook_stats():
    return success_response({'stats': get_services().webhooks.stats()})


@webhooks_bp.route('/api/webhooks/item/<item_id>', methods=['GET'])
@credentials_required
def webhooks_for_item(item_id):
    records = get_services().webhooks.for_item(item_id)
    return success_response({'webhooks': _serialize(records), 'item_id': item_id})


@webhooks_bp.route('/api/webhooks/my-webhooks', methods=['GET'])
@credentials_required
def my_webhooks():
    client_id = current_credentials().api_key_id
    records = get_services().webhooks.for_owner(client_id)
    return success_response({'webhooks': _serialize(records), 'client_id': client_id})


@webhooks_bp.route('/api/webhooks/type/<webhook_type>', methods=['GET'])
@credentials_required
def webhooks_by_type(webhook_type):
    records = get_services().webhooks.by_type(webhook_type)
    return success_response({'webhooks': _serialize(records), 'webhook_type': webhook_type})


# =============================================================================
# MAINTENANCE & EXPORT
# =============================================================================

@webhooks_bp.route('/api/webhooks/clear', methods=['POST'])
@credentials_required
def clear_webhooks():
    cleared = get_services().webhooks.clear()
    logger.info(f"Webhooks cleared by {current_credentials().masked_key_id()} ({cleared} removed)")
    return success_response({'cleared_count': cleared}, 'Webhook logs cleared')


@webhooks_bp.route('/api/webhooks/cleanup', methods=['POST'])
@credentials_required
def cleanup_webhooks():
    store = get_services().webhooks
    cleaned = store.purge_expired()
    return success_response({
        'cleaned_count': cleaned,
        'remaining_count': len(store),
    }, 'Webhook cleanup completed')


@webhooks_bp.route('/api/webhooks/export', methods=['GET'])
@credentials_required
def export_webhooks():
    fmt = request.args.get('format', 'json')
    body = get_services().webhooks.export(fmt)

    filename = f"webhooks-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.{fmt}"
    logger.info(f"Webhook export requested (format={fmt})")
    return Response(
        body,
        mimetype=EXPORT_CONTENT_TYPES[fmt],
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )
