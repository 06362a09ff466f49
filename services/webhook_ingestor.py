"""
Webhook Ingestor
================

Turns a raw inbound webhook into a stored WebhookRecord.

Checks run in order and the first failure wins:
    1. sender IP on the allow-list          -> ForbiddenSourceError (403)
    2. body is a JSON object                -> MalformedPayloadError (400)
    3. item_id present                      -> ValidationError (400)
    4. item_id registered                   -> UnknownItemError (422)

Nothing is stored unless every check passes. There are no retries; Plaid
redelivers on its own schedule.
"""

import json
from typing import Any, Callable, Dict, Iterable, Optional, Union

from logging_config import WebhookLogger
from services.errors import (
    ForbiddenSourceError,
    MalformedPayloadError,
    UnknownItemError,
    ValidationError,
)
from services.item_registry import ItemRegistry
from services.webhook_store import WebhookRecord, WebhookStore, utc_now

IPV4_MAPPED_PREFIX = '::ffff:'
UNKNOWN_WEBHOOK_TYPE = 'unknown'

webhook_log = WebhookLogger()


def normalize_ip(source_ip: Optional[str]) -> str:
    """Strip the IPv4-mapped IPv6 prefix so allow-list entries can be plain IPv4."""
    ip = (source_ip or '').strip()
    if ip.startswith(IPV4_MAPPED_PREFIX):
        ip = ip[len(IPV4_MAPPED_PREFIX):]
    return ip


class WebhookIngestor:
    """Validates inbound webhooks and appends them to the store."""

    def __init__(
        self,
        store: WebhookStore,
        registry: ItemRegistry,
        allowed_ips: Iterable[str],
        clock: Callable = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.allowed_ips = frozenset(allowed_ips)
        self._clock = clock

    def is_allowed(self, source_ip: Optional[str]) -> bool:
        """True if the sender, after IPv4-mapped normalization, is on the allow-list."""
        return normalize_ip(source_ip) in self.allowed_ips

    def ingest(self, source_ip: Optional[str], raw_body: Union[bytes, str, None]) -> WebhookRecord:
        """
        Validate and store one webhook.

        Args:
            source_ip: Address the request came from
            raw_body: Undecoded request body

        Returns:
            The stored record
        """
        ip = normalize_ip(source_ip)
        body = raw_body or b''
        webhook_log.received(ip, len(body))

        if not self.is_allowed(ip):
            webhook_log.rejected('source not allowed', ip)
            raise ForbiddenSourceError()

        payload = self._parse(body, ip)

        item_id = payload.get('item_id')
        if not item_id or not isinstance(item_id, str):
            webhook_log.rejected('missing item_id', ip)
            raise ValidationError('Missing item_id in webhook', field='item_id')

        owner = self.registry.lookup(item_id)
        if owner is None:
            webhook_log.rejected(f'unknown item_id {item_id}', ip)
            raise UnknownItemError(item_id)

        webhook_type = payload.get('webhook_type') or UNKNOWN_WEBHOOK_TYPE

        record = WebhookRecord(
            received_at=self._clock(),
            webhook_type=str(webhook_type),
            item_id=item_id,
            owner_key_id=owner.api_key_id,
            verified=True,
            payload=payload,
        )
        self.store.append(record)

        webhook_log.processed(record.webhook_type, item_id)
        return record

    @staticmethod
    def _parse(body: Union[bytes, str], ip: str) -> Dict[str, Any]:
        try:
            if isinstance(body, bytes):
                body = body.decode('utf-8')
            payload = json.loads(body)
        except ValueError:
            webhook_log.rejected('invalid JSON', ip)
            raise MalformedPayloadError()

        if not isinstance(payload, dict):
            webhook_log.rejected('payload is not an object', ip)
            raise MalformedPayloadError()

        return payload
