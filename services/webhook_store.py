"""
Webhook Store
=============

Process-lifetime, append-only list of received webhooks with age-based
eviction. Nothing here survives a restart.

Records are kept in arrival order. Every read and write path purges
expired records first, so there is no background timer to coordinate with.
A lock makes each operation atomic under the threaded Flask server.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from logging_config import WebhookLogger
from services.errors import ValidationError

logger = logging.getLogger(__name__)
webhook_log = WebhookLogger()

DEFAULT_RETENTION = timedelta(hours=24)
RECENT_COUNT = 5

EXPORT_FORMATS = ('json', 'csv')
CSV_COLUMNS = ['received_at', 'webhook_type', 'item_id', 'owner_key_id', 'verified']


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WebhookRecord:
    """One accepted webhook. Immutable once stored."""
    received_at: datetime
    webhook_type: str
    item_id: str
    owner_key_id: str
    verified: bool = True
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'received_at': self.received_at.isoformat(),
            'webhook_type': self.webhook_type,
            'item_id': self.item_id,
            'owner_key_id': self.owner_key_id,
            'verified': self.verified,
            'payload': self.payload,
        }

    def summary(self) -> Dict[str, Any]:
        return {
            'type': self.webhook_type,
            'received_at': self.received_at.isoformat(),
            'item_id': self.item_id,
            'owner_key_id': self.owner_key_id,
        }


class WebhookStore:
    """In-memory webhook log with 24h eviction."""

    def __init__(
        self,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.retention = retention
        self._clock = clock
        self._records: List[WebhookRecord] = []
        self._lock = Lock()

    # =========================================================================
    # WRITES
    # =========================================================================

    def append(self, record: WebhookRecord) -> WebhookRecord:
        with self._lock:
            self._records.append(record)
            purged = self._purge_locked()
        self._log_purged(purged)
        return record

    def clear(self) -> int:
        """Remove every record. Returns how many were removed."""
        with self._lock:
            count = len(self._records)
            self._records = []
        logger.info(f"All webhooks cleared ({count} removed)")
        return count

    def purge_expired(self) -> int:
        """Drop records older than the retention window. Returns how many were removed."""
        with self._lock:
            purged = self._purge_locked()
        self._log_purged(purged)
        return purged

    def _purge_locked(self) -> int:
        cutoff = self._clock() - self.retention
        before = len(self._records)
        self._records = [r for r in self._records if r.received_at >= cutoff]
        return before - len(self._records)

    @staticmethod
    def _log_purged(purged: int) -> None:
        if purged:
            webhook_log.purged(purged)

    # =========================================================================
    # READS
    # =========================================================================

    def _snapshot(self) -> List[WebhookRecord]:
        with self._lock:
            purged = self._purge_locked()
            records = list(self._records)
        self._log_purged(purged)
        return records

    def all(self) -> List[WebhookRecord]:
        return self._snapshot()

    def __len__(self) -> int:
        return len(self._snapshot())

    def filter(
        self,
        webhook_type: Optional[str] = None,
        item_id: Optional[str] = None,
        owner_key_id: Optional[str] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[WebhookRecord]:
        """
        Return records matching every given criterion, in arrival order.

        Args:
            webhook_type: Exact webhook type
            item_id: Exact item id
            owner_key_id: Exact owner client id
            after: Only records received strictly after this instant
            before: Only records received strictly before this instant
            limit: Maximum number of records returned
        """
        results = self._snapshot()

        if webhook_type:
            results = [r for r in results if r.webhook_type == webhook_type]
        if item_id:
            results = [r for r in results if r.item_id == item_id]
        if owner_key_id:
            results = [r for r in results if r.owner_key_id == owner_key_id]
        if after is not None:
            results = [r for r in results if r.received_at > after]
        if before is not None:
            results = [r for r in results if r.received_at < before]
        if limit:
            results = results[:limit]

        return results

    def for_item(self, item_id: str) -> List[WebhookRecord]:
        return self.filter(item_id=item_id)

    def for_owner(self, owner_key_id: str) -> List[WebhookRecord]:
        return self.filter(owner_key_id=owner_key_id)

    def by_type(self, webhook_type: str) -> List[WebhookRecord]:
        return self.filter(webhook_type=webhook_type)

    def paginate(self, page: int, limit: int) -> Tuple[List[WebhookRecord], int]:
        """Return one page of records (1-based) and the total record count."""
        records = self._snapshot()
        start = (page - 1) * limit
        return records[start:start + limit], len(records)

    def stats(self) -> Dict[str, Any]:
        """Summary statistics, computed at call time."""
        records = self._snapshot()
        now = self._clock()
        hour_ago = now - timedelta(hours=1)

        type_breakdown: Dict[str, int] = {}
        for record in records:
            type_breakdown[record.webhook_type] = type_breakdown.get(record.webhook_type, 0) + 1

        newest_first = sorted(records, key=lambda r: r.received_at, reverse=True)

        return {
            'total': len(records),
            'verified': sum(1 for r in records if r.verified),
            'unique_types': len(type_breakdown),
            'last_hour_count': sum(1 for r in records if r.received_at > hour_ago),
            'type_breakdown': type_breakdown,
            'recent': [r.summary() for r in newest_first[:RECENT_COUNT]],
            'oldest': newest_first[-1].received_at.isoformat() if records else None,
            'newest': newest_first[0].received_at.isoformat() if records else None,
        }

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export(self, fmt: str = 'json') -> str:
        """
        Serialize the current records.

        JSON includes full payloads. CSV is flattened to CSV_COLUMNS and
        leaves the payload out.
        """
        if fmt not in EXPORT_FORMATS:
            raise ValidationError('Format must be either "json" or "csv"', field='format')

        records = self._snapshot()

        if fmt == 'json':
            return json.dumps([r.to_dict() for r in records], indent=2)

        output = io.StringIO()
        writer = csv.writer(output, lineterminator='\n')
        writer.writerow(CSV_COLUMNS)
        for r in records:
            writer.writerow([
                r.received_at.isoformat(),
                r.webhook_type,
                r.item_id,
                r.owner_key_id,
                'true' if r.verified else 'false',
            ])
        return output.getvalue()
