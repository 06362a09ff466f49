"""
Item Registry
=============

Maps a Plaid item_id to the credentials of the caller that linked it, so an
inbound webhook can be routed back to the right tenant.

Entries live in a cachetools TTLCache (24h by default). Expired entries are
invisible to lookups immediately; sweep() drops them from memory and is run
periodically by the application scheduler.

The registry never evicts a live entry to make room. Once max_items live
entries exist, new registrations are refused until some expire.
"""

import time
import logging
from threading import Lock
from typing import Callable, Optional

from cachetools import TTLCache

from services.credential_codec import CredentialRecord
from services.errors import RegistryFullError

logger = logging.getLogger(__name__)

DEFAULT_ITEM_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_ITEMS = 10000


class ItemRegistry:
    """Thread-safe, first-writer-wins item_id -> owner credentials map."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_ITEM_TTL_SECONDS,
        max_items: int = DEFAULT_MAX_ITEMS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._items = TTLCache(maxsize=max_items, ttl=ttl_seconds, timer=timer)
        self._lock = Lock()

    def register(self, item_id: str, owner: CredentialRecord) -> bool:
        """
        Register the owner of an item.

        Registering an item that is already known is a no-op, so a later
        registration can never take over routing for an existing item.

        Returns:
            True if the entry was created, False if the item was already known

        Raises:
            RegistryFullError: max_items live entries are already registered
        """
        if not item_id:
            raise ValueError("item_id is required")

        with self._lock:
            known = item_id in self._items
            if not known:
                self._items.expire()
                full = len(self._items) >= self._items.maxsize
                if not full:
                    self._items[item_id] = owner

        if known:
            logger.info(f"Item {item_id} already registered, keeping existing owner")
            return False
        if full:
            logger.warning(f"Item registry full, refusing {item_id}")
            raise RegistryFullError()

        logger.info(f"Item {item_id} registered for webhook routing (owner={owner.masked_key_id()})")
        return True

    def seed(self, item_id: str, owner: CredentialRecord) -> bool:
        """Pre-register a sandbox item at start-up so webhooks can be tested without linking."""
        created = self.register(item_id, owner)
        if created:
            logger.info(f"Seeded test item {item_id}")
        return created

    def lookup(self, item_id: str) -> Optional[CredentialRecord]:
        with self._lock:
            return self._items.get(item_id)

    def has(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._items

    def sweep(self) -> int:
        """Evict expired entries. Returns the number removed."""
        with self._lock:
            before = len(self._items)
            self._items.expire()
            removed = before - len(self._items)

        if removed:
            logger.info(f"Item sweep removed {removed} expired entries")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
