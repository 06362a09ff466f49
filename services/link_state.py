"""
Per-caller Link state: the current access token and any custom Link token
configuration, keyed by the caller's Plaid client id so two developers using
the same deployment never see each other's items.
"""

import time
import logging
from threading import Lock
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_OWNERS = 1000


class LinkStateStore:
    """Thread-safe TTL maps for access tokens and Link configs."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_owners: int = DEFAULT_MAX_OWNERS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._tokens = TTLCache(maxsize=max_owners, ttl=ttl_seconds, timer=timer)
        self._configs = TTLCache(maxsize=max_owners, ttl=ttl_seconds, timer=timer)
        self._lock = Lock()

    # Access tokens

    def get_access_token(self, owner_key_id: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(owner_key_id)

    def set_access_token(self, owner_key_id: str, access_token: str) -> None:
        if not access_token:
            raise ValueError("access_token is required")
        with self._lock:
            self._tokens[owner_key_id] = access_token
        logger.info("Access token stored")

    def clear_access_token(self, owner_key_id: str) -> bool:
        with self._lock:
            return self._tokens.pop(owner_key_id, None) is not None

    # Link configuration

    def get_link_config(self, owner_key_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            config = self._configs.get(owner_key_id)
            return dict(config) if config is not None else None

    def set_link_config(self, owner_key_id: str, config: Dict[str, Any]) -> None:
        with self._lock:
            self._configs[owner_key_id] = dict(config)
        logger.info(f"Custom Link config stored ({len(config)} keys)")

    def clear_link_config(self, owner_key_id: str) -> bool:
        with self._lock:
            return self._configs.pop(owner_key_id, None) is not None

    def clear_owner(self, owner_key_id: str) -> None:
        """Forget everything held for one caller (used on logout)."""
        with self._lock:
            self._tokens.pop(owner_key_id, None)
            self._configs.pop(owner_key_id, None)
