"""
Session Credential Store
========================

Keeps the caller's Plaid credentials between requests.

The encrypted blob always lives in the server-side session. When the user
asks to be remembered it is also written to an HttpOnly cookie, so the
session can be rebuilt after the server-side session file is reaped.
Plaintext credentials never leave the process.

Cookie changes are attached to the outgoing response with
flask.after_this_request, so every method here must run inside a request.
"""

import os
import time
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

from flask import after_this_request, request

from logging_config import AuthLogger
from services.credential_codec import CredentialCodec, CredentialRecord
from services.errors import DecryptionError

logger = logging.getLogger(__name__)
auth_log = AuthLogger()

SESSION_KEY = 'plaid_credentials'
DEFAULT_COOKIE_NAME = 'plaidCredentials'
DEFAULT_MAX_AGE = 24 * 60 * 60


class SessionCredentialStore:
    """Store, restore and clear encrypted credentials for the current request."""

    def __init__(
        self,
        codec: CredentialCodec,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        max_age: int = DEFAULT_MAX_AGE,
        secure: bool = False,
    ):
        self.codec = codec
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    def store(self, session: MutableMapping, record: CredentialRecord, remember: bool = False) -> str:
        """
        Encrypt the record into the session, and into a cookie if remember is set.

        Returns:
            The encrypted blob that was stored
        """
        blob = self.codec.encrypt(record)
        session[SESSION_KEY] = blob

        if remember:
            @after_this_request
            def set_credentials_cookie(response):
                response.set_cookie(
                    self.cookie_name,
                    blob,
                    max_age=self.max_age,
                    httponly=True,
                    secure=self.secure,
                    samesite='Strict',
                )
                return response
        elif self.cookie_name in request.cookies:
            # A remembered login from an earlier caller must not outlive this one
            self._expire_cookie()

        auth_log.event('credentials_stored', record.api_key_id,
                       environment=record.environment, remember=bool(remember))
        return blob

    def has_credentials(self, session: Mapping, cookies: Mapping) -> bool:
        """True if an encrypted blob is present in the session or the cookie."""
        return bool(session.get(SESSION_KEY) or cookies.get(self.cookie_name))

    def load(self, session: MutableMapping, cookies: Mapping) -> Optional[CredentialRecord]:
        """
        Return the caller's credentials, or None.

        The session copy wins over the cookie. A cookie-only caller has the
        blob copied back into the session. A blob that fails to decrypt is
        treated as no credentials at all: session and cookie are both
        cleared.
        """
        session_blob = session.get(SESSION_KEY)
        blob = session_blob or cookies.get(self.cookie_name)
        if not blob:
            return None

        try:
            record = self.codec.decrypt(blob)
        except DecryptionError:
            auth_log.event('credentials_invalid', source='session' if session_blob else 'cookie')
            self.clear(session)
            return None

        if not session_blob:
            self._restore(session, blob)

        return record

    def _restore(self, session: MutableMapping, blob: str) -> None:
        try:
            session[SESSION_KEY] = blob
        except (RuntimeError, TypeError) as e:
            # Request still succeeds; the cookie is retried next time
            logger.error(f"Failed to restore credentials to session: {e}")
            return
        logger.info("Restored credentials from cookie to session")

    def clear(self, session: MutableMapping) -> None:
        """Drop credentials from the session and expire the cookie. Safe to call repeatedly."""
        session.clear()
        self._expire_cookie()

    def _expire_cookie(self) -> None:
        @after_this_request
        def expire_credentials_cookie(response):
            response.delete_cookie(
                self.cookie_name,
                httponly=True,
                secure=self.secure,
                samesite='Strict',
            )
            return response

    def status(self, session: MutableMapping, cookies: Mapping) -> Dict[str, Any]:
        """Authentication status document for the current caller."""
        has_session = bool(session.get(SESSION_KEY))
        has_cookie = bool(cookies.get(self.cookie_name))
        record = self.load(session, cookies)

        return {
            'authenticated': record is not None,
            'has_session': has_session,
            'has_cookie': has_cookie,
            'environment': record.environment if record else 'unknown',
            'client_id_present': record is not None,
            'will_redirect': record is None,
        }


def reap_session_files(session_dir: str, max_age_seconds: int, now: Optional[float] = None) -> int:
    """
    Delete server-side session files not touched within max_age_seconds.

    Returns the number of files removed. Files that vanish or cannot be
    removed mid-sweep are skipped.
    """
    directory = Path(session_dir)
    if not directory.is_dir():
        return 0

    cutoff = (now if now is not None else time.time()) - max_age_seconds
    removed = 0
    for path in directory.iterdir():
        # cachelib keeps its entry counter alongside the session files
        if not path.is_file() or path.name.startswith('__wz_cache'):
            continue
        try:
            if path.stat().st_mtime < cutoff:
                os.remove(path)
                removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove session file {path.name}: {e}")

    if removed:
        logger.info(f"Reaped {removed} expired session files")
    return removed
