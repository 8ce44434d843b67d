"""
Session Storage Module
=======================
Thread-safe server-side login sessions.

The browser only holds an opaque random token in a cookie; the token maps
to a user id here. Sessions expire after SESSION_TTL_SECONDS and expired
entries are purged lazily on access.

One SessionStore is constructed per app (see create_app in main.py), so
tests get isolated sessions.
"""

import logging
import secrets
import time
from threading import Lock
from typing import Callable, Optional

from marketplace.config import SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


class SessionStore:
    """Maps session tokens to user ids."""

    def __init__(self, ttl_seconds: int = SESSION_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._sessions: dict[str, dict] = {}

    def _purge_expired(self) -> None:
        # Caller holds the lock
        now = self._clock()
        expired = [token for token, s in self._sessions.items() if s["expiresAt"] <= now]
        for token in expired:
            del self._sessions[token]
        if expired:
            logger.info(f"[SESSION] Purged {len(expired)} expired session(s)")

    # ---------- CREATE / FETCH SESSION ----------

    def create(self, user_id: int) -> str:
        """
        Start a session for the user.

        Args:
            user_id: Authenticated user id

        Returns:
            New session token to set as the cookie value
        """
        token = secrets.token_urlsafe(32)
        now = self._clock()
        with self._lock:
            self._purge_expired()
            self._sessions[token] = {
                "userId": user_id,
                "createdAt": now,
                "expiresAt": now + self._ttl,
            }
        return token

    def get_user_id(self, token: Optional[str]) -> Optional[int]:
        """Return the user id for a live session, None if unknown or expired."""
        if not token:
            return None
        with self._lock:
            self._purge_expired()
            session = self._sessions.get(token)
            return session["userId"] if session else None

    # ---------- DESTROY SESSION ----------

    def destroy(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)
