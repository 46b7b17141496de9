"""
In-memory credential store.

Holds the access/refresh token pair for the logged-in user. The pair is the
only mutable state shared by concurrent requests, so every read and write
goes through a lock. Persisting the pair across process restarts is left to
the host application (call ``set_pair`` after loading it).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class CredentialPair:
    """Short-lived access token plus the long-lived refresh token that mints it."""

    access_token: str
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        return "CredentialPair(access_token=***, refresh_token=***)"


class CredentialStore:
    """
    Thread-safe holder for the current CredentialPair.

    Example:
        >>> store = CredentialStore()
        >>> store.set_pair(CredentialPair("access-1", "refresh-1"))
        >>> store.replace_access_token("access-2")
        >>> store.access_token
        'access-2'
        >>> store.clear()
        >>> store.is_authenticated
        False
    """

    def __init__(self, pair: Optional[CredentialPair] = None):
        self._lock = threading.Lock()
        self._pair = pair

    def get(self) -> Optional[CredentialPair]:
        with self._lock:
            return self._pair

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._pair.access_token if self._pair else None

    @property
    def refresh_token(self) -> Optional[str]:
        with self._lock:
            return self._pair.refresh_token if self._pair else None

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._pair is not None

    def set_pair(self, pair: CredentialPair) -> None:
        """Store a pair created by login, registration or OTP verification."""
        with self._lock:
            self._pair = pair

    def replace_access_token(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """
        Swap in a refreshed access token.

        Args:
            access_token: Newly minted access token.
            refresh_token: Rotated refresh token, if the server issued one.
        """
        with self._lock:
            if self._pair is None:
                self._pair = CredentialPair(access_token, refresh_token)
                return
            self._pair = replace(
                self._pair,
                access_token=access_token,
                refresh_token=refresh_token or self._pair.refresh_token,
            )

    def clear(self) -> None:
        """Destroy the credentials (logout, refresh failure, deactivation)."""
        with self._lock:
            self._pair = None


class SessionEndReason(str, Enum):
    """Why the credentials were destroyed; the host sends the user to login."""

    LOGGED_OUT = "logged_out"
    SESSION_EXPIRED = "session_expired"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    @property
    def user_message(self) -> str:
        return _SESSION_END_MESSAGES[self]


_SESSION_END_MESSAGES = {
    SessionEndReason.LOGGED_OUT: "You have been logged out.",
    SessionEndReason.SESSION_EXPIRED: "Session expired. Please login again.",
    SessionEndReason.ACCOUNT_DEACTIVATED: "Your account has been deactivated. Please contact support.",
}
