"""
Single-flight coordination of access token refreshes.

However many requests observe an expired access token at the same time, only
one of them (the leader) calls the refresh endpoint. The others enqueue a
Future and block until the leader settles it with the new token or with the
refresh error.
"""

from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future
from typing import Callable, Deque, Optional

import structlog

from stay_checkout.credentials import CredentialStore
from stay_checkout.errors import RefreshFailedError
from stay_checkout.metrics import refresh_waiters

logger = structlog.get_logger(__name__)


class TokenRefresher:
    """
    Owns the ``{in_flight, waiters}`` pair guarding token refreshes.

    Args:
        credentials: Store the refreshed token is read back from.
        refresh_fn: Performs the refresh call and stores the new token;
            returns the new access token.
        on_failure: Called by the leader only, with the raw refresh error.
            Returns the exception every caller (leader and waiters) receives.
            Tearing down the session belongs here.

    Example:
        >>> refresher = TokenRefresher(store, do_refresh, end_session)
        >>> token = refresher.refresh(stale_token="expired-token")
    """

    def __init__(
        self,
        credentials: CredentialStore,
        refresh_fn: Callable[[], str],
        on_failure: Callable[[Exception], Exception],
    ):
        self._credentials = credentials
        self._refresh_fn = refresh_fn
        self._on_failure = on_failure
        self._lock = threading.Lock()
        self._in_flight = False
        self._waiters: Deque["Future[str]"] = deque()

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    @property
    def waiter_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    def refresh(self, stale_token: Optional[str]) -> str:
        """
        Return an access token newer than ``stale_token``.

        Joins an in-flight refresh if there is one. If a refresh already
        completed after ``stale_token`` was sent, returns the stored token
        without contacting the server.

        Args:
            stale_token: The access token the failed request carried.

        Returns:
            str: Access token to retry with.

        Raises:
            Exception: Whatever ``on_failure`` mapped the refresh error to.
            RefreshFailedError: If the credentials were cleared after
                ``stale_token`` was sent; the session end was already signalled.
        """
        with self._lock:
            if self._in_flight:
                waiter: "Future[str]" = Future()
                self._waiters.append(waiter)
                leader = False
            else:
                current = self._credentials.access_token
                if current is None and stale_token is not None:
                    # Credentials were destroyed after this request was sent
                    logger.debug("session_already_ended")
                    raise RefreshFailedError("Session already ended; refresh not attempted")
                if current and current != stale_token:
                    logger.debug("token_already_refreshed")
                    return current
                self._in_flight = True
                leader = True

        if not leader:
            refresh_waiters.inc()
            logger.debug("token_refresh_joined")
            return waiter.result()

        try:
            token = self._refresh_fn()
        except Exception as exc:
            failure: Exception = exc
            try:
                failure = self._on_failure(exc)
            finally:
                for pending in self._settle():
                    pending.set_exception(failure)
            if failure is exc:
                raise
            raise failure from exc

        for pending in self._settle():
            pending.set_result(token)
        return token

    def _settle(self) -> list["Future[str]"]:
        with self._lock:
            self._in_flight = False
            waiters = list(self._waiters)
            self._waiters.clear()
        return waiters
