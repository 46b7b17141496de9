"""
Session channel for the booking API.

Every request is decorated with the current access token. A 401 on an
ordinary request is treated as credential expiry and recovered with a
single-flight token refresh; a 401 whose message marks the account as
deactivated ends the session immediately. Anything else propagates to the
caller unchanged.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

import requests
import structlog

from stay_checkout.config import API_BASE_URL, AUTH_TIMEOUT_SECONDS, REQUEST_TIMEOUT_SECONDS
from stay_checkout.credentials import CredentialStore, SessionEndReason
from stay_checkout.errors import AccountDeactivatedError, RefreshFailedError, SessionError
from stay_checkout.metrics import api_latency, api_requests, token_refreshes
from stay_checkout.network.auth import LOGIN_PATH, LOGOUT_PATH, REFRESH_PATH, refresh_access_token
from stay_checkout.network.single_flight import TokenRefresher

logger = structlog.get_logger(__name__)

# Endpoints whose 401 must never trigger a refresh
EXPIRY_EXEMPT_PATHS = frozenset({LOGIN_PATH, REFRESH_PATH, LOGOUT_PATH})
DEACTIVATION_MARKER = "deactivated"


@dataclass(frozen=True)
class RequestSpec:
    """
    Description of one API call.

    Attributes:
        method: HTTP method.
        path: Path relative to the API base URL (e.g. "bookings/abc/cancel").
        json: JSON body, if any.
        params: Query parameters, if any.
        timeout: Per-request timeout override in seconds.
        label: Metrics label; defaults to the path. Use a template for paths
            carrying ids so label cardinality stays bounded.
        retried: Set once the request has been replayed after a refresh.
    """

    method: str
    path: str
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None
    label: Optional[str] = None
    retried: bool = False

    @property
    def normalized_path(self) -> str:
        return self.path.strip("/")

    def as_retry(self) -> "RequestSpec":
        return replace(self, retried=True)


def error_message(response: requests.Response) -> str:
    """Return the ``message`` field of a JSON error body, or an empty string."""
    try:
        body = response.json()
    except ValueError:
        return ""
    message = body.get("message") if isinstance(body, dict) else None
    return message if isinstance(message, str) else ""


def is_deactivation(response: Optional[requests.Response]) -> bool:
    """Check whether a rejection carries the account-deactivated marker."""
    if response is None or response.status_code != 401:
        return False
    return DEACTIVATION_MARKER in error_message(response).lower()


class SessionChannel:
    """
    Authenticated HTTP channel with single-flight token refresh.

    Args:
        base_url: API base URL.
        credentials: Credential store; a fresh empty one if omitted.
        session: requests.Session to send through.
        timeout: Default request timeout in seconds.
        auth_timeout: Timeout for the refresh call.
        on_session_end: Called once the credentials have been destroyed, with
            the reason. The host uses it to send the user to the login screen.

    Example:
        >>> channel = SessionChannel(credentials=store, on_session_end=go_to_login)
        >>> response = channel.post("bookings/calculate-price", json=payload)
        >>> response.json()["data"]["finalPrice"]
        7840
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        credentials: Optional[CredentialStore] = None,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        auth_timeout: float = AUTH_TIMEOUT_SECONDS,
        on_session_end: Optional[Callable[[SessionEndReason], None]] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.timeout = timeout
        self.auth_timeout = auth_timeout
        self._session = session or requests.Session()
        self._on_session_end = on_session_end
        self._refresher = TokenRefresher(self.credentials, self._refresh, self._refresh_failed)

    def request(self, spec: RequestSpec) -> requests.Response:
        """
        Send a request with the current access token.

        Args:
            spec (RequestSpec): The call to make.

        Returns:
            requests.Response: A successful (2xx) response.

        Raises:
            AccountDeactivatedError: If the server reports the account as deactivated.
            RefreshFailedError: If the token expired and could not be refreshed.
            requests.HTTPError: For every other non-2xx response, unchanged.
            requests.RequestException: For transport failures (timeouts included), unchanged.
        """
        return self._dispatch(spec, self.credentials.access_token)

    def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        label: Optional[str] = None,
    ) -> requests.Response:
        return self.request(RequestSpec("GET", path, params=params, timeout=timeout, label=label))

    def post(
        self,
        path: str,
        json: Optional[Any] = None,
        timeout: Optional[float] = None,
        label: Optional[str] = None,
    ) -> requests.Response:
        return self.request(RequestSpec("POST", path, json=json, timeout=timeout, label=label))

    def end_session(self, reason: SessionEndReason) -> None:
        """Destroy local credentials and notify the host."""
        self.credentials.clear()
        logger.info("session_ended", reason=reason.value)
        if self._on_session_end is None:
            return
        try:
            self._on_session_end(reason)
        except Exception:
            logger.exception("session_end_callback_failed", reason=reason.value)

    def _dispatch(self, spec: RequestSpec, token: Optional[str]) -> requests.Response:
        response = self._send(spec, token)

        if response.status_code == 401 and spec.normalized_path not in EXPIRY_EXEMPT_PATHS:
            if is_deactivation(response):
                logger.warning("account_deactivated", path=spec.normalized_path)
                self.end_session(SessionEndReason.ACCOUNT_DEACTIVATED)
                raise AccountDeactivatedError(
                    f"Account deactivated (rejected {spec.method} {spec.normalized_path})"
                ) from requests.HTTPError(response=response)

            if not spec.retried:
                logger.info("access_token_expired", path=spec.normalized_path)
                new_token = self._refresher.refresh(stale_token=token)
                return self._dispatch(spec.as_retry(), new_token)

        response.raise_for_status()
        return response

    def _send(self, spec: RequestSpec, token: Optional[str]) -> requests.Response:
        url = urljoin(self.base_url, spec.normalized_path)
        label = spec.label or spec.normalized_path
        request_id = str(uuid.uuid4())
        headers = {
            "Content-Type": "application/json",
            "X-Request-ID": request_id,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        timeout = spec.timeout if spec.timeout is not None else self.timeout

        logger.debug(
            "api_request",
            method=spec.method,
            endpoint=label,
            request_id=request_id,
            retried=spec.retried,
        )

        start_time = time.time()
        try:
            response = self._session.request(
                spec.method,
                url,
                json=spec.json,
                params=spec.params,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout:
            api_requests.labels(endpoint=label, status_code="timeout").inc()
            logger.warning("api_request_timeout", endpoint=label, request_id=request_id, timeout=timeout)
            raise
        except requests.RequestException as err:
            api_requests.labels(endpoint=label, status_code="error").inc()
            logger.warning("api_request_failed", endpoint=label, request_id=request_id, error=str(err))
            raise
        finally:
            api_latency.labels(endpoint=label).observe(time.time() - start_time)

        api_requests.labels(endpoint=label, status_code=str(response.status_code)).inc()
        return response

    def _refresh(self) -> str:
        return refresh_access_token(
            self._session, self.base_url, self.credentials, timeout=self.auth_timeout
        )

    def _refresh_failed(self, error: Exception) -> Exception:
        """Map a refresh error to the session error every waiting request receives."""
        response = getattr(error, "response", None)
        failure: SessionError
        if isinstance(error, requests.HTTPError) and is_deactivation(response):
            token_refreshes.labels(outcome="deactivated").inc()
            failure = AccountDeactivatedError("Token refresh rejected: account deactivated")
            reason = SessionEndReason.ACCOUNT_DEACTIVATED
        else:
            token_refreshes.labels(outcome="failure").inc()
            failure = (
                error
                if isinstance(error, RefreshFailedError)
                else RefreshFailedError(f"Token refresh failed: {error}")
            )
            reason = SessionEndReason.SESSION_EXPIRED

        logger.warning("token_refresh_failed", reason=reason.value, error=str(error))
        self.end_session(reason)
        return failure
