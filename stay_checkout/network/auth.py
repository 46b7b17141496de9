from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict
from urllib.parse import urljoin

import requests
import structlog

from stay_checkout.config import AUTH_TIMEOUT_SECONDS
from stay_checkout.credentials import CredentialPair, CredentialStore, SessionEndReason
from stay_checkout.errors import RefreshFailedError
from stay_checkout.metrics import token_refreshes

if TYPE_CHECKING:
    from stay_checkout.network.client import SessionChannel

logger = structlog.get_logger(__name__)

LOGIN_PATH = "auth/login"
REFRESH_PATH = "auth/refresh-token"
LOGOUT_PATH = "auth/logout"


def _token_payload(response: requests.Response) -> Dict[str, Any]:
    body = response.json()
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, dict) else {}


def login(channel: SessionChannel, email: str, password: str) -> CredentialPair:
    """
    Log in with email and password and store the issued credential pair.

    Args:
        channel (SessionChannel): Channel whose credential store receives the pair.
        email (str): Account email.
        password (str): Account password.

    Returns:
        CredentialPair: The stored access/refresh pair.

    Raises:
        requests.HTTPError: If the server rejects the credentials.
        RuntimeError: If the response carries no access token.
    """
    response = channel.post(LOGIN_PATH, json={"email": email, "password": password})
    data = _token_payload(response)

    access_token = data.get("accessToken")
    if not isinstance(access_token, str) or not access_token:
        logger.error("login_response_missing_token", status_code=response.status_code)
        raise RuntimeError("No accessToken in login response.")

    pair = CredentialPair(access_token=access_token, refresh_token=data.get("refreshToken"))
    channel.credentials.set_pair(pair)
    logger.info("login_succeeded")
    return pair


def refresh_access_token(
    session: requests.Session,
    base_url: str,
    credentials: CredentialStore,
    timeout: float = AUTH_TIMEOUT_SECONDS,
) -> str:
    """
    Mint a new access token from the stored refresh token and store it.

    Sent on the raw session, never through the channel, so a rejection here
    can never trigger another refresh.

    Args:
        session (requests.Session): HTTP session shared with the channel.
        base_url (str): API base URL ending with a slash.
        credentials (CredentialStore): Store holding the refresh token.
        timeout (float): Request timeout in seconds.

    Returns:
        str: New bearer token.

    Raises:
        RefreshFailedError: If no refresh token is stored or the response has no token.
        requests.RequestException: If the refresh request itself fails.
    """
    refresh_token = credentials.refresh_token
    if not refresh_token:
        raise RefreshFailedError("No refresh token available")

    logger.info("token_refresh_started")

    response = None
    try:
        response = session.post(
            urljoin(base_url, REFRESH_PATH),
            json={"refreshToken": refresh_token},
            headers={"Content-Type": "application/json", "Cache-Control": "no-cache"},
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "token_refresh_request_failed",
            error=str(e),
            status_code=getattr(response, "status_code", "N/A"),
        )
        raise

    data = _token_payload(response)
    token = data.get("accessToken")
    if not isinstance(token, str) or not token:
        logger.error("token_refresh_response_missing_token", status_code=response.status_code)
        raise RefreshFailedError("No accessToken in refresh response")

    credentials.replace_access_token(token, data.get("refreshToken"))
    token_refreshes.labels(outcome="success").inc()
    logger.info("token_refreshed")
    return token


def logout(channel: SessionChannel) -> bool:
    """
    Log out on the server (best effort) and always clear local credentials.

    Args:
        channel (SessionChannel): Channel to log out of.

    Returns:
        bool: True if the server acknowledged the logout, False otherwise.
    """
    refresh_token = channel.credentials.refresh_token
    acknowledged = False
    try:
        if refresh_token:
            channel.post(LOGOUT_PATH, json={"refreshToken": refresh_token})
            acknowledged = True
    except requests.RequestException as e:
        logger.warning("logout_request_failed", error=str(e))
    finally:
        channel.end_session(SessionEndReason.LOGGED_OUT)

    return acknowledged
