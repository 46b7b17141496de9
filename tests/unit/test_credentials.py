"""
Unit tests for credentials.py.
"""

from __future__ import annotations

import pytest

from stay_checkout.credentials import CredentialPair, CredentialStore, SessionEndReason


@pytest.mark.unit
def test_store_lifecycle() -> None:
    """Test set, replace and clear of the credential pair."""
    store = CredentialStore()
    assert not store.is_authenticated
    assert store.access_token is None

    store.set_pair(CredentialPair("access-1", "refresh-1"))
    store.replace_access_token("access-2")
    assert store.get() == CredentialPair("access-2", "refresh-1")

    store.replace_access_token("access-3", "refresh-2")
    assert store.refresh_token == "refresh-2"

    store.clear()
    assert store.get() is None


@pytest.mark.unit
def test_replace_on_empty_store_creates_pair() -> None:
    """Test that a refresh result can populate an empty store."""
    store = CredentialStore()
    store.replace_access_token("access-1")

    assert store.get() == CredentialPair("access-1", None)


@pytest.mark.unit
def test_pair_repr_masks_tokens() -> None:
    """Test that tokens never leak through repr."""
    assert "secret" not in repr(CredentialPair("secret-access", "secret-refresh"))


@pytest.mark.unit
def test_session_end_messages() -> None:
    """Test the user-facing messages for each session end reason."""
    assert SessionEndReason.SESSION_EXPIRED.user_message == "Session expired. Please login again."
    assert SessionEndReason.ACCOUNT_DEACTIVATED.user_message == (
        "Your account has been deactivated. Please contact support."
    )
