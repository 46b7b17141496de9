"""
Unit tests for logging_config.py processors and context helpers.
"""

from __future__ import annotations

import pytest
import structlog

from stay_checkout.logging_config import (
    REDACTED,
    bind_checkout_context,
    clear_checkout_context,
    redact_secrets,
)


@pytest.mark.unit
def test_redact_secrets_masks_credentials() -> None:
    """Test that token, password and signature values never reach the renderer."""
    event = {
        "event": "token_refreshed",
        "access_token": "eyJhbGciOi",
        "Authorization": "Bearer eyJhbGciOi",
        "signature": "abc123",
        "booking_id": "b1",
    }

    result = redact_secrets(None, "info", event)

    assert result["access_token"] == REDACTED
    assert result["Authorization"] == REDACTED
    assert result["signature"] == REDACTED
    assert result["booking_id"] == "b1"


@pytest.mark.unit
def test_redact_secrets_leaves_missing_values() -> None:
    """Test that absent credentials are not reported as present."""
    assert redact_secrets(None, "info", {"refresh_token": None}) == {"refresh_token": None}


@pytest.mark.unit
def test_checkout_context_binding() -> None:
    """Test that bound fields are merged into events until cleared."""
    bind_checkout_context(property_id="p1", booking_id="b1")
    try:
        assert structlog.contextvars.get_contextvars() == {"property_id": "p1", "booking_id": "b1"}
    finally:
        clear_checkout_context()

    assert structlog.contextvars.get_contextvars() == {}
