"""
Unit tests for Prometheus metrics definitions.
"""

from __future__ import annotations

import pytest
from prometheus_client import generate_latest

from stay_checkout.metrics import (
    api_latency,
    api_requests,
    checkout_failures,
    checkout_transitions,
    refresh_waiters,
    token_refreshes,
)


@pytest.mark.unit
def test_metrics_exposed_in_prometheus_format() -> None:
    """Test that recorded metrics appear in the exposition output."""
    api_requests.labels(endpoint="bookings", status_code="201").inc()
    api_latency.labels(endpoint="bookings").observe(0.2)
    token_refreshes.labels(outcome="success").inc()
    refresh_waiters.inc()
    checkout_transitions.labels(state="quoted").inc()
    checkout_failures.labels(step="hold", error="AvailabilityConflictError").inc()

    output = generate_latest().decode()

    assert "stay_checkout_api_requests_total" in output
    assert "stay_checkout_api_latency_seconds" in output
    assert "stay_checkout_token_refreshes_total" in output
    assert "stay_checkout_refresh_waiters_total" in output
    assert "stay_checkout_transitions_total" in output
    assert 'step="hold"' in output


@pytest.mark.unit
def test_metrics_have_expected_labels() -> None:
    """Test label names of the labelled metrics."""
    assert api_requests._labelnames == ("endpoint", "status_code")
    assert api_latency._labelnames == ("endpoint",)
    assert token_refreshes._labelnames == ("outcome",)
    assert checkout_failures._labelnames == ("step", "error")
