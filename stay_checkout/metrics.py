"""
Prometheus metrics for the session channel and the checkout flow.

This module defines all Prometheus metrics used throughout the client. A host
application exposes them by serving ``prometheus_client.generate_latest()``
from whatever surface it already has.

Metric Types:
    - Counter: Cumulative metrics that only increase (e.g., total API requests)
    - Histogram: Observations bucketed by value (e.g., request latency)

Example:
    >>> from stay_checkout.metrics import api_latency, api_requests
    >>> with api_latency.labels(endpoint="bookings").time():
    ...     response = session.post(url, json=payload)
    >>> api_requests.labels(endpoint="bookings", status_code="201").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# API Metrics
# =============================================================================

api_requests = Counter(
    "stay_checkout_api_requests_total",
    "Total booking API requests made",
    ["endpoint", "status_code"],
)
"""
Counter for API requests sent through the session channel.

Labels:
    endpoint: API path (e.g., "bookings", "payments/verify")
    status_code: HTTP status code, or "timeout" / "error" when no response arrived
"""

api_latency = Histogram(
    "stay_checkout_api_latency_seconds",
    "Booking API request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0, float("inf")),
)
"""
Histogram for API request latency.

Labels:
    endpoint: API path

Buckets: 0.1s, 0.25s, 0.5s, 1s, 2.5s, 5s, 10s, 30s, 120s, +Inf
"""

# =============================================================================
# Session Metrics
# =============================================================================

token_refreshes = Counter(
    "stay_checkout_token_refreshes_total",
    "Total number of access token refresh operations",
    ["outcome"],
)
"""
Counter for token refresh operations actually sent to the server.

Labels:
    outcome: success, failure, or deactivated
"""

refresh_waiters = Counter(
    "stay_checkout_refresh_waiters_total",
    "Requests that waited on an in-flight token refresh instead of starting one",
)
"""Counter for requests coalesced behind a single in-flight refresh."""

# =============================================================================
# Checkout Metrics
# =============================================================================

checkout_transitions = Counter(
    "stay_checkout_transitions_total",
    "Checkout state machine transitions",
    ["state"],
)
"""
Counter for checkout state transitions.

Labels:
    state: Target state name (e.g., "quoted", "hold_retained", "confirmed")
"""

checkout_failures = Counter(
    "stay_checkout_failures_total",
    "Classified checkout failures surfaced to the user",
    ["step", "error"],
)
"""
Counter for classified checkout failures.

Labels:
    step: Checkout step that failed (quote, hold, order, verify, release, refund)
    error: Exception class name
"""
