"""
Exception hierarchy for the session channel and the checkout flow.

Every exception derives from CheckoutError and carries a stable, user-facing
``user_message`` plus a ``retryable`` flag telling the UI whether to offer
"retry this step" or send the user elsewhere.

Example:
    >>> try:
    ...     orchestrator.hold()
    ... except AvailabilityConflictError as e:
    ...     show_banner(e.user_message)  # back to date selection
    ... except CheckoutError as e:
    ...     show_banner(e.user_message, retry=e.retryable)
"""

from __future__ import annotations

GENERIC_MESSAGE = "Something went wrong. Please try again."


class CheckoutError(Exception):
    """
    Base exception for all checkout and session errors.

    Attributes:
        user_message: Stable message safe to show to the end user.
        retryable: True if the same step may be retried by the user.
    """

    user_message = GENERIC_MESSAGE
    retryable = False

    def __init__(self, message: str | None = None, *, user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


# =============================================================================
# Session errors
# =============================================================================


class SessionError(CheckoutError):
    """Raised when the authenticated session has ended and the user must log in again."""


class AccountDeactivatedError(SessionError):
    """
    Raised when the server reports the account as deactivated.

    Terminal: credentials are destroyed and no refresh is attempted.
    """

    user_message = "Your account has been deactivated. Please contact support."


class RefreshFailedError(SessionError):
    """Raised when the access token could not be refreshed."""

    user_message = "Session expired. Please login again."


# =============================================================================
# Transport errors
# =============================================================================


class NetworkError(CheckoutError):
    """
    Raised for unclassified request failures.

    Attributes:
        operation: Booking API operation that failed (e.g., "create_booking").
        status_code: HTTP status code if a response was received.
    """

    retryable = True

    def __init__(
        self,
        operation: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        message = f"{operation} failed"
        if status_code is not None:
            message += f" with status {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class RequestTimeoutError(NetworkError):
    """Raised when a request exceeded its bounded timeout."""

    user_message = "The request timed out. Please retry."

    def __init__(self, operation: str, timeout: float | None = None):
        super().__init__(operation, detail=f"timed out after {timeout}s" if timeout else "timed out")
        self.timeout = timeout


class InvalidResponseError(CheckoutError):
    """Raised when the server returned a payload that cannot be parsed."""

    retryable = True


# =============================================================================
# Reservation errors
# =============================================================================

HOLD_CONFLICT_MESSAGE = "Someone else already booked these dates. Please choose different dates."
DATES_UNAVAILABLE_MESSAGE = "These dates are not available for the selected room."


class AvailabilityConflictError(CheckoutError):
    """
    Raised when the requested room and dates cannot be reserved.

    A conflict at hold creation always carries the canonical
    HOLD_CONFLICT_MESSAGE. The flow returns to selection.
    """

    user_message = HOLD_CONFLICT_MESSAGE


class NonChargeableAmountError(CheckoutError):
    """Raised before contacting the gateway when the quoted amount is zero or missing."""

    user_message = "This booking has no payable amount."


class OrderAmountMismatchError(CheckoutError):
    """Raised when a payment order amount does not match the held booking's price."""

    user_message = "The price of this booking has changed. Please review it again."


class VerificationRejectedError(CheckoutError):
    """
    Raised when the server refuses the gateway's signed confirmation.

    Never retried automatically: a rejected signature may indicate tampering.
    """

    user_message = "We could not verify your payment. Please contact support."


class IllegalTransitionError(CheckoutError):
    """
    Raised when a booking status change is not allowed by the transition table.

    Attributes:
        current: Status the booking was in.
        target: Status that was requested or reported.
    """

    def __init__(self, current: str, target: str, kind: str = "booking"):
        super().__init__(f"Invalid {kind} transition: {current} -> {target}")
        self.current = current
        self.target = target


class MissingReasonError(CheckoutError):
    """Raised when a cancellation or refund is requested without a reason."""

    user_message = "Please provide a reason."


class RefundNotAllowedError(CheckoutError):
    """Raised when a refund is requested for a booking that is not eligible."""

    user_message = "A refund cannot be requested for this booking."


class CheckoutStateError(CheckoutError):
    """Raised when an operation is not valid in the current checkout state."""


class PaymentInProgressError(CheckoutStateError):
    """Raised when the selection changes while a payment is being processed."""

    user_message = "A payment is in progress. Please finish or cancel it first."


class StaleQuoteError(CheckoutStateError):
    """Raised when a quote no longer matches the current selection."""

    user_message = "Your selection changed. Please review the new price."


class ConfigurationError(CheckoutError):
    """Raised when required configuration (e.g., the gateway key) is missing."""
