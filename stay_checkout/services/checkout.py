"""
Reservation orchestrator: from a room selection to a paid booking.

Drives quote -> hold -> payment order -> gateway -> verification as an
explicit state machine, with compensating release, cancellation and refund
requests. Each step is one blocking call; a failure leaves the attempt in a
state from which the same step can be retried, without re-running earlier
steps.

Example:
    >>> checkout = ReservationOrchestrator(BookingApi(channel), gateway_key="rzp_live_xxx")
    >>> checkout.select(selection)
    >>> checkout.quote().final_price
    7840.0
    >>> checkout.hold()
    >>> result = checkout.pay(open_gateway)
    >>> result.outcome
    <PaymentOutcome.CONFIRMED: 'confirmed'>
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

import structlog

from stay_checkout.config import (
    CURRENCY_MINOR_UNITS,
    GATEWAY_THEME_COLOR,
    HOLD_DURATION_MINUTES,
    PAYMENT_CURRENCY,
    PAYMENT_GATEWAY_KEY,
)
from stay_checkout.errors import (
    AvailabilityConflictError,
    CheckoutError,
    CheckoutStateError,
    ConfigurationError,
    InvalidResponseError,
    MissingReasonError,
    NonChargeableAmountError,
    OrderAmountMismatchError,
    PaymentInProgressError,
    RefundNotAllowedError,
    StaleQuoteError,
    VerificationRejectedError,
)
from stay_checkout.metrics import checkout_failures, checkout_transitions
from stay_checkout.models.booking import Booking, BookingStatus
from stay_checkout.schemas.checkout import (
    GatewayConfirmation,
    GuestDetail,
    PaymentOrder,
    Quote,
    Selection,
)
from stay_checkout.services.bookings import BookingApi
from stay_checkout.services.gateway import (
    GatewayFactory,
    GatewayHandoff,
    GatewayOptions,
    PaymentOutcome,
)
from stay_checkout.utils.datetime import expires_at, is_expired

logger = structlog.get_logger(__name__)


class CheckoutState(str, Enum):
    SELECTING = "selecting"
    QUOTING = "quoting"
    QUOTED = "quoted"
    HOLDING = "holding"
    ORDER_CREATED = "order_created"
    AWAITING_GATEWAY = "awaiting_gateway"
    VERIFYING = "verifying"
    CONFIRMED = "confirmed"
    VERIFICATION_FAILED = "verification_failed"
    HOLD_RETAINED = "hold_retained"
    RELEASING = "releasing"


S = CheckoutState

CHECKOUT_TRANSITIONS: Dict[CheckoutState, frozenset] = {
    S.SELECTING: frozenset({S.SELECTING, S.QUOTING, S.RELEASING}),
    S.QUOTING: frozenset({S.QUOTING, S.QUOTED, S.SELECTING}),
    S.QUOTED: frozenset({S.QUOTING, S.HOLDING, S.SELECTING, S.RELEASING}),
    # SELECTING from a held state: the hold is parked for re-review or was lost
    S.HOLDING: frozenset({S.ORDER_CREATED, S.RELEASING, S.SELECTING}),
    S.ORDER_CREATED: frozenset({S.AWAITING_GATEWAY, S.HOLD_RETAINED}),
    S.AWAITING_GATEWAY: frozenset({S.VERIFYING, S.HOLD_RETAINED}),
    S.VERIFYING: frozenset({S.CONFIRMED, S.VERIFICATION_FAILED}),
    S.HOLD_RETAINED: frozenset({S.ORDER_CREATED, S.RELEASING, S.SELECTING}),
    S.RELEASING: frozenset({S.SELECTING, S.QUOTED, S.HOLDING, S.HOLD_RETAINED}),
    S.CONFIRMED: frozenset(),
    S.VERIFICATION_FAILED: frozenset(),
}

# States in which a parked hold may be released
RELEASABLE_STATES = frozenset({S.SELECTING, S.QUOTED, S.HOLDING, S.HOLD_RETAINED})
PAYMENT_STATES = frozenset({S.ORDER_CREATED, S.AWAITING_GATEWAY, S.VERIFYING})
TERMINAL_STATES = frozenset({S.CONFIRMED, S.VERIFICATION_FAILED})


def to_minor_units(amount: float) -> int:
    """Convert a major-unit price to the gateway's integer minor units."""
    scaled = Decimal(str(amount)) * CURRENCY_MINOR_UNITS
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _require_reason(reason: str) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise MissingReasonError("A reason is required")
    return cleaned


@dataclass(frozen=True)
class HeldBooking:
    """A pending-payment booking with the quote and selection it was created from."""

    booking: Booking
    quote: Quote
    selection: Selection
    expires_at: datetime

    def is_reusable(self, now: Optional[datetime] = None) -> bool:
        return self.booking.is_hold and not is_expired(self.expires_at, now)


@dataclass(frozen=True)
class PaymentResult:
    outcome: PaymentOutcome
    booking: Booking
    order: PaymentOrder


class ReservationOrchestrator:
    """
    One reservation attempt, driven step by step.

    Steps of one attempt never run concurrently: starting a step while another
    is in flight raises CheckoutStateError. Separate attempts (different
    properties) use separate orchestrators.

    Args:
        api: Booking API client.
        gateway_key: Gateway public key handed to the gateway client.
        currency: Currency for payment orders.
        hold_duration: How long the server keeps a pending-payment hold.
        theme: Visual options passed through to the gateway.
    """

    def __init__(
        self,
        api: BookingApi,
        gateway_key: str = PAYMENT_GATEWAY_KEY,
        currency: str = PAYMENT_CURRENCY,
        hold_duration: timedelta = timedelta(minutes=HOLD_DURATION_MINUTES),
        theme: Optional[Mapping[str, str]] = None,
    ):
        self._api = api
        self._gateway_key = gateway_key
        self._currency = currency
        self._hold_duration = hold_duration
        self._theme = dict(theme) if theme is not None else {"color": GATEWAY_THEME_COLOR}

        self._lock = threading.RLock()
        self._state = CheckoutState.SELECTING
        self._busy_step: Optional[str] = None
        self._selection: Optional[Selection] = None
        self._selection_version = 0
        self._quote: Optional[Quote] = None
        self._hold: Optional[HeldBooking] = None
        self._order: Optional[PaymentOrder] = None
        self._confirmation: Optional[GatewayConfirmation] = None
        self.last_released: Optional[Booking] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CheckoutState:
        with self._lock:
            return self._state

    @property
    def selection(self) -> Optional[Selection]:
        with self._lock:
            return self._selection

    @property
    def quote_result(self) -> Optional[Quote]:
        with self._lock:
            return self._quote

    @property
    def booking(self) -> Optional[Booking]:
        with self._lock:
            return self._hold.booking if self._hold else None

    @property
    def order(self) -> Optional[PaymentOrder]:
        with self._lock:
            return self._order

    # ------------------------------------------------------------------
    # Selecting / quoting
    # ------------------------------------------------------------------

    def select(self, selection: Selection) -> None:
        """
        Replace the selection. Any quote for a previous selection is discarded.

        While a booking is held only the same stay (same rooms, guests and
        dates) may be re-selected; the hold is parked and reused by the next
        hold() as long as the new quote keeps the held price.

        Raises:
            PaymentInProgressError: While a payment order is in flight.
            CheckoutStateError: A different stay while a booking is held, or the attempt has ended.
        """
        with self._lock:
            if self._state in PAYMENT_STATES or self._busy_step in ("pay", "verify"):
                raise PaymentInProgressError(f"Cannot change selection while {self._state.value}")
            if self._state in TERMINAL_STATES:
                raise CheckoutStateError(f"Checkout already {self._state.value}")
            if self._busy_step in ("hold", "release", "refresh"):
                raise CheckoutStateError(f"Cannot change selection while {self._busy_step} is in progress")
            if self._holds_other_stay(selection):
                raise CheckoutStateError(
                    "Release the held booking before changing the selection",
                    user_message="Please cancel the current reservation before changing it.",
                )

            self._selection = selection
            self._selection_version += 1
            self._quote = None
            self._move(CheckoutState.SELECTING)
            logger.info(
                "selection_changed",
                property_id=selection.property_id,
                check_in=selection.check_in.isoformat(),
                check_out=selection.check_out.isoformat(),
                guests=selection.total_guests,
            )

    def quote(self) -> Quote:
        """
        Request a fresh Quote for the current selection.

        Raises:
            AvailabilityConflictError: Dates not available; back to SELECTING.
            StaleQuoteError: The selection changed while the quote was in flight.
            NetworkError: Generic failure; quote() may be retried.
        """
        with self._lock:
            if self._selection is None:
                raise CheckoutStateError("Select a room and dates first")
            self._require("quote", S.SELECTING, S.QUOTING, S.QUOTED)
            self._begin("quote")
            selection, version = self._selection, self._selection_version
            self._quote = None
            self._move(CheckoutState.QUOTING)

        try:
            quote = self._api.calculate_price(selection)
        except AvailabilityConflictError as exc:
            with self._lock:
                if version == self._selection_version:
                    self._move(CheckoutState.SELECTING)
            self._record_failure("quote", exc)
            raise
        except CheckoutError as exc:
            self._record_failure("quote", exc)
            raise
        finally:
            self._end()

        with self._lock:
            if version != self._selection_version:
                raise StaleQuoteError("Selection changed while the quote was in flight")
            self._quote = quote
            self._move(CheckoutState.QUOTED)

        logger.info("quote_received", final_price=quote.final_price, taxes=quote.taxes)
        return quote

    # ------------------------------------------------------------------
    # Holding
    # ------------------------------------------------------------------

    def hold(self, guest_details: Sequence[GuestDetail] = ()) -> Booking:
        """
        Create the pending-payment booking for the quoted selection.

        A retry for the same rooms, guests and dates reuses the hold this
        orchestrator already has, as long as it has not expired and the new
        quote still matches the held booking's price.

        Raises:
            AvailabilityConflictError: Someone else booked the dates; back to SELECTING.
            OrderAmountMismatchError: The re-quoted price differs from the held
                booking; the attempt stays QUOTED until the hold is released or
                the original selection is quoted again.
        """
        with self._lock:
            self._require("hold", S.QUOTED)
            selection, quote = self._selection, self._quote
            if selection is None or quote is None:
                raise CheckoutStateError("Quote the selection before holding it")

            existing = self._hold
            if (
                existing is not None
                and existing.selection.hold_key == selection.hold_key
                and existing.is_reusable()
            ):
                held_price = existing.booking.final_price
                if (
                    held_price is not None
                    and quote.final_price is not None
                    and to_minor_units(held_price) != to_minor_units(quote.final_price)
                ):
                    mismatch = OrderAmountMismatchError(
                        f"Held booking {existing.booking.id} is priced {held_price}, "
                        f"new quote is {quote.final_price}",
                        user_message=(
                            "The new price does not match your current reservation. "
                            "Cancel it to book with these changes."
                        ),
                    )
                    self._record_failure("hold", mismatch)
                    raise mismatch
                self._hold = replace(existing, quote=quote, selection=selection)
                self._move(CheckoutState.HOLDING)
                logger.info("hold_reused", booking_id=existing.booking.id)
                return existing.booking

            self._begin("hold")

        try:
            booking = self._api.create_booking(selection, guest_details)
            if booking.status != BookingStatus.PENDING_PAYMENT:
                raise InvalidResponseError(
                    f"create_booking returned status {booking.status.value}, expected pending_payment"
                )
        except AvailabilityConflictError as exc:
            with self._lock:
                self._quote = None
                self._move(CheckoutState.SELECTING)
            self._record_failure("hold", exc)
            raise
        except CheckoutError as exc:
            self._record_failure("hold", exc)
            raise
        finally:
            self._end()

        with self._lock:
            held = HeldBooking(booking, quote, selection, expires_at(self._hold_duration))
            self._hold = held
            self._move(CheckoutState.HOLDING)

        logger.info(
            "hold_created",
            booking_id=booking.id,
            expires_at=held.expires_at.isoformat(),
        )
        return booking

    # ------------------------------------------------------------------
    # Paying
    # ------------------------------------------------------------------

    def pay(
        self,
        gateway_factory: GatewayFactory,
        prefill: Optional[Mapping[str, str]] = None,
    ) -> PaymentResult:
        """
        Create a payment order for the held booking and hand it to the gateway.

        Blocks until the gateway reports success or dismissal. Dismissal is
        not an error: the hold is kept and pay() may be called again.

        Args:
            gateway_factory: Builds the gateway client from GatewayOptions.
            prefill: Customer details for the gateway form.

        Returns:
            PaymentResult: CONFIRMED with the verified booking, or DISMISSED.

        Raises:
            NonChargeableAmountError: Quote total is zero or missing; the gateway is never contacted.
            OrderAmountMismatchError: Order amount does not match the held booking.
            VerificationRejectedError: The server refused the gateway signature.
        """
        with self._lock:
            self._require("pay", S.HOLDING, S.HOLD_RETAINED)
            held = self._hold
            if held is None:
                raise CheckoutStateError("No held booking to pay for")
            self._begin("pay")

        try:
            return self._pay(held, gateway_factory, prefill or {})
        finally:
            self._end()

    def retry_verification(self) -> PaymentResult:
        """
        Resubmit the stored gateway confirmation after a network failure.

        Only valid in VERIFYING; a rejected verification is final.
        """
        with self._lock:
            self._require("retry verification", S.VERIFYING)
            held, order, confirmation = self._hold, self._order, self._confirmation
            if held is None or order is None or confirmation is None:
                raise CheckoutStateError("No gateway confirmation to verify")
            self._begin("verify")

        try:
            return self._verify(held, order, confirmation)
        finally:
            self._end()

    def _pay(
        self,
        held: HeldBooking,
        gateway_factory: GatewayFactory,
        prefill: Mapping[str, str],
    ) -> PaymentResult:
        booking, quote = held.booking, held.quote
        if not quote.is_chargeable:
            exc: CheckoutError = NonChargeableAmountError(
                f"Booking {booking.id} has final price {quote.final_price!r}"
            )
            self._record_failure("order", exc)
            raise exc
        amount = float(quote.final_price)  # type: ignore[arg-type]
        if booking.final_price is not None and to_minor_units(booking.final_price) != to_minor_units(amount):
            exc = OrderAmountMismatchError(
                f"Quote total {amount} differs from booking {booking.id} total {booking.final_price}"
            )
            self._record_failure("order", exc)
            raise exc
        if not self._gateway_key:
            raise ConfigurationError("PAYMENT_GATEWAY_KEY is not configured")

        try:
            order = self._api.create_payment_order(booking.id, amount, self._currency)
        except CheckoutError as exc:
            self._record_failure("order", exc)
            raise
        if order.amount != to_minor_units(amount):
            exc = OrderAmountMismatchError(
                f"Order {order.order_id} amount {order.amount} != {to_minor_units(amount)}"
            )
            self._record_failure("order", exc)
            raise exc

        handoff = GatewayHandoff()
        options = GatewayOptions(
            key=self._gateway_key,
            amount=order.amount,
            currency=order.currency,
            order_id=order.order_id,
            handler=handoff.succeed,
            on_dismiss=handoff.dismiss,
            prefill=dict(prefill),
            theme=dict(self._theme),
        )

        with self._lock:
            self._order = order
            self._confirmation = None
            self._move(CheckoutState.ORDER_CREATED)

        try:
            client = gateway_factory(options)
            with self._lock:
                self._move(CheckoutState.AWAITING_GATEWAY)
            client.open()
        except Exception:
            logger.exception("gateway_open_failed", booking_id=booking.id, order_id=order.order_id)
            with self._lock:
                self._move(CheckoutState.HOLD_RETAINED)
            raise

        result = handoff.wait()

        if result.outcome == PaymentOutcome.DISMISSED or result.confirmation is None:
            with self._lock:
                self._move(CheckoutState.HOLD_RETAINED)
            logger.info("gateway_dismissed", booking_id=booking.id, order_id=order.order_id)
            return PaymentResult(PaymentOutcome.DISMISSED, booking, order)

        with self._lock:
            self._confirmation = result.confirmation
            self._move(CheckoutState.VERIFYING)
        return self._verify(held, order, result.confirmation)

    def _verify(
        self,
        held: HeldBooking,
        order: PaymentOrder,
        confirmation: GatewayConfirmation,
    ) -> PaymentResult:
        booking = held.booking
        try:
            if confirmation.order_id != order.order_id:
                raise VerificationRejectedError(
                    f"Gateway confirmed order {confirmation.order_id}, expected {order.order_id}"
                )
            verified = self._api.verify_payment(booking.id, confirmation)
        except VerificationRejectedError as exc:
            with self._lock:
                self._move(CheckoutState.VERIFICATION_FAILED)
            self._record_failure("verify", exc)
            logger.error("payment_verification_rejected", booking_id=booking.id, order_id=order.order_id)
            raise
        except CheckoutError as exc:
            self._record_failure("verify", exc)
            raise

        try:
            if verified.status not in (BookingStatus.PAYMENT_COMPLETED, BookingStatus.CONFIRMED):
                raise InvalidResponseError(
                    f"verify_payment returned status {verified.status.value} for {booking.id}"
                )
            booking.check_verified_successor(verified)
        except CheckoutError as exc:
            self._record_failure("verify", exc)
            raise

        with self._lock:
            self._hold = replace(held, booking=verified)
            self._move(CheckoutState.CONFIRMED)

        logger.info("payment_verified", booking_id=verified.id, status=verified.status.value)
        return PaymentResult(PaymentOutcome.CONFIRMED, verified, order)

    # ------------------------------------------------------------------
    # Releasing, polling, cancelling, refunding
    # ------------------------------------------------------------------

    def release(self, reason: str) -> Booking:
        """
        Abandon the held booking: cancel it and clear local selection state.

        Also releases a hold parked by re-selecting the same stay.

        Returns:
            Booking: The cancelled booking (also kept as ``last_released``).
        """
        reason = _require_reason(reason)
        with self._lock:
            if self._hold is None or not self._hold.booking.is_hold:
                raise CheckoutStateError("No held booking to release")
            self._require("release", *RELEASABLE_STATES)
            self._begin("release")
            previous = self._state
            held = self._hold
            self._move(CheckoutState.RELEASING)

        try:
            cancelled = self._api.cancel_booking(held.booking.id, reason)
            if cancelled.status != BookingStatus.CANCELLED:
                raise InvalidResponseError(
                    f"cancel_booking returned status {cancelled.status.value} for {held.booking.id}"
                )
            held.booking.check_successor(cancelled)
        except CheckoutError as exc:
            with self._lock:
                self._move(previous)
            self._record_failure("release", exc)
            raise
        finally:
            self._end()

        with self._lock:
            self._clear_attempt()
            self.last_released = cancelled
            self._move(CheckoutState.SELECTING)

        logger.info("hold_released", booking_id=cancelled.id)
        return cancelled

    def refresh_booking(self) -> Booking:
        """
        Re-read the current booking from the server.

        If the server reports a held booking as cancelled or rejected (for
        example because the hold timer ran out) the attempt returns to
        SELECTING.
        """
        with self._lock:
            if self._hold is None:
                raise CheckoutStateError("No booking to refresh")
            self._begin("refresh")
            held = self._hold

        try:
            current = held.booking.check_successor(self._api.get_booking(held.booking.id))
        finally:
            self._end()

        with self._lock:
            if self._hold is not held:
                return current
            self._hold = replace(held, booking=current)
            if held.booking.is_hold and current.status in (
                BookingStatus.CANCELLED,
                BookingStatus.REJECTED,
            ):
                logger.info("hold_lost", booking_id=current.id, status=current.status.value)
                self.last_released = current
                if self._state in (S.HOLDING, S.HOLD_RETAINED):
                    self._clear_attempt()
                    self._move(CheckoutState.SELECTING)
                elif self._state in (S.SELECTING, S.QUOTED):
                    # Parked hold gone; the re-reviewed selection stays
                    self._hold = None
        return current

    def cancel_booking(self, booking: Booking, reason: str) -> Booking:
        """Cancel a paid booking (payment_completed or confirmed)."""
        reason = _require_reason(reason)
        if not booking.can_cancel:
            raise CheckoutStateError(
                f"Booking {booking.id} cannot be cancelled in status {booking.status.value}",
                user_message="This booking can no longer be cancelled.",
            )
        try:
            cancelled = booking.check_successor(self._api.cancel_booking(booking.id, reason))
        except CheckoutError as exc:
            self._record_failure("cancel", exc)
            raise
        logger.info("booking_cancelled", booking_id=booking.id)
        return cancelled

    def request_refund(self, booking: Booking, reason: str) -> Booking:
        """
        Ask for a refund of a cancelled or rejected booking.

        The outcome is decided by the server; the returned booking only
        reflects it.

        Raises:
            RefundNotAllowedError: Booking not cancelled/rejected, or a refund already requested.
        """
        reason = _require_reason(reason)
        if not booking.can_request_refund:
            raise RefundNotAllowedError(
                f"Booking {booking.id} is {booking.status.value} with refund "
                f"{booking.refund_status.value}"
            )
        try:
            updated = booking.check_successor(self._api.request_refund(booking.id, reason))
        except CheckoutError as exc:
            self._record_failure("refund", exc)
            raise
        logger.info(
            "refund_requested",
            booking_id=booking.id,
            refund_status=updated.refund_status.value,
        )
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, operation: str, *states: CheckoutState) -> None:
        if self._state not in states:
            raise CheckoutStateError(f"Cannot {operation} while {self._state.value}")

    def _begin(self, step: str) -> None:
        if self._busy_step is not None:
            raise CheckoutStateError(f"Cannot start {step} while {self._busy_step} is in progress")
        self._busy_step = step

    def _end(self) -> None:
        with self._lock:
            self._busy_step = None

    def _move(self, target: CheckoutState) -> None:
        if target not in CHECKOUT_TRANSITIONS[self._state]:
            raise CheckoutStateError(f"Invalid checkout transition: {self._state.value} -> {target.value}")
        logger.debug("checkout_transition", source=self._state.value, target=target.value)
        self._state = target
        checkout_transitions.labels(state=target.value).inc()

    def _holds_other_stay(self, selection: Selection) -> bool:
        held = self._hold
        if held is None or not held.is_reusable():
            return False
        return held.selection.hold_key != selection.hold_key

    def _clear_attempt(self) -> None:
        self._selection = None
        self._selection_version += 1
        self._quote = None
        self._hold = None
        self._order = None
        self._confirmation = None

    def _record_failure(self, step: str, exc: CheckoutError) -> None:
        checkout_failures.labels(step=step, error=type(exc).__name__).inc()
        logger.warning(
            "checkout_step_failed",
            step=step,
            error=type(exc).__name__,
            retryable=exc.retryable,
            detail=str(exc),
        )
