"""
Unit tests for models/booking.py status machine and parsing.
"""

from __future__ import annotations

from typing import Callable

import pytest
from pydantic import ValidationError

from stay_checkout.errors import IllegalTransitionError
from stay_checkout.models.booking import (
    BOOKING_TRANSITIONS,
    Booking,
    BookingStatus,
    RefundStatus,
    assert_booking_transition,
    assert_refund_transition,
)


@pytest.mark.unit
def test_booking_parses_server_payload(booking_data: Callable) -> None:
    """Test that camelCase keys and the Mongo-style _id are read."""
    booking = Booking.model_validate(booking_data())

    assert booking.id == "b1"
    assert booking.booking_id == "BK-1001"
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.refund_status == RefundStatus.NOT_REQUESTED
    assert booking.final_price == 7840
    assert booking.is_hold


@pytest.mark.unit
def test_booking_rejects_unknown_status(booking_data: Callable) -> None:
    """Test that a status outside the closed set is rejected at parse time."""
    with pytest.raises(ValidationError):
        Booking.model_validate(booking_data(status="on_hold"))


@pytest.mark.unit
def test_refund_status_only_valid_for_cancelled_or_rejected(booking_data: Callable) -> None:
    """Test that a refund on a live booking is rejected."""
    with pytest.raises(ValidationError):
        Booking.model_validate(booking_data(status="confirmed", refundStatus="requested"))

    booking = Booking.model_validate(booking_data(status="cancelled", refundStatus="requested"))
    assert booking.refund_status == RefundStatus.REQUESTED


@pytest.mark.unit
@pytest.mark.parametrize(
    "current, target",
    [
        ("pending_payment", "payment_completed"),
        ("payment_completed", "confirmed"),
        ("confirmed", "checked_in"),
        ("checked_in", "checked_out"),
        ("checked_out", "completed"),
        ("confirmed", "cancelled"),
        ("pending_payment", "rejected"),
    ],
)
def test_allowed_booking_transitions(current: str, target: str) -> None:
    """Test transitions along the booking lifecycle."""
    assert_booking_transition(BookingStatus(current), BookingStatus(target))


@pytest.mark.unit
@pytest.mark.parametrize(
    "current, target",
    [
        ("pending_payment", "confirmed"),
        ("cancelled", "confirmed"),
        ("completed", "cancelled"),
        ("checked_out", "cancelled"),
        ("rejected", "pending_payment"),
    ],
)
def test_illegal_booking_transitions(current: str, target: str) -> None:
    """Test that skipping payment or leaving a terminal status is rejected."""
    with pytest.raises(IllegalTransitionError):
        assert_booking_transition(BookingStatus(current), BookingStatus(target))


@pytest.mark.unit
def test_terminal_statuses_have_no_successors() -> None:
    """Test that completed, rejected and cancelled are terminal."""
    for status in (BookingStatus.COMPLETED, BookingStatus.REJECTED, BookingStatus.CANCELLED):
        assert BOOKING_TRANSITIONS[status] == frozenset()


@pytest.mark.unit
def test_refund_transitions() -> None:
    """Test the refund lifecycle."""
    assert_refund_transition(RefundStatus.NOT_REQUESTED, RefundStatus.REQUESTED)
    assert_refund_transition(RefundStatus.REQUESTED, RefundStatus.APPROVED)
    assert_refund_transition(RefundStatus.APPROVED, RefundStatus.PROCESSED)

    with pytest.raises(IllegalTransitionError, match="refund"):
        assert_refund_transition(RefundStatus.NOT_REQUESTED, RefundStatus.PROCESSED)
    with pytest.raises(IllegalTransitionError):
        assert_refund_transition(RefundStatus.REJECTED, RefundStatus.REQUESTED)


@pytest.mark.unit
def test_can_cancel_and_can_request_refund(booking_data: Callable) -> None:
    """Test the guest-facing eligibility flags."""
    paid = Booking.model_validate(booking_data(status="payment_completed"))
    confirmed = Booking.model_validate(booking_data(status="confirmed"))
    held = Booking.model_validate(booking_data())
    cancelled = Booking.model_validate(booking_data(status="cancelled"))
    refunding = Booking.model_validate(booking_data(status="rejected", refundStatus="requested"))

    assert paid.can_cancel and confirmed.can_cancel
    assert not held.can_cancel and not cancelled.can_cancel
    assert cancelled.can_request_refund
    assert not refunding.can_request_refund
    assert not confirmed.can_request_refund


@pytest.mark.unit
def test_check_successor(booking_data: Callable) -> None:
    """Test validation of a server-reported update."""
    held = Booking.model_validate(booking_data())
    paid = Booking.model_validate(booking_data(status="payment_completed"))

    assert held.check_successor(paid) is paid

    with pytest.raises(IllegalTransitionError):
        paid.check_successor(held)
    with pytest.raises(IllegalTransitionError, match="booking id"):
        held.check_successor(Booking.model_validate(booking_data(_id="b2")))


@pytest.mark.unit
def test_check_verified_successor_accepts_immediate_confirmation(booking_data: Callable) -> None:
    """Test that verification may return a hold as confirmed, while polling may not."""
    held = Booking.model_validate(booking_data())
    confirmed = Booking.model_validate(booking_data(status="confirmed"))

    assert held.check_verified_successor(confirmed) is confirmed

    with pytest.raises(IllegalTransitionError):
        held.check_successor(confirmed)
    with pytest.raises(IllegalTransitionError):
        held.check_verified_successor(Booking.model_validate(booking_data(status="checked_in")))
