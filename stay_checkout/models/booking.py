"""
Booking record and its status state machine.

Server responses are parsed into Booking and every status change the client
observes is checked against BOOKING_TRANSITIONS and REFUND_TRANSITIONS, so an
unexpected status string or an impossible jump is rejected at the edge
instead of being trusted wherever it is read.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field, model_validator

from stay_checkout.errors import IllegalTransitionError
from stay_checkout.models.base import ApiModel


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_COMPLETED = "payment_completed"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING_PAYMENT: frozenset(
        {BookingStatus.PAYMENT_COMPLETED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.PAYMENT_COMPLETED: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CHECKED_IN, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CHECKED_IN: frozenset(
        {
            BookingStatus.CHECKED_OUT,
            BookingStatus.COMPLETED,
            BookingStatus.REJECTED,
            BookingStatus.CANCELLED,
        }
    ),
    BookingStatus.CHECKED_OUT: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

REFUND_TRANSITIONS: dict[RefundStatus, frozenset[RefundStatus]] = {
    RefundStatus.NOT_REQUESTED: frozenset({RefundStatus.REQUESTED}),
    RefundStatus.REQUESTED: frozenset({RefundStatus.APPROVED, RefundStatus.REJECTED}),
    RefundStatus.APPROVED: frozenset({RefundStatus.PROCESSED}),
    RefundStatus.REJECTED: frozenset(),
    RefundStatus.PROCESSED: frozenset(),
}

# Statuses from which a refund can be requested
REFUNDABLE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.REJECTED})

# Statuses in which a paid booking can still be cancelled by the guest
CANCELLABLE_STATUSES = frozenset({BookingStatus.PAYMENT_COMPLETED, BookingStatus.CONFIRMED})


def assert_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    """
    Raise IllegalTransitionError unless ``current -> target`` is allowed.

    An unchanged status is always allowed.
    """
    if current == target:
        return
    if target not in BOOKING_TRANSITIONS[current]:
        raise IllegalTransitionError(current.value, target.value)


def assert_refund_transition(current: RefundStatus, target: RefundStatus) -> None:
    if current == target:
        return
    if target not in REFUND_TRANSITIONS[current]:
        raise IllegalTransitionError(current.value, target.value, kind="refund")


class Booking(ApiModel):
    """
    A reservation record as returned by the booking API.

    A Booking in ``pending_payment`` is a hold on the room's dates.
    """

    id: str = Field(alias="_id")
    booking_id: Optional[str] = None
    status: BookingStatus
    refund_status: RefundStatus = RefundStatus.NOT_REQUESTED
    final_price: Optional[float] = None
    payment_status: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    total_guests: Optional[int] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_amount: Optional[float] = None

    @model_validator(mode="after")
    def _refund_requires_terminal_status(self) -> "Booking":
        if self.refund_status != RefundStatus.NOT_REQUESTED and self.status not in REFUNDABLE_STATUSES:
            raise ValueError(
                f"refundStatus {self.refund_status.value} is only valid for cancelled or "
                f"rejected bookings, got status {self.status.value}"
            )
        return self

    @property
    def is_hold(self) -> bool:
        return self.status == BookingStatus.PENDING_PAYMENT

    @property
    def can_cancel(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    @property
    def can_request_refund(self) -> bool:
        return (
            self.status in REFUNDABLE_STATUSES
            and self.refund_status == RefundStatus.NOT_REQUESTED
        )

    def check_successor(self, newer: "Booking") -> "Booking":
        """
        Validate a server-returned update of this booking.

        Args:
            newer: The booking as the server now reports it.

        Returns:
            Booking: ``newer``, once both status changes are known to be legal.

        Raises:
            IllegalTransitionError: If the ids differ or either status jump is illegal.
        """
        if newer.id != self.id:
            raise IllegalTransitionError(self.id, newer.id, kind="booking id")
        assert_booking_transition(self.status, newer.status)
        assert_refund_transition(self.refund_status, newer.refund_status)
        return newer

    def check_verified_successor(self, newer: "Booking") -> "Booking":
        """
        Validate the booking returned by payment verification.

        The server may confirm a verified booking in the same step, so a
        hold reported back as ``confirmed`` is checked as if it had passed
        through ``payment_completed``.
        """
        if self.is_hold and newer.status == BookingStatus.CONFIRMED:
            paid = self.model_copy(update={"status": BookingStatus.PAYMENT_COMPLETED})
            return paid.check_successor(newer)
        return self.check_successor(newer)
