"""
Booking API operations used by the checkout flow.

Each method sends one request through the SessionChannel, unwraps the
``{"data": ...}`` envelope, parses the payload, and translates transport
failures into the checkout error taxonomy for that operation. Session errors
raised by the channel pass through untouched.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterator, List, Mapping, Optional, Sequence, Type, TypeVar

import requests
import structlog
from pydantic import BaseModel, ValidationError

from stay_checkout.errors import (
    DATES_UNAVAILABLE_MESSAGE,
    HOLD_CONFLICT_MESSAGE,
    AvailabilityConflictError,
    CheckoutError,
    InvalidResponseError,
    NetworkError,
    RequestTimeoutError,
    VerificationRejectedError,
)
from stay_checkout.models.booking import Booking
from stay_checkout.network.client import SessionChannel, error_message
from stay_checkout.schemas.checkout import (
    GatewayConfirmation,
    GuestDetail,
    PaymentOrder,
    Quote,
    Selection,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CALCULATE_PRICE_PATH = "bookings/calculate-price"
BOOKINGS_PATH = "bookings"
MY_BOOKINGS_PATH = "bookings/users/me/bookings"
PAYMENT_ORDER_PATH = "payments/order"
PAYMENT_VERIFY_PATH = "payments/verify"

# Server messages that mean "these dates cannot be had" on a price quote
UNAVAILABLE_HINTS = ("not available", "unavailable", "already booked", "sold out")

ErrorMap = Mapping[int, CheckoutError]


def _unwrap(response: requests.Response) -> Any:
    try:
        body = response.json()
    except ValueError as exc:
        raise InvalidResponseError(f"Non-JSON response from {response.url}") from exc
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _parse(model: Type[ModelT], payload: Any, operation: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.error("invalid_response", operation=operation, errors=exc.error_count())
        raise InvalidResponseError(f"{operation} returned an invalid {model.__name__}") from exc


@contextmanager
def _translate_errors(
    operation: str,
    status_map: Optional[ErrorMap] = None,
    timeout: Optional[float] = None,
) -> Iterator[None]:
    """
    Translate requests exceptions raised inside the block.

    Args:
        operation: Name used in logs and generic errors.
        status_map: Operation-specific errors keyed by HTTP status; checked
            before the generic NetworkError fallback.
        timeout: Timeout the request was sent with, reported on RequestTimeoutError.
    """
    try:
        yield
    except requests.Timeout as exc:
        raise RequestTimeoutError(operation, timeout) from exc
    except requests.HTTPError as exc:
        response = exc.response
        status_code = response.status_code if response is not None else None
        detail = error_message(response) if response is not None else ""
        mapped = (status_map or {}).get(status_code) if status_code is not None else None
        logger.warning(
            "booking_api_error",
            operation=operation,
            status_code=status_code,
            detail=detail,
            classified=type(mapped).__name__ if mapped else None,
        )
        if mapped is not None:
            raise mapped from exc
        raise NetworkError(operation, status_code, detail) from exc
    except requests.RequestException as exc:
        raise NetworkError(operation, detail=str(exc)) from exc


class BookingApi:
    """
    Typed access to the booking, payment and refund endpoints.

    Args:
        channel: Authenticated SessionChannel every call goes through.
    """

    def __init__(self, channel: SessionChannel):
        self.channel = channel

    def _errors(self, operation: str, status_map: Optional[ErrorMap] = None) -> ContextManager[None]:
        return _translate_errors(operation, status_map, self.channel.timeout)

    def calculate_price(self, selection: Selection) -> Quote:
        """
        Request a Quote for the selection.

        Raises:
            AvailabilityConflictError: If the server says the dates are not available.
        """
        payload = selection.to_payload()
        try:
            with self._errors(
                "calculate_price",
                {409: AvailabilityConflictError(user_message=DATES_UNAVAILABLE_MESSAGE)},
            ):
                response = self.channel.post(CALCULATE_PRICE_PATH, json=payload)
        except NetworkError as exc:
            # Some rejections come back as 400 with an explanatory message
            if exc.status_code == 400 and any(hint in str(exc).lower() for hint in UNAVAILABLE_HINTS):
                raise AvailabilityConflictError(
                    str(exc), user_message=DATES_UNAVAILABLE_MESSAGE
                ) from exc
            raise

        return _parse(Quote, _unwrap(response), "calculate_price")

    def create_booking(
        self,
        selection: Selection,
        guest_details: Sequence[GuestDetail] = (),
    ) -> Booking:
        """
        Create (or retrieve) the pending-payment booking that holds the dates.

        Raises:
            AvailabilityConflictError: On 409, always with the canonical message.
        """
        payload = selection.to_payload()
        if guest_details:
            payload["guestDetails"] = [guest.to_payload() for guest in guest_details]

        with self._errors(
            "create_booking",
            {409: AvailabilityConflictError(user_message=HOLD_CONFLICT_MESSAGE)},
        ):
            response = self.channel.post(BOOKINGS_PATH, json=payload)

        booking = _parse(Booking, _unwrap(response), "create_booking")
        logger.info("booking_created", booking_id=booking.id, status=booking.status.value)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        with self._errors("get_booking"):
            response = self.channel.get(f"{BOOKINGS_PATH}/{booking_id}", label="bookings/{id}")
        return _parse(Booking, _unwrap(response), "get_booking")

    def list_my_bookings(self) -> List[Booking]:
        with self._errors("list_my_bookings"):
            response = self.channel.get(MY_BOOKINGS_PATH)
        data = _unwrap(response)
        if not isinstance(data, list):
            raise InvalidResponseError("list_my_bookings did not return a list")
        return [_parse(Booking, item, "list_my_bookings") for item in data]

    def create_payment_order(self, booking_id: str, amount: float, currency: str) -> PaymentOrder:
        """
        Create a gateway order for the booking.

        Args:
            booking_id: Booking the order is bound to.
            amount: Booking final price in major units.
            currency: ISO currency code.
        """
        payload: Dict[str, Any] = {"bookingId": booking_id, "amount": amount, "currency": currency}
        with self._errors("create_payment_order"):
            response = self.channel.post(PAYMENT_ORDER_PATH, json=payload)
        order = _parse(PaymentOrder, _unwrap(response), "create_payment_order")
        logger.info(
            "payment_order_created",
            booking_id=booking_id,
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
        )
        return order

    def verify_payment(self, booking_id: str, confirmation: GatewayConfirmation) -> Booking:
        """
        Submit the gateway's signed confirmation for server-side verification.

        Raises:
            VerificationRejectedError: If the server refuses the signature.
        """
        payload = {
            "bookingId": booking_id,
            "gatewayOrderId": confirmation.order_id,
            "gatewayPaymentId": confirmation.payment_id,
            "gatewaySignature": confirmation.signature,
        }
        rejected = VerificationRejectedError(f"Payment verification rejected for {booking_id}")
        with self._errors("verify_payment", {400: rejected, 422: rejected}):
            response = self.channel.post(PAYMENT_VERIFY_PATH, json=payload)

        data = _unwrap(response)
        body = response.json()
        if isinstance(body, dict) and body.get("success") is False:
            raise VerificationRejectedError(
                f"Payment verification rejected for {booking_id}: {body.get('message', '')}"
            )

        # The verified booking may come back bare or nested under "booking"
        if isinstance(data, dict) and isinstance(data.get("booking"), dict):
            data = data["booking"]
        return _parse(Booking, data, "verify_payment")

    def cancel_booking(self, booking_id: str, reason: str) -> Booking:
        with self._errors("cancel_booking"):
            response = self.channel.post(
                f"{BOOKINGS_PATH}/{booking_id}/cancel",
                json={"reason": reason},
                label="bookings/{id}/cancel",
            )
        return _parse(Booking, _unwrap(response), "cancel_booking")

    def request_refund(self, booking_id: str, reason: str) -> Booking:
        with self._errors("request_refund"):
            response = self.channel.post(
                f"{BOOKINGS_PATH}/{booking_id}/refund-request",
                json={"reason": reason},
                label="bookings/{id}/refund-request",
            )
        return _parse(Booking, _unwrap(response), "request_refund")
