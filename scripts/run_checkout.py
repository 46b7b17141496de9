import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import getpass
import logging
from datetime import date

from stay_checkout.credentials import SessionEndReason
from stay_checkout.errors import CheckoutError
from stay_checkout.logging_config import bind_checkout_context, clear_checkout_context, setup_logging
from stay_checkout.network.auth import login, logout
from stay_checkout.network.client import SessionChannel
from stay_checkout.schemas.checkout import GatewayConfirmation, RoomSelection, Selection
from stay_checkout.services.bookings import BookingApi
from stay_checkout.services.checkout import ReservationOrchestrator
from stay_checkout.services.gateway import GatewayOptions, PaymentOutcome

setup_logging()
logger = logging.getLogger(__name__)


class TerminalGateway:
    """
    Gateway stand-in for operators: prints the order and asks for the
    payment id and signature the real gateway returned. An empty payment id
    dismisses the payment.
    """

    def __init__(self, options: GatewayOptions):
        self.options = options

    def open(self) -> None:
        print(f"Order {self.options.order_id}: {self.options.amount} {self.options.currency} (minor units)")
        payment_id = input("Gateway payment id (empty to dismiss): ").strip()
        if not payment_id:
            self.options.on_dismiss()
            return
        signature = input("Gateway signature: ").strip()
        self.options.handler(
            GatewayConfirmation(
                order_id=self.options.order_id,
                payment_id=payment_id,
                signature=signature,
            )
        )


def _on_session_end(reason: SessionEndReason) -> None:
    print(reason.user_message)


def main() -> None:
    """
    Run one reservation from quote to verified payment against the configured API.
    """
    parser = argparse.ArgumentParser(description="Book a room through the checkout flow")
    parser.add_argument("--email", required=True)
    parser.add_argument("--property", dest="property_id", required=True)
    parser.add_argument("--room", dest="room_id", required=True)
    parser.add_argument("--guests", type=int, default=2)
    parser.add_argument("--check-in", type=date.fromisoformat, required=True)
    parser.add_argument("--check-out", type=date.fromisoformat, required=True)
    parser.add_argument("--meal-plan", dest="meal_plan_id")
    args = parser.parse_args()

    channel = SessionChannel(on_session_end=_on_session_end)
    login(channel, args.email, getpass.getpass("Password: "))

    bind_checkout_context(property_id=args.property_id)
    checkout = ReservationOrchestrator(BookingApi(channel))
    selection = Selection(
        property_id=args.property_id,
        check_in=args.check_in,
        check_out=args.check_out,
        rooms=(RoomSelection(room_id=args.room_id, guests=args.guests),),
        meal_plan_id=args.meal_plan_id,
    )

    try:
        checkout.select(selection)
        quote = checkout.quote()
        print(f"Total: {quote.final_price} (taxes {quote.taxes}, fee {quote.platform_fee})")
        booking = checkout.hold()
        bind_checkout_context(booking_id=booking.id)
        logger.info("Holding booking %s", booking.id)

        result = checkout.pay(TerminalGateway, prefill={"email": args.email})
        while result.outcome == PaymentOutcome.DISMISSED:
            if input("Payment dismissed. Retry? [y/N] ").strip().lower() != "y":
                checkout.release("Abandoned at payment")
                print("Reservation released.")
                return
            result = checkout.pay(TerminalGateway, prefill={"email": args.email})

        print(f"Booking {result.booking.id} is {result.booking.status.value}")
    except CheckoutError as e:
        logger.exception("Checkout failed in state %s", checkout.state.value)
        print(e.user_message)
        raise
    finally:
        logout(channel)
        clear_checkout_context()


if __name__ == "__main__":
    main()
