from datetime import date
from typing import List, Optional, Tuple

from pydantic import AliasChoices, Field, field_validator, model_validator

from stay_checkout.models.base import ApiModel


class RoomSelection(ApiModel):
    """
    One room and the number of guests staying in it.
    """

    room_id: str = Field(..., min_length=1, description="Room ID")
    guests: int = Field(..., ge=1, description="Guests in this room")


class GuestDetail(ApiModel):
    name: str
    age: int = Field(..., ge=0)
    gender: str


class Selection(ApiModel):
    """
    What the user picked: property, dates, rooms with guests, optional add-ons.

    Any change produces a new Selection; quotes are only valid for the
    Selection they were requested for.
    """

    property_id: str = Field(..., min_length=1, description="Property ID")
    check_in: date = Field(..., description="Arrival date")
    check_out: date = Field(..., description="Departure date")
    rooms: Tuple[RoomSelection, ...] = Field(..., min_length=1, description="Rooms and guests")
    package_id: Optional[str] = Field(None, description="Package ID (optional)")
    meal_plan_id: Optional[str] = Field(None, description="Meal plan ID (optional)")
    activity_ids: Tuple[str, ...] = Field((), description="Activity IDs (optional)")

    @field_validator("activity_ids")
    @classmethod
    def _sorted_activities(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(sorted(value))

    @model_validator(mode="after")
    def _check_dates(self) -> "Selection":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    @property
    def total_guests(self) -> int:
        return sum(room.guests for room in self.rooms)

    @property
    def hold_key(self) -> Tuple[object, ...]:
        """Identity of the hold this selection would create: rooms, guests and dates."""
        rooms = tuple(sorted((room.room_id, room.guests) for room in self.rooms))
        return (self.property_id, rooms, self.check_in, self.check_out)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if not self.activity_ids:
            payload.pop("activityIds", None)
        return payload


class RoomPrice(ApiModel):
    room_id: str
    room_name: Optional[str] = None
    nights: int
    price_per_night: float
    total_guests: int
    subtotal: float


class ActivityPrice(ApiModel):
    activity_id: str
    activity_name: Optional[str] = None
    participants: int
    price_per_person: float
    subtotal: float


class Quote(ApiModel):
    """
    Server-computed price breakdown for one Selection. Carries no hold.
    """

    room_total: float = 0
    meal_plan_price: float = 0
    activity_total: float = 0
    subtotal: float = 0
    taxes: float = 0
    platform_fee: float = 0
    final_price: Optional[float] = None
    room_prices: List[RoomPrice] = []
    activity_prices: List[ActivityPrice] = []

    @property
    def is_chargeable(self) -> bool:
        return self.final_price is not None and self.final_price > 0


class PaymentOrder(ApiModel):
    """
    Gateway-side order handle bound to one booking.

    ``amount`` is in the currency's minor unit (784000 paise for 7840 INR).
    """

    order_id: str = Field(..., validation_alias=AliasChoices("orderId", "id", "order_id"))
    amount: int
    currency: str
    booking_id: Optional[str] = None


class GatewayConfirmation(ApiModel):
    """
    Signed fields the gateway hands back on a successful payment.
    """

    order_id: str
    payment_id: str
    signature: str

    def __repr__(self) -> str:
        return f"GatewayConfirmation(order_id={self.order_id!r}, payment_id={self.payment_id!r})"
