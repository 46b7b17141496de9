"""
Shared fixtures: real requests.Response objects and booking payloads.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Callable, Dict, Optional

import pytest
import requests

from stay_checkout.schemas.checkout import RoomSelection, Selection

BASE_URL = "http://api.test/api/v1"

ResponseFactory = Callable[..., requests.Response]


def build_response(
    status_code: int,
    body: Optional[Any] = None,
    url: str = f"{BASE_URL}/",
) -> requests.Response:
    """Build a real Response so raise_for_status and json() behave as in production."""
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b""
    response.headers["Content-Type"] = "application/json"
    response.url = url
    return response


def booking_payload(status: str = "pending_payment", **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "_id": "b1",
        "bookingId": "BK-1001",
        "status": status,
        "refundStatus": "not_requested",
        "finalPrice": 7840,
        "checkInDate": "2025-06-01",
        "checkOutDate": "2025-06-03",
        "totalGuests": 2,
    }
    payload.update(overrides)
    return payload


def quote_payload(final_price: float = 7840, **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "roomTotal": 6000,
        "mealPlanPrice": 800,
        "activityTotal": 0,
        "subtotal": 6800,
        "taxes": 840,
        "platformFee": 200,
        "finalPrice": final_price,
        "roomPrices": [
            {
                "roomId": "r1",
                "roomName": "Deluxe",
                "nights": 2,
                "pricePerNight": 3000,
                "totalGuests": 2,
                "subtotal": 6000,
            }
        ],
        "activityPrices": [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_response() -> ResponseFactory:
    """Factory for real requests.Response objects."""
    return build_response


@pytest.fixture
def selection() -> Selection:
    """Two guests in one room for two nights."""
    return Selection(
        property_id="p1",
        check_in=date(2025, 6, 1),
        check_out=date(2025, 6, 3),
        rooms=(RoomSelection(room_id="r1", guests=2),),
        meal_plan_id="mp1",
    )


@pytest.fixture
def booking_data() -> Callable[..., Dict[str, Any]]:
    """Factory for booking API payloads."""
    return booking_payload


@pytest.fixture
def quote_data() -> Callable[..., Dict[str, Any]]:
    """Factory for calculate-price payloads."""
    return quote_payload
