"""
Handoff to the external payment gateway.

The gateway is push based: it is opened once and later calls exactly one of
its success or dismissal handlers. GatewayHandoff turns that into a single
result the checkout flow can wait on.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

import structlog

from stay_checkout.schemas.checkout import GatewayConfirmation

logger = structlog.get_logger(__name__)


class PaymentOutcome(str, Enum):
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class GatewayResult:
    outcome: PaymentOutcome
    confirmation: Optional[GatewayConfirmation] = None


@dataclass(frozen=True)
class GatewayOptions:
    """
    Everything the gateway client is constructed from.

    Attributes:
        key: Gateway public key.
        amount: Order amount in the currency's minor unit.
        currency: ISO currency code.
        order_id: Gateway order id from the payment order.
        prefill: Customer details shown pre-filled in the gateway form.
        theme: Visual options passed through to the gateway.
        handler: Success callback, invoked with the signed confirmation.
        on_dismiss: Dismissal callback, invoked when the user closes the gateway.
    """

    key: str
    amount: int
    currency: str
    order_id: str
    handler: Callable[[GatewayConfirmation], None]
    on_dismiss: Callable[[], None]
    prefill: Dict[str, str] = field(default_factory=dict)
    theme: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Gateway options without the callbacks, in the gateway's key names."""
        return {
            "key": self.key,
            "amount": self.amount,
            "currency": self.currency,
            "order_id": self.order_id,
            "prefill": dict(self.prefill),
            "theme": dict(self.theme),
        }


class GatewayClient(Protocol):
    def open(self) -> None: ...


GatewayFactory = Callable[[GatewayOptions], GatewayClient]


class GatewayHandoff:
    """
    Single-shot channel between gateway callbacks and the waiting checkout.

    The first callback settles the result; any later callback is logged and
    ignored.

    Example:
        >>> handoff = GatewayHandoff()
        >>> handoff.succeed(confirmation)   # from the gateway's handler
        >>> handoff.wait().outcome
        <PaymentOutcome.CONFIRMED: 'confirmed'>
    """

    def __init__(self) -> None:
        self._result: "Future[GatewayResult]" = Future()
        self._lock = threading.Lock()

    @property
    def settled(self) -> bool:
        return self._result.done()

    def succeed(self, confirmation: GatewayConfirmation) -> None:
        self._settle(GatewayResult(PaymentOutcome.CONFIRMED, confirmation))

    def dismiss(self) -> None:
        self._settle(GatewayResult(PaymentOutcome.DISMISSED))

    def wait(self) -> GatewayResult:
        """Block until the gateway reports an outcome. No timeout: the user decides."""
        return self._result.result()

    def _settle(self, result: GatewayResult) -> None:
        with self._lock:
            if self._result.done():
                logger.warning("gateway_callback_ignored", outcome=result.outcome.value)
                return
            self._result.set_result(result)
        logger.info("gateway_outcome", outcome=result.outcome.value)
