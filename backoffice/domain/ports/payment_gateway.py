from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..models import Subscription


@dataclass(frozen=True, slots=True)
class ChargeResult:
    succeeded: bool
    failure_reason: Optional[str] = None
    reference: Optional[str] = None


class PaymentGateway(Protocol):
    """Provider-side subscription lifecycle and charging.

    Implementations raise ``GatewayError`` when the provider cannot be reached or
    answers with an error other than a declined charge.
    """

    def charge_saved_method(self, subscription: Subscription) -> ChargeResult:
        ...

    def cancel_subscription(self, subscription: Subscription) -> None:
        ...
