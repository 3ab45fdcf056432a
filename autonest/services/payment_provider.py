"""
Payment Gateway Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Protocol

COMPLETED_STATUS = "COMPLETED"
CURRENCY = "USD"


@dataclass(frozen=True)
class OrderResult:
    """
    Provider-agnostic order result.

    Returned after the gateway created an order awaiting buyer approval.
    """

    order_id: str
    status: str
    approve_url: str | None = None


@dataclass(frozen=True)
class CaptureResult:
    """
    Provider-agnostic capture result.

    `status` is the capture status when the gateway reports one,
    otherwise the order status.
    """

    order_id: str
    capture_id: str
    status: str
    amount_value: str | None = None
    currency: str | None = None
    payer_email: str | None = None

    @property
    def is_completed(self) -> bool:
        """True when the funds were captured."""
        return self.status == COMPLETED_STATUS

    @property
    def captured_amount(self) -> Decimal | None:
        """Captured amount, or None when the gateway did not report a parsable one."""
        if not self.amount_value:
            return None
        try:
            return Decimal(self.amount_value)
        except InvalidOperation:
            return None


class PaymentGateway(Protocol):
    """
    Payment gateway protocol.

    The ledger only needs order creation and capture; any processor
    implementing these two calls can back the purchase flow.
    """

    async def create_order(self, amount: Decimal, credits: int) -> OrderResult:
        """
        Create an order for `amount` USD buying `credits` credits.

        Raises:
            ConfigurationError: If gateway credentials are missing
            GatewayError: If the gateway rejects the request
            UpstreamTimeoutError: If the gateway does not answer in time
        """
        ...

    async def capture_order(self, order_id: str) -> CaptureResult:
        """
        Capture an approved order.

        Raises:
            ConfigurationError: If gateway credentials are missing
            PaymentNotCompletedError: If the buyer's instrument was declined
            GatewayError: If the gateway rejects the request
            UpstreamTimeoutError: If the gateway does not answer in time
        """
        ...
