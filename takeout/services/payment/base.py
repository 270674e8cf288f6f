"""
Payment Gateway Abstract Base Class

Defines the contract the ordering core depends on. Both MockPaymentService
and StripePaymentService implement it, so the order lifecycle never knows
which provider is active.

Design Pattern: Strategy Pattern
    - Runtime switching between providers via ENV_MODE
    - Tests inject their own implementation
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

# Gateway answer meaning "this order was already settled"
ORDER_PAID_CODE = "ORDERPAID"
SUCCESS_CODE = "SUCCESS"

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"


@dataclass
class PrepayResult:
    """
    Standardized result of a prepay request.

    Attributes:
        code: Provider answer code; ``ORDERPAID`` signals an already settled order
        package_payload: Opaque payload handed to the client payment SDK
        prepay_id: Provider-side identifier of the prepay transaction
        amount: Amount requested
        currency: Currency code
        error_message: Error description if the request failed
        response_time_ms: Time taken by the provider call
        metadata: Extra provider data forwarded to the client
    """
    code: str
    package_payload: Optional[str] = None
    prepay_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "usd"
    error_message: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.code == SUCCESS_CODE

    @property
    def already_paid(self) -> bool:
        return self.code == ORDER_PAID_CODE


@dataclass
class RefundResult:
    """
    Standardized result from refund processing.

    Attributes:
        success: Whether the refund was accepted
        refund_id: Unique identifier for the refund
        amount: Amount refunded
        status: Refund status (pending, succeeded, failed)
        error_message: Error description if refund failed
    """
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[float] = None
    status: str = "pending"
    error_message: Optional[str] = None


class BasePaymentService(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the payment provider (e.g. "mock", "stripe")."""
        pass

    @abstractmethod
    async def create_prepay(
        self,
        order_number: str,
        amount: float,
        description: str,
        payer_identity: str,
    ) -> PrepayResult:
        """
        Create a prepay transaction for an order.

        Args:
            order_number: Merchant-side order number
            amount: Amount to charge
            description: Text shown to the payer
            payer_identity: Provider identity of the paying user

        Returns:
            PrepayResult: ``code`` is ``SUCCESS``, ``ORDERPAID`` or an error code
        """
        pass

    @abstractmethod
    async def refund_payment(
        self,
        order_number: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund the settled payment of an order.

        Args:
            order_number: Order whose payment is refunded
            amount: Amount to refund (None = full refund)
            reason: Reason for the refund
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a callback from the payment provider.

        Returns:
            dict: Parsed event if valid, None if invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the payment provider."""
        pass

    def paid_order_number(self, event: dict) -> Optional[str]:
        """
        Extract the order number from a payment-succeeded event.

        Returns None for any other event type.
        """
        if event.get("type") != PAYMENT_SUCCEEDED_EVENT:
            return None
        payment = event.get("data", {}).get("object", {})
        return (payment.get("metadata") or {}).get("order_number")
