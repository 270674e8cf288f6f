"""
Mock Payment Service Implementation

Simulates a prepay gateway without making real API calls.
Used in development mode (ENV_MODE=development) to:
    - Test the complete submit -> pay -> callback flow locally
    - Develop without internet connectivity

Behavior:
    - Simulates response latency
    - Remembers which order numbers were settled and answers ORDERPAID for them
    - Generates provider-like ids (wx_mock_xxx, re_mock_xxx)
"""

import asyncio
import json
import random
import uuid
import logging
from typing import Optional

from takeout.services.payment.base import (
    BasePaymentService,
    PrepayResult,
    RefundResult,
    ORDER_PAID_CODE,
    SUCCESS_CODE,
    PAYMENT_SUCCEEDED_EVENT,
)

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment gateway.

    Attributes:
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
    """

    def __init__(
        self,
        min_latency: float = 0.05,
        max_latency: float = 0.2,
    ):
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._settled: dict[str, float] = {}

        logger.info(
            f"MockPaymentService initialized "
            f"(latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> float:
        """Simulate network latency, returning it in milliseconds."""
        latency = random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000

    def settle(self, order_number: str, amount: float = 0.0) -> dict:
        """
        Mark an order as paid on the provider side.

        Returns the callback event a real provider would send.
        """
        self._settled[order_number] = amount
        logger.info(f"Mock: Order {order_number} settled")
        return {
            "id": f"evt_mock_{uuid.uuid4().hex[:16]}",
            "type": PAYMENT_SUCCEEDED_EVENT,
            "data": {"object": {"metadata": {"order_number": order_number}}},
        }

    async def create_prepay(
        self,
        order_number: str,
        amount: float,
        description: str,
        payer_identity: str,
    ) -> PrepayResult:
        latency_ms = await self._simulate_latency()

        if order_number in self._settled:
            logger.debug(f"Mock: Prepay refused, {order_number} already paid")
            return PrepayResult(
                code=ORDER_PAID_CODE,
                error_message="Order already paid",
                response_time_ms=latency_ms,
            )

        if amount <= 0:
            return PrepayResult(
                code="INVALID_AMOUNT",
                error_message="Amount must be greater than 0",
                response_time_ms=latency_ms,
            )

        prepay_id = f"wx_mock_{uuid.uuid4().hex[:24]}"
        logger.debug(f"Mock: Prepay {prepay_id} created for {order_number}")

        return PrepayResult(
            code=SUCCESS_CODE,
            package_payload=f"prepay_id={prepay_id}",
            prepay_id=prepay_id,
            amount=amount,
            response_time_ms=latency_ms,
            metadata={
                "nonce_str": uuid.uuid4().hex,
                "sign_type": "RSA",
                "payer": payer_identity,
                "description": description,
                "mock": True,
            },
        )

    async def refund_payment(
        self,
        order_number: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        await self._simulate_latency()

        if order_number not in self._settled:
            return RefundResult(
                success=False,
                status="failed",
                error_message=f"No settled payment for {order_number}",
            )

        settled_amount = self._settled.pop(order_number)
        refund_id = f"re_mock_{uuid.uuid4().hex[:24]}"
        logger.info(f"Mock: Refund processed - {refund_id}")

        return RefundResult(
            success=True,
            refund_id=refund_id,
            amount=amount if amount is not None else settled_amount,
            status="succeeded",
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """Mock mode accepts any well-formed JSON payload."""
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Mock: Invalid webhook payload")
            return None

    async def health_check(self) -> bool:
        return True
