"""
Stripe Payment Service Implementation

Production gateway using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

A prepay maps to a Stripe PaymentIntent tagged with the order number in
its metadata. The intent's client_secret is the opaque package handed to
the client. A succeeded intent for the same order number means the order
is already paid.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Always verify webhook signatures
    - Prepay requests use the order number as idempotency key
"""

import json
import logging
from datetime import datetime
from typing import Optional

import stripe
from stripe import (
    StripeError,
    InvalidRequestError,
    AuthenticationError,
    APIConnectionError,
    SignatureVerificationError,
)

from takeout.core.config import get_settings
from takeout.services.payment.base import (
    BasePaymentService,
    PrepayResult,
    RefundResult,
    ORDER_PAID_CODE,
    SUCCESS_CODE,
)

logger = logging.getLogger(__name__)


class StripePaymentService(BasePaymentService):
    """
    Production Stripe gateway.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Optionally uses STRIPE_WEBHOOK_SECRET for webhook verification.
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = "2023-10-16"  # Pin API version for stability

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.payment_currency

        logger.info(
            f"StripePaymentService initialized "
            f"(api_version={stripe.api_version})"
        )

    @property
    def provider_name(self) -> str:
        return "stripe"

    def _convert_to_cents(self, amount: float) -> int:
        """Stripe expects amounts in the smallest currency unit."""
        return int(round(amount * 100))

    def _convert_from_cents(self, cents: int) -> float:
        return cents / 100.0

    def _find_succeeded_intent(self, order_number: str):
        """Return the succeeded PaymentIntent of an order, if any."""
        found = stripe.PaymentIntent.search(
            query=(
                f"metadata['order_number']:'{order_number}' "
                f"AND status:'succeeded'"
            ),
            limit=1,
        )
        return found.data[0] if found.data else None

    async def create_prepay(
        self,
        order_number: str,
        amount: float,
        description: str,
        payer_identity: str,
    ) -> PrepayResult:
        start_time = datetime.now()

        logger.info(f"Stripe: Prepay for {order_number} - {amount:.2f}")

        try:
            if self._find_succeeded_intent(order_number) is not None:
                logger.info(f"Stripe: {order_number} already paid")
                return PrepayResult(
                    code=ORDER_PAID_CODE,
                    error_message="Order already paid",
                )

            intent = stripe.PaymentIntent.create(
                amount=self._convert_to_cents(amount),
                currency=self._currency,
                description=description,
                metadata={
                    "order_number": order_number,
                    "payer": payer_identity,
                },
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"prepay-{order_number}",
            )

            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.debug(f"Stripe: PaymentIntent created - {intent.id}")

            return PrepayResult(
                code=SUCCESS_CODE,
                package_payload=intent.client_secret,
                prepay_id=intent.id,
                amount=self._convert_from_cents(intent.amount),
                currency=intent.currency,
                response_time_ms=elapsed_ms,
                metadata={"status": intent.status},
            )

        except InvalidRequestError as e:
            logger.error(f"Stripe: Invalid request - {e}")
            return PrepayResult(code="invalid_request", error_message=str(e))

        except AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed - {e}")
            return PrepayResult(
                code="authentication_error",
                error_message="Payment service configuration error",
            )

        except APIConnectionError as e:
            logger.error(f"Stripe: Connection error - {e}")
            return PrepayResult(
                code="connection_error",
                error_message="Payment service temporarily unavailable",
            )

        except StripeError as e:
            logger.error(f"Stripe: Error - {e}")
            return PrepayResult(
                code="stripe_error",
                error_message="Payment processing error",
            )

    async def refund_payment(
        self,
        order_number: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        try:
            intent = self._find_succeeded_intent(order_number)
            if intent is None:
                return RefundResult(
                    success=False,
                    status="failed",
                    error_message=f"No settled payment for {order_number}",
                )

            refund_params = {
                "payment_intent": intent.id,
                "metadata": {"order_number": order_number, "reason": reason or ""},
            }
            if amount is not None:
                refund_params["amount"] = self._convert_to_cents(amount)

            refund = stripe.Refund.create(**refund_params)

            logger.info(
                f"Stripe: Refund processed - {refund.id} - "
                f"status={refund.status}"
            )

            return RefundResult(
                success=True,
                refund_id=refund.id,
                amount=self._convert_from_cents(refund.amount),
                status=refund.status,
            )

        except StripeError as e:
            logger.error(f"Stripe: Refund failed - {e}")
            return RefundResult(success=False, status="failed", error_message=str(e))

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a Stripe webhook event.

        Returns:
            Parsed event object if valid, None if verification fails
        """
        if not self._webhook_secret:
            logger.warning(
                "Stripe: Webhook secret not configured, skipping verification"
            )
            try:
                return json.loads(payload)
            except json.JSONDecodeError:
                return None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
            logger.debug(f"Stripe: Webhook verified - {event.id}")
            # Verified; hand the plain JSON body to the order layer
            return json.loads(payload)

        except SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None

        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

    async def health_check(self) -> bool:
        try:
            stripe.Account.retrieve()
            return True
        except StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
