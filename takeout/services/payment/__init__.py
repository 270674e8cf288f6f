"""
Payment Service Factory

Provides a single entry point for obtaining the payment gateway.
The rest of the application only sees BasePaymentService.

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging → StripePaymentService (test keys)
    - ENV_MODE=production → StripePaymentService (live keys)
"""

import logging
from functools import lru_cache

from takeout.core.config import get_settings
from takeout.services.payment.base import (
    BasePaymentService,
    PrepayResult,
    RefundResult,
    ORDER_PAID_CODE,
)
from takeout.services.payment.mock import MockPaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment gateway instance.

    The instance is cached so the mock gateway keeps its settled-order
    state for the lifetime of the process.

    Raises:
        ValueError: If staging/production mode but Stripe key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService()

    # Imported lazily so development installs do not need Stripe configured
    from takeout.services.payment.stripe import StripePaymentService

    logger.info(
        f"Payment Service: Using StripePaymentService "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentService()


def reset_payment_service() -> None:
    """Clear the cached payment gateway instance."""
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PrepayResult",
    "RefundResult",
    "MockPaymentService",
    "ORDER_PAID_CODE",
]
