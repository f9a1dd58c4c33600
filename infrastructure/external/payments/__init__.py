"""
Factory for the payment gateway client.

The adapter is chosen once per process: live Stripe when both keys are
well-formed, otherwise the offline mock.
"""
from __future__ import annotations

from functools import lru_cache

from core.config import settings
from core.settings import payment_settings
from core.logging_config import get_logger
from application.ports.payment_gateway import PaymentGateway


logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    if payment_settings.stripe.is_configured:
        from .stripe_client import StripeClient
        gateway: PaymentGateway = StripeClient()
    else:
        from .mock_client import MockPaymentClient
        gateway = MockPaymentClient(
            frontend_url=settings.FRONTEND_URL,
            webhook_tolerance=payment_settings.webhook.tolerance_seconds,
        )
    logger.info("payment_gateway_selected", provider=gateway.provider, configured=gateway.is_configured())
    return gateway
