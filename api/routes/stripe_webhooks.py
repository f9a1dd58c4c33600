"""
Stripe webhook routes.

Two endpoints with their own signing secrets. The raw body is verified before
anything else; once verified, the delivery is acknowledged with 200 even if
processing fails, so the provider does not retry. Missed credits are picked
up by the pending-payment reconciliation task.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_gateway, get_webhook_service
from application.ports.payment_gateway import PaymentGateway
from application.services.webhook_service import WebhookService
from core.i18n import t
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.external.payments.exceptions import PaymentSignatureError, WebhookPayloadMissingError


router = APIRouter(prefix="/webhooks/stripe", tags=["Webhooks"])
logger = get_logger(__name__)

PROVIDER = "stripe"


async def _receive(
    request: Request,
    *,
    endpoint: str,
    secret: Optional[str],
    gateway: PaymentGateway,
    handler: Callable[[dict], Awaitable[object]],
):
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not raw_body:
        raise WebhookPayloadMissingError("body", provider=PROVIDER)
    if not signature:
        raise WebhookPayloadMissingError("signature", provider=PROVIDER)

    event = gateway.verify_webhook_signature(raw_body, signature, secret)
    if event is None:
        logger.warning("webhook_signature_invalid", endpoint=endpoint)
        raise PaymentSignatureError(provider=PROVIDER, details={"endpoint": endpoint})

    try:
        outcome = await handler(event)
        logger.info(
            "webhook_event_handled",
            endpoint=endpoint,
            event_id=event.get("id"),
            event_type=event.get("type"),
            outcome=getattr(outcome, "value", outcome),
        )
    except Exception as exc:
        # 已验签的事件始终返回 200，避免渠道重复投递
        logger.error(
            "webhook_processing_failed",
            endpoint=endpoint,
            event_id=event.get("id"),
            event_type=event.get("type"),
            error=str(exc),
            exc_info=True,
        )
    return success_response(data={"received": True}, message=t("payment.webhook.received", default="Webhook received"))


@router.post("/checkout", summary="Stripe checkout webhook")
async def checkout_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    service: WebhookService = Depends(get_webhook_service),
):
    return await _receive(
        request,
        endpoint="checkout",
        secret=payment_settings.stripe.webhook_secret_checkout,
        gateway=gateway,
        handler=service.handle_checkout_event,
    )


@router.post("/refund", summary="Stripe refund webhook")
async def refund_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    service: WebhookService = Depends(get_webhook_service),
):
    return await _receive(
        request,
        endpoint="refund",
        secret=payment_settings.stripe.webhook_secret_refund,
        gateway=gateway,
        handler=service.handle_refund_event,
    )
