"""
Stripe Checkout/Refund adapter using the official stripe-python SDK.

Notes on SDK usage:
- The module-level resources (``stripe.checkout.Session``, ``stripe.Refund``)
  are blocking; every call runs on a worker thread via ``asyncio.to_thread``.
- Idempotency keys are passed with the ``idempotency_key`` kwarg so a
  retried call never creates a second session or refund.
- Webhook verification lives in ``BasePaymentClient`` and is shared with the
  mock adapter.
"""
from __future__ import annotations

from typing import Any, Optional

import stripe

from application.dtos.payments import (
    CreateCheckoutSession,
    CheckoutSession,
    CheckoutSessionDetails,
    CreateRefund,
    RefundResult,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError
from core.settings import payment_settings


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _ref(value: Any) -> Optional[str]:
    """Expandable field: either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value or None
    return _field(value, "id")


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            webhook_tolerance=payment_settings.webhook.tolerance_seconds,
        )
        if not payment_settings.stripe.is_configured:
            raise RuntimeError("STRIPE__SECRET_KEY / STRIPE__PUBLISHABLE_KEY not configured")
        # Configure module-level key for compatibility across SDK variants
        stripe.api_key = payment_settings.stripe.secret_key

    def is_configured(self) -> bool:
        return payment_settings.stripe.is_configured

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        line_items = [
            {
                "price_data": {
                    "currency": item.currency,
                    "product_data": {
                        "name": item.name,
                        **({"description": item.description} if item.description else {}),
                    },
                    "unit_amount": item.amount_minor,
                },
                "quantity": item.quantity,
            }
            for item in req.line_items
        ]
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": req.success_url,
            "cancel_url": req.cancel_url,
            "metadata": req.metadata,
        }
        if req.customer_email:
            params["customer_email"] = req.customer_email
        if req.idempotency_key:
            params["idempotency_key"] = req.idempotency_key

        try:
            session = await self._retry(lambda: self._call(stripe.checkout.Session.create, **params))
        except stripe.StripeError as exc:
            self._log("checkout_session_create_failed", level="error", error=str(exc))
            raise PaymentProviderError(
                str(exc.user_message or exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
            ) from exc
        except TimeoutError as exc:
            self._log("checkout_session_create_timeout", level="error")
            raise PaymentProviderError("Payment provider timeout", provider=self.provider) from exc

        self._log("checkout_session_created", session_id=_field(session, "id"))
        return CheckoutSession(id=str(_field(session, "id")), url=_field(session, "url"))

    async def retrieve_checkout_session(self, session_id: str) -> Optional[CheckoutSessionDetails]:  # type: ignore[override]
        try:
            session = await self._retry(
                lambda: self._call(
                    stripe.checkout.Session.retrieve,
                    session_id,
                    expand=["payment_intent", "payment_intent.latest_charge"],
                )
            )
        except (stripe.StripeError, TimeoutError) as exc:
            self._log("checkout_session_retrieve_failed", level="warning", session_id=session_id, error=str(exc))
            return None

        payment_intent = _field(session, "payment_intent")
        charge_id = None
        if payment_intent is not None and not isinstance(payment_intent, str):
            charge_id = _ref(_field(payment_intent, "latest_charge"))
        metadata = _field(session, "metadata") or {}
        return CheckoutSessionDetails(
            id=str(_field(session, "id")),
            status=_field(session, "status"),
            payment_status=_field(session, "payment_status"),
            payment_intent_id=_ref(payment_intent),
            charge_id=charge_id,
            amount_total_minor=_field(session, "amount_total"),
            currency=_field(session, "currency"),
            metadata=dict(metadata),
        )

    async def create_refund(self, req: CreateRefund) -> Optional[RefundResult]:  # type: ignore[override]
        params: dict[str, Any] = {"charge": req.charge_id, "metadata": req.metadata}
        if req.amount_minor is not None:
            params["amount"] = req.amount_minor
        if req.idempotency_key:
            params["idempotency_key"] = req.idempotency_key

        try:
            refund = await self._retry(lambda: self._call(stripe.Refund.create, **params))
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                str(exc.user_message or exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
                details={"charge_id": req.charge_id},
            ) from exc
        except TimeoutError as exc:
            raise PaymentProviderError(
                "Payment provider timeout", provider=self.provider, details={"charge_id": req.charge_id}
            ) from exc

        self._log("refund_created", refund_id=_field(refund, "id"), charge_id=req.charge_id)
        return RefundResult(
            id=str(_field(refund, "id")),
            status=self._map_status(_field(refund, "status")) or "pending",
            charge_id=_ref(_field(refund, "charge")) or req.charge_id,
            amount_minor=_field(refund, "amount"),
            currency=_field(refund, "currency"),
        )
