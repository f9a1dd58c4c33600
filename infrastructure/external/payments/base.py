"""
Base payment client implementing shared concerns: retry, logging, status
mapping and webhook signature verification.

Both the live adapter and the mock adapter verify webhooks the same way, so a
locally configured webhook secret works with or without provider keys.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import stripe
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    CreateCheckoutSession,
    CheckoutSession,
    CheckoutSessionDetails,
    CreateRefund,
    RefundResult,
)
from application.ports.payment_gateway import PaymentGateway
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# Transient failures worth another attempt
RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, asyncio.TimeoutError)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        webhook_tolerance: int = 300,
    ) -> None:
        self._timeouts_cfg = timeouts or {"total": 30.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._webhook_tolerance = webhook_tolerance

    def is_configured(self) -> bool:
        return False

    async def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking SDK call on a worker thread, bounded by the total timeout."""
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args, **kwargs),
            timeout=self._timeouts_cfg["total"],
        )

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        ):
            with attempt:
                return await fn()

    # Default implementations raise to force override where needed
    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        raise NotImplementedError

    async def retrieve_checkout_session(self, session_id: str) -> Optional[CheckoutSessionDetails]:  # type: ignore[override]
        raise NotImplementedError

    async def create_refund(self, req: CreateRefund) -> Optional[RefundResult]:  # type: ignore[override]
        raise NotImplementedError

    def verify_webhook_signature(
        self, raw_body: bytes, signature_header: Optional[str], secret: Optional[str]
    ) -> Optional[dict[str, Any]]:
        """Check the ``t=…,v1=…`` HMAC over the exact raw bytes; ``None`` on any failure."""
        if not secret:
            self._log("webhook_secret_missing", level="warning")
            return None
        if not raw_body or not signature_header:
            return None
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            self._log("webhook_payload_not_utf8", level="warning")
            return None
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, secret, tolerance=self._webhook_tolerance
            )
        except stripe.SignatureVerificationError as exc:
            self._log("webhook_signature_invalid", level="warning", error=str(exc))
            return None
        try:
            event = json.loads(payload)
        except ValueError:
            self._log("webhook_payload_malformed", level="warning")
            return None
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            self._log("webhook_payload_malformed", level="warning")
            return None
        return event

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> Optional[str]:
        if provider_status is None:
            return None
        mapping = PROVIDER_STATUS_TO_INTERNAL.get("stripe", {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, *, level: str = "info", **kwargs) -> None:
        getattr(logger, level)(
            event,
            provider=self.provider,
            **kwargs,
        )
