"""
Offline payment adapter used when provider keys are absent.

Never touches the network. Session ids are derived from the ``paymentId``
metadata so the same checkout request always yields the same session.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from application.dtos.payments import (
    CreateCheckoutSession,
    CheckoutSession,
    CheckoutSessionDetails,
    CreateRefund,
    RefundResult,
)
from infrastructure.external.payments.base import BasePaymentClient


class MockPaymentClient(BasePaymentClient):
    provider = "mock"

    def __init__(self, *, frontend_url: str, webhook_tolerance: int = 300):
        super().__init__(webhook_tolerance=webhook_tolerance)
        self._frontend_url = frontend_url.rstrip("/")

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        ref = req.metadata.get("paymentId") or req.idempotency_key or "unknown"
        session_id = f"cs_mock_{ref}"
        url = f"{self._frontend_url}/dashboard?payment=success&mock=true&session_id={session_id}"
        self._log("mock_checkout_session_created", session_id=session_id)
        return CheckoutSession(id=session_id, url=url)

    async def retrieve_checkout_session(self, session_id: str) -> Optional[CheckoutSessionDetails]:  # type: ignore[override]
        return None

    async def create_refund(self, req: CreateRefund) -> Optional[RefundResult]:  # type: ignore[override]
        seed = req.idempotency_key or f"{req.charge_id}:{req.amount_minor}"
        refund_id = "re_mock_" + hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]
        self._log("mock_refund_created", refund_id=refund_id, charge_id=req.charge_id)
        return RefundResult(
            id=refund_id,
            status="succeeded",
            charge_id=req.charge_id,
            amount_minor=req.amount_minor,
        )
