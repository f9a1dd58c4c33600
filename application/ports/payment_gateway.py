"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements a live
adapter and an offline mock adapter, one of which is chosen at startup.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateCheckoutSession,
    CheckoutSession,
    CheckoutSessionDetails,
    CreateRefund,
    RefundResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the card payment provider.

    Lookups return ``None`` instead of raising; callers treat ``None`` as
    "unknown" and must not fail hard on it.
    """

    provider: str

    def is_configured(self) -> bool: ...

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession: ...

    async def retrieve_checkout_session(self, session_id: str) -> Optional[CheckoutSessionDetails]: ...

    async def create_refund(self, req: CreateRefund) -> Optional[RefundResult]: ...

    def verify_webhook_signature(
        self, raw_body: bytes, signature_header: Optional[str], secret: Optional[str]
    ) -> Optional[dict[str, Any]]: ...
