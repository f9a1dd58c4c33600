"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
            message_key="payment.provider.error",
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str = "Invalid signature", *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
            message_key="payment.webhook.invalid_signature",
        )


class WebhookPayloadMissingError(BusinessException):
    """Webhook delivery without raw body or signature header"""

    def __init__(self, missing: str, *, provider: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_PAYLOAD_MISSING,
            message=f"No {missing}",
            error_type="WebhookPayloadMissing",
            details={"provider": provider, "missing": missing},
            message_key="payment.webhook.payload_missing",
            format_params={"missing": missing},
        )
