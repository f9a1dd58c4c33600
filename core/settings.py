"""
Payment-related settings using pydantic-settings v2 with nested env keys.

This module is isolated so core.config.Settings stays focused on the app.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    # Upper bound for one provider call, retries excluded
    total: float = 30.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    # Checkout-flow and refund-flow endpoints rotate their secrets independently
    webhook_secret_checkout: Optional[str] = None
    webhook_secret_refund: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(
            self.secret_key
            and self.secret_key.startswith("sk_")
            and self.publishable_key
            and self.publishable_key.startswith("pk_")
        )


class PaymentSettings(BaseSettings):
    currency: str = "eur"
    # Provider fees absorbed by the platform (displayed price is all-inclusive)
    fee_percentage: Decimal = Decimal("0")
    fee_fixed: Decimal = Decimal("0")

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
