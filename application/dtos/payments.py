"""
Payment gateway DTOs (Pydantic v2) used at application boundaries.

Amounts crossing the gateway are integers in minor units (cents); the
ledger converts with ``domain.payment.packs.to_minor_units``.
"""
from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Currencies the marketplace sells in (lower-case, as the provider expects)
SUPPORTED_CURRENCIES = {"eur", "usd", "gbp", "chf"}


class CheckoutLineItem(BaseModel):
    name: str
    description: Optional[str] = None
    amount_minor: int = Field(gt=0)
    currency: str = "eur"
    quantity: int = Field(default=1, gt=0)

    @field_validator("currency")
    @classmethod
    def _lower_and_validate_currency(cls, v: str) -> str:
        c = (v or "").lower()
        if len(c) != 3 or not c.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        if c not in SUPPORTED_CURRENCIES:
            raise ValueError("unsupported currency")
        return c


class CreateCheckoutSession(BaseModel):
    line_items: list[CheckoutLineItem] = Field(min_length=1)
    success_url: str
    cancel_url: str
    # Stripe metadata values are strings
    metadata: dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = None
    idempotency_key: Optional[str] = None


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None


class CheckoutSessionDetails(BaseModel):
    """Session re-read from the provider with payment intent/charge expanded."""

    id: str
    status: Optional[str] = None           # open / complete / expired
    payment_status: Optional[str] = None   # paid / unpaid / no_payment_required
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    amount_total_minor: Optional[int] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CreateRefund(BaseModel):
    charge_id: str
    # None -> full refund of the charge
    amount_minor: Optional[int] = Field(default=None, gt=0)
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class RefundResult(BaseModel):
    id: str
    status: str
    charge_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
