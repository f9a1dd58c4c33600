"""
Verified provider webhook events as a closed tagged union.

Only the fields each handler needs are lifted out of the provider payload and
validated; anything this service does not handle becomes ``UnrecognizedEvent``
and is acknowledged without side effects.
"""
from __future__ import annotations

from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class _ProviderEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(min_length=1)


class CheckoutSessionCompleted(_ProviderEvent):
    type: Literal["checkout.session.completed"] = "checkout.session.completed"
    session_id: str = Field(min_length=1)
    payment_intent_id: Optional[str] = None
    payment_status: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CheckoutSessionExpired(_ProviderEvent):
    type: Literal["checkout.session.expired"] = "checkout.session.expired"
    session_id: str = Field(min_length=1)


class InvoicePaymentFailed(_ProviderEvent):
    type: Literal["invoice.payment_failed"] = "invoice.payment_failed"
    invoice_id: Optional[str] = None


class ChargeRefundUpdated(_ProviderEvent):
    type: Literal["charge.refund.updated"] = "charge.refund.updated"
    refund_id: str = Field(min_length=1)
    charge_id: Optional[str] = None
    status: str
    amount_minor: int = 0
    currency: Optional[str] = None
    failure_reason: Optional[str] = None


class ChargeRefunded(_ProviderEvent):
    type: Literal["charge.refunded"] = "charge.refunded"
    charge_id: Optional[str] = None
    amount_refunded_minor: int = 0


class UnrecognizedEvent(_ProviderEvent):
    type: str


ProviderEvent = Union[
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    InvoicePaymentFailed,
    ChargeRefundUpdated,
    ChargeRefunded,
    UnrecognizedEvent,
]


def _ref(value: Any) -> Optional[str]:
    """Stripe expandable field: either an id string or an object with ``id``."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _checkout_completed(event_id: str, obj: dict[str, Any]) -> CheckoutSessionCompleted:
    return CheckoutSessionCompleted(
        event_id=event_id,
        session_id=obj.get("id") or "",
        payment_intent_id=_ref(obj.get("payment_intent")),
        payment_status=obj.get("payment_status"),
        metadata=dict(obj.get("metadata") or {}),
    )


def _checkout_expired(event_id: str, obj: dict[str, Any]) -> CheckoutSessionExpired:
    return CheckoutSessionExpired(event_id=event_id, session_id=obj.get("id") or "")


def _invoice_failed(event_id: str, obj: dict[str, Any]) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(event_id=event_id, invoice_id=obj.get("id"))


def _refund_updated(event_id: str, obj: dict[str, Any]) -> ChargeRefundUpdated:
    return ChargeRefundUpdated(
        event_id=event_id,
        refund_id=obj.get("id") or "",
        charge_id=_ref(obj.get("charge")),
        status=str(obj.get("status") or ""),
        amount_minor=int(obj.get("amount") or 0),
        currency=obj.get("currency"),
        failure_reason=obj.get("failure_reason"),
    )


def _charge_refunded(event_id: str, obj: dict[str, Any]) -> ChargeRefunded:
    return ChargeRefunded(
        event_id=event_id,
        charge_id=obj.get("id"),
        amount_refunded_minor=int(obj.get("amount_refunded") or 0),
    )


_BUILDERS = {
    "checkout.session.completed": _checkout_completed,
    "checkout.session.expired": _checkout_expired,
    "invoice.payment_failed": _invoice_failed,
    "charge.refund.updated": _refund_updated,
    "charge.refunded": _charge_refunded,
}


def parse_provider_event(event: dict[str, Any]) -> ProviderEvent:
    """Map a verified Stripe event dict onto the tagged union.

    Raises ``pydantic.ValidationError`` when a handled event type is missing
    the fields its handler relies on.
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    builder = _BUILDERS.get(event_type)
    if builder is None:
        return UnrecognizedEvent(event_id=event_id, type=event_type or "unknown")
    return builder(event_id, obj)
