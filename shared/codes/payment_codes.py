"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import Enum, IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    WEBHOOK_PAYLOAD_MISSING = 60005


class MatchingCode(IntEnum):
    """Match-credit purchase/refund policy codes (61xxx)."""

    ACCOUNT_BANNED = 61000
    ACCOUNT_NOT_VALIDATED = 61001
    INVALID_PLAN_TYPE = 61002
    REFUND_COOLDOWN_ACTIVE = 61003
    MATCHING_IN_PROGRESS = 61004
    NOTHING_TO_REFUND = 61005
    USER_NOT_FOUND = 61006


class MatchingErrorCode(str, Enum):
    """Machine-readable codes exposed in error details; clients branch on these."""

    ACCOUNT_BANNED = "ACCOUNT_BANNED"
    ACCOUNT_NOT_VALIDATED = "ACCOUNT_NOT_VALIDATED"
    INVALID_PLAN_TYPE = "INVALID_PLAN_TYPE"
    REFUND_COOLDOWN_ACTIVE = "REFUND_COOLDOWN_ACTIVE"
    MATCHING_IN_PROGRESS = "MATCHING_IN_PROGRESS"
    NOTHING_TO_REFUND = "NOTHING_TO_REFUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"


# Stripe Checkout/Refund status -> internal status
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        # checkout.session.payment_status
        "paid": "succeeded",
        "unpaid": "pending",
        "no_payment_required": "succeeded",
        # checkout.session.status
        "complete": "succeeded",
        "open": "pending",
        "expired": "failed",
        # refund.status
        "succeeded": "succeeded",
        "pending": "pending",
        "requires_action": "pending",
        "failed": "failed",
        "canceled": "failed",
    },
}
