"""
Payment domain events.

Dataclass events record ledger facts after commit so a best-effort notifier
can react (emails). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    user_id: int
    email: str
    first_name: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(PaymentEvent):
    payment_id: int = 0
    plan_type: str = ""
    matches: int = 0
    amount: Decimal = Decimal("0")
    currency: str = "eur"
    total_matches_remaining: int = 0


@dataclass
class PaymentFailed(PaymentEvent):
    payment_id: int = 0
    plan_type: str = ""
    reason: Optional[str] = None


@dataclass
class RefundRequested(PaymentEvent):
    refunded_amount: Decimal = Decimal("0")
    matches_refunded: int = 0
    currency: str = "eur"
    cooldown_until: Optional[datetime] = None
