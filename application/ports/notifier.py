"""
Notifier port: best-effort consumer of payment domain events.

Implementations must never raise; ledger state is already committed when
``publish`` is called.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.payment.events import PaymentEvent


@runtime_checkable
class Notifier(Protocol):
    def publish(self, event: PaymentEvent) -> None: ...
