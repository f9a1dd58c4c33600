"""
Celery-backed notifier: turns committed payment domain events into email tasks.

Best effort only. Dispatch errors are logged and dropped because the ledger
has already been committed when an event is published.
"""
from __future__ import annotations

from typing import Optional

from application.ports.notifier import Notifier
from core.logging_config import get_logger
from domain.payment.events import PaymentEvent, PaymentFailed, PaymentSucceeded, RefundRequested
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)


class CeleryNotifier(Notifier):
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None) -> None:
        self._dispatcher = dispatcher or TaskDispatcher()

    def publish(self, event: PaymentEvent) -> None:
        try:
            self._dispatch(event)
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                event_type=type(event).__name__,
                event_id=event.event_id,
                user_id=event.user_id,
                error=str(exc),
            )
            return
        logger.info("notification_dispatched", event_type=type(event).__name__, event_id=event.event_id)

    def _dispatch(self, event: PaymentEvent) -> None:
        base = {"user_id": event.user_id, "email": event.email, "first_name": event.first_name}
        if isinstance(event, PaymentSucceeded):
            self._dispatcher.send_payment_success_email(
                **base,
                payment_id=event.payment_id,
                plan_type=event.plan_type,
                matches=event.matches,
                amount=str(event.amount),
                currency=event.currency,
                total_matches_remaining=event.total_matches_remaining,
            )
        elif isinstance(event, PaymentFailed):
            self._dispatcher.send_payment_failed_email(
                **base,
                payment_id=event.payment_id,
                plan_type=event.plan_type,
                reason=event.reason,
            )
        elif isinstance(event, RefundRequested):
            self._dispatcher.send_refund_confirmation_email(
                **base,
                refunded_amount=str(event.refunded_amount),
                currency=event.currency,
                matches_refunded=event.matches_refunded,
                cooldown_until=event.cooldown_until.isoformat() if event.cooldown_until else None,
                reference=f"REF-{int(event.occurred_at.timestamp())}-{event.user_id}",
            )
        else:
            logger.debug("notification_event_ignored", event_type=type(event).__name__)
