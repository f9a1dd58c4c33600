from datetime import datetime, timezone
from decimal import Decimal

from domain.payment.events import PaymentFailed, PaymentSucceeded, RefundRequested
from infrastructure.notifications.celery_notifier import CeleryNotifier
from infrastructure.tasks.tasks import email as email_tasks


class FakeDispatcher:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def _record(self, name, payload):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.sent.append((name, payload))

    def send_payment_success_email(self, **payload):
        self._record("payment_success", payload)

    def send_payment_failed_email(self, **payload):
        self._record("payment_failed", payload)

    def send_refund_confirmation_email(self, **payload):
        self._record("refund_confirmation", payload)


def test_payment_succeeded_becomes_success_email():
    dispatcher = FakeDispatcher()
    CeleryNotifier(dispatcher).publish(
        PaymentSucceeded(
            user_id=7,
            email="alex@example.com",
            first_name="Alex",
            payment_id=12,
            plan_type="PACK_STANDARD",
            matches=5,
            amount=Decimal("25.00"),
            total_matches_remaining=8,
        )
    )
    name, payload = dispatcher.sent[0]
    assert name == "payment_success"
    assert payload["amount"] == "25.00"
    assert payload["total_matches_remaining"] == 8
    assert payload["first_name"] == "Alex"


def test_refund_requested_payload_is_json_friendly():
    dispatcher = FakeDispatcher()
    occurred = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    CeleryNotifier(dispatcher).publish(
        RefundRequested(
            user_id=7,
            email="alex@example.com",
            refunded_amount=Decimal("15.00"),
            matches_refunded=3,
            cooldown_until=datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc),
            occurred_at=occurred,
        )
    )
    name, payload = dispatcher.sent[0]
    assert name == "refund_confirmation"
    assert payload["refunded_amount"] == "15.00"
    assert payload["cooldown_until"] == "2025-03-15T12:00:00+00:00"
    assert payload["reference"] == f"REF-{int(occurred.timestamp())}-7"


def test_dispatch_failure_is_swallowed():
    dispatcher = FakeDispatcher(fail=True)
    CeleryNotifier(dispatcher).publish(
        PaymentFailed(user_id=7, email="alex@example.com", payment_id=3, plan_type="PACK_PRO", reason="Session expired")
    )
    assert dispatcher.sent == []


def test_format_amount():
    assert email_tasks._format_amount("25", "eur") == "25.00 €"
    assert email_tasks._format_amount("12.5", "CHF") == "12.50 CHF"


def test_refund_email_task_runs_locally():
    result = email_tasks.send_refund_confirmation_email.apply(
        kwargs={
            "user_id": 7,
            "email": "alex@example.com",
            "first_name": "Alex",
            "refunded_amount": "15.00",
            "currency": "eur",
            "matches_refunded": 3,
            "cooldown_until": "2025-03-15T12:00:00+00:00",
            "reference": "REF-1-7",
        }
    )
    assert result.successful()
    assert result.get() == {
        "template": "refund_confirmation",
        "to": "alex@example.com",
        "subject": "Remboursement de 15.00 € enregistré",
    }


def test_success_email_task_runs_locally():
    result = email_tasks.send_payment_success_email.apply(
        kwargs={
            "user_id": 7,
            "email": "alex@example.com",
            "first_name": None,
            "payment_id": 12,
            "plan_type": "PACK_DISCOVERY",
            "matches": 2,
            "amount": "12.00",
            "currency": "eur",
            "total_matches_remaining": 2,
        }
    )
    assert result.get()["subject"] == "Paiement confirmé : 2 matchs ajoutés"
