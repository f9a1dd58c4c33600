"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any

from ..tasks import email as email_tasks


class TaskDispatcher:
    """Internal facade used by the notifier to schedule email tasks.

    ``apply_async`` honours ``task_always_eager`` (dev/test run in-process),
    which ``send_task`` does not.
    """

    def send_payment_success_email(self, **payload: Any) -> None:
        email_tasks.send_payment_success_email.apply_async(kwargs=payload)

    def send_payment_failed_email(self, **payload: Any) -> None:
        email_tasks.send_payment_failed_email.apply_async(kwargs=payload)

    def send_refund_confirmation_email(self, **payload: Any) -> None:
        email_tasks.send_refund_confirmation_email.apply_async(kwargs=payload)

