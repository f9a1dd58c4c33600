"""Email related Celery tasks

Payloads are JSON primitives: amounts travel as strings, timestamps as ISO-8601.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)

_EMAIL_RETRY = dict(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)


def _format_amount(amount: str, currency: str) -> str:
    value = Decimal(amount).quantize(Decimal("0.01"))
    symbol = {"eur": "€", "usd": "$", "gbp": "£"}.get(currency.lower())
    return f"{value} {symbol}" if symbol else f"{value} {currency.upper()}"


def _deliver(template: str, *, to: str, subject: str, **context) -> dict:
    """Hand the rendered message to the mail provider.

    Replace the body with real email integration (SMTP/ESP).
    """
    logger.info("email_dispatched", template=template, to=to, subject=subject, **context)
    return {"template": template, "to": to, "subject": subject}


@shared_task(name="infrastructure.tasks.tasks.email.send_payment_success_email", **_EMAIL_RETRY)
def send_payment_success_email(
    self,
    user_id: int,
    email: str,
    first_name: Optional[str],
    payment_id: int,
    plan_type: str,
    matches: int,
    amount: str,
    currency: str,
    total_matches_remaining: int,
) -> dict:
    """Purchase confirmation with the credits now available."""
    return _deliver(
        "payment_success",
        to=email,
        subject=f"Paiement confirmé : {matches} matchs ajoutés",
        user_id=user_id,
        first_name=first_name,
        payment_id=payment_id,
        plan_type=plan_type,
        amount=_format_amount(amount, currency),
        total_matches_remaining=total_matches_remaining,
        transaction_ref=f"PAY-{payment_id}",
    )


@shared_task(name="infrastructure.tasks.tasks.email.send_payment_failed_email", **_EMAIL_RETRY)
def send_payment_failed_email(
    self,
    user_id: int,
    email: str,
    first_name: Optional[str],
    payment_id: int,
    plan_type: str,
    reason: Optional[str] = None,
) -> dict:
    return _deliver(
        "payment_failed",
        to=email,
        subject="Votre paiement n'a pas abouti",
        user_id=user_id,
        first_name=first_name,
        payment_id=payment_id,
        plan_type=plan_type,
        reason=reason or "unknown",
    )


@shared_task(name="infrastructure.tasks.tasks.email.send_refund_confirmation_email", **_EMAIL_RETRY)
def send_refund_confirmation_email(
    self,
    user_id: int,
    email: str,
    first_name: Optional[str],
    refunded_amount: str,
    currency: str,
    matches_refunded: int,
    cooldown_until: Optional[str] = None,
    reference: Optional[str] = None,
) -> dict:
    """Refund receipt; mentions the date from which a new pack can be bought."""
    return _deliver(
        "refund_confirmation",
        to=email,
        subject=f"Remboursement de {_format_amount(refunded_amount, currency)} enregistré",
        user_id=user_id,
        first_name=first_name,
        matches_refunded=matches_refunded,
        cooldown_until=cooldown_until,
        reference=reference,
    )
