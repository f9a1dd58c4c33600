"""
Pending payment reconciliation

Sweeps payments left PENDING past a grace period (lost webhook, closed tab)
and settles them from the provider's view of the checkout session. Success
and failure are applied through the webhook service so the ledger rules stay
in one place.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from application.ports.payment_gateway import PaymentGateway
from application.services.webhook_service import WebhookOutcome, WebhookService
from core.config import settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileReport:
    scanned: int = 0
    succeeded: int = 0
    failed: int = 0
    unchanged: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "unchanged": self.unchanged,
            "errors": self.errors,
        }


class PendingPaymentReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        webhooks: WebhookService,
        *,
        clock: Callable[[], datetime] = _utcnow,
        grace: timedelta | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._webhooks = webhooks
        self._clock = clock
        self._grace = grace or timedelta(minutes=settings.matching.reconcile_after_minutes)
        self._batch_size = batch_size or settings.matching.reconcile_batch_size

    async def reconcile_pending(self) -> ReconcileReport:
        report = ReconcileReport()
        cutoff = self._clock() - self._grace
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_repository.list_stale_pending(cutoff, limit=self._batch_size)

        for payment in stale:
            report.scanned += 1
            if not payment.has_provider_session:
                # 渠道会话从未创建成功，交由人工处理
                report.unchanged += 1
                logger.warning("reconcile_payment_without_session", payment_id=payment.id)
                continue
            session_id = payment.stripe_checkout_session_id
            try:
                details = await self._gateway.retrieve_checkout_session(session_id)
                if details is None:
                    report.unchanged += 1
                    continue
                if details.payment_status == "paid":
                    outcome = await self._webhooks.apply_payment_success(
                        session_id=session_id,
                        payment_intent_id=details.payment_intent_id,
                        charge_id=details.charge_id,
                        event_id=f"reconcile:{session_id}",
                    )
                    if outcome == WebhookOutcome.PROCESSED:
                        report.succeeded += 1
                    else:
                        report.unchanged += 1
                elif details.status == "expired":
                    outcome = await self._webhooks.apply_payment_failure(
                        session_id=session_id,
                        event_id=f"reconcile-expired:{session_id}",
                        reason="Session expired",
                    )
                    if outcome == WebhookOutcome.PROCESSED:
                        report.failed += 1
                    else:
                        report.unchanged += 1
                else:
                    report.unchanged += 1
            except Exception as exc:
                report.errors += 1
                logger.error("reconcile_payment_failed", payment_id=payment.id, error=str(exc), exc_info=True)

        logger.info("reconcile_pending_done", **report.as_dict())
        return report
