"""
Celery tasks for payment compensation workflows: pending payment reconciliation.
"""
from __future__ import annotations

import asyncio

from celery import shared_task

from application.services.reconciliation_service import PendingPaymentReconciler
from application.services.webhook_service import WebhookService
from core.logging_config import get_logger
from infrastructure.database import engine
from infrastructure.external.payments import get_payment_gateway
from infrastructure.notifications import CeleryNotifier
from infrastructure.tasks.utils.base_task import BaseTask
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


async def _reconcile() -> dict[str, int]:
    gateway = get_payment_gateway()
    webhooks = WebhookService(SQLAlchemyUnitOfWork, gateway, CeleryNotifier())
    reconciler = PendingPaymentReconciler(SQLAlchemyUnitOfWork, gateway, webhooks)
    try:
        report = await reconciler.reconcile_pending()
        return report.as_dict()
    finally:
        # 连接池绑定在当前事件循环上，每次 asyncio.run 后释放
        await engine.dispose()


@shared_task(name="payments.reconcile_pending", bind=True, base=BaseTask, max_retries=3, default_retry_delay=60)
def task_reconcile_pending(self):
    try:
        result = asyncio.run(_reconcile())
        logger.info("payment_reconcile_task_done", **result)
        return result
    except Exception as exc:  # pragma: no cover
        logger.error("payment_reconcile_task_failed", error=str(exc))
        raise self.retry(exc=exc)
