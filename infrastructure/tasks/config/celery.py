"""Celery application configuration

Two queues: ``payments`` carries the reconciliation sweep, ``notifications``
carries best-effort emails so a mail backlog never delays crediting.
"""
from __future__ import annotations

import os
from core.logging_config import get_logger
from celery import Celery
from kombu import Queue

from core.config import settings
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
    "infrastructure.tasks.payment_tasks",
)

PAYMENTS_QUEUE = "payments"
NOTIFICATIONS_QUEUE = "notifications"


celery_app = Celery("homeswap_credits")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    # payloads carry only ids, strings and ISO timestamps
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue=NOTIFICATIONS_QUEUE,
    task_queues=(
        Queue(PAYMENTS_QUEUE),
        Queue(NOTIFICATIONS_QUEUE),
    ),
    task_routes={
        "payments.*": {"queue": PAYMENTS_QUEUE},
        "infrastructure.tasks.tasks.email.*": {"queue": NOTIFICATIONS_QUEUE},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

environment = getattr(settings, "ENVIRONMENT", "production") or "production"
if environment.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        queues=[q.name for q in sender.conf.task_queues],
        eager=bool(sender.conf.task_always_eager),
    )
