"""Periodic jobs for the payments worker (run the worker with ``-B`` or a beat process)."""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # Webhooks are acknowledged with 200 even when processing fails, so paid
    # sessions that never got credited are picked up here.
    "reconcile-pending-payments": {
        "task": "payments.reconcile_pending",
        "schedule": settings.matching.reconcile_interval_seconds,
        "options": {"expires": settings.matching.reconcile_interval_seconds},
    },
}
