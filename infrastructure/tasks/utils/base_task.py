"""Common base task for Celery jobs"""
from __future__ import annotations

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)

# email addresses travel in task kwargs; keep them out of the logs
_REDACTED_KWARGS = frozenset({"to_email", "email", "customer_email"})


def _loggable_kwargs(kwargs: dict | None) -> dict:
    return {k: ("***" if k in _REDACTED_KWARGS else v) for k, v in (kwargs or {}).items()}


class BaseTask(Task):
    """Structured success/retry/failure logging for payment and email tasks."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            kwargs=_loggable_kwargs(kwargs),
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name)
        super().on_success(retval, task_id, args, kwargs)
