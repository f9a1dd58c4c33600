"""Notification adapters (application Notifier port implementations)."""
from .celery_notifier import CeleryNotifier

__all__ = ["CeleryNotifier"]
