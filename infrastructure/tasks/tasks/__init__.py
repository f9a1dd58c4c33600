"""Notification tasks; importing registers them with Celery."""
from . import email  # noqa: F401

__all__ = ["email"]
