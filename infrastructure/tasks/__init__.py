"""Celery wiring for payment emails and the pending-payment sweep."""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
