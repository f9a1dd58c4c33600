"""Convenience entry point for running the Celery worker.

Most deployments will invoke the standard Celery CLI, but keeping a small
script makes local testing or Procfile-style runners straightforward. The
embedded beat scheduler (``-B``) drives the pending-payment reconciliation.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def main(argv: list[str] | None = None) -> None:
    args = argv if argv is not None else sys.argv[1:]
    celery_app.worker_main(
        argv=["worker", "--loglevel=INFO", "--hostname=worker@%h", "-Q", "payments,notifications", *args]
    )


if __name__ == "__main__":
    main()
