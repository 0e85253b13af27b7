"""
Celery application instance.

Holds the Celery configuration shared by the worker and beat processes. The
broker and result backend come from CELERY_BROKER_URL / CELERY_RESULT_BACKEND
and default to a local Redis.

Usage::

    # start a worker
    celery -A support_core.celery_app.celery_app worker -l info

    # start beat (the inactivity sweep needs it)
    celery -A support_core.celery_app.celery_app beat -l info
"""

from __future__ import annotations

from celery import Celery
from celery.signals import beat_init, worker_process_init

from support_core.logging_config import setup_logging
from support_core.settings import settings

celery_app = Celery(
    "supportcore",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_default_queue=settings.celery_task_default_queue,
    timezone=settings.celery_timezone,
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Import the task submodules explicitly so the worker sees more than tasks/__init__.py.
    imports=(
        "support_core.tasks",
        "support_core.tasks.conversations",
    ),
)

# Discovery is lazy; importing celery_app alone (tests) must still register the tasks.
celery_app.autodiscover_tasks(["support_core"], force=True)
celery_app.loader.import_default_modules()


@worker_process_init.connect
def init_worker_logging(**kwargs):
    """Configure application logging when a worker process starts."""
    setup_logging()


@beat_init.connect
def init_beat_logging(**kwargs):
    """Configure application logging when beat starts."""
    setup_logging()


__all__ = ["celery_app"]
