"""
Celery task entry point.

- debug_ping: ping/pong task for checking that a worker is up.
- Conversation maintenance lives in support_core.tasks.conversations.
"""

from __future__ import annotations

from celery import shared_task

from support_core.logging_config import logger


@shared_task(name="tasks.debug_ping")
def debug_ping() -> str:
    """
    Minimal Celery smoke-test task.

    Usage:
        celery -A support_core.celery_app.celery_app call tasks.debug_ping
    """

    logger.info("Celery debug_ping task executed")
    return "pong"


__all__ = ["debug_ping"]
