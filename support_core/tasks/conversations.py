"""
Celery task: end conversations that have gone quiet.

Scans active conversations whose last_activity_at is older than the threshold,
ends each one and clears its context cache. A failure on one conversation is
logged and does not stop the rest.
"""

from __future__ import annotations

import asyncio

from celery import shared_task
from sqlalchemy.orm import Session

from support_core.celery_app import celery_app
from support_core.context_cache import ContextCache
from support_core.db import SessionLocal, SqlConversationStore, SqlMessageStore
from support_core.lifecycle import ConversationManager
from support_core.logging_config import logger
from support_core.redis_client import get_redis_client
from support_core.schemas import SweepResult
from support_core.settings import settings


async def _run_sweep(session: Session, *, inactivity_minutes: int | None = None) -> SweepResult:
    manager = ConversationManager(
        SqlConversationStore(session),
        SqlMessageStore(session),
        ContextCache(get_redis_client()),
    )
    return await manager.auto_end_inactive(inactivity_minutes)


@shared_task(name="tasks.conversations.auto_end_inactive")
def auto_end_inactive_conversations(inactivity_minutes: int | None = None) -> dict:
    """End conversations past the inactivity threshold; returns the count and any failures."""

    session = SessionLocal()
    try:
        result = asyncio.run(_run_sweep(session, inactivity_minutes=inactivity_minutes))
    finally:
        session.close()

    if result.failures:
        logger.warning(
            "Auto-end sweep finished with %d failure(s): %s",
            len(result.failures),
            [f.conversation_id for f in result.failures],
        )
    return {
        "ended": result.ended,
        "conversation_ids": [c.id for c in result.conversations],
        "failures": [f.model_dump() for f in result.failures],
    }


celery_app.conf.beat_schedule = getattr(celery_app.conf, "beat_schedule", {}) or {}
celery_app.conf.beat_schedule.update(
    {
        "conversation-auto-end-inactive": {
            "task": "tasks.conversations.auto_end_inactive",
            "schedule": settings.auto_end_check_interval_seconds,
        },
    }
)


__all__ = ["auto_end_inactive_conversations"]
