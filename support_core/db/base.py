from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class UUIDPrimaryKeyMixin:
    # Stored as text so the same schema works on Postgres and SQLite.
    id: Mapped[str] = Column(String(36), primary_key=True, default=_new_id)


class TimestampMixin:
    created_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


__all__ = ["Base", "TimestampMixin", "UUIDPrimaryKeyMixin"]
