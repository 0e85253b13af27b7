from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ConversationRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    One support conversation of a client's end-user session.

    At most one row per (client_id, session_id) may be active; the partial
    unique index turns a concurrent double-create into an IntegrityError.
    """

    __tablename__ = "support_conversations"
    __table_args__ = (
        Index(
            "uq_support_conversations_active_session",
            "client_id",
            "session_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_support_conversations_status_activity", "status", "last_activity_at"),
    )

    client_id: Mapped[str] = Column(String(64), nullable=False, index=True)
    session_id: Mapped[str] = Column(String(128), nullable=False)
    status: Mapped[str] = Column(
        String(16), nullable=False, default="active", server_default=text("'active'")
    )
    started_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = Column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    message_count: Mapped[int] = Column(Integer, nullable=False, default=0, server_default=text("0"))
    tokens_total: Mapped[int] = Column(Integer, nullable=False, default=0, server_default=text("0"))


class MessageRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Append-only conversation message; `seq` orders messages within a conversation."""

    __tablename__ = "support_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "seq", name="uq_support_messages_conversation_seq"),
    )

    conversation_id: Mapped[str] = Column(
        String(36),
        ForeignKey("support_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = Column(Integer, nullable=False)
    role: Mapped[str] = Column(String(16), nullable=False)
    content: Mapped[str] = Column(Text, nullable=False)
    tokens: Mapped[int | None] = Column(Integer, nullable=True)
    # `metadata` is reserved on declarative classes.
    meta: Mapped[dict | None] = Column("metadata", JSON, nullable=True)


__all__ = ["ConversationRecord", "MessageRecord"]
