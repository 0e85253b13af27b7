"""
SQLAlchemy-backed conversation and message stores.

The stores are async at the interface so they fit next to the Redis-backed
pieces; the work itself runs on a regular synchronous Session.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from support_core.errors import TransientIOError
from support_core.logging_config import logger
from support_core.schemas import Conversation, ConversationStatus, Message, MessageRole

from .models import ConversationRecord, MessageRecord


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_message(row: MessageRecord) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=MessageRole(row.role),
        content=row.content,
        tokens=row.tokens,
        metadata=row.meta,
        created_at=row.created_at,
    )


class SqlConversationStore:
    def __init__(self, db: Session, *, now_fn: Callable[[], datetime] | None = None) -> None:
        self._db = db
        self._now = now_fn or _utcnow

    def _commit(self, action: str) -> None:
        try:
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to %s: %s", action, exc)
            raise TransientIOError(f"failed to {action}") from exc

    async def get(self, conversation_id: str) -> Conversation | None:
        row = self._db.get(ConversationRecord, conversation_id)
        return Conversation.model_validate(row) if row is not None else None

    async def find_active_by_session(self, client_id: str, session_id: str) -> Conversation | None:
        stmt = (
            select(ConversationRecord)
            .where(
                ConversationRecord.client_id == client_id,
                ConversationRecord.session_id == session_id,
                ConversationRecord.status == ConversationStatus.ACTIVE.value,
            )
            .order_by(ConversationRecord.started_at.desc())
            .limit(1)
        )
        row = self._db.execute(stmt).scalars().first()
        return Conversation.model_validate(row) if row is not None else None

    async def create(self, client_id: str, session_id: str) -> Conversation:
        now = self._now()
        row = ConversationRecord(
            client_id=client_id,
            session_id=session_id,
            status=ConversationStatus.ACTIVE.value,
            started_at=now,
            last_activity_at=now,
        )
        self._db.add(row)
        try:
            self._commit("create conversation")
        except IntegrityError:
            # Another worker created the active conversation first.
            existing = await self.find_active_by_session(client_id, session_id)
            if existing is None:
                raise
            logger.info(
                "reusing concurrently created conversation %s for session %s",
                existing.id,
                session_id,
            )
            return existing
        self._db.refresh(row)
        return Conversation.model_validate(row)

    async def end(self, conversation_id: str, ended_at: datetime) -> Conversation | None:
        stmt = (
            update(ConversationRecord)
            .where(
                ConversationRecord.id == conversation_id,
                ConversationRecord.status == ConversationStatus.ACTIVE.value,
            )
            .values(status=ConversationStatus.ENDED.value, ended_at=ended_at)
        )
        self._db.execute(stmt)
        self._commit("end conversation")
        return await self.get(conversation_id)

    async def find_inactive_since(self, cutoff: datetime) -> list[Conversation]:
        stmt = (
            select(ConversationRecord)
            .where(
                ConversationRecord.status == ConversationStatus.ACTIVE.value,
                ConversationRecord.last_activity_at < cutoff,
            )
            .order_by(ConversationRecord.last_activity_at.asc())
        )
        return [Conversation.model_validate(row) for row in self._db.execute(stmt).scalars().all()]

    async def touch(self, conversation_id: str, at: datetime) -> None:
        self._db.execute(
            update(ConversationRecord)
            .where(ConversationRecord.id == conversation_id)
            .values(last_activity_at=at)
        )
        self._commit("touch conversation")


class SqlMessageStore:
    def __init__(self, db: Session, *, now_fn: Callable[[], datetime] | None = None) -> None:
        self._db = db
        self._now = now_fn or _utcnow

    async def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        role = MessageRole(role)
        now = self._now()
        try:
            last_seq = self._db.execute(
                select(func.max(MessageRecord.seq)).where(
                    MessageRecord.conversation_id == conversation_id
                )
            ).scalar_one()
            row = MessageRecord(
                conversation_id=conversation_id,
                seq=int(last_seq or 0) + 1,
                role=role.value,
                content=content,
                tokens=tokens,
                meta=metadata,
                created_at=now,
            )
            self._db.add(row)
            if role is not MessageRole.DEBUG:
                self._db.execute(
                    update(ConversationRecord)
                    .where(ConversationRecord.id == conversation_id)
                    .values(
                        message_count=ConversationRecord.message_count + 1,
                        tokens_total=ConversationRecord.tokens_total + int(tokens or 0),
                        last_activity_at=now,
                    )
                )
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to store %s message for %s: %s", role.value, conversation_id, exc)
            raise TransientIOError(
                "failed to store message", details={"conversation_id": conversation_id}
            ) from exc
        self._db.refresh(row)
        return _to_message(row)

    async def list_for_conversation(
        self, conversation_id: str, *, include_debug: bool = False
    ) -> list[Message]:
        stmt = select(MessageRecord).where(MessageRecord.conversation_id == conversation_id)
        if not include_debug:
            stmt = stmt.where(MessageRecord.role != MessageRole.DEBUG.value)
        stmt = stmt.order_by(MessageRecord.seq.asc())
        return [_to_message(row) for row in self._db.execute(stmt).scalars().all()]

    async def count(self, conversation_id: str, *, include_debug: bool = False) -> int:
        stmt = select(func.count(MessageRecord.id)).where(
            MessageRecord.conversation_id == conversation_id
        )
        if not include_debug:
            stmt = stmt.where(MessageRecord.role != MessageRole.DEBUG.value)
        return int(self._db.execute(stmt).scalar_one() or 0)


__all__ = ["SqlConversationStore", "SqlMessageStore"]
