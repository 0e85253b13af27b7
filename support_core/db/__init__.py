from .base import Base
from .models import ConversationRecord, MessageRecord
from .session import SessionLocal, engine, get_db_session
from .stores import SqlConversationStore, SqlMessageStore

__all__ = [
    "Base",
    "ConversationRecord",
    "MessageRecord",
    "SessionLocal",
    "SqlConversationStore",
    "SqlMessageStore",
    "engine",
    "get_db_session",
]
