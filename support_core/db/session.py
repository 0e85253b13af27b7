from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from support_core.settings import settings


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, future=True)
    # Pooled connections with pre_ping and periodic recycle for long-lived workers.
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        future=True,
    )


engine = create_db_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db_session() -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session scoped to one unit of work."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


__all__ = ["SessionLocal", "create_db_engine", "engine", "get_db_session"]
