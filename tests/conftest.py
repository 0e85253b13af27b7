"""
Shared pytest configuration.

Puts the project root on sys.path so `import support_core` works in every
test, and points the database/Redis settings at local throwaway values
before any support_core module is imported.
"""

import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOG_DIR", str(ROOT_DIR / ".pytest_logs"))


@pytest.fixture()
def db_session():
    from tests.utils import make_session_factory

    SessionLocal = make_session_factory()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def redis():
    from tests.utils import InMemoryRedis, ManualClock

    clock = ManualClock()
    client = InMemoryRedis(clock)
    client.clock = clock
    return client
