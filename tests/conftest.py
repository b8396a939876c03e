import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    yield str(db_path)
    db._pool.close_all()


class FakeClock:
    """Deterministic UTC clock; every call returns the current instant."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticTextGenerator:
    def __init__(self, text):
        self.text = text
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        return self.text


class FailingTextGenerator:
    def __init__(self):
        self.calls = 0

    def complete(self, prompt):
        self.calls += 1
        raise RuntimeError("text generation unavailable")


class SlowTextGenerator:
    def __init__(self, delay):
        self.delay = delay

    def complete(self, prompt):
        time.sleep(self.delay)
        return "1. Too late to matter"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    from db import MemoryProgressStore

    return MemoryProgressStore()


@pytest.fixture
def memory_events():
    from db import MemoryEventLog

    return MemoryEventLog()
