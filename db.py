import json
import logging
import os
import sqlite3
import threading
from uuid import uuid4
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool
from engines.base import StorageError
from schemas import LearningEvent, TopicProgress, TopicResult, parse_progress, utcnow

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

PROGRESS_KEY_PREFIX = "progress:"

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur
    except sqlite3.Error as exc:
        raise StorageError(f"Database write failed: {exc}") from exc


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            return cur.fetchall()
    except sqlite3.Error as exc:
        raise StorageError(f"Database read failed: {exc}") from exc


def init():
    if DB_PATH != ":memory:":
        Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    try:
        with _conn() as con:
            con.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                  key         TEXT PRIMARY KEY,
                  value_json  TEXT NOT NULL,
                  updated_at  TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS learning_events (
                  id          INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id     TEXT NOT NULL,
                  event_type  TEXT NOT NULL,
                  payload     TEXT,
                  created_at  TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_learning_events_user_time
                  ON learning_events(user_id, created_at);
                """
            )
            con.commit()
    except sqlite3.Error as exc:
        raise StorageError(f"Database initialisation failed: {exc}") from exc


# -------------- helpers --------------
def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable JSON field (%d chars)", len(value))
        return None


def format_timestamp(moment: datetime) -> str:
    """Fixed-width UTC text so lexical order equals chronological order."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value or "").strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            moment = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _progress_key(learner_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{learner_id}"


# -------------- key-value store --------------
def kv_get(key: str) -> Any:
    rows = _query("SELECT value_json FROM kv_store WHERE key = ?", (key,))
    if not rows:
        return None
    return _decode_json_field(rows[0]["value_json"])


def kv_set(key: str, value: Any) -> None:
    _exec(
        """
        INSERT INTO kv_store(key, value_json, updated_at)
        VALUES (?,?,?)
        ON CONFLICT(key) DO UPDATE SET
          value_json=excluded.value_json,
          updated_at=excluded.updated_at
        """,
        (key, json_dumps(value), format_timestamp(utcnow())),
    )


def kv_list(prefix: str = "") -> List[Tuple[str, Any]]:
    rows = _query(
        "SELECT key, value_json FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
        (len(prefix), prefix),
    )
    return [(row["key"], _decode_json_field(row["value_json"])) for row in rows]


# -------------- event log --------------
def log_learning_event(
    user_id: str,
    event_type: str,
    payload: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> LearningEvent:
    moment = timestamp or utcnow()
    stored_payload = dict(payload or {})
    cur = _exec(
        """
        INSERT INTO learning_events(user_id, event_type, payload, created_at)
        VALUES (?,?,?,?)
        """,
        (user_id, event_type, json_dumps(stored_payload), format_timestamp(moment)),
    )
    return LearningEvent(
        id=str(cur.lastrowid),
        learner_id=user_id,
        event_type=event_type,
        payload=stored_payload,
        timestamp=parse_timestamp(moment),
    )


def list_learning_events(
    user_id: str,
    since: Optional[datetime] = None,
) -> List[LearningEvent]:
    clauses = ["user_id = ?"]
    params: list[Any] = [user_id]
    if since is not None:
        clauses.append("created_at > ?")
        params.append(format_timestamp(since))
    where = " AND ".join(clauses)
    rows = _query(
        f"SELECT id, user_id, event_type, payload, created_at FROM learning_events "
        f"WHERE {where} ORDER BY created_at ASC, id ASC",
        params,
    )
    events: List[LearningEvent] = []
    for row in rows:
        payload = _decode_json_field(row["payload"])
        events.append(
            LearningEvent(
                id=str(row["id"]),
                learner_id=row["user_id"],
                event_type=row["event_type"],
                payload=payload if isinstance(payload, dict) else {},
                timestamp=parse_timestamp(row["created_at"]),
            )
        )
    return events


# -------------- collaborator implementations --------------
class SQLiteProgressStore:
    """Progress snapshots and generic key-value records in ``kv_store``."""

    def get_progress(self, learner_id: str) -> Optional[Dict[str, Any]]:
        value = kv_get(_progress_key(learner_id))
        return value if isinstance(value, dict) else None

    def save_progress(self, learner_id: str, progress: Dict[str, Any]) -> None:
        kv_set(_progress_key(learner_id), progress)

    def get(self, key: str) -> Any:
        return kv_get(key)

    def set(self, key: str, value: Any) -> None:
        kv_set(key, value)

    def list(self, prefix: str = "") -> List[Tuple[str, Any]]:
        return kv_list(prefix)


class SQLiteEventLog:
    def append(
        self,
        learner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> LearningEvent:
        return log_learning_event(learner_id, event_type, payload, timestamp)

    def query(self, learner_id: str, since: Optional[datetime] = None) -> List[LearningEvent]:
        return list_learning_events(learner_id, since)


class MemoryProgressStore:
    """In-process store used for local development and tests.

    Values are held as JSON text so callers never share mutable state with
    the store, mirroring the SQLite implementation.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_progress(self, learner_id: str) -> Optional[Dict[str, Any]]:
        value = self.get(_progress_key(learner_id))
        return value if isinstance(value, dict) else None

    def save_progress(self, learner_id: str, progress: Dict[str, Any]) -> None:
        self.set(_progress_key(learner_id), progress)

    def get(self, key: str) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        encoded = json_dumps(value)
        with self._lock:
            self._data[key] = encoded

    def list(self, prefix: str = "") -> List[Tuple[str, Any]]:
        with self._lock:
            items = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        return [(key, json.loads(raw)) for key, raw in items]


class MemoryEventLog:
    def __init__(self) -> None:
        self._events: List[LearningEvent] = []
        self._lock = threading.Lock()

    def append(
        self,
        learner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> LearningEvent:
        event = LearningEvent(
            id=uuid4().hex,
            learner_id=learner_id,
            event_type=event_type,
            payload=json.loads(json_dumps(dict(payload or {}))),
            timestamp=parse_timestamp(timestamp or utcnow()),
        )
        with self._lock:
            self._events.append(event)
        return event

    def query(self, learner_id: str, since: Optional[datetime] = None) -> List[LearningEvent]:
        with self._lock:
            matches = [
                event.model_copy(deep=True)
                for event in self._events
                if event.learner_id == learner_id
                and (since is None or event.timestamp > since)
            ]
        return sorted(matches, key=lambda event: event.timestamp)


# -------------- progress updates --------------
def record_topic_results(
    store: Any,
    learner_id: str,
    topic: str,
    results: Sequence[TopicResult],
) -> TopicProgress:
    """Fold a batch of problem results into the learner's topic progress.

    Correct answers add their problem id to ``completed_ids`` once; accuracy
    is replaced by the share of correct answers in this batch.
    """

    raw = store.get_progress(learner_id) or {}
    progress = parse_progress(raw)
    current = progress.get(topic) or TopicProgress()

    completed = list(current.completed_ids)
    for result in results:
        if result.correct and result.problem_id not in completed:
            completed.append(result.problem_id)
    correct = sum(1 for result in results if result.correct)
    accuracy = correct / len(results) if results else current.accuracy

    updated = TopicProgress(completed_ids=completed, accuracy=accuracy)
    progress[topic] = updated
    store.save_progress(
        learner_id,
        {name: record.model_dump() for name, record in progress.items()},
    )
    return updated


__all__ = [
    "DB_PATH",
    "MemoryEventLog",
    "MemoryProgressStore",
    "SQLiteEventLog",
    "SQLiteProgressStore",
    "format_timestamp",
    "init",
    "kv_get",
    "kv_list",
    "kv_set",
    "list_learning_events",
    "log_learning_event",
    "parse_timestamp",
    "record_topic_results",
]
