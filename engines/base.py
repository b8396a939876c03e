"""Collaborator contracts consumed by the learning path engines."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from schemas import LearningEvent


SESSION_COMPLETED_EVENT = "learning_session_completed"
STEP_COMPLETED_EVENT = "learning_path_step_completed"


class StorageError(RuntimeError):
    """Raised when a storage collaborator cannot be reached.

    A missing record is not an error; stores return ``None`` for that case.
    """


class InvalidInputError(ValueError):
    """Raised for malformed learner or step identifiers."""


class ProgressStore(Protocol):
    def get_progress(self, learner_id: str) -> Optional[Dict[str, Any]]:
        ...

    def save_progress(self, learner_id: str, progress: Dict[str, Any]) -> None:
        ...

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def list(self, prefix: str = "") -> List[Tuple[str, Any]]:
        ...


class EventLog(Protocol):
    def append(
        self,
        learner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> "LearningEvent":
        ...

    def query(
        self,
        learner_id: str,
        since: Optional[datetime] = None,
    ) -> List["LearningEvent"]:
        ...


class TextGenerator(Protocol):
    def complete(self, prompt: str) -> str:
        ...


__all__ = [
    "EventLog",
    "InvalidInputError",
    "ProgressStore",
    "SESSION_COMPLETED_EVENT",
    "STEP_COMPLETED_EVENT",
    "StorageError",
    "TextGenerator",
]
