"""Derive a learner profile from topic progress and recent sessions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from engines.base import SESSION_COMPLETED_EVENT
from schemas import LearningEvent, TopicProgress, parse_progress

logger = logging.getLogger(__name__)

WEAK_ACCURACY_THRESHOLD = 0.7
STRONG_ACCURACY_THRESHOLD = 0.8
MIN_ATTEMPTS = 5
ADVANCED_THRESHOLD = 0.75
INTERMEDIATE_THRESHOLD = 0.6
MINUTES_PER_PROBLEM = 3
DEFAULT_SESSION_MINUTES = 20
ANALYTICAL_SESSION_MINUTES = 30
PRACTICAL_SESSION_MINUTES = 15
RECENT_WINDOW = timedelta(days=30)

_DIFFICULTY_BY_LEVEL = {"beginner": 1, "intermediate": 2, "advanced": 3}


@dataclass
class LearnerProfile:
    """Derived snapshot of a learner; rebuilt on every planning run.

    ``weak_topics`` and ``strong_topics`` keep the order of the progress
    record they came from and never share a topic.
    """

    learner_id: str
    learning_style: str = "mixed"
    current_level: str = "beginner"
    weak_topics: List[str] = field(default_factory=list)
    strong_topics: List[str] = field(default_factory=list)
    session_minutes_available: int = DEFAULT_SESSION_MINUTES
    preferred_difficulty: int = 1
    goal_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "learning_style": self.learning_style,
            "current_level": self.current_level,
            "weak_topics": list(self.weak_topics),
            "strong_topics": list(self.strong_topics),
            "session_minutes_available": self.session_minutes_available,
            "preferred_difficulty": self.preferred_difficulty,
            "goal_date": self.goal_date,
        }


def difficulty_for_level(level: str) -> int:
    return _DIFFICULTY_BY_LEVEL.get(level, 1)


class ProfileBuilder:
    def __init__(self, *, window: timedelta = RECENT_WINDOW) -> None:
        self.window = window

    # ------------------------------------------------------------------
    def build(
        self,
        learner_id: str,
        progress: Optional[Mapping[str, Any]],
        events: Optional[Iterable[LearningEvent]],
        *,
        now: datetime,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> LearnerProfile:
        records = parse_progress(progress)
        weak, strong = self.classify(records)
        level = self.level_from_accuracy(records)
        session_minutes = self.average_session_minutes(events or (), now=now)

        profile = LearnerProfile(
            learner_id=learner_id,
            learning_style=self.style_from_session_length(session_minutes),
            current_level=level,
            weak_topics=weak,
            strong_topics=strong,
            session_minutes_available=max(1, _round_half_up(session_minutes)),
            preferred_difficulty=difficulty_for_level(level),
        )
        if overrides:
            profile = self._apply_overrides(profile, overrides)
        logger.debug("Built profile for %s: %s", learner_id, profile.to_dict())
        return profile

    # ------------------------------------------------------------------
    @staticmethod
    def classify(records: Mapping[str, TopicProgress]) -> tuple[List[str], List[str]]:
        weak: List[str] = []
        strong: List[str] = []
        for topic, record in records.items():
            if record.accuracy < WEAK_ACCURACY_THRESHOLD or record.attempts < MIN_ATTEMPTS:
                weak.append(topic)
            elif record.accuracy >= STRONG_ACCURACY_THRESHOLD:
                strong.append(topic)
        return weak, strong

    # ------------------------------------------------------------------
    @staticmethod
    def level_from_accuracy(records: Mapping[str, TopicProgress]) -> str:
        if not records:
            return "beginner"
        mean = sum(record.accuracy for record in records.values()) / len(records)
        if mean > ADVANCED_THRESHOLD:
            return "advanced"
        if mean > INTERMEDIATE_THRESHOLD:
            return "intermediate"
        return "beginner"

    # ------------------------------------------------------------------
    def average_session_minutes(self, events: Iterable[LearningEvent], *, now: datetime) -> float:
        cutoff = now - self.window
        lengths: List[float] = []
        for event in events:
            if event.event_type != SESSION_COMPLETED_EVENT or event.timestamp <= cutoff:
                continue
            lengths.append(_problems_attempted(event.payload) * MINUTES_PER_PROBLEM)
        if not lengths:
            return float(DEFAULT_SESSION_MINUTES)
        return sum(lengths) / len(lengths)

    # ------------------------------------------------------------------
    @staticmethod
    def style_from_session_length(minutes: float) -> str:
        if minutes > ANALYTICAL_SESSION_MINUTES:
            return "analytical"
        if minutes < PRACTICAL_SESSION_MINUTES:
            return "practical"
        return "mixed"

    # ------------------------------------------------------------------
    @staticmethod
    def _apply_overrides(profile: LearnerProfile, overrides: Mapping[str, Any]) -> LearnerProfile:
        known = {key: value for key, value in overrides.items() if hasattr(profile, key) and value is not None}
        known.pop("learner_id", None)
        for key in ("weak_topics", "strong_topics"):
            if key in known:
                known[key] = _dedupe(known[key])
        updated = replace(profile, **known)
        if set(updated.weak_topics) & set(updated.strong_topics):
            weak = set(updated.weak_topics)
            updated.strong_topics = [topic for topic in updated.strong_topics if topic not in weak]
        return updated


def _round_half_up(value: float) -> int:
    # round() would send 22.5 to 22
    return int(math.floor(value + 0.5))


def _problems_attempted(payload: Mapping[str, Any]) -> float:
    value = payload.get("problemsAttempted", payload.get("problems_attempted", 0))
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, number) if number == number else 0.0


def _dedupe(values: Iterable[Any]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in seen:
            seen.add(text)
            ordered.append(text)
    return ordered


__all__ = ["LearnerProfile", "ProfileBuilder", "difficulty_for_level"]
