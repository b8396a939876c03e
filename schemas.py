"""Pydantic schemas for learning paths, progress records and API payloads."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

__all__ = [
    "LearningStyle",
    "SkillLevel",
    "StepKind",
    "TopicProgress",
    "PreferenceOverrides",
    "LearningPathStep",
    "LearningPath",
    "LearningEvent",
    "TopicResult",
    "TopicResultsRequest",
    "SessionCompletedRequest",
    "StepCompletionRequest",
    "parse_progress",
    "utcnow",
]

_LOGGER = logging.getLogger(__name__)

LearningStyle = Literal["visual", "analytical", "practical", "mixed"]
SkillLevel = Literal["beginner", "intermediate", "advanced"]
StepKind = Literal["topic", "focus", "challenge", "support"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TopicProgress(BaseModel):
    """Per-topic progress: solved problem ids and running accuracy."""

    completed_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("completed_ids", "completedIds", "completed"),
        description="Identifiers of problems the learner has completed for the topic.",
    )
    accuracy: float = Field(
        default=0.0,
        description="Running accuracy ratio in [0, 1].",
    )

    @field_validator("completed_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> List[str]:
        if value is None or isinstance(value, (str, bytes)):
            return []
        if not isinstance(value, (list, tuple, set)):
            return []
        return [str(entry) for entry in value if entry is not None and str(entry).strip()]

    @field_validator("accuracy", mode="before")
    @classmethod
    def _coerce_accuracy(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        if number != number:  # NaN
            return 0.0
        return max(0.0, min(1.0, number))

    @property
    def attempts(self) -> int:
        return len(self.completed_ids)


def parse_progress(raw: Optional[Mapping[str, Any]]) -> Dict[str, TopicProgress]:
    """Normalise a raw progress mapping into typed records.

    Entries that are not mappings carry no usable data and are skipped.
    """

    progress: Dict[str, TopicProgress] = {}
    if not isinstance(raw, Mapping):
        return progress
    for topic, record in raw.items():
        if isinstance(record, TopicProgress):
            progress[str(topic)] = record
            continue
        if not isinstance(record, Mapping):
            _LOGGER.debug("Skipping malformed progress record for topic %r", topic)
            continue
        progress[str(topic)] = TopicProgress.model_validate(dict(record))
    return progress


class PreferenceOverrides(BaseModel):
    """Explicit learner preferences that replace derived profile fields."""

    learning_style: Optional[LearningStyle] = None
    current_level: Optional[SkillLevel] = None
    weak_topics: Optional[List[str]] = None
    strong_topics: Optional[List[str]] = None
    session_minutes_available: Optional[int] = Field(default=None, gt=0)
    preferred_difficulty: Optional[int] = Field(default=None, ge=1, le=3)
    goal_date: Optional[str] = Field(
        default=None,
        description="Optional exam date, surfaced in the path description and prompt.",
    )

    def as_overrides(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class LearningPathStep(BaseModel):
    id: str
    topic: str
    title: str
    description: str = ""
    estimated_minutes: int = Field(gt=0)
    difficulty: int = Field(ge=1, le=3)
    prerequisites: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    recommended_order: int
    personalized_reason: str
    kind: StepKind = "topic"
    completed: bool = False
    completed_at: Optional[datetime] = None


class LearningPath(BaseModel):
    """Append-only sequence of study steps for one learner."""

    id: str
    learner_id: str
    title: str
    description: str
    steps: List[LearningPathStep] = Field(default_factory=list)
    estimated_total_minutes: int = 0
    adaptive_recommendations: List[str] = Field(default_factory=list, max_length=3)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    adapted_at: Optional[datetime] = Field(
        default=None,
        description="Start of the session window for the next adaptation; moves only when a step is appended.",
    )

    def adaptation_anchor(self) -> datetime:
        return self.adapted_at or self.created_at

    def find_step(self, step_id: str) -> Optional[LearningPathStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def recompute_total(self) -> int:
        self.estimated_total_minutes = sum(step.estimated_minutes for step in self.steps)
        return self.estimated_total_minutes

    def touch(self, now: datetime) -> None:
        # last_updated must strictly advance, even within one clock tick
        if now > self.last_updated:
            self.last_updated = now
        else:
            self.last_updated = self.last_updated + timedelta(microseconds=1)

    def append_step(self, step: LearningPathStep, now: datetime) -> LearningPathStep:
        if self.find_step(step.id) is not None:
            raise ValueError(f"Step id {step.id!r} already exists in path {self.id!r}")
        self.steps.append(step)
        self.recompute_total()
        self.touch(now)
        self.adapted_at = self.last_updated
        return step


class LearningEvent(BaseModel):
    id: str
    learner_id: str
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class TopicResult(BaseModel):
    problem_id: str = Field(min_length=1)
    correct: bool


class TopicResultsRequest(BaseModel):
    results: List[TopicResult] = Field(min_length=1)


class SessionCompletedRequest(BaseModel):
    topic: str = Field(min_length=1)
    problems_attempted: int = Field(ge=0)
    accuracy: float = Field(ge=0.0, le=1.0)


class StepCompletionRequest(BaseModel):
    completed: bool = True
