"""Learning Path Engine: profile -> plan -> recommendations -> persisted path."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from engines.base import EventLog, InvalidInputError, ProgressStore, TextGenerator
from engines.path_adapter import PathAdapter
from engines.path_planner import PathPlanner, PlannedStep, topic_slug
from engines.profile_builder import LearnerProfile, ProfileBuilder
from engines.recommendations import RecommendationGenerator
from schemas import LearningPath, LearningPathStep, PreferenceOverrides, utcnow
from topic_graph import TopicGraph, default_topic_graph


_LOGGER = logging.getLogger(__name__)

PATH_KEY_PREFIX = "learningPath"
ACTIVE_KEY_PREFIX = "activePath"

_LEVEL_TITLES = {
    "beginner": "Foundation Building Path",
    "intermediate": "Skills Enhancement Path",
    "advanced": "Mastery Achievement Path",
}


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit one structured JSON log line per engine decision."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


def require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} must be a non-empty string")
    text = value.strip()
    if ":" in text:
        raise InvalidInputError(f"{name} must not contain ':'")
    return text


def path_key(learner_id: str, path_id: str) -> str:
    return f"{PATH_KEY_PREFIX}:{learner_id}:{path_id}"


def active_key(learner_id: str) -> str:
    return f"{ACTIVE_KEY_PREFIX}:{learner_id}"


class LearningPathEngine:
    """Facade owning every persisted learning path.

    ``generate`` is all-or-nothing: it either returns a complete, persisted
    path or raises the storage collaborator's error. ``complete_step`` always
    acknowledges a successful mark even if the adaptive analysis fails.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        event_log: EventLog,
        *,
        graph: Optional[TopicGraph] = None,
        text_generator: Optional[TextGenerator] = None,
        recommendation_generator: Optional[RecommendationGenerator] = None,
        profile_builder: Optional[ProfileBuilder] = None,
        path_adapter: Optional[PathAdapter] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.progress_store = progress_store
        self.event_log = event_log
        self.graph = graph if graph is not None else default_topic_graph()
        self.profile_builder = profile_builder or ProfileBuilder()
        self.planner = PathPlanner(self.graph)
        self.recommendations = recommendation_generator or RecommendationGenerator(
            text_generator, self.graph
        )
        self.adapter = path_adapter or PathAdapter(event_log)
        self._clock = clock

    # ------------------------------------------------------------------
    def generate(
        self,
        learner_id: str,
        preferences: Union[PreferenceOverrides, Mapping[str, Any], None] = None,
    ) -> LearningPath:
        learner_id = require_id(learner_id, "learner_id")
        overrides = self._coerce_preferences(preferences)
        timer_start = perf_counter()
        now = self._clock()

        # one snapshot of progress and events per run
        progress = self.progress_store.get_progress(learner_id) or {}
        events = self.event_log.query(learner_id, now - self.profile_builder.window)

        profile = self.profile_builder.build(
            learner_id,
            progress,
            events,
            now=now,
            overrides=overrides,
        )
        planned = self.planner.plan(profile, progress)
        recommendations = self.recommendations.recommend(profile, planned)

        path = LearningPath(
            id=f"path_{learner_id}_{uuid.uuid4().hex[:12]}",
            learner_id=learner_id,
            title=self._title(profile),
            description=self._description(profile),
            steps=[self._materialise(step) for step in planned],
            adaptive_recommendations=recommendations,
            created_at=now,
            last_updated=now,
            adapted_at=now,
        )
        path.recompute_total()

        self._save(path, activate=True)

        _log_json(
            "learning_path_generated",
            {
                "learner_id": learner_id,
                "path_id": path.id,
                "profile": profile.to_dict(),
                "overrides": sorted(overrides),
                "step_topics": [step.topic for step in path.steps],
                "estimated_total_minutes": path.estimated_total_minutes,
                "processing_ms": round((perf_counter() - timer_start) * 1000.0, 3),
            },
        )
        return path

    # ------------------------------------------------------------------
    def get_active(self, learner_id: str) -> Optional[LearningPath]:
        learner_id = require_id(learner_id, "learner_id")
        path_id = self.progress_store.get(active_key(learner_id))
        if not path_id:
            return None
        return self._load(learner_id, str(path_id))

    # ------------------------------------------------------------------
    def get_path(self, learner_id: str, path_id: str) -> Optional[LearningPath]:
        learner_id = require_id(learner_id, "learner_id")
        path_id = require_id(path_id, "path_id")
        return self._load(learner_id, path_id)

    # ------------------------------------------------------------------
    def list_paths(self, learner_id: str) -> List[LearningPath]:
        """Every path ever generated for the learner, oldest first."""

        learner_id = require_id(learner_id, "learner_id")
        paths: List[LearningPath] = []
        for key, value in self.progress_store.list(f"{PATH_KEY_PREFIX}:{learner_id}:"):
            try:
                paths.append(LearningPath.model_validate(value))
            except ValidationError:
                _LOGGER.warning("Skipping unreadable learning path record %s", key)
        return sorted(paths, key=lambda item: item.created_at)

    # ------------------------------------------------------------------
    def complete_step(self, learner_id: str, step_id: str, completed: bool = True) -> bool:
        """Mark a step of the active path; returns False when nothing matched."""

        learner_id = require_id(learner_id, "learner_id")
        step_id = require_id(step_id, "step_id")

        path = self.get_active(learner_id)
        if path is None:
            _LOGGER.info("No active learning path for %s; ignoring step %s", learner_id, step_id)
            return False

        step = self.adapter.mark_step(path, step_id, completed, now=self._clock())
        if step is None:
            _LOGGER.info("Step %s not found in path %s", step_id, path.id)
            return False
        self._save(path, activate=False)
        _log_json(
            "learning_path_step_marked",
            {
                "learner_id": learner_id,
                "path_id": path.id,
                "step_id": step.id,
                "topic": step.topic,
                "completed": step.completed,
            },
        )

        if completed:
            self._adapt(path)
        return True

    # ------------------------------------------------------------------
    def _adapt(self, path: LearningPath) -> None:
        try:
            appended = self.adapter.adapt(path, now=self._clock())
            if appended is None:
                return
            self._save(path, activate=False)
        except Exception as exc:
            _LOGGER.exception("Adaptive analysis failed for path %s", path.id)
            _log_json(
                "learning_path_adaptation_failed",
                {"learner_id": path.learner_id, "path_id": path.id, "error": str(exc)},
            )
            return
        _log_json(
            "learning_path_adapted",
            {
                "learner_id": path.learner_id,
                "path_id": path.id,
                "appended_step": appended.id,
                "kind": appended.kind,
                "step_count": len(path.steps),
                "estimated_total_minutes": path.estimated_total_minutes,
            },
        )

    # ------------------------------------------------------------------
    def close(self) -> None:
        """Release the worker threads used for text generation."""

        self.recommendations.close()

    def __enter__(self) -> "LearningPathEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    def _save(self, path: LearningPath, *, activate: bool) -> None:
        self.progress_store.set(path_key(path.learner_id, path.id), path.model_dump(mode="json"))
        if activate:
            self.progress_store.set(active_key(path.learner_id), path.id)

    def _load(self, learner_id: str, path_id: str) -> Optional[LearningPath]:
        raw = self.progress_store.get(path_key(learner_id, path_id))
        if raw is None:
            return None
        try:
            return LearningPath.model_validate(raw)
        except ValidationError:
            _LOGGER.warning("Stored learning path %s for %s is unreadable", path_id, learner_id)
            return None

    # ------------------------------------------------------------------
    @staticmethod
    def _coerce_preferences(
        preferences: Union[PreferenceOverrides, Mapping[str, Any], None],
    ) -> Dict[str, Any]:
        if preferences is None:
            return {}
        if isinstance(preferences, PreferenceOverrides):
            return preferences.as_overrides()
        if not isinstance(preferences, Mapping):
            raise InvalidInputError("preferences must be a mapping")
        try:
            return PreferenceOverrides.model_validate(dict(preferences)).as_overrides()
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid preferences: {exc.errors()[0].get('msg')}") from exc

    @staticmethod
    def _materialise(step: PlannedStep) -> LearningPathStep:
        prefix = "focus" if step.kind == "focus" else "step"
        return LearningPathStep(
            id=f"{prefix}_{step.recommended_order}_{topic_slug(step.topic)}",
            topic=step.topic,
            title=step.title,
            description=step.description,
            estimated_minutes=step.estimated_minutes,
            difficulty=step.difficulty,
            prerequisites=list(step.prerequisites),
            concepts=list(step.concepts),
            recommended_order=step.recommended_order,
            personalized_reason=step.personalized_reason,
            kind=step.kind,
        )

    @staticmethod
    def _title(profile: LearnerProfile) -> str:
        return f"{_LEVEL_TITLES.get(profile.current_level, _LEVEL_TITLES['beginner'])} - Personalized ACF Study Plan"

    @staticmethod
    def _description(profile: LearnerProfile) -> str:
        focus = "strengthening weak areas and " if profile.weak_topics else ""
        goal = f" Target exam date: {profile.goal_date}." if profile.goal_date else ""
        return (
            f"Customized learning path designed for your {profile.learning_style} learning style "
            f"and {profile.current_level} skill level. Estimated {profile.session_minutes_available} "
            f"minutes per session with focus on {focus}building comprehensive ACF knowledge.{goal}"
        )


__all__ = [
    "LearningPathEngine",
    "active_key",
    "path_key",
    "require_id",
]
