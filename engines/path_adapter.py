"""Append-only adaptation of an existing learning path."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional

from engines.base import SESSION_COMPLETED_EVENT, STEP_COMPLETED_EVENT, EventLog
from schemas import LearningEvent, LearningPath, LearningPathStep

logger = logging.getLogger(__name__)

MIN_SESSIONS_FOR_ADAPTATION = 3
HIGH_PERFORMANCE_THRESHOLD = 0.9
STRUGGLING_THRESHOLD = 0.5


def _session_accuracy(payload: Mapping[str, Any]) -> Optional[float]:
    try:
        value = float(payload.get("accuracy"))
    except (TypeError, ValueError):
        return None
    return value if value == value else None


class PathAdapter:
    """Marks steps complete and appends a challenge or support step when
    enough new session results have accumulated.

    Existing steps are never removed or reordered. Marking a step moves
    ``last_updated`` but never the adaptation anchor.
    """

    def __init__(
        self,
        event_log: EventLog,
        *,
        min_sessions: int = MIN_SESSIONS_FOR_ADAPTATION,
        high_threshold: float = HIGH_PERFORMANCE_THRESHOLD,
        low_threshold: float = STRUGGLING_THRESHOLD,
    ) -> None:
        if not 0 <= low_threshold < high_threshold <= 1:
            raise ValueError("Thresholds must satisfy 0 <= low < high <= 1")
        self.event_log = event_log
        self.min_sessions = min_sessions
        self.high_threshold = high_threshold
        self.low_threshold = low_threshold

    # ------------------------------------------------------------------
    def mark_step(
        self,
        path: LearningPath,
        step_id: str,
        completed: bool,
        *,
        now: datetime,
    ) -> Optional[LearningPathStep]:
        step = path.find_step(step_id)
        if step is None:
            return None
        step.completed = bool(completed)
        step.completed_at = now if completed else None
        path.touch(now)
        self.event_log.append(
            path.learner_id,
            STEP_COMPLETED_EVENT,
            {
                "pathId": path.id,
                "stepId": step.id,
                "topic": step.topic,
                "completed": bool(completed),
            },
            now,
        )
        return step

    # ------------------------------------------------------------------
    def recent_session_accuracies(self, learner_id: str, since: datetime) -> List[float]:
        events: List[LearningEvent] = self.event_log.query(learner_id, since)
        accuracies: List[float] = []
        for event in events:
            if event.event_type != SESSION_COMPLETED_EVENT:
                continue
            accuracy = _session_accuracy(event.payload)
            if accuracy is not None:
                accuracies.append(accuracy)
        return accuracies

    # ------------------------------------------------------------------
    def adapt(
        self,
        path: LearningPath,
        *,
        now: datetime,
        since: Optional[datetime] = None,
    ) -> Optional[LearningPathStep]:
        """Append at most one step based on sessions recorded after ``since``.

        ``since`` defaults to the path's adaptation anchor: generation time or
        the last append. Marking steps does not move it, so sessions keep
        accumulating across completions.
        """

        if since is None:
            since = path.adaptation_anchor()
        accuracies = self.recent_session_accuracies(path.learner_id, since)
        if len(accuracies) < self.min_sessions:
            logger.debug(
                "Not enough new sessions for %s (%d < %d)",
                path.learner_id,
                len(accuracies),
                self.min_sessions,
            )
            return None

        mean = sum(accuracies) / len(accuracies)
        if mean > self.high_threshold:
            step = self._challenge_step(path)
        elif mean < self.low_threshold:
            step = self._support_step(path)
        else:
            return None
        return path.append_step(step, now)

    # ------------------------------------------------------------------
    @staticmethod
    def _next_id(path: LearningPath, prefix: str) -> str:
        index = len(path.steps) + 1
        candidate = f"{prefix}_{index}"
        while path.find_step(candidate) is not None:
            index += 1
            candidate = f"{prefix}_{index}"
        return candidate

    def _challenge_step(self, path: LearningPath) -> LearningPathStep:
        return LearningPathStep(
            id=self._next_id(path, "challenge"),
            topic="Advanced Integration",
            title="Challenge: Advanced Problem Solving",
            description="Advanced practice problems combining multiple concepts",
            estimated_minutes=35,
            difficulty=3,
            concepts=["Integration", "Advanced Problem Solving"],
            recommended_order=len(path.steps) + 1,
            personalized_reason="Added based on your excellent performance - ready for more challenge!",
            kind="challenge",
        )

    def _support_step(self, path: LearningPath) -> LearningPathStep:
        return LearningPathStep(
            id=self._next_id(path, "support"),
            topic="Foundation Review",
            title="Foundation Strengthening Session",
            description="Extra practice on fundamental concepts",
            estimated_minutes=20,
            difficulty=1,
            concepts=["Basic Concepts", "Foundation Building"],
            recommended_order=len(path.steps) + 1,
            personalized_reason="Added to strengthen fundamentals based on recent performance",
            kind="support",
        )


__all__ = ["PathAdapter"]
