"""Study-strategy recommendations with a deterministic fallback.

The remote text generator is best effort: it runs under a hard timeout and
behind a small circuit breaker. Whatever happens, :meth:`recommend` returns
between one and three non-empty strings and never raises.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, List, Optional, Sequence

from engines.base import TextGenerator
from engines.path_planner import PlannedStep
from engines.profile_builder import LearnerProfile
from topic_graph import TopicGraph
from tutor import build_study_strategy_prompt

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3

FALLBACK_RECOMMENDATIONS: tuple[str, ...] = (
    "Master fundamental concepts such as present value and cash-flow timing before moving on to complex applications.",
    "Focus each study session on one or two concepts and finish with a short set of practice problems.",
    "Track your accuracy weekly and aim for 80% or better before moving to the next difficulty level in a topic.",
)

_PREAMBLE_PREFIXES = ("as an", "based on")
_ENUMERATION = re.compile(r"^(?:\d+[.):]|[-*•])(?:\s+|$)")

_STYLE_FOCUS = {
    "visual": "diagram-based problem solving and chart analysis",
    "analytical": "step-by-step formula derivations and logical problem breakdowns",
    "practical": "real-world application examples and case-based learning",
}


def parse_recommendations(text: str, limit: int = MAX_RECOMMENDATIONS) -> List[str]:
    """First ``limit`` usable lines of a free-text answer, without list markers."""

    lines: List[str] = []
    for raw in (text or "").splitlines():
        line = raw.replace("**", "").lstrip("#").strip()
        if not line or line.lower().startswith(_PREAMBLE_PREFIXES):
            continue
        cleaned = _ENUMERATION.sub("", line, count=1).strip()
        if not cleaned:
            continue
        lines.append(cleaned)
        if len(lines) >= limit:
            break
    return lines


def personalised_defaults(profile: LearnerProfile) -> List[str]:
    focus = _STYLE_FOCUS.get(
        profile.learning_style,
        "a multi-modal approach combining visual aids, logical reasoning, and practical applications",
    )
    minutes = profile.session_minutes_available
    if profile.weak_topics:
        second = (
            f"Dedicate 60% of study time to weak areas: {' and '.join(profile.weak_topics)}. "
            "Use spaced repetition with 3-day intervals for maximum retention"
        )
    else:
        second = (
            "Build a strong foundation by completing the fundamental Time Value of Money "
            "problems before advancing to Portfolio Theory"
        )
    if minutes > 15:
        third = (
            f"Structure {minutes}-minute sessions as 5 min review, {minutes - 15} min new problems "
            "and 10 min solution analysis"
        )
    else:
        third = f"Use each {minutes}-minute session for a quick review followed by a few targeted problems"
    return [f"For {profile.learning_style} learners: focus on {focus}", second, third]


class _CircuitBreaker:
    def __init__(self, threshold: int, cooldown: float, clock: Callable[[], float]) -> None:
        self.threshold = max(1, threshold)
        self.cooldown = max(0.0, cooldown)
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return True
            if self._clock() - self._opened_at >= self.cooldown:
                # half-open: let one trial call through
                self._opened_at = None
                self._failures = self.threshold - 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self.threshold:
                self._opened_at = self._clock()


class RecommendationGenerator:
    def __init__(
        self,
        text_generator: Optional[TextGenerator],
        graph: TopicGraph,
        *,
        timeout: float = 5.0,
        breaker_threshold: int = 3,
        breaker_cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.text_generator = text_generator
        self.graph = graph
        self.timeout = timeout
        self._breaker = _CircuitBreaker(breaker_threshold, breaker_cooldown, clock)
        # created on first remote call; close() releases it
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="recommendations")
            return self._executor

    # ------------------------------------------------------------------
    def build_prompt(self, profile: LearnerProfile, steps: Sequence[PlannedStep]) -> str:
        topic_lines = [
            f"{step.topic}: {step.difficulty}/3 difficulty, "
            f"{self.graph.problem_count(step.topic) if step.topic in self.graph else 0} problems available"
            for step in steps
        ]
        total_problems = sum(self.graph.problem_count(node.name) for node in self.graph)
        return build_study_strategy_prompt(
            current_level=profile.current_level,
            learning_style=profile.learning_style,
            session_minutes=profile.session_minutes_available,
            weak_topics=profile.weak_topics,
            strong_topics=profile.strong_topics,
            topic_lines=topic_lines,
            total_problems=total_problems,
            goal_date=profile.goal_date,
        )

    # ------------------------------------------------------------------
    def recommend(self, profile: LearnerProfile, steps: Sequence[PlannedStep]) -> List[str]:
        if self.text_generator is None:
            return list(FALLBACK_RECOMMENDATIONS)
        if not self._breaker.allow():
            logger.debug("Text generation circuit open; using fallback recommendations")
            return list(FALLBACK_RECOMMENDATIONS)

        try:
            prompt = self.build_prompt(profile, steps)
            future = self._pool().submit(self.text_generator.complete, prompt)
            text = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            self._breaker.record_failure()
            logger.warning("Text generation timed out after %.1fs; using fallback", self.timeout)
            return list(FALLBACK_RECOMMENDATIONS)
        except Exception:
            self._breaker.record_failure()
            logger.warning("Text generation failed; using fallback", exc_info=True)
            return list(FALLBACK_RECOMMENDATIONS)

        self._breaker.record_success()
        parsed = parse_recommendations(text if isinstance(text, str) else "")
        if parsed:
            return parsed
        logger.debug("Text generation returned no usable lines; using personalised defaults")
        return personalised_defaults(profile)[:MAX_RECOMMENDATIONS]

    # ------------------------------------------------------------------
    @property
    def has_workers(self) -> bool:
        return self._executor is not None

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)


__all__ = [
    "FALLBACK_RECOMMENDATIONS",
    "RecommendationGenerator",
    "parse_recommendations",
    "personalised_defaults",
]
