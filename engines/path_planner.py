"""Priority-scored study planning over the topic prerequisite graph."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from engines.profile_builder import LearnerProfile
from schemas import TopicProgress, parse_progress
from topic_graph import TopicGraph

PREREQUISITE_ACCURACY_THRESHOLD = 0.6
BASE_STEP_MINUTES = 25
FOCUS_STEP_CAP_MINUTES = 30
MAX_FOCUS_STEPS = 2

_LEVEL_MULTIPLIER = {"beginner": 1.0, "intermediate": 1.5, "advanced": 2.0}


@dataclass
class PlannedStep:
    """A step before the facade assigns its id."""

    topic: str
    title: str
    description: str
    estimated_minutes: int
    difficulty: int
    recommended_order: int
    personalized_reason: str
    kind: str = "topic"
    prerequisites: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    score: Optional[float] = None


def topic_slug(topic: str) -> str:
    return re.sub(r"\s+", "_", topic.strip()).lower()


class PathPlanner:
    """Rank every topic and emit one step each, then focus steps for weak topics."""

    def __init__(self, graph: TopicGraph) -> None:
        self.graph = graph

    # ------------------------------------------------------------------
    def plan(
        self,
        profile: LearnerProfile,
        progress: Optional[Mapping[str, Any]],
    ) -> List[PlannedStep]:
        records = parse_progress(progress)
        steps: List[PlannedStep] = []
        order = 1
        for topic, score in self.score_topics(profile, records):
            steps.append(self._topic_step(topic, profile, order, score))
            order += 1

        focus_topics = [topic for topic in profile.weak_topics if topic in self.graph]
        for topic in focus_topics[:MAX_FOCUS_STEPS]:
            steps.append(self._focus_step(topic, profile, order))
            order += 1
        return steps

    # ------------------------------------------------------------------
    def score_topics(
        self,
        profile: LearnerProfile,
        records: Mapping[str, TopicProgress],
    ) -> List[Tuple[str, float]]:
        scored = [
            (node.name, self.topic_score(node.name, profile, records))
            for node in self.graph
        ]
        # sorted() is stable: equal scores keep declaration order
        return sorted(scored, key=lambda item: item[1], reverse=True)

    # ------------------------------------------------------------------
    def topic_score(
        self,
        topic: str,
        profile: LearnerProfile,
        records: Mapping[str, TopicProgress],
    ) -> float:
        priority = 0
        if self.graph.base_difficulty(topic) <= profile.preferred_difficulty:
            priority += 100
        if topic in profile.weak_topics:
            priority += 150
        if topic in profile.strong_topics:
            priority += 50
        if not self.prerequisites_met(topic, records):
            priority -= 200
        return priority * _LEVEL_MULTIPLIER.get(profile.current_level, 1.0)

    # ------------------------------------------------------------------
    def prerequisites_met(self, topic: str, records: Mapping[str, TopicProgress]) -> bool:
        for prereq in self.graph.prerequisites(topic):
            record = records.get(prereq)
            if record is None or record.accuracy <= PREREQUISITE_ACCURACY_THRESHOLD:
                return False
        return True

    # ------------------------------------------------------------------
    def _topic_step(
        self,
        topic: str,
        profile: LearnerProfile,
        order: int,
        score: float,
    ) -> PlannedStep:
        difficulty = self.graph.base_difficulty(topic)
        minutes = BASE_STEP_MINUTES
        if profile.learning_style == "analytical":
            minutes += 10
        if difficulty > profile.preferred_difficulty:
            minutes += 15
        if topic in profile.weak_topics:
            minutes += 20
        return PlannedStep(
            topic=topic,
            title=f"Master {topic}",
            description=f"Comprehensive study session covering key concepts in {topic}",
            estimated_minutes=minutes,
            difficulty=difficulty,
            recommended_order=order,
            personalized_reason=self.reason_for(topic, profile),
            prerequisites=list(self.graph.prerequisites(topic)),
            concepts=list(self.graph.concepts(topic)),
            score=score,
        )

    # ------------------------------------------------------------------
    def _focus_step(self, topic: str, profile: LearnerProfile, order: int) -> PlannedStep:
        return PlannedStep(
            topic=topic,
            title=f"Focus Session: {topic}",
            description=f"Targeted practice to strengthen understanding in {topic}",
            estimated_minutes=max(1, min(profile.session_minutes_available, FOCUS_STEP_CAP_MINUTES)),
            difficulty=self.graph.base_difficulty(topic),
            recommended_order=order,
            personalized_reason=(
                f"Focused practice recommended based on your recent performance in {topic}"
            ),
            kind="focus",
            concepts=list(self.graph.concepts(topic))[:3],
        )

    # ------------------------------------------------------------------
    def reason_for(self, topic: str, profile: LearnerProfile) -> str:
        if topic in profile.weak_topics:
            return f"Priority topic - strengthen your foundation in {topic} based on recent performance"
        if topic in profile.strong_topics:
            return f"Build on your strength in {topic} with advanced concepts"
        difficulty = self.graph.base_difficulty(topic)
        if difficulty == profile.preferred_difficulty:
            return f"Perfect match for your current skill level in {topic}"
        if difficulty < profile.preferred_difficulty:
            return "Foundation topic - essential building block for advanced concepts"
        return f"Challenge topic - expand your knowledge in {topic}"


__all__ = ["PathPlanner", "PlannedStep", "topic_slug"]
