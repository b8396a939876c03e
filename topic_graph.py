"""Static topic catalogue with prerequisite relations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_PROBLEM_COUNT = 20


class TopicGraphError(ValueError):
    """Raised when the topic catalogue is inconsistent."""


@dataclass(frozen=True)
class TopicNode:
    """A named subject area with fixed prerequisites and base difficulty."""

    name: str
    prerequisites: Tuple[str, ...] = ()
    base_difficulty: int = 1
    concepts: Tuple[str, ...] = ()
    problem_count: int = DEFAULT_PROBLEM_COUNT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prerequisites": list(self.prerequisites),
            "base_difficulty": self.base_difficulty,
            "concepts": list(self.concepts),
            "problem_count": self.problem_count,
        }


class TopicGraph:
    """Read-only mapping of topic -> prerequisites, difficulty and concepts.

    Declaration order is preserved; the planner relies on it to break ties.
    Build with :meth:`add_topic` then call :meth:`validate`, or use
    :meth:`from_dict` which validates for you.
    """

    def __init__(self, topics: Optional[Sequence[TopicNode]] = None) -> None:
        self._nodes: Dict[str, TopicNode] = {}
        for node in topics or ():
            self.add_topic(node)

    # ------------------------------------------------------------------
    def add_topic(self, node: TopicNode) -> None:
        if node.name in self._nodes:
            raise TopicGraphError(f"Duplicate topic: {node.name}")
        self._nodes[node.name] = node

    # ------------------------------------------------------------------
    def __contains__(self, topic: object) -> bool:
        return topic in self._nodes

    def __iter__(self) -> Iterator[TopicNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    def topics(self) -> List[str]:
        return list(self._nodes)

    def get(self, topic: str) -> Optional[TopicNode]:
        return self._nodes.get(topic)

    def prerequisites(self, topic: str) -> Tuple[str, ...]:
        node = self._nodes.get(topic)
        return node.prerequisites if node else ()

    def base_difficulty(self, topic: str) -> int:
        node = self._nodes.get(topic)
        return node.base_difficulty if node else 1

    def concepts(self, topic: str) -> Tuple[str, ...]:
        node = self._nodes.get(topic)
        return node.concepts if node else ()

    def problem_count(self, topic: str) -> int:
        node = self._nodes.get(topic)
        return node.problem_count if node else DEFAULT_PROBLEM_COUNT

    # ------------------------------------------------------------------
    def topological_order(self) -> List[str]:
        """Kahn's algorithm; ties resolved in declaration order."""

        indegree: Dict[str, int] = {name: 0 for name in self._nodes}
        dependents: Dict[str, List[str]] = {name: [] for name in self._nodes}
        for node in self._nodes.values():
            for prereq in node.prerequisites:
                if prereq not in self._nodes:
                    raise TopicGraphError(
                        f"Topic {node.name!r} lists unknown prerequisite {prereq!r}"
                    )
                indegree[node.name] += 1
                dependents[prereq].append(node.name)

        ready = [name for name, degree in indegree.items() if degree == 0]
        ordered: List[str] = []
        while ready:
            current = ready.pop(0)
            ordered.append(current)
            for dependent in dependents[current]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)

        if len(ordered) != len(self._nodes):
            cyclic = sorted(name for name, degree in indegree.items() if degree > 0)
            raise TopicGraphError(
                "Prerequisite cycle detected among: " + ", ".join(cyclic)
            )
        return ordered

    # ------------------------------------------------------------------
    def validate(self) -> "TopicGraph":
        for node in self._nodes.values():
            if node.base_difficulty not in (1, 2, 3):
                raise TopicGraphError(
                    f"Topic {node.name!r} has base difficulty {node.base_difficulty}; expected 1-3"
                )
            if node.name in node.prerequisites:
                raise TopicGraphError(f"Topic {node.name!r} lists itself as a prerequisite")
        self.topological_order()
        return self

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {"topics": {name: node.to_dict() for name, node in self._nodes.items()}}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TopicGraph":
        topics = payload.get("topics") if isinstance(payload, Mapping) else None
        if not isinstance(topics, Mapping):
            raise TopicGraphError("Topic catalogue must contain a 'topics' mapping")
        graph = cls()
        for name, data in topics.items():
            if not isinstance(data, Mapping):
                raise TopicGraphError(f"Topic {name!r} must map to an object")
            try:
                difficulty = int(data.get("base_difficulty", 1))
                problem_count = int(data.get("problem_count", DEFAULT_PROBLEM_COUNT))
            except (TypeError, ValueError) as exc:
                raise TopicGraphError(f"Topic {name!r} has non-numeric fields") from exc
            graph.add_topic(
                TopicNode(
                    name=str(name),
                    prerequisites=tuple(str(p) for p in data.get("prerequisites") or ()),
                    base_difficulty=difficulty,
                    concepts=tuple(str(c) for c in data.get("concepts") or ()),
                    problem_count=problem_count,
                )
            )
        return graph.validate()

    @classmethod
    def load_json(cls, path: Path) -> "TopicGraph":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        graph = cls.from_dict(payload)
        logger.info("Loaded topic catalogue from %s (%d topics)", path, len(graph))
        return graph


def default_topic_graph() -> TopicGraph:
    """The ACF placement-exam catalogue."""

    graph = TopicGraph(
        [
            TopicNode(
                "Time Value of Money",
                (),
                1,
                ("Present Value", "Future Value", "Annuities", "NPV", "IRR"),
                25,
            ),
            TopicNode(
                "Financial Statements",
                ("Time Value of Money",),
                1,
                ("Balance Sheet", "Income Statement", "Cash Flow", "Ratios"),
                15,
            ),
            TopicNode(
                "Bond Valuation",
                ("Time Value of Money",),
                2,
                ("Bond Pricing", "YTM", "Duration", "Convexity", "Credit Risk"),
                25,
            ),
            TopicNode(
                "Portfolio Theory",
                ("Time Value of Money", "Financial Statements"),
                2,
                ("CAPM", "Beta", "Diversification", "Efficient Frontier", "Sharpe Ratio"),
                25,
            ),
            TopicNode(
                "Derivatives",
                ("Portfolio Theory", "Bond Valuation"),
                3,
                ("Options", "Futures", "Forwards", "Black-Scholes", "Greeks"),
                25,
            ),
        ]
    )
    return graph.validate()


def load_topic_graph(path: Optional[str] = None) -> TopicGraph:
    if path:
        return TopicGraph.load_json(Path(path))
    return default_topic_graph()


__all__ = [
    "TopicGraph",
    "TopicGraphError",
    "TopicNode",
    "default_topic_graph",
    "load_topic_graph",
]
