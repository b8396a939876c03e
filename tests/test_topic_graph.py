import json

import pytest

from topic_graph import (
    TopicGraph,
    TopicGraphError,
    TopicNode,
    default_topic_graph,
    load_topic_graph,
)


def test_default_catalogue_is_acyclic_and_ordered():
    graph = default_topic_graph()

    assert graph.topics() == [
        "Time Value of Money",
        "Financial Statements",
        "Bond Valuation",
        "Portfolio Theory",
        "Derivatives",
    ]
    order = graph.topological_order()
    for node in graph:
        for prereq in node.prerequisites:
            assert order.index(prereq) < order.index(node.name)


def test_default_catalogue_difficulties_and_counts():
    graph = default_topic_graph()

    assert graph.base_difficulty("Time Value of Money") == 1
    assert graph.base_difficulty("Derivatives") == 3
    assert graph.prerequisites("Derivatives") == ("Portfolio Theory", "Bond Valuation")
    assert graph.problem_count("Financial Statements") == 15
    assert sum(graph.problem_count(name) for name in graph.topics()) == 115


def test_unknown_topic_lookups_fall_back():
    graph = default_topic_graph()

    assert "Astrology" not in graph
    assert graph.get("Astrology") is None
    assert graph.prerequisites("Astrology") == ()
    assert graph.base_difficulty("Astrology") == 1


def test_cycle_is_rejected():
    graph = TopicGraph(
        [
            TopicNode("A", ("B",), 1),
            TopicNode("B", ("A",), 2),
        ]
    )
    with pytest.raises(TopicGraphError, match="cycle"):
        graph.validate()


def test_unknown_prerequisite_is_rejected():
    graph = TopicGraph([TopicNode("A", ("Missing",), 1)])
    with pytest.raises(TopicGraphError, match="unknown prerequisite"):
        graph.validate()


def test_self_prerequisite_is_rejected():
    graph = TopicGraph([TopicNode("A", ("A",), 1)])
    with pytest.raises(TopicGraphError, match="itself"):
        graph.validate()


@pytest.mark.parametrize("difficulty", [0, 4])
def test_difficulty_out_of_range_is_rejected(difficulty):
    graph = TopicGraph([TopicNode("A", (), difficulty)])
    with pytest.raises(TopicGraphError):
        graph.validate()


def test_duplicate_topic_is_rejected():
    graph = TopicGraph([TopicNode("A")])
    with pytest.raises(TopicGraphError, match="Duplicate"):
        graph.add_topic(TopicNode("A"))


def test_from_dict_preserves_declaration_order():
    payload = default_topic_graph().to_dict()
    rebuilt = TopicGraph.from_dict(payload)

    assert rebuilt.topics() == default_topic_graph().topics()
    assert rebuilt.concepts("Bond Valuation") == default_topic_graph().concepts("Bond Valuation")


def test_from_dict_rejects_malformed_payload():
    with pytest.raises(TopicGraphError):
        TopicGraph.from_dict({"nope": {}})
    with pytest.raises(TopicGraphError):
        TopicGraph.from_dict({"topics": {"A": {"base_difficulty": "hard"}}})


def test_load_topic_graph_from_file(tmp_path):
    catalogue = {
        "topics": {
            "Basics": {"base_difficulty": 1, "concepts": ["Intro"]},
            "Advanced": {"prerequisites": ["Basics"], "base_difficulty": 3},
        }
    }
    path = tmp_path / "topics.json"
    path.write_text(json.dumps(catalogue), encoding="utf-8")

    graph = load_topic_graph(str(path))

    assert graph.topics() == ["Basics", "Advanced"]
    assert graph.problem_count("Advanced") == 20
    assert load_topic_graph(None).topics() == default_topic_graph().topics()
