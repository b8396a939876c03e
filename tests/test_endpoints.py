import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock

import app
from db import MemoryEventLog, MemoryProgressStore
from engines.base import StorageError
from learning_path import LearningPathEngine


@pytest.fixture
def engine():
    return LearningPathEngine(MemoryProgressStore(), MemoryEventLog(), clock=FakeClock())


@pytest.fixture
def client(engine):
    app.app.dependency_overrides[app.get_engine] = lambda: engine
    # no context manager: the startup lifespan stays out of the way
    yield TestClient(app.app)
    app.app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_generate_then_fetch_active_path(client):
    response = client.post("/learning-path/u1/generate")
    assert response.status_code == 200
    path = response.json()
    assert path["learner_id"] == "u1"
    assert path["steps"][0]["topic"] == "Time Value of Money"

    active = client.get("/learning-path/u1")
    assert active.status_code == 200
    assert active.json()["id"] == path["id"]

    single = client.get(f"/learning-path/u1/paths/{path['id']}")
    assert single.json()["id"] == path["id"]


def test_generate_with_preferences(client):
    response = client.post(
        "/learning-path/u1/generate",
        json={"learning_style": "practical", "weak_topics": ["Derivatives"]},
    )
    assert response.status_code == 200
    kinds = [step["kind"] for step in response.json()["steps"]]
    assert kinds.count("focus") == 1


def test_generate_rejects_bad_preferences(client):
    response = client.post("/learning-path/u1/generate", json={"preferred_difficulty": 9})
    assert response.status_code == 422


def test_invalid_learner_id_is_bad_request(client):
    assert client.post("/learning-path/a:b/generate").status_code == 400
    assert client.post("/events/a:b/sessions", json={"topic": "x", "problems_attempted": 1, "accuracy": 0.5}).status_code == 400


def test_missing_paths_are_not_found(client):
    assert client.get("/learning-path/u1").status_code == 404
    assert client.get("/learning-path/u1/paths/path_u1_nothing").status_code == 404


def test_complete_step_endpoint(client):
    path = client.post("/learning-path/u1/generate").json()
    step_id = path["steps"][0]["id"]

    marked = client.post(f"/learning-path/u1/steps/{step_id}", json={"completed": True})
    assert marked.json() == {"updated": True}
    assert client.get("/learning-path/u1").json()["steps"][0]["completed"] is True

    missing = client.post("/learning-path/u1/steps/step_42_unknown", json={})
    assert missing.json() == {"updated": False}


def test_progress_and_session_feed_the_next_path(client, engine):
    response = client.post(
        "/progress/u1/topics/Bond Valuation",
        json={"results": [{"problem_id": "b1", "correct": True}, {"problem_id": "b2", "correct": False}]},
    )
    assert response.status_code == 200
    assert response.json() == {"completed_ids": ["b1"], "accuracy": 0.5}

    event = client.post(
        "/events/u1/sessions",
        json={"topic": "Bond Valuation", "problems_attempted": 4, "accuracy": 0.5},
    )
    assert event.status_code == 200
    assert event.json()["payload"]["problemsAttempted"] == 4

    path = client.post("/learning-path/u1/generate").json()
    focus = [step for step in path["steps"] if step["kind"] == "focus"]
    assert [step["topic"] for step in focus] == ["Bond Valuation"]
    assert engine.event_log.query("u1")[0].event_type == "learning_session_completed"


def test_unknown_topic_progress_is_not_found(client):
    response = client.post(
        "/progress/u1/topics/Astrology",
        json={"results": [{"problem_id": "a1", "correct": True}]},
    )
    assert response.status_code == 404


def test_storage_failure_maps_to_service_unavailable(client, engine, monkeypatch):
    def _offline(learner_id):
        raise StorageError("offline")

    monkeypatch.setattr(engine.progress_store, "get_progress", _offline)

    response = client.post("/learning-path/u1/generate")
    assert response.status_code == 503
    assert response.json() == {"detail": "storage unavailable"}


def test_engine_not_ready_is_service_unavailable(monkeypatch):
    monkeypatch.setattr(app, "_engine", None)
    response = TestClient(app.app).get("/learning-path/u1")
    assert response.status_code == 503
