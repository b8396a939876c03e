import pytest

import env_validation
from env_validation import EnvironmentError, get_env_bool, get_env_float, get_env_int, validate_environment

_VARS = (
    "DB_PATH",
    "LLM_URL",
    "GPT4ALL_URL",
    "LLM_TIMEOUT",
    "LLM_BREAKER_COOLDOWN",
    "LLM_BREAKER_THRESHOLD",
    "EVENT_WINDOW_DAYS",
    "TOPIC_GRAPH_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)
    # recorded so the default written by validate_environment is undone
    monkeypatch.setenv("DB_PATH", "")


def test_defaults_are_applied():
    validate_environment()
    assert env_validation.os.environ["DB_PATH"] == "data.db"


@pytest.mark.parametrize(
    "var, value",
    [
        ("LLM_URL", "localhost:4891"),
        ("LLM_TIMEOUT", "fast"),
        ("LLM_TIMEOUT", "0"),
        ("LLM_BREAKER_COOLDOWN", "-1"),
        ("LLM_BREAKER_THRESHOLD", "2.5"),
        ("EVENT_WINDOW_DAYS", "0"),
        ("TOPIC_GRAPH_PATH", "/nonexistent/topics.json"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_valid_configuration_passes(monkeypatch, tmp_path):
    catalogue = tmp_path / "topics.json"
    catalogue.write_text('{"topics": {}}', encoding="utf-8")
    monkeypatch.setenv("LLM_URL", "https://llm.example/v1/chat/completions")
    monkeypatch.setenv("LLM_TIMEOUT", "2.5")
    monkeypatch.setenv("LLM_BREAKER_THRESHOLD", "4")
    monkeypatch.setenv("TOPIC_GRAPH_PATH", str(catalogue))

    validate_environment()


def test_typed_accessors(monkeypatch):
    monkeypatch.setenv("LLM_ENABLED", "off")
    monkeypatch.setenv("LLM_TIMEOUT", "nope")
    monkeypatch.setenv("EVENT_WINDOW_DAYS", "14")

    assert get_env_bool("LLM_ENABLED", True) is False
    assert get_env_bool("NOT_SET_ANYWHERE", True) is True
    assert get_env_float("LLM_TIMEOUT", 5.0) == 5.0
    assert get_env_int("EVENT_WINDOW_DAYS", 30) == 14
