from datetime import datetime, timedelta, timezone

from engines.base import SESSION_COMPLETED_EVENT, STEP_COMPLETED_EVENT
from engines.profile_builder import LearnerProfile, ProfileBuilder, difficulty_for_level
from schemas import LearningEvent

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def progress_entry(accuracy, attempts):
    return {"completedIds": [f"p{i}" for i in range(attempts)], "accuracy": accuracy}


def session(problems, *, days_ago=1, accuracy=0.8, event_type=SESSION_COMPLETED_EVENT):
    return LearningEvent(
        id=f"e-{problems}-{days_ago}",
        learner_id="learner",
        event_type=event_type,
        payload={"topic": "Bond Valuation", "problemsAttempted": problems, "accuracy": accuracy},
        timestamp=NOW - timedelta(days=days_ago),
    )


def test_empty_history_yields_beginner_defaults():
    profile = ProfileBuilder().build("learner", {}, [], now=NOW)

    assert profile == LearnerProfile(learner_id="learner")
    assert profile.session_minutes_available == 20
    assert profile.learning_style == "mixed"
    assert profile.preferred_difficulty == 1


def test_weak_and_strong_topics_are_disjoint_and_ordered():
    progress = {
        "Portfolio Theory": progress_entry(0.5, 10),
        "Time Value of Money": progress_entry(0.9, 10),
        "Bond Valuation": progress_entry(0.95, 3),
        "Financial Statements": progress_entry(0.75, 8),
    }
    profile = ProfileBuilder().build("learner", progress, [], now=NOW)

    # too few attempts counts as weak even with high accuracy
    assert profile.weak_topics == ["Portfolio Theory", "Bond Valuation"]
    assert profile.strong_topics == ["Time Value of Money"]
    assert not set(profile.weak_topics) & set(profile.strong_topics)


def test_level_thresholds():
    builder = ProfileBuilder()

    def level(accuracy):
        return builder.build("l", {"A": progress_entry(accuracy, 10)}, [], now=NOW).current_level

    assert level(0.6) == "beginner"
    assert level(0.61) == "intermediate"
    assert level(0.75) == "intermediate"
    assert level(0.76) == "advanced"
    assert difficulty_for_level("advanced") == 3
    assert difficulty_for_level("unknown") == 1


def test_session_length_drives_style():
    builder = ProfileBuilder()

    long_sessions = builder.build("l", {}, [session(12), session(14, days_ago=2)], now=NOW)
    assert long_sessions.session_minutes_available == 39
    assert long_sessions.learning_style == "analytical"

    short_sessions = builder.build("l", {}, [session(3), session(4, days_ago=2)], now=NOW)
    # 10.5 rounds half up
    assert short_sessions.session_minutes_available == 11
    assert short_sessions.learning_style == "practical"


def test_half_minute_average_rounds_up():
    # 7 and 8 problems: 21 and 24 minutes, mean 22.5
    profile = ProfileBuilder().build("l", {}, [session(7), session(8, days_ago=2)], now=NOW)

    assert profile.session_minutes_available == 23


def test_only_recent_session_events_count():
    events = [
        session(20, days_ago=45),
        session(5, days_ago=3),
        session(50, days_ago=1, event_type=STEP_COMPLETED_EVENT),
    ]
    profile = ProfileBuilder().build("l", {}, events, now=NOW)

    assert profile.session_minutes_available == 15
    assert profile.learning_style == "mixed"


def test_malformed_progress_entries_are_skipped():
    progress = {"Bond Valuation": "garbage", "Derivatives": {"completedIds": None, "accuracy": "x"}}
    profile = ProfileBuilder().build("l", progress, [], now=NOW)

    assert profile.weak_topics == ["Derivatives"]


def test_overrides_replace_derived_fields():
    progress = {"Bond Valuation": progress_entry(0.4, 10)}
    overrides = {
        "learning_style": "visual",
        "current_level": "advanced",
        "strong_topics": ["Bond Valuation", "Derivatives", "Derivatives"],
        "session_minutes_available": 45,
    }
    profile = ProfileBuilder().build("l", progress, [], now=NOW, overrides=overrides)

    assert profile.learning_style == "visual"
    assert profile.current_level == "advanced"
    assert profile.session_minutes_available == 45
    # derived weak topic wins over the override
    assert profile.weak_topics == ["Bond Valuation"]
    assert profile.strong_topics == ["Derivatives"]
    # level override leaves the derived difficulty alone
    assert profile.preferred_difficulty == 1


def test_override_learner_id_is_ignored():
    profile = ProfileBuilder().build("l", {}, [], now=NOW, overrides={"learner_id": "other"})
    assert profile.learner_id == "l"
