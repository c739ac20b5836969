"""Tests for learning-twin profile aggregation."""

import pytest

from study_engine.errors import NotFoundError
from study_engine.learning_twin import (
    HIGH_MASTERY_NOTES,
    LOW_MASTERY_NOTES,
    build_profile,
    time_slot,
)
from study_engine.schemas import QuizResult, StudySession, StudySet

STUDY_SET = StudySet(id="set-1", name="Calculus", subject="Math", level="Y12", difficulty="hard")


def _session(minutes, when="2024-03-01T09:00:00", activities=""):
    return StudySession(id=f"s-{minutes}-{when}", set_id="set-1", duration_minutes=minutes, activities=activities, session_date=when)


def _quiz(score):
    return QuizResult(id=f"q-{score}", set_id="set-1", topic="t", score=score)


def test_defaults_without_logs():
    profile = build_profile(STUDY_SET, [], [])
    assert profile.avg_session_minutes == 30
    assert profile.mastery_score == 0
    assert profile.best_time_slot == "morning"
    assert profile.preferred_modality == "reading"
    assert profile.recommended_daily_minutes == 50
    assert profile.adaptation_notes == LOW_MASTERY_NOTES
    assert profile.baseline_difficulty == "hard"


def test_average_rounds_half_up():
    profile = build_profile(STUDY_SET, [_session(30), _session(45)], [_quiz(80)])
    assert profile.avg_session_minutes == 38
    assert profile.mastery_score == 80
    assert profile.recommended_daily_minutes == 38
    assert profile.adaptation_notes == HIGH_MASTERY_NOTES


def test_low_mastery_adds_practice_time():
    profile = build_profile(STUDY_SET, [_session(40)], [_quiz(50), _quiz(59)])
    assert profile.mastery_score == 55
    assert profile.recommended_daily_minutes == 60


def test_mastery_threshold_is_inclusive_at_sixty():
    profile = build_profile(STUDY_SET, [_session(40)], [_quiz(60)])
    assert profile.recommended_daily_minutes == 40
    assert profile.adaptation_notes == HIGH_MASTERY_NOTES


def test_recommendation_capped():
    profile = build_profile(STUDY_SET, [_session(110)], [_quiz(10)])
    assert profile.recommended_daily_minutes == 120


@pytest.mark.parametrize(
    "hour,slot",
    [(0, "morning"), (11, "morning"), (12, "afternoon"), (16, "afternoon"), (17, "evening"), (20, "evening"), (21, "night"), (23, "night")],
)
def test_time_slot_boundaries(hour, slot):
    assert time_slot(hour) == slot


def test_best_slot_picks_most_frequent():
    sessions = [
        _session(30, "2024-03-01T19:00:00"),
        _session(31, "2024-03-02T19:30:00"),
        _session(32, "2024-03-03T08:00:00"),
    ]
    assert build_profile(STUDY_SET, sessions, []).best_time_slot == "evening"


def test_ties_follow_fixed_order():
    sessions = [
        _session(30, "2024-03-01T22:00:00", "quiz drills"),
        _session(31, "2024-03-02T13:00:00", "review notes"),
    ]
    profile = build_profile(STUDY_SET, sessions, [])
    assert profile.best_time_slot == "afternoon"
    assert profile.preferred_modality == "quiz"


def test_modality_keywords_count_once_per_session():
    sessions = [
        _session(30, activities="Practice problems and practice tests"),
        _session(31, activities="reading chapter 4"),
        _session(32, activities="problem set"),
    ]
    assert build_profile(STUDY_SET, sessions, []).preferred_modality == "practice"


def test_unparseable_dates_are_ignored():
    profile = build_profile(STUDY_SET, [_session(30, "not a date"), _session(30, "2024-03-01T18:00:00")], [])
    assert profile.best_time_slot == "evening"


def test_compute_is_idempotent_and_persisted(engine):
    study_set = engine.create_set("Calculus")
    engine.log_study_session(study_set.id, 45, activities="practice", session_date="2024-03-01T14:00:00")
    engine.log_quiz_result(study_set.id, "Limits", 70)

    first = engine.compute_learning_twin(study_set.id).to_dict()
    second = engine.compute_learning_twin(study_set.id).to_dict()
    first.pop("updated_at")
    second.pop("updated_at")
    assert first == second

    stored = engine.get_learning_twin(study_set.id)
    assert stored.avg_session_minutes == 45
    assert stored.best_time_slot == "afternoon"
    assert stored.preferred_modality == "practice"
    assert stored.mastery_score == 70


def test_get_computes_on_first_request(engine):
    study_set = engine.create_set("Fresh")
    assert engine.store.get_learning_profile(study_set.id) is None
    profile = engine.get_learning_twin(study_set.id)
    assert profile.set_name == "Fresh"
    assert engine.store.get_learning_profile(study_set.id) is not None


def test_unknown_set(engine):
    with pytest.raises(NotFoundError):
        engine.compute_learning_twin("missing")
