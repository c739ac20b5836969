"""Learning twin: a behavioral and mastery profile derived from a set's study logs."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, List, Optional

from dateutil import parser as dt_parser

from .errors import NotFoundError
from .logging import get_logger
from .schemas import MODALITIES, TIME_SLOTS, LearningProfile, QuizResult, StudySession, StudySet
from .storage import SQLiteStore

logger = get_logger(__name__)

DEFAULT_SESSION_MINUTES = 30
MASTERY_THRESHOLD = 60
EXTRA_PRACTICE_MINUTES = 20
MAX_DAILY_MINUTES = 120

LOW_MASTERY_NOTES = "Reduce topic breadth and increase guided practice blocks."
HIGH_MASTERY_NOTES = "Maintain pace and add challenge questions for depth."

MODALITY_KEYWORDS = [
    ("reading", ("read",)),
    ("practice", ("practice", "problem")),
    ("quiz", ("quiz", "test")),
    ("revision", ("revise", "review")),
]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _parse_local(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        parsed = dt_parser.parse(ts)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed


def time_slot(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"


def _first_max(order, counts: Dict[str, int]) -> str:
    # max() keeps the first of equal keys, so ties follow ``order``
    return max(order, key=lambda key: counts[key])


def build_profile(
    study_set: StudySet, sessions: List[StudySession], quizzes: List[QuizResult]
) -> LearningProfile:
    """Pure function of the logs; same inputs give the same profile."""
    if sessions:
        total = sum(max(0.0, float(s.duration_minutes or 0)) for s in sessions)
        avg_minutes = _round_half_up(total / len(sessions))
    else:
        avg_minutes = DEFAULT_SESSION_MINUTES

    slot_counts = {slot: 0 for slot in TIME_SLOTS}
    for session in sessions:
        when = _parse_local(session.session_date)
        if when is not None:
            slot_counts[time_slot(when.hour)] += 1

    modality_counts = {m: 0 for m in MODALITIES}
    for session in sessions:
        activities = (session.activities or "").lower()
        for modality, needles in MODALITY_KEYWORDS:
            if any(needle in activities for needle in needles):
                modality_counts[modality] += 1

    if quizzes:
        mastery = _round_half_up(sum(float(q.score or 0) for q in quizzes) / len(quizzes))
    else:
        mastery = 0

    low_mastery = mastery < MASTERY_THRESHOLD
    recommended = avg_minutes + EXTRA_PRACTICE_MINUTES if low_mastery else avg_minutes
    recommended = max(0, min(recommended, MAX_DAILY_MINUTES))

    return LearningProfile(
        set_id=study_set.id,
        set_name=study_set.name,
        subject=study_set.subject,
        level=study_set.level,
        baseline_difficulty=study_set.difficulty,
        avg_session_minutes=avg_minutes,
        best_time_slot=_first_max(TIME_SLOTS, slot_counts),
        preferred_modality=_first_max(MODALITIES, modality_counts),
        mastery_score=mastery,
        recommended_daily_minutes=recommended,
        adaptation_notes=LOW_MASTERY_NOTES if low_mastery else HIGH_MASTERY_NOTES,
    )


class LearningTwinAggregator:
    """Computes and caches one profile per set."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def compute_profile(self, set_id: str) -> LearningProfile:
        study_set = self.store.get_set(set_id)
        if study_set is None:
            raise NotFoundError("Set", set_id)
        profile = build_profile(
            study_set,
            self.store.list_study_sessions(set_id),
            self.store.list_quiz_results(set_id),
        )
        logger.debug(f"Learning twin recomputed for set {set_id}")
        return self.store.upsert_learning_profile(profile)

    def get_profile(self, set_id: str) -> LearningProfile:
        """Stored profile, computed on first request."""
        stored = self.store.get_learning_profile(set_id)
        if stored is not None:
            return stored
        return self.compute_profile(set_id)
