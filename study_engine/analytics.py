"""Study-activity logging, the cross-set progress overview and score/gap analytics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as dt_parser

from .errors import NotFoundError, ValidationError
from .schemas import QuizResult, StudySession, UserInteraction, WeakAreas, new_id, utc_now_iso
from .storage import SQLiteStore


GAP_TOP_AREAS = 5
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(ts: Optional[str]) -> datetime:
    # naive timestamps are read as UTC
    if not ts:
        return EARLIEST
    try:
        parsed = dt_parser.parse(ts)
    except (ValueError, OverflowError):
        return EARLIEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def progress_status(time_hours: float, avg_score: float) -> str:
    if avg_score >= 80:
        return "mastered"
    if time_hours > 10 and avg_score < 50:
        return "struggling"
    if time_hours > 5 and avg_score < 60:
        return "struggling"
    return "learning"


class ProgressTracker:
    """Appends study sessions, quiz results and interactions; never mutates them."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def _require_set(self, set_id: str) -> None:
        if not set_id:
            raise ValidationError("set_id is required")
        if self.store.get_set(set_id) is None:
            raise NotFoundError("Set", set_id)

    def log_study_session(
        self,
        set_id: str,
        duration_minutes: float,
        activities: str = "",
        notes: str = "",
        session_date: Optional[str] = None,
    ) -> StudySession:
        if duration_minutes is None or float(duration_minutes) < 0:
            raise ValidationError("duration_minutes must be a non-negative number")
        self._require_set(set_id)
        return self.store.insert_study_session(
            StudySession(
                id=new_id(),
                set_id=set_id,
                duration_minutes=float(duration_minutes),
                activities=activities or "",
                notes=notes or "",
                # local wall-clock time, bucketed by hour in the learning twin
                session_date=session_date or datetime.now().isoformat(timespec="seconds"),
            )
        )

    def log_quiz_result(
        self,
        set_id: str,
        topic: str,
        score: float,
        total_questions: int = 0,
        correct_answers: int = 0,
        time_taken: Optional[float] = None,
        weak_areas: Union[List[str], str, None] = None,
        completed_at: Optional[str] = None,
    ) -> QuizResult:
        if score is None or not 0 <= float(score) <= 100:
            raise ValidationError("score must be between 0 and 100")
        if total_questions < 0 or correct_answers < 0 or correct_answers > total_questions:
            raise ValidationError("correct_answers must be between 0 and total_questions")
        self._require_set(set_id)

        raw = WeakAreas(weak_areas)
        result = QuizResult(
            id=new_id(),
            set_id=set_id,
            topic=topic or "",
            score=float(score),
            total_questions=int(total_questions),
            correct_answers=int(correct_answers),
            time_taken=time_taken,
            weak_areas=WeakAreas.parse(raw.to_storage()),
            completed_at=completed_at or utc_now_iso(),
        )
        return self.store.insert_quiz_result(result, raw_weak_areas=raw)

    def log_interaction(
        self,
        interaction_type: str,
        set_id: Optional[str] = None,
        query: str = "",
        result_quality: Optional[float] = None,
    ) -> UserInteraction:
        if not interaction_type:
            raise ValidationError("interaction_type is required")
        if set_id is not None:
            self._require_set(set_id)
        return self.store.insert_interaction(
            UserInteraction(
                id=new_id(),
                set_id=set_id,
                interaction_type=interaction_type,
                query=query or "",
                result_quality=result_quality,
            )
        )

    def progress_overview(self) -> List[Dict[str, Any]]:
        overview = []
        for row in self.store.progress_rows():
            time_hours = float(row["time_hours"] or 0)
            avg_score = float(row["avg_score"] or 0)
            overview.append(
                {
                    **row,
                    "status": progress_status(time_hours, avg_score),
                    "time": round(time_hours, 1),
                    "score": round(avg_score),
                }
            )
        return overview

    def exam_score_analysis(self, limit: int = 30) -> Dict[str, Any]:
        """Submitted exams and quiz results merged into one chronological score history.

        ``trend_delta`` is the latest score minus the earliest one in the window.
        """
        attempts = [
            {**row, "source": "exam_mode"} for row in self.store.list_exam_scores(limit)
        ] + [{**row, "source": "quiz"} for row in self.store.list_quiz_scores(limit)]
        attempts.sort(key=lambda item: _sort_key(item["submitted_at"]))

        scores = [float(item["score"]) for item in attempts]
        average = round(sum(scores) / len(scores), 2) if scores else 0
        latest = scores[-1] if scores else 0
        trend_delta = round(latest - scores[0], 2) if len(scores) > 1 else 0

        by_topic: Dict[str, Dict[str, Any]] = {}
        for item, score in zip(attempts, scores):
            entry = by_topic.setdefault(item["topic"], {"topic": item["topic"], "attempts": 0, "total": 0.0})
            entry["attempts"] += 1
            entry["total"] += score

        return {
            "summary": {
                "total_attempts": len(attempts),
                "average_score": average,
                "latest_score": latest,
                "trend_delta": trend_delta,
            },
            "timeline": [
                {
                    "index": idx,
                    "topic": item["topic"],
                    "score": round(score, 2),
                    "source": item["source"],
                    "submitted_at": item["submitted_at"],
                }
                for idx, (item, score) in enumerate(zip(attempts, scores), start=1)
            ],
            "by_topic": [
                {
                    "topic": entry["topic"],
                    "attempts": entry["attempts"],
                    "avg_score": round(entry["total"] / entry["attempts"], 2),
                }
                for entry in by_topic.values()
            ],
        }

    def set_gap_analysis(self, set_id: str) -> Dict[str, Any]:
        """Most frequent weak areas of one set with its activity totals."""
        study_set = self.store.get_set(set_id)
        if study_set is None:
            raise NotFoundError("Set", set_id)

        quizzes = self.store.list_quiz_results(set_id)
        counts: Dict[str, int] = {}
        for quiz in quizzes:
            for area in quiz.weak_areas:
                counts[area] = counts.get(area, 0) + 1
        # sorted() is stable, so equal counts keep first-seen (most recent) order
        ranked = sorted(counts, key=lambda area: counts[area], reverse=True)

        return {
            "set_id": set_id,
            "set_name": study_set.name,
            "weak_areas": ranked[:GAP_TOP_AREAS],
            "weak_area_counts": {area: counts[area] for area in ranked[:GAP_TOP_AREAS]},
            "total_sessions": len(self.store.list_study_sessions(set_id)),
            "total_quizzes": len(quizzes),
            "average_score": round(sum(q.score for q in quizzes) / len(quizzes), 2) if quizzes else 0,
        }
