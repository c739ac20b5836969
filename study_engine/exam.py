"""Exam sessions: generate multiple-choice exams from set material and grade submissions."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .config import ExamConfig
from .errors import ExamAlreadySubmittedError, NotFoundError, ValidationError
from .logging import get_logger, log_with_context
from .prompts import build_exam_prompt
from .schemas import EXAM_CHOICES, ExamQuestion, ExamSession, new_id
from .storage import SQLiteStore

logger = get_logger(__name__)

GENERIC_OPTIONS = ["Option A", "Option B", "Option C", "Option D"]
FALLBACK_EXPLANATION = "Derived from uploaded source content."
MISSING_EXPLANATION = "No explanation provided."
PASS_SCORE = 60
LOW_SCORE_RECOMMENDATION = "Focus on prerequisite concepts and retry after targeted revision."
HIGH_SCORE_RECOMMENDATION = "Strong performance. Increase challenge level in next plan."

FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _extract_json_array(raw: str) -> Optional[list]:
    raw = (raw or "").strip()
    block = FENCE_RE.search(raw)
    if block:
        raw = block.group(1)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\[[\s\S]*\]", raw)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, list) else None


def fallback_questions(material: List[str], count: int) -> List[Dict[str, Any]]:
    """One mechanical question per chunk, reusing chunks when there are fewer than ``count``."""
    questions = []
    for idx in range(count):
        snippet = " ".join(material[idx % len(material)].split())[:120]
        questions.append(
            {
                "id": f"q{idx + 1}",
                "question": f'Based on your material, which statement best matches: "{snippet}..."?',
                "options": list(GENERIC_OPTIONS),
                "answer": "A",
                "explanation": FALLBACK_EXPLANATION,
            }
        )
    return questions


def normalize_questions(raw: List[Any], count: int) -> List[ExamQuestion]:
    normalized: List[ExamQuestion] = []
    seen = set()
    for idx, item in enumerate(raw[:count]):
        item = item if isinstance(item, dict) else {}
        qid = str(item.get("id") or f"q{idx + 1}")
        if qid in seen:
            qid = f"q{idx + 1}"
            while qid in seen:
                qid = f"{qid}_"
        seen.add(qid)

        options = item.get("options")
        if isinstance(options, list) and len(options) >= 4:
            options = [str(o) for o in options[:4]]
        else:
            options = list(GENERIC_OPTIONS)

        answer = str(item.get("answer") or "").strip().upper()
        normalized.append(
            ExamQuestion(
                id=qid,
                question=str(item.get("question") or f"Question {idx + 1}"),
                options=options,
                answer=answer if answer in EXAM_CHOICES else "A",
                explanation=str(item.get("explanation") or MISSING_EXPLANATION),
            )
        )
    return normalized


def _normalize_choice(value: Any) -> Optional[str]:
    if value is None:
        return None
    choice = str(value).strip().upper()
    return choice or None


def grade(
    questions: List[ExamQuestion], answer_key: Dict[str, str], answers: Dict[str, Any]
) -> Dict[str, Any]:
    """Score a set of answers against the key; pure."""
    correct = 0
    breakdown = []
    selected_by_id: Dict[str, Optional[str]] = {}
    for question in questions:
        selected = _normalize_choice(answers.get(question.id))
        selected_by_id[question.id] = selected
        expected = answer_key.get(question.id)
        is_correct = selected is not None and selected == expected
        if is_correct:
            correct += 1
        breakdown.append(
            {
                "id": question.id,
                "question": question.question,
                "selected": selected,
                "correct_answer": expected,
                "is_correct": is_correct,
                "explanation": question.explanation,
            }
        )
    total = len(questions)
    score = 100 * correct / total if total else 0.0
    return {"score": score, "correct": correct, "total": total, "result": breakdown, "answers": selected_by_id}


class ExamSessionManager:
    """Owns the generated -> submitted lifecycle of exam sessions."""

    def __init__(self, store: SQLiteStore, completer: Any, config: Optional[ExamConfig] = None):
        self.store = store
        self.completer = completer
        self.config = config or ExamConfig()

    def generate(self, set_id: str, num_questions: Optional[int] = None) -> Dict[str, Any]:
        try:
            count = self.config.default_questions if num_questions is None else int(num_questions)
        except (TypeError, ValueError):
            raise ValidationError(f"num_questions must be an integer, got {num_questions!r}") from None
        if count < 1 or count > self.config.max_questions:
            raise ValidationError(f"num_questions must be between 1 and {self.config.max_questions}")
        study_set = self.store.get_set(set_id)
        if study_set is None:
            raise NotFoundError("Set", set_id)

        chunks = self.store.list_chunks(set_id, limit=self.config.context_chunks)
        material = [c.content for c in chunks] or [
            f"{study_set.name}. Subject: {study_set.subject}. Create baseline assessment "
            "covering fundamentals, common mistakes, and core definitions."
        ]

        raw = self._generate_raw(study_set.subject or study_set.name, count, material)
        if not raw:
            log_with_context(
                logger, logging.WARNING, "Using synthetic exam questions", set_id=set_id, count=count
            )
            raw = fallback_questions(material, count)

        questions = normalize_questions(raw, count)
        session = self.store.insert_exam_session(
            ExamSession(
                id=new_id(),
                set_id=set_id,
                questions=questions,
                answer_key={q.id: q.answer for q in questions},
            )
        )
        return {
            "session_id": session.id,
            "set_id": set_id,
            "set_name": study_set.name,
            "total_questions": len(questions),
            "questions": [q.public() for q in questions],
        }

    def _generate_raw(self, subject: str, count: int, material: List[str]) -> Optional[list]:
        try:
            text = self.completer.complete(
                build_exam_prompt(subject, count, material), temperature=0.3, max_tokens=1800
            )
        except Exception as exc:
            logger.warning(f"Exam generation call failed: {exc}")
            return None
        parsed = _extract_json_array(text)
        if not parsed:
            logger.warning("Exam generation returned no parseable question list")
            return None
        return parsed

    def get(self, session_id: str) -> Dict[str, Any]:
        session = self._load(session_id)
        return {
            "session_id": session.id,
            "set_id": session.set_id,
            "status": session.status,
            "total_questions": len(session.questions),
            "questions": [q.public() for q in session.questions],
            "submitted_at": session.submitted_at,
            "score": session.score,
        }

    def submit(self, session_id: str, answers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if answers is not None and not isinstance(answers, dict):
            raise ValidationError("answers must be a mapping of question id to choice")
        session = self._load(session_id)
        if session.submitted_at:
            raise ExamAlreadySubmittedError(session_id)

        graded = grade(session.questions, session.answer_key, answers or {})
        submitted_at = self.store.record_exam_submission(session_id, graded["answers"], graded["score"])
        if submitted_at is None:
            raise ExamAlreadySubmittedError(session_id)

        return {
            "session_id": session_id,
            "score": graded["score"],
            "correct": graded["correct"],
            "total": graded["total"],
            "result": graded["result"],
            "submitted_at": submitted_at,
            "recommendation": LOW_SCORE_RECOMMENDATION
            if graded["score"] < PASS_SCORE
            else HIGH_SCORE_RECOMMENDATION,
        }

    def _load(self, session_id: str) -> ExamSession:
        session = self.store.get_exam_session(session_id)
        if session is None:
            raise NotFoundError("Exam session", session_id)
        return session
