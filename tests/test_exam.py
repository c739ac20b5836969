"""Tests for exam generation, grading and the session lifecycle."""

import json

import pytest

from study_engine.errors import ExamAlreadySubmittedError, NotFoundError, ValidationError
from study_engine.exam import (
    FALLBACK_EXPLANATION,
    GENERIC_OPTIONS,
    HIGH_SCORE_RECOMMENDATION,
    LOW_SCORE_RECOMMENDATION,
    fallback_questions,
    grade,
    normalize_questions,
)
from study_engine.schemas import ExamQuestion

VALID_EXAM = json.dumps(
    [
        {
            "id": "q1",
            "question": "What is the derivative of x^2?",
            "options": ["2x", "x", "x^2", "2"],
            "answer": "a",
            "explanation": "Power rule.",
        },
        {
            "id": "q2",
            "question": "What is the derivative of a constant?",
            "options": ["1", "0", "x", "undefined"],
            "answer": "B",
            "explanation": "Constants do not change.",
        },
        {
            "id": "q3",
            "question": "What is the derivative of 3x?",
            "options": ["3x", "x", "3", "0"],
            "answer": "C",
            "explanation": "Linear term.",
        },
    ]
)


def _questions(*answers):
    return [
        ExamQuestion(id=f"q{i}", question=f"Q{i}", options=list(GENERIC_OPTIONS), answer=a, explanation="e")
        for i, a in enumerate(answers, start=1)
    ]


def test_grade_counts_case_insensitive_matches():
    questions = _questions("A", "B", "C")
    graded = grade(questions, {"q1": "A", "q2": "B", "q3": "C"}, {"q1": "a", "q2": " B ", "q3": "D"})
    assert graded["correct"] == 2
    assert graded["total"] == 3
    assert graded["score"] == pytest.approx(200 / 3)
    assert [r["is_correct"] for r in graded["result"]] == [True, True, False]


def test_grade_missing_answers_are_wrong():
    graded = grade(_questions("A"), {"q1": "A"}, {})
    assert graded["score"] == 0
    assert graded["result"][0]["selected"] is None


def test_grade_empty_exam_scores_zero():
    assert grade([], {}, {})["score"] == 0


def test_fallback_questions_cycle_through_material():
    questions = fallback_questions(["first chunk", "second chunk"], 5)
    assert [q["id"] for q in questions] == ["q1", "q2", "q3", "q4", "q5"]
    assert "first chunk" in questions[2]["question"]
    assert all(q["answer"] == "A" for q in questions)
    assert all(q["options"] == GENERIC_OPTIONS for q in questions)
    assert questions[0]["explanation"] == FALLBACK_EXPLANATION


def test_normalize_repairs_bad_items():
    raw = [
        {"id": "q1", "question": "Ok?", "options": ["1", "2", "3", "4", "5"], "answer": "e"},
        {"id": "q1", "question": "Duplicate id", "options": ["only", "two"], "answer": "C"},
        "not a dict",
    ]
    questions = normalize_questions(raw, 3)
    assert [q.id for q in questions] == ["q1", "q2", "q3"]
    assert questions[0].options == ["1", "2", "3", "4"]
    assert questions[0].answer == "A"
    assert questions[1].options == GENERIC_OPTIONS
    assert questions[1].answer == "C"
    assert questions[2].question == "Question 3"


def test_generate_uses_model_output(engine, calculus_set, completer):
    completer.responses = [f"```json\n{VALID_EXAM}\n```"]
    exam = engine.generate_exam(calculus_set.id, 3)
    assert exam["total_questions"] == 3
    assert exam["set_name"] == "Calculus I"
    call = completer.calls[0]
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 1800
    assert "derivative of a polynomial" in call["prompt"]


def test_generated_questions_hide_answers(engine, calculus_set, completer):
    completer.responses = [VALID_EXAM]
    exam = engine.generate_exam(calculus_set.id, 3)
    for question in exam["questions"]:
        assert set(question) == {"id", "question", "options"}
    fetched = engine.get_exam(exam["session_id"])
    assert fetched["status"] == "generated"
    assert all("answer" not in q for q in fetched["questions"])


def test_invalid_json_falls_back_to_requested_count(engine, calculus_set, completer):
    """Unparseable output still yields n gradeable questions keyed to A."""
    completer.responses = ["Sure! Here are some questions: 1) ..."]
    exam = engine.generate_exam(calculus_set.id, 4)
    assert exam["total_questions"] == 4
    graded = engine.submit_exam(exam["session_id"], {q["id"]: "A" for q in exam["questions"]})
    assert graded["score"] == 100
    assert graded["recommendation"] == HIGH_SCORE_RECOMMENDATION


def test_completion_error_falls_back(engine, calculus_set, completer):
    completer.responses = [RuntimeError("provider down")]
    exam = engine.generate_exam(calculus_set.id, 2)
    assert exam["total_questions"] == 2


def test_fewer_questions_than_requested_is_accepted(engine, calculus_set, completer):
    completer.responses = [VALID_EXAM]
    assert engine.generate_exam(calculus_set.id, 2)["total_questions"] == 2


def test_empty_set_gets_baseline_exam(engine, completer):
    study_set = engine.create_set("Empty", subject="Chemistry")
    completer.responses = ["no json"]
    exam = engine.generate_exam(study_set.id, 3)
    assert exam["total_questions"] == 3
    assert "Empty" in exam["questions"][0]["question"]


def test_submit_scores_and_locks_session(engine, calculus_set, completer):
    completer.responses = [VALID_EXAM]
    exam = engine.generate_exam(calculus_set.id, 3)
    graded = engine.submit_exam(exam["session_id"], {"q1": "A", "q2": "B", "q3": "A"})
    assert graded["correct"] == 2
    assert graded["score"] == pytest.approx(66.667, abs=1e-3)
    assert graded["submitted_at"]
    assert graded["recommendation"] == HIGH_SCORE_RECOMMENDATION

    fetched = engine.get_exam(exam["session_id"])
    assert fetched["status"] == "submitted"
    assert fetched["score"] == pytest.approx(graded["score"])

    with pytest.raises(ExamAlreadySubmittedError):
        engine.submit_exam(exam["session_id"], {"q1": "A", "q2": "B", "q3": "C"})
    assert engine.get_exam(exam["session_id"])["score"] == pytest.approx(graded["score"])


def test_low_score_recommendation(engine, calculus_set, completer):
    completer.responses = [VALID_EXAM]
    exam = engine.generate_exam(calculus_set.id, 3)
    graded = engine.submit_exam(exam["session_id"], None)
    assert graded["score"] == 0
    assert graded["recommendation"] == LOW_SCORE_RECOMMENDATION


def test_submission_guard_in_storage(engine, calculus_set, completer):
    """A second write to the same session is refused at the storage layer."""
    completer.responses = [VALID_EXAM]
    session_id = engine.generate_exam(calculus_set.id, 3)["session_id"]
    assert engine.store.record_exam_submission(session_id, {}, 10.0) is not None
    assert engine.store.record_exam_submission(session_id, {}, 90.0) is None


@pytest.mark.parametrize("count", [0, -1, 51])
def test_question_count_validated(engine, calculus_set, count):
    with pytest.raises(ValidationError):
        engine.generate_exam(calculus_set.id, count)


@pytest.mark.parametrize("count", ["many", "2.5", [], object()])
def test_non_integer_question_count_rejected(engine, calculus_set, completer, count):
    with pytest.raises(ValidationError):
        engine.generate_exam(calculus_set.id, count)
    assert completer.call_count == 0


def test_default_question_count(engine, calculus_set, completer):
    completer.responses = ["no json"]
    assert engine.generate_exam(calculus_set.id)["total_questions"] == 8


def test_unknown_ids(engine):
    with pytest.raises(NotFoundError):
        engine.generate_exam("missing", 3)
    with pytest.raises(NotFoundError):
        engine.get_exam("missing")
    with pytest.raises(NotFoundError):
        engine.submit_exam("missing", {})


def test_answers_must_be_mapping(engine, calculus_set, completer):
    completer.responses = [VALID_EXAM]
    session_id = engine.generate_exam(calculus_set.id, 3)["session_id"]
    with pytest.raises(ValidationError):
        engine.submit_exam(session_id, ["A", "B"])


def test_grading_is_deterministic():
    questions = _questions("A", "C", "D", "B")
    key = {q.id: q.answer for q in questions}
    answers = {"q1": "A", "q2": "B", "q3": "D"}
    assert grade(questions, key, answers) == grade(questions, key, answers)
    assert grade(questions, key, answers)["score"] == 50
