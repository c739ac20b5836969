"""End-to-end demo: ingest -> retrieve -> safe query -> exam round trip -> learning twin."""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from study_engine.config import AppConfig  # noqa: E402
from study_engine.pipeline import StudyEngine  # noqa: E402

CALCULUS_NOTES = (
    "The derivative of a polynomial is found term by term with the power rule.\n\n"
    "For f(x) = 3x^2 + 2x, the derivative is 6x + 2.\n\n"
    "Integration reverses differentiation; the integral of 6x + 2 is 3x^2 + 2x + C."
)
PHYSICS_NOTES = (
    "Newtonian mechanics relates force, mass and acceleration through F = ma.\n\n"
    "The derivative of position with respect to time is velocity."
)


def main() -> None:
    config = AppConfig.from_yaml(str(PROJECT_ROOT / "config.yaml"))
    engine = StudyEngine(config)

    calculus = engine.create_set("Calculus I", subject="Mathematics", level="Year 12")
    physics = engine.create_set("Mechanics", subject="Physics", level="Year 12")
    print("== Ingest ==")
    print(f"calculus chunks: {engine.ingest_document(calculus.id, CALCULUS_NOTES, filename='calculus.txt')}")
    print(f"physics chunks: {engine.ingest_document(physics.id, PHYSICS_NOTES, filename='physics.txt')}")

    print("\n== Retrieval ==")
    retrieval = engine.retrieve("derivative of a polynomial", calculus.id)
    print(f"search_type={retrieval['search_type']}")
    for i, hit in enumerate(retrieval["results"], start=1):
        preview = " ".join(hit["content"].split()[:20])
        print(f"{i}. score={hit['relevance_score']:.4f} {hit['citation']}\n   {preview}...")

    print("\n== Safe query ==")
    gated = engine.safe_query("How do I differentiate a polynomial?", calculus.id)
    print(f"verdict={gated['verdict']} trust={gated['trust_score']}")
    print(gated["answer"])

    print("\n== Exam ==")
    exam = engine.generate_exam(calculus.id, 3)
    answers = {q["id"]: "A" for q in exam["questions"]}
    graded = engine.submit_exam(exam["session_id"], answers)
    print(f"score={graded['score']:.1f} ({graded['correct']}/{graded['total']})")
    print(graded["recommendation"])

    print("\n== Learning twin ==")
    engine.log_study_session(calculus.id, 45, activities="read notes, practice problems")
    engine.log_quiz_result(calculus.id, "Derivatives", 55, weak_areas=["integration by parts"])
    print(engine.compute_learning_twin(calculus.id).to_dict())
    print(engine.detect_breakpoint(calculus.id))

    print("\n== Graph ==")
    print(engine.get_graph_data())


if __name__ == "__main__":
    main()
