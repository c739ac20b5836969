"""Breakpoint detection: the most frequent weak area and the prerequisite behind it."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .storage import SQLiteStore

RECENT_RESULTS = 30

PREREQUISITE_RULES = [
    ("algebra", "Arithmetic operations and equation basics"),
    ("integration", "Functions, derivatives, and limits"),
    ("mechanics", "Vectors and Newtonian fundamentals"),
    ("thermo", "Energy conservation and state variables"),
    ("grammar", "Sentence structure and parts of speech"),
]
DEFAULT_PREREQUISITE = "Core fundamentals and definitions of this topic"
BASELINE_STEP = "Take a baseline quiz first to detect weak prerequisites."


def infer_prerequisite(topic: Optional[str]) -> str:
    lowered = (topic or "").lower()
    for keyword, prerequisite in PREREQUISITE_RULES:
        if keyword in lowered:
            return prerequisite
    return DEFAULT_PREREQUISITE


def remediation_path(prerequisite: str, topic: Optional[str]) -> List[str]:
    return [
        f"Rebuild prerequisite: {prerequisite}",
        f"Do focused drills for: {topic or 'your recent quiz mistakes'}",
        "Re-test after 48 hours using Exam Mode.",
    ]


class BreakpointDetector:
    def __init__(self, store: SQLiteStore):
        self.store = store

    def detect(self, set_id: str) -> Dict[str, Any]:
        if self.store.get_set(set_id) is None:
            raise NotFoundError("Set", set_id)

        results = self.store.list_quiz_results(set_id, limit=RECENT_RESULTS)
        if not results:
            return {
                "set_id": set_id,
                "breakpoint_topic": None,
                "prerequisite_root": None,
                "confidence": 0,
                "remediation_path": [BASELINE_STEP],
            }

        counts: Dict[str, int] = {}
        for result in results:
            for area in result.weak_areas:
                key = area.lower()
                counts[key] = counts.get(key, 0) + 1

        topic: Optional[str] = None
        support = 0
        for key, count in counts.items():
            if count > support:
                topic, support = key, count

        confidence = max(0.0, min(1.0, support / max(1, len(results))))
        prerequisite = infer_prerequisite(topic)
        return {
            "set_id": set_id,
            "breakpoint_topic": topic,
            "prerequisite_root": prerequisite,
            "confidence": round(confidence, 2),
            "support": support,
            "results_considered": len(results),
            "remediation_path": remediation_path(prerequisite, topic),
        }
