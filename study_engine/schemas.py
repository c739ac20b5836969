"""Core data structures shared across modules."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


EXAM_CHOICES = ("A", "B", "C", "D")
TIME_SLOTS = ("morning", "afternoon", "evening", "night")
MODALITIES = ("reading", "practice", "quiz", "revision")
CONNECTION_TYPES = (
    "strongly_related",
    "related",
    "loosely_related",
    "tangentially_related",
)


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TextChunk:
    """One chunker output; ``start``/``end`` are token offsets, end exclusive."""

    text: str
    start: int
    end: int


@dataclass
class StudySet:
    """Top-level study collection."""

    id: str
    name: str
    subject: Optional[str] = None
    level: Optional[str] = None
    difficulty: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Document:
    id: str
    set_id: str
    filename: str
    filepath: str = ""
    media_type: str = "text/plain"
    size: int = 0
    uploaded_at: Optional[str] = None


@dataclass
class ChunkRecord:
    """Chunk record persisted into SQLite and the vector index."""

    id: str
    document_id: str
    set_id: str
    content: str
    chunk_index: int
    page_number: Optional[int] = None
    start_token: Optional[int] = None
    end_token: Optional[int] = None
    embedding: Optional[List[float]] = None
    created_at: Optional[str] = None

    def embedding_json(self) -> Optional[str]:
        if self.embedding is None:
            return None
        return json.dumps([float(v) for v in self.embedding])


@dataclass
class Connection:
    id: str
    source_set_id: str
    target_set_id: str
    connection_type: str
    strength: float
    created_at: Optional[str] = None


@dataclass
class StudySession:
    id: str
    set_id: str
    duration_minutes: float
    activities: str = ""
    notes: str = ""
    session_date: Optional[str] = None


class WeakAreas:
    """Weak-area tags stored either as a JSON array or as comma-separated text."""

    def __init__(self, value: Union[List[str], str, None]):
        self.value = value

    @property
    def is_structured(self) -> bool:
        return isinstance(self.value, list)

    @classmethod
    def parse(cls, raw: Optional[str]) -> List[str]:
        """Normalize the stored column into a list of tags."""
        if raw is None:
            return []
        text = str(raw).strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return [part.strip() for part in text.split(",") if part.strip()]
        if not isinstance(parsed, list):
            return []
        return [str(item).strip() for item in parsed if item is not None and str(item).strip()]

    def to_storage(self) -> str:
        if self.value is None:
            return "[]"
        if isinstance(self.value, list):
            return json.dumps([str(v) for v in self.value])
        return str(self.value)


@dataclass
class QuizResult:
    id: str
    set_id: str
    topic: str
    score: float
    total_questions: int = 0
    correct_answers: int = 0
    time_taken: Optional[float] = None
    weak_areas: List[str] = field(default_factory=list)
    completed_at: Optional[str] = None


@dataclass
class LearningProfile:
    """Behavioral/mastery snapshot for one set."""

    set_id: str
    set_name: str
    subject: Optional[str]
    level: Optional[str]
    baseline_difficulty: Optional[str]
    avg_session_minutes: int
    best_time_slot: str
    preferred_modality: str
    mastery_score: int
    recommended_daily_minutes: int
    adaptation_notes: str
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExamQuestion:
    id: str
    question: str
    options: List[str]
    answer: str
    explanation: str

    def public(self) -> Dict[str, Any]:
        """Question as shown to the learner, without answer or explanation."""
        return {"id": self.id, "question": self.question, "options": list(self.options)}


@dataclass
class ExamSession:
    id: str
    set_id: str
    questions: List[ExamQuestion]
    answer_key: Dict[str, str]
    answers: Optional[Dict[str, Optional[str]]] = None
    score: Optional[float] = None
    created_at: Optional[str] = None
    submitted_at: Optional[str] = None

    @property
    def status(self) -> str:
        return "submitted" if self.submitted_at else "generated"


@dataclass
class UserInteraction:
    id: str
    set_id: Optional[str]
    interaction_type: str
    query: str = ""
    result_quality: Optional[float] = None
    created_at: Optional[str] = None
