"""Orchestration layer exposing ingestion, retrieval, analytics and exams."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .analytics import ProgressTracker
from .answering import AnswerSynthesizer, TrustGate
from .breakpoint import BreakpointDetector
from .chunking import Chunker
from .config import AppConfig
from .errors import NotFoundError
from .exam import ExamSessionManager
from .graph import RelationshipGraphBuilder
from .ingest import DocumentIngestor
from .learning_twin import LearningTwinAggregator
from .logging import configure_logging, get_logger
from .providers import GeminiCompletionProvider, GeminiEmbeddingProvider, ModelCatalog, default_catalog
from .retrieval import HybridRetriever
from .schemas import LearningProfile, QuizResult, StudySession, StudySet
from .storage import SQLiteStore
from .vector_index import build_vector_index

logger = get_logger(__name__)


class StudyEngine:
    """High-level engine composed of small single-purpose modules."""

    def __init__(
        self,
        config: AppConfig,
        store: Optional[SQLiteStore] = None,
        embedder: Any = None,
        completer: Any = None,
        vector_index: Any = None,
        catalog: Optional[ModelCatalog] = None,
    ):
        self.config = config
        configure_logging(config.logging.level)

        self.store = store or SQLiteStore(config.paths.sqlite_path)
        catalog = catalog or default_catalog
        self.embedder = embedder or GeminiEmbeddingProvider(
            config.providers, api_key=config.google_api_key, catalog=catalog
        )
        self.completer = completer or GeminiCompletionProvider(
            config.providers, api_key=config.google_api_key, catalog=catalog
        )
        self.vector_index = vector_index or build_vector_index(config, self.store)

        self.ingestor = DocumentIngestor(
            self.store, Chunker(config.chunking), self.embedder, self.vector_index
        )
        self.retriever = HybridRetriever(
            self.store, self.vector_index, self.embedder, config.retrieval
        )
        self.synthesizer = AnswerSynthesizer(
            self.retriever, self.completer, evidence_count=config.trust_gate.evidence_count
        )
        self.trust_gate = TrustGate(self.synthesizer, config.trust_gate)
        self.graph = RelationshipGraphBuilder(self.store, config.graph)
        self.learning_twin = LearningTwinAggregator(self.store)
        self.breakpoints = BreakpointDetector(self.store)
        self.exams = ExamSessionManager(self.store, self.completer, config.exam)
        self.progress = ProgressTracker(self.store)

    # Sets and documents

    def create_set(self, name: str, **fields: Any) -> StudySet:
        return self.store.create_set(name, **fields)

    def ingest_document(self, set_id: str, text: str, filename: str = "document.txt", **kwargs: Any) -> int:
        """Chunk, embed and index text for a set; returns the chunk count."""
        result = self.ingestor.ingest_document(set_id, text, filename=filename, **kwargs)
        self._after_ingest(set_id)
        return result["chunk_count"]

    def ingest_file(self, set_id: str, path: Union[str, Path]) -> int:
        result = self.ingestor.ingest_file(set_id, str(path))
        self._after_ingest(set_id)
        return result["chunk_count"]

    def delete_document(self, document_id: str) -> None:
        self.ingestor.delete_document(document_id)

    def _after_ingest(self, set_id: str) -> None:
        if self.config.graph.rebuild_on_ingest:
            self.graph.build_connections(set_id)

    # Retrieval and answers

    def retrieve(self, query: str, set_id: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        self._check_set(set_id)
        return self.retriever.retrieve(query, set_id, limit)

    def query(self, query: str, set_id: Optional[str] = None) -> Dict[str, Any]:
        self._check_set(set_id)
        response = self.synthesizer.synthesize(query, set_id)
        self.progress.log_interaction(
            "query", set_id=set_id, query=query, result_quality=response["confidence"]
        )
        return response

    def safe_query(self, query: str, set_id: Optional[str] = None) -> Dict[str, Any]:
        self._check_set(set_id)
        return self.trust_gate.safe_query(query, set_id)

    # Graph

    def build_connections(self, set_id: str) -> Dict[str, Any]:
        return self.graph.build_connections(set_id)

    def get_set_connections(self, set_id: str) -> List[Dict[str, Any]]:
        self._check_set(set_id)
        return self.graph.get_set_connections(set_id)

    def get_graph_data(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.graph.get_graph_data()

    # Study activity and analytics

    def log_study_session(self, set_id: str, duration_minutes: float, **kwargs: Any) -> StudySession:
        return self.progress.log_study_session(set_id, duration_minutes, **kwargs)

    def log_quiz_result(self, set_id: str, topic: str, score: float, **kwargs: Any) -> QuizResult:
        return self.progress.log_quiz_result(set_id, topic, score, **kwargs)

    def progress_overview(self) -> List[Dict[str, Any]]:
        return self.progress.progress_overview()

    def exam_score_analysis(self, limit: int = 30) -> Dict[str, Any]:
        return self.progress.exam_score_analysis(limit)

    def set_gap_analysis(self, set_id: str) -> Dict[str, Any]:
        return self.progress.set_gap_analysis(set_id)

    def get_learning_twin(self, set_id: str) -> LearningProfile:
        return self.learning_twin.get_profile(set_id)

    def compute_learning_twin(self, set_id: str) -> LearningProfile:
        return self.learning_twin.compute_profile(set_id)

    def detect_breakpoint(self, set_id: str) -> Dict[str, Any]:
        return self.breakpoints.detect(set_id)

    # Exams

    def generate_exam(self, set_id: str, num_questions: Optional[int] = None) -> Dict[str, Any]:
        return self.exams.generate(set_id, num_questions)

    def get_exam(self, session_id: str) -> Dict[str, Any]:
        return self.exams.get(session_id)

    def submit_exam(self, session_id: str, answers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return self.exams.submit(session_id, answers)

    def stats(self) -> Dict[str, int]:
        return {
            "sets": len(self.store.list_sets()),
            "chunks": self.store.count_chunks(),
            "indexed_vectors": self.vector_index.count(),
        }

    def close(self) -> None:
        self.store.close()

    def _check_set(self, set_id: Optional[str]) -> None:
        if set_id is not None and self.store.get_set(set_id) is None:
            raise NotFoundError("Set", set_id)
