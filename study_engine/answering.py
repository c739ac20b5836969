"""Grounded answer synthesis and the trust gate in front of it."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .config import TrustGateConfig
from .logging import get_logger
from .prompts import build_qa_prompt
from .retrieval import HybridRetriever

logger = get_logger(__name__)

NO_EVIDENCE_ANSWER = (
    "I couldn't find any relevant information in your documents to answer this question. "
    "Try uploading more materials or rephrasing your query."
)
LOW_TRUST_ANSWER = (
    "I cannot provide a trusted answer yet because evidence from your uploaded material "
    "is insufficient."
)
LOW_TRUST_RECOMMENDATION = "Upload more topic-specific documents or ask a narrower question."


def mean_relevance(results: List[Dict[str, Any]]) -> float:
    if not results:
        return 0.0
    return sum(float(r.get("relevance_score") or 0.0) for r in results) / len(results)


class AnswerSynthesizer:
    """Asks the completion provider for an answer grounded in retrieved chunks."""

    def __init__(self, retriever: HybridRetriever, completer: Any, evidence_count: int = 5):
        self.retriever = retriever
        self.completer = completer
        self.evidence_count = evidence_count

    def synthesize(
        self,
        query: str,
        set_id: Optional[str] = None,
        retrieval: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        retrieval = retrieval or self.retriever.retrieve(query, set_id, self.evidence_count)
        results = retrieval["results"]
        if not results:
            return {
                "answer": NO_EVIDENCE_ANSWER,
                "sources": [],
                "confidence": 0.0,
                "search_type": retrieval["search_type"],
            }

        answer = self.completer.complete(
            build_qa_prompt(query, results), temperature=0.7, max_tokens=1000
        )
        return {
            "answer": answer,
            "sources": [
                {
                    "citation": r["citation"],
                    "source": r["source"],
                    "relevance": r["relevance_score"],
                }
                for r in results
            ],
            "confidence": min(1.0, mean_relevance(results)),
            "search_type": retrieval["search_type"],
        }


class TrustGate:
    """Blocks synthesis when evidence is thin; otherwise labels the answer's trust level."""

    def __init__(self, synthesizer: AnswerSynthesizer, config: Optional[TrustGateConfig] = None):
        self.synthesizer = synthesizer
        self.config = config or TrustGateConfig()

    def safe_query(self, query: str, set_id: Optional[str] = None) -> Dict[str, Any]:
        retrieval = self.synthesizer.retriever.retrieve(query, set_id, self.config.evidence_count)
        evidence = retrieval["results"]
        evidence_score = mean_relevance(evidence)

        if not evidence or evidence_score < self.config.block_threshold:
            logger.info(
                f"Blocked low-trust answer: evidence_count={len(evidence)} score={evidence_score:.3f}"
            )
            return {
                "blocked": True,
                "verdict": "low-trust",
                "trust_score": round(evidence_score, 3),
                "answer": LOW_TRUST_ANSWER,
                "evidence_count": len(evidence),
                "evidence": evidence,
                "recommendation": LOW_TRUST_RECOMMENDATION,
                "search_type": retrieval["search_type"],
            }

        response = self.synthesizer.synthesize(query, set_id, retrieval=retrieval)
        citation_coverage = 1.0 if response["sources"] else 0.0
        trust_score = min(1.0, evidence_score * 0.7 + citation_coverage * 0.3)
        verdict = "high-trust" if trust_score >= self.config.high_trust_threshold else "medium-trust"

        return {
            "blocked": False,
            "verdict": verdict,
            "trust_score": round(trust_score, 3),
            "evidence_count": len(evidence),
            "evidence": evidence,
            **response,
        }
