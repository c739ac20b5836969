"""Hybrid retrieval: vector similarity blended with keyword overlap, keyword-only fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import RetrievalConfig
from .errors import ValidationError
from .logging import get_logger
from .storage import SQLiteStore

logger = get_logger(__name__)

SEARCH_HYBRID = "semantic_hybrid"
SEARCH_KEYWORD_FALLBACK = "keyword_fallback"


@dataclass
class RetrievalWeights:
    """Ranking weights for hybrid retrieval."""

    semantic: float = 0.7
    keyword: float = 0.3


def extract_keywords(query: str, min_length: int = 4) -> List[str]:
    """Lowercased tokens of at least ``min_length`` chars; the whole query if none qualify."""
    keywords = [w for w in query.lower().split() if len(w) >= min_length]
    if not keywords:
        keywords = [query.lower().strip()]
    return keywords


def keyword_score(text: str, keywords: List[str]) -> float:
    if not keywords:
        return 0.0
    lowered = text.lower()
    hits = sum(1 for keyword in keywords if keyword in lowered)
    return hits / len(keywords)


def format_citation(filename: Optional[str], chunk_index: Any) -> str:
    if not filename:
        return "Unknown"
    return f"{filename} (Chunk {chunk_index})"


class HybridRetriever:
    """Ranks chunks for a query, degrading to substring search when embeddings fail."""

    def __init__(
        self,
        store: SQLiteStore,
        vector_index: Any,
        embedder: Any,
        config: Optional[RetrievalConfig] = None,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        query_text: str,
        set_id: Optional[str] = None,
        limit: Optional[int] = None,
        weights: Optional[RetrievalWeights] = None,
    ) -> Dict[str, Any]:
        """Return ``{query, results, total_found, search_type}``."""
        if not query_text or not query_text.strip():
            raise ValidationError("query is required")
        limit = max(1, limit or self.config.default_limit)
        weights = weights or RetrievalWeights(
            semantic=self.config.semantic_weight, keyword=self.config.keyword_weight
        )

        try:
            results = self._hybrid(query_text, set_id, limit, weights)
            search_type = SEARCH_HYBRID
        except Exception as exc:
            logger.warning(f"Semantic retrieval failed, falling back to keyword search: {exc}")
            results = self._keyword_fallback(query_text, set_id, limit)
            search_type = SEARCH_KEYWORD_FALLBACK

        return {
            "query": query_text,
            "results": results,
            "total_found": len(results),
            "search_type": search_type,
        }

    def _hybrid(
        self, query_text: str, set_id: Optional[str], limit: int, weights: RetrievalWeights
    ) -> List[Dict[str, Any]]:
        query_vec = self.embedder.embed(query_text)
        where = {"set_id": set_id} if set_id else None
        hits = self.vector_index.query(query_vec, limit * 2, where)

        keywords = extract_keywords(query_text, self.config.min_keyword_length)
        ranked: List[Dict[str, Any]] = []
        for hit in hits:
            semantic = float(hit["similarity"])
            kw = keyword_score(hit["text"], keywords)
            ranked.append(
                {
                    "chunk_id": hit["id"],
                    "content": hit["text"],
                    "semantic_score": semantic,
                    "keyword_score": kw,
                    "relevance_score": weights.semantic * semantic + weights.keyword * kw,
                }
            )

        # chunks stored while embeddings were down have no vector; rank them on keywords alone
        seen = {r["chunk_id"] for r in ranked}
        for row in self.store.keyword_search(keywords, set_id=set_id, limit=limit, unembedded_only=True):
            if row["id"] in seen:
                continue
            kw = keyword_score(row["content"], keywords)
            ranked.append(
                {
                    "chunk_id": row["id"],
                    "content": row["content"],
                    "semantic_score": 0.0,
                    "keyword_score": kw,
                    "relevance_score": weights.keyword * kw,
                }
            )

        ranked.sort(key=lambda x: x["relevance_score"], reverse=True)
        ranked = ranked[:limit]

        context = self.store.fetch_chunk_context([r["chunk_id"] for r in ranked])
        for result in ranked:
            row = context.get(result["chunk_id"])
            result["source"] = row["filename"] if row else "Unknown"
            result["set_name"] = row["set_name"] if row else "Unknown"
            result["citation"] = format_citation(
                row["filename"] if row else None, row["chunk_index"] if row else None
            )
        return ranked

    def _keyword_fallback(self, query_text: str, set_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        keywords = extract_keywords(query_text, self.config.min_keyword_length)
        rows = self.store.keyword_search(keywords, set_id=set_id, limit=limit)
        return [
            {
                "chunk_id": row["id"],
                "content": row["content"],
                "source": row["filename"],
                "set_name": row["set_name"],
                "relevance_score": self.config.fallback_relevance,
                "citation": format_citation(row["filename"], row["chunk_index"]),
            }
            for row in rows
        ]
