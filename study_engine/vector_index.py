"""Vector index backends: Chroma, and a SQLite brute-force scan used when Chroma is unavailable."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import chromadb
import numpy as np

from .config import AppConfig, VectorIndexConfig
from .logging import get_logger
from .storage import SQLiteStore

logger = get_logger(__name__)


def _safe_float(value: float) -> float:
    if np.isnan(value) or np.isinf(value):
        return 0.0
    return float(value)


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Chroma rejects None metadata values
    return {k: v for k, v in metadata.items() if v is not None}


@dataclass
class IndexItem:
    id: str
    vector: List[float]
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class ChromaVectorIndex:
    """Chunk vectors in a Chroma collection, local or remote."""

    name = "chroma"

    def __init__(self, chroma_dir: str, config: VectorIndexConfig):
        if config.chroma_host:
            self.client = chromadb.HttpClient(host=config.chroma_host, port=config.chroma_port)
        else:
            Path(chroma_dir).mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(path=chroma_dir)
        self.collection = self.client.get_or_create_collection(
            name=config.collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, items: List[IndexItem]) -> None:
        if not items:
            return
        self.collection.upsert(
            ids=[item.id for item in items],
            embeddings=[[float(v) for v in item.vector] for item in items],
            documents=[item.text for item in items],
            metadatas=[_clean_metadata(item.metadata) for item in items],
        )

    def query(self, vector: List[float], k: int, where: Optional[Dict[str, Any]] = None) -> List[Dict]:
        result = self.collection.query(
            query_embeddings=[[float(v) for v in vector]],
            n_results=max(1, k),
            where=where or None,
            include=["documents", "metadatas", "distances"],
        )
        ids = (result.get("ids") or [[]])[0]
        docs = (result.get("documents") or [[]])[0]
        metas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        out: List[Dict] = []
        for i, chunk_id in enumerate(ids):
            distance = distances[i] if i < len(distances) else 1.0
            out.append(
                {
                    "id": chunk_id,
                    "similarity": _safe_float(1.0 - float(distance)),
                    "text": docs[i] if i < len(docs) else "",
                    "metadata": metas[i] if i < len(metas) and metas[i] else {},
                }
            )
        return out

    def delete(self, where: Dict[str, Any]) -> None:
        if not where:
            raise ValueError("delete requires a metadata filter")
        self.collection.delete(where=where)

    def count(self) -> int:
        return self.collection.count()


class SQLiteVectorIndex:
    """Vectors kept in the chunks table and scanned in-process with cosine similarity."""

    name = "sqlite"

    def __init__(self, store: SQLiteStore):
        self.store = store

    def upsert(self, items: List[IndexItem]) -> None:
        self.store.update_chunk_embeddings({item.id: item.vector for item in items})

    def query(self, vector: List[float], k: int, where: Optional[Dict[str, Any]] = None) -> List[Dict]:
        query_vec = np.asarray(vector, dtype=np.float32)
        qnorm = float(np.linalg.norm(query_vec))
        if qnorm == 0:
            return []

        scored: List[Dict] = []
        for chunk in self.store.list_embedded_chunks(where):
            emb_vec = np.asarray(chunk.embedding, dtype=np.float32)
            if emb_vec.shape != query_vec.shape:
                continue
            denom = float(np.linalg.norm(emb_vec) * qnorm)
            sim = 0.0 if denom == 0 else float(np.dot(query_vec, emb_vec) / denom)
            scored.append(
                {
                    "id": chunk.id,
                    "similarity": _safe_float(sim),
                    "text": chunk.content,
                    "metadata": {
                        "set_id": chunk.set_id,
                        "document_id": chunk.document_id,
                        "chunk_index": chunk.chunk_index,
                    },
                }
            )

        scored.sort(key=lambda x: x["similarity"], reverse=True)
        return scored[: max(1, k)]

    def delete(self, where: Dict[str, Any]) -> None:
        if not where:
            raise ValueError("delete requires a metadata filter")
        self.store.clear_chunk_embeddings(where)

    def count(self) -> int:
        return self.store.count_embedded_chunks()


def _matches(item: IndexItem, where: Dict[str, Any]) -> bool:
    for key, value in where.items():
        actual = item.id if key == "id" else item.metadata.get(key)
        if actual != value:
            return False
    return True


class FailoverVectorIndex:
    """Writes to both backends, reads from the primary and falls back to the secondary.

    Items the primary failed to store are kept as pending. Queries retry them
    first and scan the secondary while any remain, so a partial primary never
    hides a chunk that the relational copy holds.
    """

    def __init__(self, primary: Any, secondary: SQLiteVectorIndex):
        self.primary = primary
        self.secondary = secondary
        self._pending: Dict[str, IndexItem] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"{self.primary.name}+{self.secondary.name}"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def upsert(self, items: List[IndexItem]) -> None:
        self.secondary.upsert(items)
        try:
            self.primary.upsert(items)
        except Exception as exc:
            logger.warning(f"Primary vector index upsert failed, relational copy kept: {exc}")
            with self._lock:
                self._pending.update({item.id: item for item in items})

    def _flush_pending(self) -> bool:
        """Retry pending primary writes; True when nothing is left pending."""
        with self._lock:
            if not self._pending:
                return True
            items = list(self._pending.values())
            try:
                self.primary.upsert(items)
            except Exception as exc:
                logger.warning(f"{len(items)} vectors still missing from primary index: {exc}")
                return False
            self._pending.clear()
        logger.info(f"Synced {len(items)} pending vectors to primary index")
        return True

    def query(self, vector: List[float], k: int, where: Optional[Dict[str, Any]] = None) -> List[Dict]:
        if not self._flush_pending():
            return self.secondary.query(vector, k, where)
        try:
            return self.primary.query(vector, k, where)
        except Exception as exc:
            logger.warning(f"Primary vector index query failed, scanning relational vectors: {exc}")
            return self.secondary.query(vector, k, where)

    def delete(self, where: Dict[str, Any]) -> None:
        self.secondary.delete(where)
        with self._lock:
            for item_id in [i for i, item in self._pending.items() if _matches(item, where)]:
                del self._pending[item_id]
        try:
            self.primary.delete(where)
        except Exception as exc:
            logger.warning(f"Primary vector index delete failed: {exc}")

    def count(self) -> int:
        if self._pending:
            return self.secondary.count()
        try:
            return self.primary.count()
        except Exception as exc:
            logger.warning(f"Primary vector index count failed: {exc}")
            return self.secondary.count()


def build_vector_index(config: AppConfig, store: SQLiteStore):
    """Chroma with relational failover, or the relational scan alone."""
    fallback = SQLiteVectorIndex(store)
    if config.vector_index.backend == "sqlite":
        return fallback
    try:
        chroma = ChromaVectorIndex(config.paths.chroma_dir, config.vector_index)
    except Exception as exc:
        logger.warning(f"Chroma unavailable, using relational vector scan: {exc}")
        return fallback
    return FailoverVectorIndex(chroma, fallback)
