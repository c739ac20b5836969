"""Document ingestion: normalize, chunk, embed and index uploaded text."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF

from .chunking import Chunker
from .errors import NotFoundError, ProviderError, ValidationError
from .logging import get_logger, log_with_context
from .providers import GeminiEmbeddingProvider, is_transient
from .schemas import ChunkRecord, Document, new_id
from .storage import SQLiteStore
from .vector_index import IndexItem

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".pdf": "application/pdf",
}


def extract_pdf_text(path: Path) -> str:
    """Text of every page, pages separated by a blank line."""
    try:
        with fitz.open(str(path)) as doc:
            pages = [page.get_text("text") for page in doc]
    except Exception as exc:
        raise ValidationError(f"Could not read PDF {path.name}: {exc}") from exc
    return "\n\n".join(pages)


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class DocumentIngestor:
    """Turns raw document text into stored, embedded, indexed chunks."""

    def __init__(
        self,
        store: SQLiteStore,
        chunker: Chunker,
        embedder: GeminiEmbeddingProvider,
        vector_index: Any,
    ):
        self.store = store
        self.chunker = chunker
        self.embedder = embedder
        self.vector_index = vector_index

    def ingest_document(
        self,
        set_id: str,
        text: str,
        filename: str = "document.txt",
        filepath: str = "",
        media_type: str = "text/plain",
        size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Store one document; returns its id and chunk counts."""
        if not set_id:
            raise ValidationError("set_id is required")
        if text is None:
            raise ValidationError("text is required")
        study_set = self.store.get_set(set_id)
        if study_set is None:
            raise NotFoundError("Set", set_id)

        pieces = self.chunker.chunk(normalize_text(text))
        if not pieces:
            raise ValidationError(f"No text could be extracted from {filename}")

        document = self.store.insert_document(
            Document(
                id=new_id(),
                set_id=set_id,
                filename=filename,
                filepath=filepath,
                media_type=media_type,
                size=len(text.encode("utf-8")) if size is None else size,
            )
        )

        embeddings = self._embed([p.text for p in pieces])
        chunks = [
            ChunkRecord(
                id=new_id(),
                document_id=document.id,
                set_id=set_id,
                content=piece.text,
                chunk_index=index,
                start_token=piece.start,
                end_token=piece.end,
                embedding=embeddings[index],
            )
            for index, piece in enumerate(pieces)
        ]
        try:
            self.store.insert_chunks(chunks)
        except Exception:
            self.store.delete_document(document.id)
            raise

        items = [
            IndexItem(
                id=chunk.id,
                vector=chunk.embedding,
                text=chunk.content,
                metadata={
                    "set_id": set_id,
                    "document_id": document.id,
                    "chunk_index": chunk.chunk_index,
                    "source": filename,
                },
            )
            for chunk in chunks
            if chunk.embedding is not None
        ]
        if items:
            try:
                self.vector_index.upsert(items)
            except Exception as exc:
                logger.warning(f"Vector index upsert failed for document {document.id}: {exc}")
        self.store.touch_set(set_id)

        log_with_context(
            logger,
            logging.INFO,
            f"Processed {len(chunks)} chunks for document {document.id}",
            set_id=set_id,
            embedded=len(items),
        )
        return {
            "document_id": document.id,
            "chunk_count": len(chunks),
            "embedded_count": len(items),
        }

    def ingest_file(self, set_id: str, path: str) -> Dict[str, Any]:
        file_path = Path(path)
        media_type = SUPPORTED_EXTENSIONS.get(file_path.suffix.lower())
        if media_type is None:
            raise ValidationError(f"Unsupported file type: {file_path.suffix or file_path.name}")
        if not file_path.is_file():
            raise NotFoundError("File", str(file_path))
        if media_type == "application/pdf":
            text = extract_pdf_text(file_path)
        else:
            text = file_path.read_text(encoding="utf-8", errors="ignore")
        return self.ingest_document(
            set_id,
            text,
            filename=file_path.name,
            filepath=str(file_path),
            media_type=media_type,
            size=file_path.stat().st_size,
        )

    def delete_document(self, document_id: str) -> None:
        if self.store.get_document(document_id) is None:
            raise NotFoundError("Document", document_id)
        try:
            self.vector_index.delete({"document_id": document_id})
        except Exception as exc:
            logger.warning(f"Vector index delete failed for document {document_id}: {exc}")
        self.store.delete_document(document_id)

    def _embed(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Batch first, then one text at a time after a transient batch failure.

        Chunks that still fail get no vector.
        """
        try:
            return list(self.embedder.embed_batch(texts))
        except ProviderError as exc:
            if not is_transient(exc):
                logger.warning(f"Embeddings unavailable, chunks stored without vectors: {exc}")
                return [None] * len(texts)
            logger.warning(f"Batch embedding failed, embedding chunks individually: {exc}")

        vectors: List[Optional[List[float]]] = []
        for text in texts:
            try:
                vectors.append(self.embedder.embed_with_retry(text))
            except ProviderError as exc:
                logger.warning(f"Chunk stored without embedding: {exc}")
                vectors.append(None)
        return vectors
