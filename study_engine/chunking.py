"""Whitespace-token chunking with a trailing overlap window."""

from __future__ import annotations

from typing import List

from .config import ChunkingConfig
from .schemas import TextChunk


class Chunker:
    """Packs whitespace tokens into chunks of roughly ``chunk_size`` characters."""

    def __init__(self, config: ChunkingConfig):
        if config.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if config.overlap < 0:
            raise ValueError("overlap must not be negative")
        self.config = config

    @property
    def overlap_tokens(self) -> int:
        return self.config.overlap // max(1, self.config.chars_per_token)

    def chunk(self, text: str) -> List[TextChunk]:
        tokens = (text or "").split()
        chunks: List[TextChunk] = []
        if not tokens:
            return chunks

        keep = self.overlap_tokens
        start = 0
        current: List[str] = []
        length = 0
        # tokens added since the last emitted chunk
        fresh = 0

        for idx, token in enumerate(tokens):
            current.append(token)
            length += len(token) + 1
            fresh += 1
            if length >= self.config.chunk_size:
                chunks.append(TextChunk(text=" ".join(current), start=start, end=idx + 1))
                carried = current[-keep:] if keep else []
                # never carry the whole chunk forward
                if len(carried) >= len(current):
                    carried = current[1:]
                current = list(carried)
                start = idx + 1 - len(current)
                length = len(" ".join(current))
                fresh = 0

        if fresh:
            chunks.append(TextChunk(text=" ".join(current), start=start, end=len(tokens)))
        return chunks
