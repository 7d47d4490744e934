"""In-memory chunk store with cosine-similarity lookup."""

import logging
import math
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from agentcore.retrieval.models import DocumentChunk, SearchFilters

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 for zero vectors."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class ChunkStore:
    """Knowledge chunks keyed by chunk id."""

    def __init__(self, chunks: Optional[Iterable[DocumentChunk]] = None) -> None:
        self._chunks: Dict[str, DocumentChunk] = {}
        self._lock = threading.Lock()
        for chunk in chunks or []:
            self.add(chunk)

    def add(self, chunk: DocumentChunk) -> None:
        with self._lock:
            self._chunks[chunk.chunk_id] = chunk

    def add_many(self, chunks: Iterable[DocumentChunk]) -> int:
        count = 0
        for chunk in chunks:
            self.add(chunk)
            count += 1
        return count

    def remove_document(self, document_id: str) -> int:
        with self._lock:
            doomed = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
            for cid in doomed:
                del self._chunks[cid]
        return len(doomed)

    def get(self, chunk_id: str) -> Optional[DocumentChunk]:
        return self._chunks.get(chunk_id)

    def filtered(self, filters: Optional[SearchFilters] = None) -> List[DocumentChunk]:
        with self._lock:
            chunks = list(self._chunks.values())
        if filters is None:
            return chunks
        return [c for c in chunks if filters.accepts(c)]

    def nearest(
        self,
        embedding: Sequence[float],
        filters: Optional[SearchFilters] = None,
        min_similarity: float = 0.0,
    ) -> List[Tuple[DocumentChunk, float]]:
        """Chunks with similarity >= *min_similarity*, best first.

        Chunks without an embedding, or with a different dimension, are skipped.
        """
        scored = []
        for chunk in self.filtered(filters):
            if not chunk.embedding:
                continue
            if len(chunk.embedding) != len(embedding):
                logger.debug("Skipping chunk %s: embedding dimension mismatch", chunk.chunk_id)
                continue
            similarity = cosine_similarity(embedding, chunk.embedding)
            if similarity >= min_similarity:
                scored.append((chunk, similarity))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored

    def __len__(self) -> int:
        return len(self._chunks)
