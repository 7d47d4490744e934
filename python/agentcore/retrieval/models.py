"""Retrieval value objects: chunks, search options and results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from agentcore.exceptions import ValidationError

MAX_TOP_K = 100


class SearchType(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


@dataclass
class DocumentChunk:
    """A pre-embedded slice of a knowledge document."""
    chunk_id: str
    document_id: str
    content: str
    embedding: Optional[Sequence[float]] = None
    chunk_index: int = 0
    workspace_id: Optional[str] = None
    agent_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchFilters:
    workspace_id: Optional[str] = None
    agent_id: Optional[str] = None
    document_ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None

    def accepts(self, chunk: DocumentChunk) -> bool:
        if self.workspace_id is not None and chunk.workspace_id != self.workspace_id:
            return False
        if self.agent_id is not None and chunk.agent_id != self.agent_id:
            return False
        if self.document_ids and chunk.document_id not in self.document_ids:
            return False
        if self.tags and not set(self.tags) & set(chunk.tags):
            return False
        return True


@dataclass
class SearchOptions:
    search_type: SearchType = SearchType.HYBRID
    top_k: int = 10
    similarity_threshold: float = 0.7
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    min_keyword_matches: int = 1
    filters: SearchFilters = field(default_factory=SearchFilters)

    def validate(self) -> None:
        if not 1 <= self.top_k <= MAX_TOP_K:
            raise ValidationError(f"top_k must be between 1 and {MAX_TOP_K}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValidationError("similarity_threshold must be within [0, 1]")
        if self.vector_weight < 0 or self.keyword_weight < 0:
            raise ValidationError("search weights must be non-negative")
        if self.min_keyword_matches < 0:
            raise ValidationError("min_keyword_matches must be >= 0")


@dataclass
class SearchResult:
    chunk_id: str
    document_id: str
    content: str
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None
    hybrid_score: Optional[float] = None
    matched_keywords: List[str] = field(default_factory=list)
    chunk_index: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def score_for(self, search_type: SearchType) -> float:
        if search_type == SearchType.HYBRID:
            return self.hybrid_score or 0.0
        if search_type == SearchType.VECTOR:
            return self.vector_score or 0.0
        return self.keyword_score or 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "content": self.content,
            "vector_score": self.vector_score,
            "keyword_score": self.keyword_score,
            "hybrid_score": self.hybrid_score,
            "matched_keywords": self.matched_keywords,
            "chunk_index": self.chunk_index,
            "metadata": self.metadata,
        }


@dataclass
class SearchResponse:
    query: str
    search_type: SearchType
    results: List[SearchResult]
    keywords: List[str]
    execution_time_ms: float

    @property
    def total_results(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "search_type": self.search_type.value,
            "results": [r.to_dict() for r in self.results],
            "total_results": self.total_results,
            "keywords": self.keywords,
            "execution_time_ms": self.execution_time_ms,
        }
