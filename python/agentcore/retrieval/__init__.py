"""Hybrid (vector + keyword) retrieval over knowledge chunks."""

from agentcore.retrieval.embeddings import EmbeddingGenerator, OpenAIEmbeddingGenerator
from agentcore.retrieval.hybrid_search import HybridSearchEngine, combine_scores
from agentcore.retrieval.keywords import bm25_score, extract_keywords, find_matched_keywords, keyword_score
from agentcore.retrieval.models import (
    DocumentChunk,
    SearchFilters,
    SearchOptions,
    SearchResponse,
    SearchResult,
    SearchType,
)
from agentcore.retrieval.vector import ChunkStore, cosine_similarity

__all__ = [
    "ChunkStore",
    "DocumentChunk",
    "EmbeddingGenerator",
    "HybridSearchEngine",
    "OpenAIEmbeddingGenerator",
    "SearchFilters",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "SearchType",
    "bm25_score",
    "combine_scores",
    "cosine_similarity",
    "extract_keywords",
    "find_matched_keywords",
    "keyword_score",
]
