"""
Hybrid Retrieval Engine

Ranks knowledge chunks for a query by vector similarity, keyword relevance,
or a weighted combination of both:

    hybrid = vector_weight * vector_score + keyword_weight * keyword_score

Weights are caller-supplied and used as given. Only the sub-scores the
requested search type needs are computed.
"""

import logging
import math
import re
import time
from typing import Dict, List, Optional, Sequence

from agentcore.enhanced_logging import track_performance
from agentcore.exceptions import ConfigurationError, ValidationError
from agentcore.retrieval.embeddings import EmbeddingGenerator
from agentcore.retrieval.keywords import bm25_score, extract_keywords, find_matched_keywords, keyword_score
from agentcore.retrieval.models import (
    DocumentChunk,
    SearchOptions,
    SearchResponse,
    SearchResult,
    SearchType,
)
from agentcore.retrieval.vector import ChunkStore, cosine_similarity

logger = logging.getLogger(__name__)


def combine_scores(vector_score: float, keyword_score: float, vector_weight: float, keyword_weight: float) -> float:
    return vector_weight * vector_score + keyword_weight * keyword_score


class HybridSearchEngine:
    """Search over a ``ChunkStore`` with an optional embedding generator."""

    def __init__(self, store: ChunkStore, embedder: Optional[EmbeddingGenerator] = None) -> None:
        self.store = store
        self.embedder = embedder

    @track_performance(operation="hybrid_search")
    async def search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> SearchResponse:
        """
        Rank chunks for *query*.

        The similarity threshold applies to the ranking score in vector and
        hybrid modes. ``min_keyword_matches`` applies whenever keyword
        scoring is part of the search type.

        Args:
            query: Free-text query
            options: Search options (defaults when omitted)
            query_embedding: Precomputed query vector; skips the embedder

        Raises:
            ValidationError: empty query or invalid options
            ConfigurationError: vector scoring needed but no embedder set
        """
        options = options or SearchOptions()
        options.validate()
        if not query.strip():
            raise ValidationError("Search query must not be empty")

        started = time.perf_counter()
        search_type = options.search_type
        needs_vector = search_type in (SearchType.VECTOR, SearchType.HYBRID)
        needs_keywords = search_type in (SearchType.KEYWORD, SearchType.HYBRID)

        keywords = extract_keywords(query) if needs_keywords else []
        embedding = None
        if needs_vector:
            embedding = query_embedding if query_embedding is not None else await self._embed(query)

        results: List[SearchResult] = []
        for chunk in self.store.filtered(options.filters):
            result = self._score(chunk, search_type, options, keywords, embedding)
            if result is not None:
                results.append(result)

        results.sort(key=lambda r: r.score_for(search_type), reverse=True)
        results = results[:options.top_k]

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "%s search returned %d results (%d keywords, %sms)",
            search_type.value, len(results), len(keywords), elapsed_ms,
        )
        return SearchResponse(
            query=query,
            search_type=search_type,
            results=results,
            keywords=keywords,
            execution_time_ms=elapsed_ms,
        )

    def _score(
        self,
        chunk: DocumentChunk,
        search_type: SearchType,
        options: SearchOptions,
        keywords: List[str],
        embedding: Optional[Sequence[float]],
    ) -> Optional[SearchResult]:
        result = SearchResult(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            metadata=dict(chunk.metadata),
        )

        if embedding is not None:
            if not chunk.embedding or len(chunk.embedding) != len(embedding):
                result.vector_score = 0.0
            else:
                result.vector_score = cosine_similarity(embedding, chunk.embedding)

        if search_type != SearchType.VECTOR:
            result.matched_keywords = find_matched_keywords(chunk.content, keywords)
            if len(result.matched_keywords) < options.min_keyword_matches:
                return None
            result.keyword_score = keyword_score(chunk.content, keywords)

        if search_type == SearchType.HYBRID:
            result.hybrid_score = combine_scores(
                result.vector_score or 0.0,
                result.keyword_score or 0.0,
                options.vector_weight,
                options.keyword_weight,
            )

        if search_type != SearchType.KEYWORD and result.score_for(search_type) < options.similarity_threshold:
            return None
        return result

    async def _embed(self, text: str) -> List[float]:
        if self.embedder is None:
            raise ConfigurationError("Vector search requires an embedding generator")
        return await self.embedder.embed(text)

    # ── Extras ───────────────────────────────────────────────────────

    async def multi_query_search(
        self, queries: Sequence[str], options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """Search each query with a share of ``top_k``; dedupe by chunk id keeping the best score."""
        if not queries:
            raise ValidationError("multi_query_search needs at least one query")
        options = options or SearchOptions()
        per_query = SearchOptions(
            search_type=options.search_type,
            top_k=max(1, math.ceil(options.top_k / len(queries))),
            similarity_threshold=options.similarity_threshold,
            vector_weight=options.vector_weight,
            keyword_weight=options.keyword_weight,
            min_keyword_matches=options.min_keyword_matches,
            filters=options.filters,
        )

        best: Dict[str, SearchResult] = {}
        for query in queries:
            response = await self.search(query, per_query)
            for result in response.results:
                current = best.get(result.chunk_id)
                if current is None or result.score_for(options.search_type) > current.score_for(options.search_type):
                    best[result.chunk_id] = result

        merged = sorted(best.values(), key=lambda r: r.score_for(options.search_type), reverse=True)
        return merged[:options.top_k]

    def rank_bm25(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Keyword ranking by BM25 term frequency; ``keyword_score`` holds the BM25 value."""
        options = options or SearchOptions(search_type=SearchType.KEYWORD)
        keywords = extract_keywords(query)
        chunks = self.store.filtered(options.filters)
        if not chunks or not keywords:
            return []

        avg_length = sum(len(c.content.split()) for c in chunks) / len(chunks)
        results = []
        for chunk in chunks:
            score = bm25_score(chunk.content, keywords, avg_length)
            if score <= 0:
                continue
            results.append(SearchResult(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                content=chunk.content,
                keyword_score=score,
                matched_keywords=find_matched_keywords(chunk.content, keywords),
                chunk_index=chunk.chunk_index,
                metadata=dict(chunk.metadata),
            ))
        results.sort(key=lambda r: r.keyword_score or 0.0, reverse=True)
        return results[:options.top_k]

    def get_search_suggestions(self, partial_query: str, limit: int = 5) -> List[str]:
        """Completions for the last keyword of *partial_query*, drawn from chunk text."""
        keywords = extract_keywords(partial_query)
        if not keywords:
            return []
        pattern = re.compile(rf"\b{re.escape(keywords[-1])}\w*\b", re.IGNORECASE)

        suggestions: List[str] = []
        for chunk in self.store.filtered():
            for match in pattern.findall(chunk.content):
                word = match.lower()
                if word not in suggestions:
                    suggestions.append(word)
                    if len(suggestions) >= limit:
                        return suggestions
        return suggestions
