"""
Query embedding generation.

``EmbeddingGenerator`` is the seam the search engine depends on; the OpenAI
implementation calls the embeddings endpoint over httpx and memoises vectors
in an ``ExecutionCache`` keyed by model and text hash.
"""

import hashlib
import logging
from typing import List, Optional, Protocol, runtime_checkable

import httpx

from agentcore.exceptions import ProviderError, RetryConfig, is_retryable, retry_with_backoff
from agentcore.execution.cache import ExecutionCache

logger = logging.getLogger(__name__)

ADA_002_DIMENSIONS = 1536


@runtime_checkable
class EmbeddingGenerator(Protocol):
    dimensions: int

    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingGenerator:
    """Embeddings from OpenAI's ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-ada-002",
        timeout: float = 30.0,
        cache: Optional[ExecutionCache] = None,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimensions = ADA_002_DIMENSIONS
        self.cache = cache or ExecutionCache(default_ttl=86400)
        self.retry_config = retry_config or RetryConfig(max_retries=2)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"embedding:{self.model}:{digest}"

    async def embed(self, text: str) -> List[float]:
        text = text.strip()
        vector, _ = await self.cache.get_or_compute(
            self.cache_key(text),
            lambda: retry_with_backoff(
                lambda: self._request(text),
                self.retry_config,
                should_retry=is_retryable,
            ),
        )
        return vector

    async def _request(self, text: str) -> List[float]:
        if not self.api_key:
            raise ProviderError("OpenAI API key not configured", provider="OpenAI", http_status=500)
        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model, "input": text},
            )
        except httpx.TimeoutException as e:
            raise ProviderError("Embedding request timed out", provider="OpenAI", retryable=True) from e
        except httpx.TransportError as e:
            raise ProviderError(f"Embedding network error: {e}", provider="OpenAI", retryable=True) from e

        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise ProviderError(
                f"Embedding API error {response.status_code}",
                provider="OpenAI",
                status_code=response.status_code,
                retryable=retryable,
            )

        data = response.json()
        vector = data["data"][0]["embedding"]
        logger.debug("Embedded %d chars into %d dims", len(text), len(vector))
        return vector

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
