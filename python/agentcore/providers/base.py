"""
Base provider abstraction for multi-provider LLM execution.

Defines the contract every vendor adapter implements:
``execute``, ``execute_stream``, ``supports_model`` and ``provider_name``.
Vendor-specific message shaping (e.g. lifting the system prompt out of the
message list) stays inside the adapter.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import httpx

from agentcore.exceptions import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    """A single chat turn."""
    role: str  # system | user | assistant
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ExecutionOptions:
    """Sampling options forwarded to the provider."""
    model: str
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: List[str] = field(default_factory=list)

    def fingerprint_fields(self) -> Dict[str, Any]:
        """Fields that change the model's answer (used for cache keys)."""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
            "stop_sequences": list(self.stop_sequences),
        }


@dataclass
class ProviderResponse:
    """Standardized provider response"""
    content: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class StreamChunk:
    """One piece of a streamed completion. ``done`` marks the terminal chunk."""
    content: str = ""
    finish_reason: Optional[str] = None
    done: bool = False
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class ProviderAdapter(ABC):
    """
    Abstract base class for LLM provider adapters.

    Subclasses list the model-name prefixes they serve in ``MODEL_PREFIXES``
    and implement the two execution paths over a shared ``httpx.AsyncClient``.
    """

    MODEL_PREFIXES: Tuple[str, ...] = ()

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize provider

        Args:
            api_key: API key for the provider
            base_url: API root, without trailing slash
            timeout: Request timeout in seconds
            client: Optional pre-built client (tests pass one with a mock transport)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable vendor name, e.g. ``"OpenAI"``."""

    @abstractmethod
    async def execute(self, messages: Sequence[ChatMessage], options: ExecutionOptions) -> ProviderResponse:
        """
        Run a non-streaming completion.

        Raises:
            ProviderError: transport or vendor failure (``retryable`` set)
        """

    @abstractmethod
    def execute_stream(
        self, messages: Sequence[ChatMessage], options: ExecutionOptions
    ) -> AsyncIterator[StreamChunk]:
        """
        Run a streaming completion.

        Yields chunks until one with ``done=True``. Closing the iterator
        early closes the underlying HTTP response.
        """

    def supports_model(self, model: str) -> bool:
        return self.match_length(model) > 0

    def match_length(self, model: str) -> int:
        """Length of the longest supported prefix of *model* (0 = unsupported)."""
        return max((len(p) for p in self.MODEL_PREFIXES if model.startswith(p)), default=0)

    # ── HTTP plumbing ────────────────────────────────────────────────

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ProviderError(
                f"{self.provider_name} API key not configured",
                provider=self.provider_name,
                retryable=False,
                http_status=500,
            )
        return self.api_key

    async def _post_json(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.provider_name} request timed out", provider=self.provider_name, retryable=True) from e
        except httpx.TransportError as e:
            raise ProviderError(f"{self.provider_name} network error: {e}", provider=self.provider_name, retryable=True) from e

        if response.status_code != 200:
            raise self._status_error(response.status_code, response.text)
        return response.json()

    async def _stream_lines(
        self, url: str, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> AsyncIterator[str]:
        """Yield raw SSE lines; the response is closed when the caller stops iterating."""
        try:
            async with self.client.stream("POST", url, headers=headers, json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._status_error(response.status_code, body)
                async for line in response.aiter_lines():
                    if line:
                        yield line
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.provider_name} stream timed out", provider=self.provider_name, retryable=True) from e
        except httpx.TransportError as e:
            raise ProviderError(f"{self.provider_name} stream error: {e}", provider=self.provider_name, retryable=True) from e

    def _status_error(self, status_code: int, body: str) -> ProviderError:
        """Classify an HTTP error status: 429 and 5xx are retryable."""
        retryable = status_code == 429 or status_code >= 500
        message = _extract_error_message(body) or body[:200]
        logger.warning("%s API error %s: %s", self.provider_name, status_code, message)
        return ProviderError(
            f"{self.provider_name} API error {status_code}: {message}",
            provider=self.provider_name,
            status_code=status_code,
            retryable=retryable,
        )


def _extract_error_message(body: str) -> Optional[str]:
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return error
    return None


def parse_sse_data(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for other SSE fields."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()
