"""OpenAI Chat Completions adapter."""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx

from agentcore.exceptions import ProviderError
from agentcore.providers.base import (
    ChatMessage,
    ExecutionOptions,
    ProviderAdapter,
    ProviderResponse,
    StreamChunk,
    parse_sse_data,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(ProviderAdapter):
    """GPT models over ``/chat/completions``."""

    MODEL_PREFIXES = (
        "gpt-4",
        "gpt-4-turbo",
        "gpt-4o",
        "gpt-4-32k",
        "gpt-3.5-turbo",
        "gpt-3.5-turbo-16k",
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, client=client)

    @property
    def provider_name(self) -> str:
        return "OpenAI"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_api_key()}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, messages: Sequence[ChatMessage], options: ExecutionOptions, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": [m.to_dict() for m in messages],
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.stop_sequences:
            payload["stop"] = list(options.stop_sequences)
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def execute(self, messages: Sequence[ChatMessage], options: ExecutionOptions) -> ProviderResponse:
        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            self._headers(),
            self._build_payload(messages, options, stream=False),
        )
        choice = (data.get("choices") or [{}])[0]
        usage = data.get("usage", {})
        return ProviderResponse(
            content=choice.get("message", {}).get("content") or "",
            model=data.get("model", options.model),
            provider=self.provider_name,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            finish_reason=choice.get("finish_reason"),
            metadata={"id": data.get("id")},
        )

    async def execute_stream(
        self, messages: Sequence[ChatMessage], options: ExecutionOptions
    ) -> AsyncIterator[StreamChunk]:
        finish_reason: Optional[str] = None
        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None
        finished = False

        lines = self._stream_lines(
            f"{self.base_url}/chat/completions",
            self._headers(),
            self._build_payload(messages, options, stream=True),
        )
        try:
            async for line in lines:
                raw = parse_sse_data(line)
                if not raw:
                    continue
                if raw == "[DONE]":
                    finished = True
                    break
                event = json.loads(raw)
                usage = event.get("usage")
                if usage:
                    input_tokens = usage.get("prompt_tokens", input_tokens)
                    output_tokens = usage.get("completion_tokens", output_tokens)
                for choice in event.get("choices", []):
                    content = choice.get("delta", {}).get("content")
                    if content:
                        yield StreamChunk(content=content)
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
        finally:
            await lines.aclose()

        if not finished and finish_reason is None:
            raise ProviderError(
                "OpenAI stream ended before completion", provider=self.provider_name, retryable=True
            )
        yield StreamChunk(
            finish_reason=finish_reason or "stop",
            done=True,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
