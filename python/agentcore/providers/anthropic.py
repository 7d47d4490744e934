"""Anthropic Messages API adapter."""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

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

DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(ProviderAdapter):
    """Claude models over ``/v1/messages``."""

    MODEL_PREFIXES = (
        "claude-3-opus",
        "claude-3-sonnet",
        "claude-3-haiku",
        "claude-3-5-sonnet",
        "claude-3-5-haiku",
        "claude-2",
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
        api_version: str = "2023-06-01",
    ):
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, client=client)
        self.api_version = api_version

    @property
    def provider_name(self) -> str:
        return "Anthropic"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._require_api_key(),
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _build_payload(self, messages: Sequence[ChatMessage], options: ExecutionOptions, stream: bool) -> Dict[str, Any]:
        system, turns = split_system_prompt(messages)
        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": turns,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            payload["system"] = system
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop_sequences:
            payload["stop_sequences"] = list(options.stop_sequences)
        if stream:
            payload["stream"] = True
        return payload

    async def execute(self, messages: Sequence[ChatMessage], options: ExecutionOptions) -> ProviderResponse:
        data = await self._post_json(
            f"{self.base_url}/v1/messages",
            self._headers(),
            self._build_payload(messages, options, stream=False),
        )
        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        usage = data.get("usage", {})
        return ProviderResponse(
            content=text,
            model=data.get("model", options.model),
            provider=self.provider_name,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            finish_reason=data.get("stop_reason"),
            metadata={"id": data.get("id")},
        )

    async def execute_stream(
        self, messages: Sequence[ChatMessage], options: ExecutionOptions
    ) -> AsyncIterator[StreamChunk]:
        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None
        finish_reason: Optional[str] = None

        lines = self._stream_lines(
            f"{self.base_url}/v1/messages",
            self._headers(),
            self._build_payload(messages, options, stream=True),
        )
        try:
            async for line in lines:
                raw = parse_sse_data(line)
                if not raw:
                    continue
                event = json.loads(raw)
                etype = event.get("type")

                if etype == "message_start":
                    usage = event.get("message", {}).get("usage", {})
                    input_tokens = usage.get("input_tokens", input_tokens)
                elif etype == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield StreamChunk(content=delta["text"])
                elif etype == "message_delta":
                    finish_reason = event.get("delta", {}).get("stop_reason", finish_reason)
                    output_tokens = event.get("usage", {}).get("output_tokens", output_tokens)
                elif etype == "message_stop":
                    yield StreamChunk(
                        finish_reason=finish_reason or "end_turn",
                        done=True,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                    )
                    return
        finally:
            await lines.aclose()

        raise ProviderError(
            "Anthropic stream ended before message_stop", provider=self.provider_name, retryable=True
        )


def split_system_prompt(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Lift system messages out of the turn list (Anthropic takes them separately)."""
    system_parts = [m.content for m in messages if m.role == "system"]
    turns = [m.to_dict() for m in messages if m.role != "system"]
    return ("\n\n".join(system_parts) if system_parts else None), turns
