"""Token estimates for admission checks and streamed completions.

Providers report exact usage for non-streaming calls; these estimates fill
in when they do not (streams without usage frames, pre-dispatch checks).
"""

import json
import math
from typing import Any, Iterable, Mapping, Optional

CHARS_PER_TOKEN = 4
REPLY_PRIMING_TOKENS = 3


class TokenCounter:
    """Character-based approximation, roughly 4 characters per token."""

    def count_tokens(self, text: str, model: Optional[str] = None) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def count_message_tokens(self, messages: Iterable[Mapping[str, str]], model: str = "") -> int:
        """Chat-format count: per-message framing overhead plus content and role."""
        per_message = 3 if model.startswith("gpt-4") else 4
        total = 0
        for message in messages:
            total += per_message
            total += self.count_tokens(message.get("content", ""))
            total += self.count_tokens(message.get("role", ""))
        return total + REPLY_PRIMING_TOKENS

    def estimate_execution_tokens(self, prompt: str, context: Optional[Any] = None, model: str = "") -> int:
        tokens = self.count_tokens(prompt, model)
        if context:
            tokens += self.count_tokens(json.dumps(context, default=str, sort_keys=True), model)
        return tokens
