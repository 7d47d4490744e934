"""Execution request/result value objects."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from agentcore.providers.base import ChatMessage


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionRequest:
    """One prompt (or message list) to run on an agent.

    Either ``prompt`` or ``messages`` must be set. ``messages`` is sent as-is
    (the agent's system prompt is prepended only when no system turn exists).
    """

    prompt: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None
    context: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    enable_cache: bool = True
    bypass_cache: bool = False
    cache_ttl: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    execution_id: str
    agent_id: str
    provider: str
    model: str
    output: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    currency: str = "USD"
    latency_ms: int = 0
    cached: bool = False
    cache_key: Optional[str] = None
    retry_count: int = 0
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    error_message: Optional[str] = None
    finish_reason: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "agent_id": self.agent_id,
            "provider": self.provider,
            "model": self.model,
            "output": self.output,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
            "currency": self.currency,
            "latency_ms": self.latency_ms,
            "cached": self.cached,
            "cache_key": self.cache_key,
            "retry_count": self.retry_count,
            "status": self.status.value,
            "error_message": self.error_message,
            "finish_reason": self.finish_reason,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class StreamEvent:
    """Item of ``execute_stream``: ``chunk`` events, then one ``done`` event."""

    event: str  # chunk | done
    content: str = ""
    result: Optional[ExecutionResult] = None

    @property
    def done(self) -> bool:
        return self.event == "done"
