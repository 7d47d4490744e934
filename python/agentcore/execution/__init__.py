"""Execution dispatch: cache, token counting, history and the dispatcher."""

from agentcore.execution.cache import ExecutionCache, generate_cache_key
from agentcore.execution.dispatcher import CachedCompletion, ExecutionDispatcher
from agentcore.execution.history import ExecutionHistory, HistoryPage, HistoryQuery
from agentcore.execution.models import ExecutionRequest, ExecutionResult, ExecutionStatus, StreamEvent
from agentcore.execution.token_counter import TokenCounter

__all__ = [
    "CachedCompletion",
    "ExecutionCache",
    "ExecutionDispatcher",
    "ExecutionHistory",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "HistoryPage",
    "HistoryQuery",
    "StreamEvent",
    "TokenCounter",
    "generate_cache_key",
]
