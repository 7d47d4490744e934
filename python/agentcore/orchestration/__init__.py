"""Task orchestration: dependency graphs, agent delegation, shared context and messaging."""

from agentcore.orchestration.agent_pool import MAX_AGENT_LOAD, AgentPool
from agentcore.orchestration.context_store import ContextEntry, ExecutionContext, ExecutionContextStore
from agentcore.orchestration.dependency_resolver import DependencyResolver, GraphNode, NodeState, validate_graph
from agentcore.orchestration.message_bus import (
    AgentMessage,
    AgentMessageBus,
    DataContent,
    MessagePriority,
    MessageType,
    TaskEventContent,
    TextContent,
)
from agentcore.orchestration.models import (
    AgentCapabilityMatch,
    DelegationStrategy,
    ExecutionMode,
    RunStatus,
    Task,
    TaskAssignment,
    TaskEvent,
    TaskPriority,
    TaskResult,
    TaskSpec,
    TaskStatus,
)
from agentcore.orchestration.orchestrator import Run, TaskContext, TaskOrchestrator
from agentcore.orchestration.workflows import (
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowRunner,
    WorkflowStep,
    aggregate_results,
)

__all__ = [
    "MAX_AGENT_LOAD",
    "AgentCapabilityMatch",
    "AgentMessage",
    "AgentMessageBus",
    "AgentPool",
    "ContextEntry",
    "DataContent",
    "DelegationStrategy",
    "DependencyResolver",
    "ExecutionContext",
    "ExecutionContextStore",
    "ExecutionMode",
    "GraphNode",
    "MessagePriority",
    "MessageType",
    "NodeState",
    "Run",
    "RunStatus",
    "Task",
    "TaskAssignment",
    "TaskContext",
    "TaskEvent",
    "TaskEventContent",
    "TaskOrchestrator",
    "TaskPriority",
    "TaskResult",
    "TaskSpec",
    "TaskStatus",
    "TextContent",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowRunner",
    "WorkflowStep",
    "aggregate_results",
    "validate_graph",
]
