"""Task, run and delegation value objects for the orchestrator."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from agentcore.exceptions import ValidationError

MIN_TASK_TIMEOUT_MS = 1000


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────────


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Scheduling rank, 0 runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


class TaskStatus(str, Enum):
    PENDING = "pending"  # waiting on dependencies
    QUEUED = "queued"  # every dependency completed
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class DelegationStrategy(str, Enum):
    ROUND_ROBIN = "round_robin"
    LEAST_BUSY = "least_busy"
    CAPABILITY_MATCH = "capability_match"
    PRIORITY_BASED = "priority_based"
    MANUAL = "manual"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ── Tasks ────────────────────────────────────────────────────────────


@dataclass
class TaskSpec:
    """A task as submitted. ``dependencies`` name other tasks of the same run."""

    name: str
    task_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    task_type: Optional[str] = None
    required_capabilities: Set[str] = field(default_factory=set)
    preferred_role: Optional[str] = None
    preferred_agent_id: Optional[str] = None  # manual delegation
    priority: TaskPriority = TaskPriority.MEDIUM
    input: Any = None
    input_mapping: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    timeout_ms: Optional[int] = None
    max_retries: int = 0
    fallback_agent_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.name:
            raise ValidationError("Task name is required", task_id=self.task_id)
        if self.timeout_ms is not None and self.timeout_ms < MIN_TASK_TIMEOUT_MS:
            raise ValidationError(
                f"Task timeout must be at least {MIN_TASK_TIMEOUT_MS}ms", task_id=self.task_id
            )
        if self.max_retries < 0:
            raise ValidationError("max_retries must be >= 0", task_id=self.task_id)

    def resolve_input(self, outputs: Mapping[str, Any]) -> Any:
        """
        Apply ``input_mapping`` against completed task outputs.

        ``"$taskId"`` is replaced by that task's output and ``"$taskId.field"``
        by one field of it; other values pass through. Without a mapping the
        task's own ``input`` is returned.
        """
        if not self.input_mapping:
            return self.input

        resolved: Dict[str, Any] = {}
        for key, value in self.input_mapping.items():
            if isinstance(value, str) and value.startswith("$"):
                ref, _, attr = value[1:].partition(".")
                output = outputs.get(ref)
                if attr:
                    output = output.get(attr) if isinstance(output, Mapping) else None
                resolved[key] = output
            else:
                resolved[key] = value
        return resolved

    def mapping_references(self) -> Set[str]:
        """Task ids referenced by ``input_mapping``."""
        return {
            v[1:].partition(".")[0]
            for v in self.input_mapping.values()
            if isinstance(v, str) and v.startswith("$") and len(v) > 1
        }


@dataclass
class Task:
    """Runtime state of one submitted task."""

    spec: TaskSpec
    status: TaskStatus = TaskStatus.PENDING
    agent_id: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int = 0
    fallback_used: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def task_id(self) -> str:
        return self.spec.task_id

    @property
    def execution_time_ms(self) -> Optional[int]:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_result(self) -> "TaskResult":
        return TaskResult(
            task_id=self.task_id,
            status=self.status,
            output=self.output,
            error=self.error,
            error_kind=self.error_kind,
            agent_id=self.agent_id,
            started_at=self.started_at,
            completed_at=self.completed_at,
            execution_time_ms=self.execution_time_ms,
            retry_count=self.retry_count,
            metadata=dict(self.metadata),
        )


@dataclass
class TaskResult:
    task_id: str
    status: TaskStatus
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    agent_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.error_kind in ("TaskTimeout", "ProviderError", "RateLimitExceeded")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "error_kind": self.error_kind,
            "retryable": self.retryable if self.error_kind else None,
            "agent_id": self.agent_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution_time_ms": self.execution_time_ms,
            "retry_count": self.retry_count,
            "metadata": self.metadata,
        }


@dataclass
class TaskAssignment:
    task_id: str
    agent_id: str
    priority: TaskPriority
    assigned_at: datetime = field(default_factory=_now)
    estimated_duration_ms: Optional[int] = None


@dataclass
class AgentCapabilityMatch:
    agent_id: str
    agent_name: str
    role: Optional[str]
    match_score: float
    capabilities: List[str]
    matched_capabilities: List[str]
    current_load: int
    is_available: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "role": self.role,
            "match_score": self.match_score,
            "capabilities": self.capabilities,
            "matched_capabilities": self.matched_capabilities,
            "current_load": self.current_load,
            "is_available": self.is_available,
        }


@dataclass(frozen=True)
class TaskEvent:
    """Run progress notification (``task_*`` events and one final ``run_finished``)."""

    event: str
    run_id: str
    task_id: Optional[str] = None
    status: Optional[str] = None
    agent_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int = 0
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "run_id": self.run_id,
            "task_id": self.task_id,
            "status": self.status,
            "agent_id": self.agent_id,
            "error": self.error,
            "error_kind": self.error_kind,
            "retry_count": self.retry_count,
            "timestamp": self.timestamp.isoformat(),
        }
