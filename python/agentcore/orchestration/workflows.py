"""
Workflows: named multi-step definitions run through the task orchestrator.

Each step becomes one task whose id is the step id. ``depends_on`` becomes
the task's dependencies and ``input_mapping`` values of the form
``"$stepId"`` / ``"$stepId.field"`` are resolved against earlier step
outputs when the step starts.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from agentcore.exceptions import ValidationError
from agentcore.orchestration.models import (
    DelegationStrategy,
    ExecutionMode,
    RunStatus,
    TaskPriority,
    TaskResult,
    TaskSpec,
    TaskStatus,
)
from agentcore.orchestration.orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)

AGGREGATION_STRATEGIES = ("merge", "array", "first", "last")


@dataclass
class WorkflowStep:
    step_id: str
    name: str
    description: str = ""
    task_type: Optional[str] = None
    required_capabilities: List[str] = field(default_factory=list)
    preferred_role: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    input_mapping: Dict[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    timeout_ms: Optional[int] = None
    retry_attempts: int = 0
    fallback_agent_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM


@dataclass
class WorkflowDefinition:
    name: str
    steps: List[WorkflowStep]
    workflow_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    version: str = "1.0.0"
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    config: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.steps:
            raise ValidationError(f"Workflow {self.name!r} has no steps")
        seen = set()
        for step in self.steps:
            if step.step_id in seen:
                raise ValidationError(f"Duplicate step id {step.step_id!r} in workflow {self.name!r}")
            seen.add(step.step_id)

    def to_tasks(self, workflow_input: Any = None) -> List[TaskSpec]:
        """One task per step. Steps without an ``input_mapping`` receive the workflow input."""
        self.validate()
        return [
            TaskSpec(
                task_id=step.step_id,
                name=step.name,
                description=step.description,
                task_type=step.task_type,
                required_capabilities=set(step.required_capabilities),
                preferred_role=step.preferred_role,
                priority=step.priority,
                input=workflow_input,
                input_mapping=dict(step.input_mapping),
                dependencies=list(step.depends_on),
                timeout_ms=step.timeout_ms,
                max_retries=step.retry_attempts,
                fallback_agent_id=step.fallback_agent_id,
                config=dict(step.config),
            )
            for step in self.steps
        ]


@dataclass
class WorkflowExecution:
    execution_id: str
    workflow_id: str
    workspace_id: str
    run_id: str
    status: RunStatus
    input: Any
    completed_steps: List[str] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    step_results: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "workspace_id": self.workspace_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "input": self.input,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "step_results": self.step_results,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class WorkflowRunner:
    """Runs ``WorkflowDefinition``s on a ``TaskOrchestrator``."""

    def __init__(self, orchestrator: TaskOrchestrator) -> None:
        self.orchestrator = orchestrator

    async def run(
        self,
        workspace_id: str,
        workflow: WorkflowDefinition,
        workflow_input: Any = None,
        session_id: Optional[str] = None,
        strategy: DelegationStrategy = DelegationStrategy.CAPABILITY_MATCH,
        wait: bool = True,
    ) -> WorkflowExecution:
        run = await self.orchestrator.submit(
            workspace_id,
            workflow.to_tasks(workflow_input),
            mode=workflow.execution_mode,
            session_id=session_id,
            strategy=strategy,
        )
        logger.info("Workflow %r started as run %s", workflow.name, run.run_id)
        if wait:
            await self.orchestrator.wait(run.run_id)
        return self.execution(workflow, run.run_id, workflow_input)

    def execution(self, workflow: WorkflowDefinition, run_id: str, workflow_input: Any = None) -> WorkflowExecution:
        """Snapshot of a workflow run."""
        run = self.orchestrator.get_run(run_id)
        execution = WorkflowExecution(
            execution_id=run.run_id,
            workflow_id=workflow.workflow_id,
            workspace_id=run.workspace_id,
            run_id=run.run_id,
            status=run.status,
            input=workflow_input,
            started_at=run.created_at,
            completed_at=run.completed_at,
        )
        for result in run.results():
            if result.status == TaskStatus.COMPLETED:
                execution.completed_steps.append(result.task_id)
                execution.step_results[result.task_id] = result.output
            elif result.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
                execution.failed_steps.append(result.task_id)
                execution.step_results[result.task_id] = result.error
        return execution


def aggregate_results(results: Sequence[TaskResult], strategy: str = "array") -> Any:
    """
    Combine the outputs of completed tasks.

    Strategies:
        merge: shallow dict merge, later results win
        array: list of outputs in the given order
        first / last: one output

    Raises:
        ValidationError: unknown strategy, no completed result, or a
            non-dict output under ``merge``
    """
    if strategy not in AGGREGATION_STRATEGIES:
        raise ValidationError(f"Unknown aggregation strategy {strategy!r}")

    outputs = [r.output for r in results if r.status == TaskStatus.COMPLETED]
    if not outputs:
        raise ValidationError("No successful results to aggregate")

    if strategy == "merge":
        merged: Dict[str, Any] = {}
        for output in outputs:
            if not isinstance(output, dict):
                raise ValidationError("merge aggregation needs dict outputs")
            merged.update(output)
        return merged
    if strategy == "first":
        return outputs[0]
    if strategy == "last":
        return outputs[-1]
    return outputs
