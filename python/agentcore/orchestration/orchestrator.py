"""
Task Orchestrator - runs task graphs over the agents of a workspace.

A run is one submitted task graph. The graph is validated up front; a
driver loop then dispatches queued tasks (dependencies completed) by
priority, one at a time in sequential mode or up to ``max_concurrency`` in
parallel mode. Each task is assigned to an agent, executed with a
per-task timeout, and its output written to the execution context and
announced on the message bus.

Failure policy:
- timeout: re-queued while ``retry_count < max_retries``, else failed with TaskTimeout
- any other error: handed once to the fallback agent when one is configured
- a failed task cancels all its transitive dependents with DependencyFailed

A finished run drops its message channel and deletes its execution context
unless another active run shares it. Task outputs stay on the run, which is
kept until evicted (oldest first beyond ``max_finished_runs``).
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from agentcore.agents import AgentDirectory, AgentProfile
from agentcore.exceptions import (
    DependencyFailed,
    EngineError,
    NoEligibleAgent,
    NotFoundError,
    TaskCancelled,
    TaskTimeout,
    ValidationError,
)
from agentcore.execution.dispatcher import ExecutionDispatcher
from agentcore.execution.models import ExecutionRequest
from agentcore.orchestration.agent_pool import AgentPool
from agentcore.orchestration.context_store import ExecutionContextStore
from agentcore.orchestration.dependency_resolver import DependencyResolver, GraphNode
from agentcore.orchestration.message_bus import AgentMessageBus, MessageType, TaskEventContent
from agentcore.orchestration.models import (
    DelegationStrategy,
    ExecutionMode,
    RunStatus,
    Task,
    TaskAssignment,
    TaskEvent,
    TaskResult,
    TaskSpec,
    TaskStatus,
)

logger = logging.getLogger(__name__)

ORCHESTRATOR_ID = "orchestrator"


def input_key(task_id: str) -> str:
    return f"task:{task_id}:input"


def output_key(task_id: str) -> str:
    return f"task:{task_id}:output"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TaskContext:
    """What an executor gets besides the agent: where the task runs and its inputs."""

    run_id: str
    workspace_id: str
    session_id: Optional[str]
    task: Task
    input: Any
    dependency_outputs: Dict[str, Any]
    context_store: ExecutionContextStore
    message_bus: AgentMessageBus


TaskExecutor = Callable[[AgentProfile, TaskContext], Awaitable[Any]]


@dataclass
class Run:
    run_id: str
    workspace_id: str
    session_id: Optional[str]
    mode: ExecutionMode
    max_concurrency: int
    strategy: DelegationStrategy
    tasks: Dict[str, Task]
    resolver: DependencyResolver
    status: RunStatus = RunStatus.RUNNING
    created_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    assignments: List[TaskAssignment] = field(default_factory=list)
    events: List[TaskEvent] = field(default_factory=list)
    cancel_requested: bool = False
    runner: Optional["asyncio.Task[None]"] = None
    _changed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.RUNNING

    def emit(self, event: TaskEvent) -> None:
        self.events.append(event)
        self._changed.set()
        self._changed = asyncio.Event()

    async def wait_for_change(self) -> None:
        await self._changed.wait()

    def results(self) -> List[TaskResult]:
        return [task.to_result() for task in self.tasks.values()]

    def to_dict(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {s.value: 0 for s in TaskStatus}
        for task in self.tasks.values():
            counts[task.status.value] += 1
        return {
            "run_id": self.run_id,
            "workspace_id": self.workspace_id,
            "session_id": self.session_id,
            "mode": self.mode.value,
            "max_concurrency": self.max_concurrency,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "task_counts": counts,
            "tasks": [r.to_dict() for r in self.results()],
        }


class TaskOrchestrator:
    """
    Runs task graphs in the background and reports their progress.

    The default executor turns each task into a prompt and calls the
    execution dispatcher; pass ``executor`` to run tasks another way.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        context_store: ExecutionContextStore,
        message_bus: AgentMessageBus,
        dispatcher: Optional[ExecutionDispatcher] = None,
        agent_pool: Optional[AgentPool] = None,
        executor: Optional[TaskExecutor] = None,
        max_parallel_tasks: int = 4,
        default_timeout_ms: Optional[int] = None,
        max_finished_runs: int = 1000,
    ):
        if executor is None and dispatcher is None:
            raise ValidationError("TaskOrchestrator needs a dispatcher or an executor")
        self.directory = directory
        self.context_store = context_store
        self.message_bus = message_bus
        self.dispatcher = dispatcher
        self.agent_pool = agent_pool or AgentPool(directory)
        self.executor: TaskExecutor = executor or self._dispatch_task
        self.max_parallel_tasks = max_parallel_tasks
        self.default_timeout_ms = default_timeout_ms
        self.max_finished_runs = max_finished_runs
        self._runs: Dict[str, Run] = {}

    # ── Public API ───────────────────────────────────────────────────

    async def submit(
        self,
        workspace_id: str,
        tasks: Sequence[TaskSpec],
        mode: ExecutionMode = ExecutionMode.PARALLEL,
        max_concurrency: Optional[int] = None,
        session_id: Optional[str] = None,
        strategy: DelegationStrategy = DelegationStrategy.CAPABILITY_MATCH,
    ) -> Run:
        """
        Validate a task graph and start running it in the background.

        Raises:
            ValidationError: empty graph, invalid task, unknown dependency
                or dependency cycle; nothing is scheduled in that case
        """
        if not tasks:
            raise ValidationError("A run needs at least one task")
        for spec in tasks:
            spec.validate()

        resolver = DependencyResolver([
            GraphNode(
                task_id=spec.task_id,
                dependencies=frozenset(set(spec.dependencies) | spec.mapping_references()),
                priority=spec.priority.rank,
            )
            for spec in tasks
        ])

        run_id = str(uuid.uuid4())
        limit = 1 if mode == ExecutionMode.SEQUENTIAL else (max_concurrency or self.max_parallel_tasks)
        if limit < 1:
            raise ValidationError("max_concurrency must be >= 1")

        run = Run(
            run_id=run_id,
            workspace_id=workspace_id,
            session_id=session_id,
            mode=mode,
            max_concurrency=limit,
            strategy=strategy,
            tasks={spec.task_id: Task(spec=spec) for spec in tasks},
            resolver=resolver,
        )
        self._runs[run_id] = run

        self.context_store.get_context(workspace_id, session_id)
        for spec in tasks:
            await self.context_store.set(
                workspace_id, input_key(spec.task_id), spec.input, session_id, updated_by=ORCHESTRATOR_ID
            )
        for agent in self.directory.list(workspace_id):
            self.message_bus.join(run_id, agent.agent_id)

        for task_id in resolver.get_ready_tasks():
            self._set_status(run, run.tasks[task_id], TaskStatus.QUEUED, "task_queued")

        logger.info(
            "Run %s submitted: %d tasks, mode=%s, concurrency=%d, workspace=%s",
            run_id, len(tasks), mode.value, limit, workspace_id,
        )
        run.runner = asyncio.create_task(self._drive(run))
        return run

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> Run:
        """Block until the run finishes (or *timeout* seconds pass)."""
        run = self.get_run(run_id)
        if run.runner is not None:
            await asyncio.wait({run.runner}, timeout=timeout)
        return run

    def get_run(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found", details={"run_id": run_id})
        return run

    def get_results(self, run_id: str) -> List[TaskResult]:
        return self.get_run(run_id).results()

    def list_runs(self, workspace_id: Optional[str] = None) -> List[Run]:
        return [r for r in self._runs.values() if workspace_id is None or r.workspace_id == workspace_id]

    async def cancel_run(self, run_id: str) -> Run:
        """Stop dispatching, cancel running tasks and mark every unfinished task cancelled."""
        run = self.get_run(run_id)
        if run.is_finished:
            return run
        run.cancel_requested = True
        logger.info("Cancelling run %s", run_id)
        if run.runner is not None:
            run.runner.cancel()
            await asyncio.wait({run.runner})
        if not run.is_finished:
            # cancelled before the driver got to run
            self._cancel_unfinished(run)
            self._finish(run)
        return run

    async def events(self, run_id: str) -> AsyncIterator[TaskEvent]:
        """Replay the run's events so far, then follow it until it finishes."""
        run = self.get_run(run_id)
        index = 0
        while True:
            while index < len(run.events):
                yield run.events[index]
                index += 1
            if run.is_finished:
                return
            await run.wait_for_change()

    def get_workspace_stats(self, workspace_id: str) -> Dict[str, Any]:
        runs = self.list_runs(workspace_id)
        tasks_by_status: Dict[str, int] = {s.value: 0 for s in TaskStatus}
        runs_by_status: Dict[str, int] = {s.value: 0 for s in RunStatus}
        for run in runs:
            runs_by_status[run.status.value] += 1
            for task in run.tasks.values():
                tasks_by_status[task.status.value] += 1
        return {
            "workspace_id": workspace_id,
            "total_runs": len(runs),
            "runs_by_status": runs_by_status,
            "total_tasks": sum(tasks_by_status.values()),
            "tasks_by_status": tasks_by_status,
            "agent_load": {
                a.agent_id: self.agent_pool.load(a.agent_id) for a in self.directory.list(workspace_id)
            },
        }

    def evict_finished(self, older_than_seconds: Optional[float] = None) -> int:
        """Forget finished runs, optionally only those finished more than *older_than_seconds* ago."""
        now = _now()
        evicted = [
            run_id
            for run_id, run in self._runs.items()
            if run.is_finished
            and (
                older_than_seconds is None
                or (run.completed_at is not None and (now - run.completed_at).total_seconds() > older_than_seconds)
            )
        ]
        for run_id in evicted:
            del self._runs[run_id]
        if evicted:
            logger.debug("Evicted %d finished runs", len(evicted))
        return len(evicted)

    async def aclose(self) -> None:
        for run in list(self._runs.values()):
            if not run.is_finished:
                await self.cancel_run(run.run_id)

    # ── Driver ───────────────────────────────────────────────────────

    async def _drive(self, run: Run) -> None:
        running: Dict[str, "asyncio.Task[None]"] = {}
        try:
            while True:
                for task_id in run.resolver.get_ready_tasks():
                    if len(running) >= run.max_concurrency:
                        break
                    run.resolver.mark_running(task_id)
                    running[task_id] = asyncio.create_task(self._run_task(run, run.tasks[task_id]))

                if not running:
                    break

                done, _ = await asyncio.wait(set(running.values()), return_when=asyncio.FIRST_COMPLETED)
                for task_id in [tid for tid, t in running.items() if t in done]:
                    running.pop(task_id).result()
        except asyncio.CancelledError:
            for pending in running.values():
                pending.cancel()
            await asyncio.gather(*running.values(), return_exceptions=True)
            self._cancel_unfinished(run)
            self._finish(run)
            raise
        except Exception:
            logger.exception("Run %s driver crashed", run.run_id)
            for pending in running.values():
                pending.cancel()
            await asyncio.gather(*running.values(), return_exceptions=True)
            self._cancel_unfinished(run)
            self._finish(run)
            raise
        self._finish(run)

    def _finish(self, run: Run) -> None:
        statuses = {task.status for task in run.tasks.values()}
        if run.cancel_requested:
            run.status = RunStatus.CANCELLED
        elif statuses <= {TaskStatus.COMPLETED}:
            run.status = RunStatus.COMPLETED
        else:
            run.status = RunStatus.FAILED
        run.completed_at = _now()
        run.emit(TaskEvent(event="run_finished", run_id=run.run_id, status=run.status.value))
        self.message_bus.drop_channel(run.run_id)
        if not any(
            other is not run
            and not other.is_finished
            and (other.workspace_id, other.session_id) == (run.workspace_id, run.session_id)
            for other in self._runs.values()
        ):
            self.context_store.delete_context(run.workspace_id, run.session_id)
        self._trim_finished()
        logger.info("Run %s finished: %s", run.run_id, run.status.value)

    def _trim_finished(self) -> None:
        finished = [r for r in self._runs.values() if r.is_finished]
        excess = len(finished) - self.max_finished_runs
        if excess <= 0:
            return
        finished.sort(key=lambda r: r.completed_at or r.created_at)
        for run in finished[:excess]:
            del self._runs[run.run_id]

    def _cancel_unfinished(self, run: Run) -> None:
        for task in run.tasks.values():
            if task.status.is_terminal:
                continue
            run.resolver.mark_cancelled(task.task_id)
            self._terminate(run, task, TaskStatus.CANCELLED, TaskCancelled(f"Run {run.run_id} was cancelled"))

    # ── One attempt of one task ──────────────────────────────────────

    async def _run_task(self, run: Run, task: Task) -> None:
        try:
            agent = self._assign(run, task)
        except EngineError as e:
            self._fail(run, task, e)
            return

        self.agent_pool.acquire(agent.agent_id)
        try:
            self._set_status(run, task, TaskStatus.IN_PROGRESS, "task_started")
            if task.started_at is None:
                task.started_at = _now()
            await self._attempt(run, task, agent)
        except asyncio.CancelledError:
            run.resolver.mark_cancelled(task.task_id)
            self._terminate(run, task, TaskStatus.CANCELLED, TaskCancelled(f"Run {run.run_id} was cancelled"))
            raise
        finally:
            self.agent_pool.release(agent.agent_id)

    async def _attempt(self, run: Run, task: Task, agent: AgentProfile) -> None:
        spec = task.spec
        outputs = self._dependency_outputs(run, spec)
        context = TaskContext(
            run_id=run.run_id,
            workspace_id=run.workspace_id,
            session_id=run.session_id,
            task=task,
            input=spec.resolve_input(outputs),
            dependency_outputs=outputs,
            context_store=self.context_store,
            message_bus=self.message_bus,
        )
        timeout_ms = spec.timeout_ms or self.default_timeout_ms

        try:
            if timeout_ms:
                output = await asyncio.wait_for(self.executor(agent, context), timeout_ms / 1000)
            else:
                output = await self.executor(agent, context)
        except (asyncio.TimeoutError, TaskTimeout) as e:
            self._on_timeout(run, task, timeout_ms, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_error(run, task, agent, e)
        else:
            await self._complete(run, task, agent, output)

    def _dependency_outputs(self, run: Run, spec: TaskSpec) -> Dict[str, Any]:
        refs = set(spec.dependencies) | spec.mapping_references()
        return {
            dep: self.context_store.get(run.workspace_id, output_key(dep), run.session_id)
            for dep in sorted(refs)
        }

    def _assign(self, run: Run, task: Task) -> AgentProfile:
        spec = task.spec
        agent = None
        if task.fallback_used:
            agent = self.directory.find(spec.fallback_agent_id)
        else:
            agent = self.agent_pool.select(run.workspace_id, spec, run.strategy)
            if agent is None and spec.fallback_agent_id:
                agent = self.directory.find(spec.fallback_agent_id)
                task.fallback_used = True
                if agent is not None:
                    logger.info("No eligible agent for task %s; using fallback %s", task.task_id, agent.agent_id)

        if agent is None:
            raise NoEligibleAgent(
                f"No agent offers {sorted(spec.required_capabilities)}"
                + (f" and fallback agent {spec.fallback_agent_id} is unknown" if spec.fallback_agent_id else ""),
                task_id=task.task_id,
                details={"required_capabilities": sorted(spec.required_capabilities)},
            )

        task.agent_id = agent.agent_id
        run.assignments.append(TaskAssignment(task_id=task.task_id, agent_id=agent.agent_id, priority=spec.priority))
        self._set_status(run, task, TaskStatus.ASSIGNED, "task_assigned")
        return agent

    def _on_timeout(self, run: Run, task: Task, timeout_ms: Optional[int], error: BaseException) -> None:
        if task.retry_count < task.spec.max_retries:
            task.retry_count += 1
            logger.warning(
                "Task %s timed out, retrying (%d/%d)", task.task_id, task.retry_count, task.spec.max_retries
            )
            run.resolver.requeue(task.task_id)
            self._set_status(run, task, TaskStatus.QUEUED, "task_retrying")
            return
        if isinstance(error, TaskTimeout):
            failure = error.bind(task_id=task.task_id)
        else:
            failure = TaskTimeout(f"Task exceeded its {timeout_ms}ms timeout", task_id=task.task_id)
        self._fail(run, task, failure)

    def _on_error(self, run: Run, task: Task, agent: AgentProfile, error: Exception) -> None:
        fallback_id = task.spec.fallback_agent_id
        if fallback_id and not task.fallback_used and fallback_id != agent.agent_id:
            logger.warning(
                "Task %s failed on %s (%s); trying fallback %s", task.task_id, agent.agent_id, error, fallback_id
            )
            task.fallback_used = True
            run.resolver.requeue(task.task_id)
            self._set_status(run, task, TaskStatus.QUEUED, "task_fallback")
            return
        if isinstance(error, EngineError):
            error.bind(task_id=task.task_id)
        else:
            logger.error("Task %s raised %s: %s", task.task_id, type(error).__name__, error, exc_info=error)
        self._fail(run, task, error)

    async def _complete(self, run: Run, task: Task, agent: AgentProfile, output: Any) -> None:
        await self.context_store.set(
            run.workspace_id, output_key(task.task_id), output, run.session_id, updated_by=agent.agent_id
        )
        task.output = output
        task.completed_at = _now()
        self._set_status(run, task, TaskStatus.COMPLETED, "task_completed")
        self._publish(run, agent.agent_id, TaskEventContent(task.task_id, TaskStatus.COMPLETED.value, output=output))

        for task_id in run.resolver.mark_completed(task.task_id):
            self._set_status(run, run.tasks[task_id], TaskStatus.QUEUED, "task_queued")
        logger.info("Task %s completed by %s", task.task_id, agent.agent_id)

    def _fail(self, run: Run, task: Task, error: BaseException) -> None:
        logger.warning("Task %s failed: %s", task.task_id, error)
        cancelled = run.resolver.mark_failed(task.task_id)
        self._terminate(run, task, TaskStatus.FAILED, error)
        for task_id in cancelled:
            self._terminate(
                run,
                run.tasks[task_id],
                TaskStatus.CANCELLED,
                DependencyFailed(
                    f"Dependency {task.task_id} failed",
                    task_id=task_id,
                    failed_dependency=task.task_id,
                ),
            )

    def _terminate(self, run: Run, task: Task, status: TaskStatus, error: BaseException) -> None:
        task.error = error.message if isinstance(error, EngineError) else str(error)
        task.error_kind = error.kind if isinstance(error, EngineError) else type(error).__name__
        task.completed_at = _now()
        if isinstance(error, DependencyFailed):
            task.metadata["failed_dependency"] = error.failed_dependency
        self._set_status(run, task, status, f"task_{status.value}")
        self._publish(
            run,
            task.agent_id or ORCHESTRATOR_ID,
            TaskEventContent(task.task_id, status.value, error=task.error, error_kind=task.error_kind),
        )

    # ── Events ───────────────────────────────────────────────────────

    def _set_status(self, run: Run, task: Task, status: TaskStatus, event: str) -> None:
        task.status = status
        run.emit(TaskEvent(
            event=event,
            run_id=run.run_id,
            task_id=task.task_id,
            status=status.value,
            agent_id=task.agent_id,
            error=task.error,
            error_kind=task.error_kind,
            retry_count=task.retry_count,
        ))

    def _publish(self, run: Run, sender: str, content: TaskEventContent) -> None:
        self.message_bus.send(run.run_id, sender, content, message_type=MessageType.NOTIFICATION)

    # ── Default executor ─────────────────────────────────────────────

    async def _dispatch_task(self, agent: AgentProfile, context: TaskContext) -> Dict[str, Any]:
        """Run the task as one prompt on the agent through the execution dispatcher."""
        task = context.task
        request = ExecutionRequest(
            prompt=build_task_prompt(task.spec, context.input, context.dependency_outputs),
            session_id=context.session_id,
            metadata={"run_id": context.run_id, "task_id": task.task_id},
        )
        result = await self.dispatcher.execute(agent, request)
        return {
            "content": result.output,
            "execution_id": result.execution_id,
            "model": result.model,
            "cost": result.cost,
            "cached": result.cached,
        }


def build_task_prompt(spec: TaskSpec, task_input: Any, dependency_outputs: Dict[str, Any]) -> str:
    parts = [f"Task: {spec.name}"]
    if spec.description:
        parts.append(spec.description)
    if task_input is not None:
        parts.append("Input:\n" + json.dumps(task_input, indent=2, default=str))
    if dependency_outputs:
        rendered = {
            dep: out.get("content", out) if isinstance(out, dict) else out
            for dep, out in dependency_outputs.items()
        }
        parts.append("Results from previous tasks:\n" + json.dumps(rendered, indent=2, default=str))
    return "\n\n".join(parts)
