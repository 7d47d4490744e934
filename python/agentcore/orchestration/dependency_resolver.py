"""DAG-based dependency resolver for orchestrator runs.

No dependencies on orchestrator internals.

Provides:
- Whole-graph validation at submission (unknown ids, cycles)
- Ready queue ordered by priority then submission order
- Requeueing of running tasks (timeout retries, fallback)
- Failure propagation (BFS cancel of downstream)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from agentcore.exceptions import ValidationError

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    """Lifecycle states tracked by the resolver."""

    PENDING = "pending"  # waiting on unsatisfied deps
    READY = "ready"  # all deps completed, eligible for dispatch
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = (NodeState.COMPLETED, NodeState.FAILED, NodeState.CANCELLED)


@dataclass(frozen=True)
class GraphNode:
    """One task as handed to the resolver."""

    task_id: str
    dependencies: frozenset
    priority: int = 2  # 0 = critical … 3 = low


# ── Validation ───────────────────────────────────────────────────────


def find_cycle(graph: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """Return one cycle as a closed path (``[a, b, a]``), or None.

    *graph* maps each task id to the ids it depends on.
    """
    white, grey, black = 0, 1, 2
    colour: Dict[str, int] = {tid: white for tid in graph}

    for root in graph:
        if colour[root] != white:
            continue
        path: List[str] = [root]
        iterators = [iter(sorted(graph[root]))]
        colour[root] = grey
        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                colour[path.pop()] = black
                iterators.pop()
                continue
            if dep not in colour:
                continue
            if colour[dep] == grey:
                return path[path.index(dep):] + [dep]
            if colour[dep] == white:
                colour[dep] = grey
                path.append(dep)
                iterators.append(iter(sorted(graph[dep])))
    return None


def validate_graph(nodes: Sequence[GraphNode]) -> None:
    """Reject duplicate ids, unknown dependency ids and cycles.

    Raises:
        ValidationError: with the offending ids in ``details``
    """
    ids: Set[str] = set()
    for node in nodes:
        if node.task_id in ids:
            raise ValidationError(f"Duplicate task id {node.task_id!r}", task_id=node.task_id)
        ids.add(node.task_id)

    for node in nodes:
        unknown = sorted(set(node.dependencies) - ids)
        if unknown:
            raise ValidationError(
                f"Task {node.task_id!r} depends on unknown task(s): {', '.join(unknown)}",
                task_id=node.task_id,
                details={"unknown_dependencies": unknown},
            )

    cycle = find_cycle({node.task_id: node.dependencies for node in nodes})
    if cycle:
        raise ValidationError(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )


# ── Resolver ─────────────────────────────────────────────────────────


class DependencyResolver:
    """Dependency graph of one run.

    Tracks forward edges (task → deps it still waits on), reverse edges
    (task → tasks that need it) and a state per task. Single asyncio event
    loop only.
    """

    def __init__(self, nodes: Sequence[GraphNode]) -> None:
        validate_graph(nodes)

        self._dependencies: Dict[str, Set[str]] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._states: Dict[str, NodeState] = {}
        self._priorities: Dict[str, int] = {}
        self._order: Dict[str, int] = {}

        for index, node in enumerate(nodes):
            self._dependencies[node.task_id] = set(node.dependencies)
            self._dependents.setdefault(node.task_id, set())
            self._priorities[node.task_id] = node.priority
            self._order[node.task_id] = index
            for dep in node.dependencies:
                self._dependents.setdefault(dep, set()).add(node.task_id)

        for tid, deps in self._dependencies.items():
            self._states[tid] = NodeState.PENDING if deps else NodeState.READY

    def _sort_key(self, task_id: str):
        return (self._priorities[task_id], self._order[task_id])

    def _require(self, task_id: str, expected: NodeState) -> None:
        state = self._states.get(task_id)
        if state != expected:
            raise ValueError(
                f"Cannot transition {task_id!r}: current state is {state!r} (expected {expected.value})"
            )

    # ── State transitions ────────────────────────────────────────────

    def mark_running(self, task_id: str) -> None:
        """READY → RUNNING."""
        self._require(task_id, NodeState.READY)
        self._states[task_id] = NodeState.RUNNING

    def requeue(self, task_id: str) -> None:
        """RUNNING → READY (retry after timeout, or hand-over to a fallback agent)."""
        self._require(task_id, NodeState.RUNNING)
        self._states[task_id] = NodeState.READY

    def mark_completed(self, task_id: str) -> List[str]:
        """RUNNING → COMPLETED.

        Returns the tasks that became READY, in dispatch order.
        """
        self._require(task_id, NodeState.RUNNING)
        self._states[task_id] = NodeState.COMPLETED

        newly_ready: List[str] = []
        for dependent in self._dependents.get(task_id, set()):
            waiting = self._dependencies[dependent]
            waiting.discard(task_id)
            if not waiting and self._states[dependent] == NodeState.PENDING:
                self._states[dependent] = NodeState.READY
                newly_ready.append(dependent)

        newly_ready.sort(key=self._sort_key)
        return newly_ready

    def mark_failed(self, task_id: str) -> List[str]:
        """RUNNING/READY → FAILED. BFS-cancel all transitive dependents.

        Returns the cancelled task ids in BFS order.
        """
        state = self._states.get(task_id)
        if state not in (NodeState.RUNNING, NodeState.READY):
            raise ValueError(f"Cannot fail {task_id!r}: current state is {state!r}")
        self._states[task_id] = NodeState.FAILED
        return self._cancel_downstream(task_id)

    def mark_cancelled(self, task_id: str) -> List[str]:
        """Cancel a non-terminal task and its transitive dependents.

        Returns every id cancelled by this call, *task_id* first.
        """
        if self._states.get(task_id) in _TERMINAL or task_id not in self._states:
            return []
        self._states[task_id] = NodeState.CANCELLED
        return [task_id] + self._cancel_downstream(task_id)

    def _cancel_downstream(self, task_id: str) -> List[str]:
        cancelled: List[str] = []
        queue = deque(sorted(self._dependents.get(task_id, set()), key=self._sort_key))
        while queue:
            dep_id = queue.popleft()
            if self._states[dep_id] in _TERMINAL:
                continue
            self._states[dep_id] = NodeState.CANCELLED
            cancelled.append(dep_id)
            queue.extend(sorted(self._dependents.get(dep_id, set()), key=self._sort_key))
        if cancelled:
            logger.info("Cancelled %d dependents of %s", len(cancelled), task_id)
        return cancelled

    # ── Queries ──────────────────────────────────────────────────────

    def get_ready_tasks(self) -> List[str]:
        """All READY tasks, by priority then submission order."""
        ready = [tid for tid, s in self._states.items() if s == NodeState.READY]
        ready.sort(key=self._sort_key)
        return ready

    def get_execution_waves(self) -> List[List[str]]:
        """Kahn's algorithm over non-terminal tasks: groups that can run together."""
        active = {tid for tid, s in self._states.items() if s not in _TERMINAL}
        in_degree = {tid: len(self._dependencies[tid] & active) for tid in active}

        wave = [tid for tid, deg in in_degree.items() if deg == 0]
        waves: List[List[str]] = []
        while wave:
            wave.sort(key=self._sort_key)
            waves.append(wave)
            following: List[str] = []
            for tid in wave:
                for dep_id in self._dependents.get(tid, set()):
                    if dep_id in in_degree:
                        in_degree[dep_id] -= 1
                        if in_degree[dep_id] == 0:
                            following.append(dep_id)
            wave = following
        return waves

    def get_blocked_tasks(self) -> Dict[str, Set[str]]:
        """PENDING tasks mapped to their unsatisfied dependencies."""
        return {
            tid: set(self._dependencies[tid])
            for tid, s in self._states.items()
            if s == NodeState.PENDING
        }

    def get_downstream(self, task_id: str) -> Set[str]:
        """All transitive dependents of *task_id*."""
        result: Set[str] = set()
        queue = deque(self._dependents.get(task_id, set()))
        while queue:
            nid = queue.popleft()
            if nid in result:
                continue
            result.add(nid)
            queue.extend(self._dependents.get(nid, set()))
        return result

    def get_task_state(self, task_id: str) -> Optional[NodeState]:
        return self._states.get(task_id)

    @property
    def has_running(self) -> bool:
        return any(s == NodeState.RUNNING for s in self._states.values())

    @property
    def is_finished(self) -> bool:
        return all(s in _TERMINAL for s in self._states.values())

    @property
    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {s.value: 0 for s in NodeState}
        for s in self._states.values():
            counts[s.value] += 1
        return counts
