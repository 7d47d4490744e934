"""
ExecutionContextStore - shared state for the agents of a workspace session.

Each context is a collaborative whiteboard: tasks write their inputs and
outputs under namespaced keys (``task:<id>:output``) and other agents read
them. Writes are last-write-wins with a version counter per key, serialised
per key; reads are lock-free snapshots of immutable entries.
"""

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from agentcore.exceptions import NotFoundError

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, str, Any], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def context_id_for(workspace_id: str, session_id: Optional[str] = None) -> str:
    return f"{workspace_id}-{session_id or 'default'}"


@dataclass(frozen=True)
class ContextEntry:
    """Entry in a context's shared data. Replaced, never mutated."""
    key: str
    value: Any
    version: int
    updated_by: Optional[str]
    updated_at: datetime


@dataclass(frozen=True)
class ContextUpdate:
    """Audit trail record."""
    key: str
    old_value: Any
    new_value: Any
    version: int
    updated_by: Optional[str]
    timestamp: datetime


@dataclass
class ExecutionContext:
    workspace_id: str
    session_id: Optional[str] = None
    execution_id: Optional[str] = None
    shared_data: Dict[str, ContextEntry] = field(default_factory=dict)
    agent_contexts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    global_variables: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def context_id(self) -> str:
        return context_id_for(self.workspace_id, self.session_id)

    def snapshot(self, prefix: str = "") -> Dict[str, Any]:
        """Plain ``key -> value`` view, optionally restricted to a key prefix."""
        return {k: e.value for k, e in list(self.shared_data.items()) if k.startswith(prefix)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_id": self.context_id,
            "workspace_id": self.workspace_id,
            "session_id": self.session_id,
            "execution_id": self.execution_id,
            "shared_data": self.snapshot(),
            "versions": {k: e.version for k, e in list(self.shared_data.items())},
            "agent_contexts": {k: dict(v) for k, v in self.agent_contexts.items()},
            "global_variables": dict(self.global_variables),
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ExecutionContextStore:
    """In-memory contexts keyed by ``"{workspace_id}-{session_id or 'default'}"``."""

    def __init__(self, history_limit: int = 1000) -> None:
        self._contexts: Dict[str, ExecutionContext] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._history: Dict[str, List[ContextUpdate]] = {}
        self._history_limit = history_limit
        self._subscribers: List[Tuple[str, Subscriber]] = []

    # ── Contexts ─────────────────────────────────────────────────────

    def create_context(
        self,
        workspace_id: str,
        session_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExecutionContext:
        """Create (or replace) the context for a workspace session."""
        context = ExecutionContext(
            workspace_id=workspace_id,
            session_id=session_id,
            execution_id=execution_id,
            metadata=dict(metadata or {}),
        )
        self._contexts[context.context_id] = context
        self._history[context.context_id] = []
        logger.debug("Created execution context %s", context.context_id)
        return context

    def get_context(
        self, workspace_id: str, session_id: Optional[str] = None, create: bool = True
    ) -> ExecutionContext:
        context = self._contexts.get(context_id_for(workspace_id, session_id))
        if context is None:
            if not create:
                raise NotFoundError(
                    f"No execution context for workspace {workspace_id}",
                    details={"workspace_id": workspace_id, "session_id": session_id},
                )
            context = self.create_context(workspace_id, session_id)
        return context

    def delete_context(self, workspace_id: str, session_id: Optional[str] = None) -> bool:
        context_id = context_id_for(workspace_id, session_id)
        self._history.pop(context_id, None)
        for lock_key in [k for k in self._locks if k[0] == context_id]:
            del self._locks[lock_key]
        return self._contexts.pop(context_id, None) is not None

    def _lock(self, context_id: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((context_id, key))
        if lock is None:
            lock = self._locks[(context_id, key)] = asyncio.Lock()
        return lock

    # ── Shared data ──────────────────────────────────────────────────

    async def set(
        self,
        workspace_id: str,
        key: str,
        value: Any,
        session_id: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> int:
        """Last-write-wins write. Returns the new version of *key*."""
        context = self.get_context(workspace_id, session_id)
        async with self._lock(context.context_id, key):
            return self._write(context, key, value, updated_by)

    async def update(
        self,
        workspace_id: str,
        key: str,
        value: Any,
        expected_version: Optional[int] = None,
        session_id: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> bool:
        """
        Optimistic write.

        Returns False without writing when *key*'s current version differs
        from *expected_version* (0 means "must not exist yet").
        """
        context = self.get_context(workspace_id, session_id)
        async with self._lock(context.context_id, key):
            current = context.shared_data.get(key)
            current_version = current.version if current else 0
            if expected_version is not None and current_version != expected_version:
                logger.warning(
                    "Version conflict on %s:%s: expected %s, actual %s",
                    context.context_id, key, expected_version, current_version,
                )
                return False
            self._write(context, key, value, updated_by)
            return True

    async def delete(
        self, workspace_id: str, key: str, session_id: Optional[str] = None, updated_by: Optional[str] = None
    ) -> bool:
        context = self.get_context(workspace_id, session_id)
        async with self._lock(context.context_id, key):
            entry = context.shared_data.pop(key, None)
            if entry is None:
                return False
            self._audit(context, ContextUpdate(key, entry.value, None, entry.version, updated_by, _now()))
            context.updated_at = _now()
            return True

    def get(self, workspace_id: str, key: str, session_id: Optional[str] = None, default: Any = None) -> Any:
        entry = self.get_entry(workspace_id, key, session_id)
        return entry.value if entry else default

    def get_entry(self, workspace_id: str, key: str, session_id: Optional[str] = None) -> Optional[ContextEntry]:
        context = self._contexts.get(context_id_for(workspace_id, session_id))
        if context is None:
            return None
        return context.shared_data.get(key)

    def _write(self, context: ExecutionContext, key: str, value: Any, updated_by: Optional[str]) -> int:
        now = _now()
        previous = context.shared_data.get(key)
        version = previous.version + 1 if previous else 1
        context.shared_data[key] = ContextEntry(key, value, version, updated_by, now)
        context.updated_at = now
        self._audit(context, ContextUpdate(key, previous.value if previous else None, value, version, updated_by, now))
        self._notify(context.context_id, key, value)
        return version

    def _audit(self, context: ExecutionContext, update: ContextUpdate) -> None:
        history = self._history.setdefault(context.context_id, [])
        history.append(update)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]

    # ── Agent contexts & globals ─────────────────────────────────────

    def update_agent_context(
        self, workspace_id: str, agent_id: str, values: Dict[str, Any], session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Merge *values* into the agent's private context."""
        context = self.get_context(workspace_id, session_id)
        merged = {**context.agent_contexts.get(agent_id, {}), **values}
        context.agent_contexts[agent_id] = merged
        context.updated_at = _now()
        return dict(merged)

    def get_agent_context(self, workspace_id: str, agent_id: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        context = self.get_context(workspace_id, session_id)
        return dict(context.agent_contexts.get(agent_id, {}))

    def set_global_variable(self, workspace_id: str, name: str, value: Any, session_id: Optional[str] = None) -> None:
        context = self.get_context(workspace_id, session_id)
        context.global_variables[name] = value
        context.updated_at = _now()

    def get_global_variable(self, workspace_id: str, name: str, session_id: Optional[str] = None, default: Any = None) -> Any:
        return self.get_context(workspace_id, session_id).global_variables.get(name, default)

    # ── Audit & subscriptions ────────────────────────────────────────

    def history(
        self, workspace_id: str, session_id: Optional[str] = None, key: Optional[str] = None, limit: int = 100
    ) -> List[ContextUpdate]:
        """Audit trail, most recent first."""
        updates = self._history.get(context_id_for(workspace_id, session_id), [])
        if key is not None:
            updates = [u for u in updates if u.key == key]
        return list(reversed(updates))[:limit]

    def subscribe(self, pattern: str, callback: Subscriber) -> None:
        """Call ``callback(context_id, key, value)`` after writes to keys matching *pattern* (glob)."""
        self._subscribers.append((pattern, callback))

    def _notify(self, context_id: str, key: str, value: Any) -> None:
        for pattern, callback in self._subscribers:
            if fnmatch.fnmatchcase(key, pattern):
                callback(context_id, key, value)

    def stats(self) -> Dict[str, Any]:
        return {
            "contexts": len(self._contexts),
            "keys": sum(len(c.shared_data) for c in self._contexts.values()),
            "updates": sum(len(h) for h in self._history.values()),
            "subscribers": len(self._subscribers),
        }
