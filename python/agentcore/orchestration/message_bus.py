"""
Agent Message Bus

Point-to-point and broadcast messaging between the agents of a run, plus
request/response exchanges matched by correlation id.

A broadcast is delivered to the agents active on the channel at send time
only; agents joining later never see it.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Set, Union

from agentcore.exceptions import TaskTimeout, ValidationError

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    BROADCAST = "broadcast"


class MessagePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_PRIORITY_ORDER = {MessagePriority.HIGH: 0, MessagePriority.MEDIUM: 1, MessagePriority.LOW: 2}


# ── Payloads ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextContent:
    kind: ClassVar[str] = "text"
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "text": self.text}


@dataclass(frozen=True)
class DataContent:
    kind: ClassVar[str] = "data"
    data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "data": self.data}


@dataclass(frozen=True)
class TaskEventContent:
    """Task lifecycle notification published by the orchestrator."""
    kind: ClassVar[str] = "task_event"
    task_id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "task_id": self.task_id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "error_kind": self.error_kind,
        }


MessageContent = Union[TextContent, DataContent, TaskEventContent]


@dataclass
class AgentMessage:
    message_id: str
    channel: str
    from_agent_id: str
    to_agent_id: Optional[str]  # None = broadcast
    message_type: MessageType
    content: MessageContent
    recipients: FrozenSet[str] = frozenset()
    context: Dict[str, Any] = field(default_factory=dict)
    priority: MessagePriority = MessagePriority.MEDIUM
    correlation_id: Optional[str] = None
    requires_response: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_broadcast(self) -> bool:
        return self.to_agent_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "channel": self.channel,
            "from_agent_id": self.from_agent_id,
            "to_agent_id": self.to_agent_id,
            "message_type": self.message_type.value,
            "content": self.content.to_dict(),
            "context": self.context,
            "priority": self.priority.value,
            "correlation_id": self.correlation_id,
            "requires_response": self.requires_response,
            "timestamp": self.timestamp.isoformat(),
        }


class AgentMessageBus:
    """
    In-process message bus, one channel per run.

    Features:
    - Inbox per (channel, agent), drained by ``receive`` in priority order
    - Broadcasts fan out to the active agents captured at send time
    - ``request`` blocks until a matching ``response`` or a timeout
    - Channel history for polling with ``get_messages(since=...)``
    """

    def __init__(self, request_timeout: float = 60.0) -> None:
        self.request_timeout = request_timeout
        self._active: Dict[str, Set[str]] = {}
        self._inboxes: Dict[str, Dict[str, List[AgentMessage]]] = {}
        self._history: Dict[str, List[AgentMessage]] = {}
        self._pending: Dict[str, "asyncio.Future[AgentMessage]"] = {}

    # ── Membership ───────────────────────────────────────────────────

    def join(self, channel: str, agent_id: str) -> None:
        self._active.setdefault(channel, set()).add(agent_id)
        self._inboxes.setdefault(channel, {}).setdefault(agent_id, [])

    def leave(self, channel: str, agent_id: str) -> None:
        self._active.get(channel, set()).discard(agent_id)

    def active_agents(self, channel: str) -> Set[str]:
        return set(self._active.get(channel, set()))

    def close_channel(self, channel: str) -> None:
        """Deactivate every agent of *channel*; pending requests on it fail with ``TaskTimeout``.

        History stays readable through ``get_messages``.
        """
        for message in self._history.get(channel, []):
            future = self._pending.pop(message.correlation_id or "", None)
            if future is not None and not future.done():
                future.set_exception(TaskTimeout(f"Channel {channel} closed before a response arrived"))
        self._active.pop(channel, None)

    def drop_channel(self, channel: str) -> None:
        self.close_channel(channel)
        self._inboxes.pop(channel, None)
        self._history.pop(channel, None)

    # ── Sending ──────────────────────────────────────────────────────

    def send(
        self,
        channel: str,
        from_agent_id: str,
        content: MessageContent,
        to_agent_id: Optional[str] = None,
        message_type: Optional[MessageType] = None,
        context: Optional[Dict[str, Any]] = None,
        priority: MessagePriority = MessagePriority.MEDIUM,
        correlation_id: Optional[str] = None,
        requires_response: bool = False,
    ) -> AgentMessage:
        """Deliver to *to_agent_id*, or to every active agent but the sender when None."""
        if message_type is None:
            message_type = MessageType.BROADCAST if to_agent_id is None else MessageType.NOTIFICATION
        if message_type == MessageType.RESPONSE and not correlation_id:
            raise ValidationError("Response messages need a correlation_id")

        if to_agent_id is None:
            recipients = frozenset(self.active_agents(channel) - {from_agent_id})
        else:
            recipients = frozenset({to_agent_id})

        message = AgentMessage(
            message_id=str(uuid.uuid4()),
            channel=channel,
            from_agent_id=from_agent_id,
            to_agent_id=to_agent_id,
            message_type=message_type,
            content=content,
            recipients=recipients,
            context=dict(context or {}),
            priority=priority,
            correlation_id=correlation_id,
            requires_response=requires_response,
        )

        inboxes = self._inboxes.setdefault(channel, {})
        for agent_id in recipients:
            inboxes.setdefault(agent_id, []).append(message)
        self._history.setdefault(channel, []).append(message)

        if message_type == MessageType.RESPONSE:
            future = self._pending.pop(correlation_id, None)
            if future is not None and not future.done():
                future.set_result(message)

        logger.debug(
            "%s: %s -> %s (%s, %s) msg_id=%s",
            channel, from_agent_id, to_agent_id or "all", message_type.value, content.kind, message.message_id[:8],
        )
        return message

    def broadcast(self, channel: str, from_agent_id: str, content: MessageContent, **kwargs: Any) -> AgentMessage:
        kwargs.setdefault("message_type", MessageType.BROADCAST)
        return self.send(channel, from_agent_id, content, to_agent_id=None, **kwargs)

    async def request(
        self,
        channel: str,
        from_agent_id: str,
        to_agent_id: str,
        content: MessageContent,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> AgentMessage:
        """
        Send a request and wait for the response with the same correlation id.

        Raises:
            TaskTimeout: no response within *timeout* seconds
        """
        correlation_id = str(uuid.uuid4())
        future: "asyncio.Future[AgentMessage]" = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        self.send(
            channel,
            from_agent_id,
            content,
            to_agent_id=to_agent_id,
            message_type=MessageType.REQUEST,
            correlation_id=correlation_id,
            requires_response=True,
            **kwargs,
        )
        wait = self.request_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(future, wait)
        except asyncio.TimeoutError:
            raise TaskTimeout(
                f"No response from {to_agent_id} within {wait}s",
                details={"correlation_id": correlation_id, "channel": channel},
            ) from None
        finally:
            self._pending.pop(correlation_id, None)

    def respond(self, request: AgentMessage, from_agent_id: str, content: MessageContent) -> AgentMessage:
        if request.message_type != MessageType.REQUEST:
            raise ValidationError("Can only respond to request messages")
        return self.send(
            request.channel,
            from_agent_id,
            content,
            to_agent_id=request.from_agent_id,
            message_type=MessageType.RESPONSE,
            correlation_id=request.correlation_id,
        )

    # ── Receiving ────────────────────────────────────────────────────

    def receive(
        self, channel: str, agent_id: str, message_type: Optional[MessageType] = None, limit: Optional[int] = None
    ) -> List[AgentMessage]:
        """Drain the agent's inbox, highest priority first (FIFO within a priority)."""
        inbox = self._inboxes.get(channel, {}).get(agent_id, [])
        selected = [m for m in inbox if message_type is None or m.message_type == message_type]
        selected.sort(key=lambda m: _PRIORITY_ORDER[m.priority])
        if limit is not None:
            selected = selected[:limit]
        taken = {id(m) for m in selected}
        inbox[:] = [m for m in inbox if id(m) not in taken]
        return selected

    def get_messages(
        self, channel: str, agent_id: Optional[str] = None, since: Optional[datetime] = None
    ) -> List[AgentMessage]:
        """Channel history visible to *agent_id* (all messages when None), oldest first."""
        return [
            m for m in self._history.get(channel, [])
            if (agent_id is None or agent_id in m.recipients or m.from_agent_id == agent_id)
            and (since is None or m.timestamp >= since)
        ]

    def pending_requests(self) -> int:
        return len(self._pending)

    def stats(self, channel: Optional[str] = None) -> Dict[str, Any]:
        channels = [channel] if channel else list(self._history)
        messages = [m for c in channels for m in self._history.get(c, [])]
        by_type: Dict[str, int] = {}
        for message in messages:
            by_type[message.message_type.value] = by_type.get(message.message_type.value, 0) + 1
        return {
            "channels": len(channels),
            "total_messages": len(messages),
            "pending_requests": len(self._pending),
            "active_agents": sum(len(self._active.get(c, ())) for c in channels),
            "by_type": by_type,
        }
