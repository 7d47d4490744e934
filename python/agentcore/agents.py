"""Agent records as the engine sees them.

Agent CRUD lives outside the engine; ``AgentDirectory`` is the in-process
view the dispatcher and orchestrator read from.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from agentcore.accounting.cost_calculator import CustomPricing
from agentcore.accounting.rate_limiter import RateLimitConfig
from agentcore.exceptions import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class AgentProfile:
    """Execution-relevant configuration of one agent."""

    agent_id: str
    name: str = ""
    role: Optional[str] = None
    capabilities: Set[str] = field(default_factory=set)
    model: Optional[str] = None
    system_prompt: str = "You are a helpful assistant."
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: List[str] = field(default_factory=list)
    rate_limit: RateLimitConfig = field(default_factory=lambda: RateLimitConfig(enabled=False))
    budget_limit: Optional[float] = None
    custom_pricing: Optional[CustomPricing] = None
    workspace_ids: Set[str] = field(default_factory=set)
    priority: int = 0  # higher first under priority_based delegation

    def has_capabilities(self, required: Iterable[str]) -> bool:
        return set(required) <= self.capabilities


class AgentDirectory:
    """Agents registered with the engine, optionally scoped to workspaces."""

    def __init__(self, agents: Optional[Iterable[AgentProfile]] = None) -> None:
        self._agents: Dict[str, AgentProfile] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: AgentProfile) -> None:
        self._agents[agent.agent_id] = agent
        logger.debug("Registered agent %s (capabilities=%s)", agent.agent_id, sorted(agent.capabilities))

    def remove(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)

    def find(self, agent_id: str) -> Optional[AgentProfile]:
        return self._agents.get(agent_id)

    def get(self, agent_id: str) -> AgentProfile:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found", details={"agent_id": agent_id})
        return agent

    def list(self, workspace_id: Optional[str] = None) -> List[AgentProfile]:
        """Agents in *workspace_id*; agents with no workspace scoping belong to all."""
        agents = list(self._agents.values())
        if workspace_id is None:
            return agents
        return [a for a in agents if not a.workspace_ids or workspace_id in a.workspace_ids]

    def __len__(self) -> int:
        return len(self._agents)
