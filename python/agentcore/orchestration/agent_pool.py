"""Agent selection and load tracking for task delegation."""

import logging
from typing import Dict, Iterable, List, Optional

from agentcore.agents import AgentDirectory, AgentProfile
from agentcore.orchestration.models import AgentCapabilityMatch, DelegationStrategy, TaskSpec

logger = logging.getLogger(__name__)

MAX_AGENT_LOAD = 10


class AgentPool:
    """Picks an agent for a task and counts the tasks each agent is running."""

    def __init__(self, directory: AgentDirectory) -> None:
        self.directory = directory
        self._load: Dict[str, int] = {}
        self._round_robin: Dict[str, int] = {}

    # ── Load ─────────────────────────────────────────────────────────

    def load(self, agent_id: str) -> int:
        return self._load.get(agent_id, 0)

    def acquire(self, agent_id: str) -> None:
        self._load[agent_id] = self.load(agent_id) + 1

    def release(self, agent_id: str) -> None:
        self._load[agent_id] = max(0, self.load(agent_id) - 1)

    def loads(self) -> Dict[str, int]:
        return dict(self._load)

    def is_available(self, agent_id: str) -> bool:
        return self.load(agent_id) < MAX_AGENT_LOAD

    # ── Matching ─────────────────────────────────────────────────────

    def candidates(self, workspace_id: str, required: Iterable[str]) -> List[AgentProfile]:
        """Workspace agents whose capabilities are a superset of *required*."""
        required = set(required)
        return [a for a in self.directory.list(workspace_id) if a.has_capabilities(required)]

    def match(self, agent: AgentProfile, required: Iterable[str]) -> AgentCapabilityMatch:
        required = set(required)
        matched = sorted(agent.capabilities & required)
        score = len(matched) / len(required) * 100 if required else 100.0
        load = self.load(agent.agent_id)
        return AgentCapabilityMatch(
            agent_id=agent.agent_id,
            agent_name=agent.name,
            role=agent.role,
            match_score=round(score, 2),
            capabilities=sorted(agent.capabilities),
            matched_capabilities=matched,
            current_load=load,
            is_available=load < MAX_AGENT_LOAD,
        )

    def select(
        self,
        workspace_id: str,
        spec: TaskSpec,
        strategy: DelegationStrategy = DelegationStrategy.CAPABILITY_MATCH,
    ) -> Optional[AgentProfile]:
        """
        Choose an agent for *spec*, or None when no agent qualifies.

        Only agents offering every required capability qualify. Among them
        the ``preferred_role`` wins when any agent has it; the strategy
        breaks the remaining tie.
        """
        candidates = self.candidates(workspace_id, spec.required_capabilities)

        if strategy == DelegationStrategy.MANUAL:
            chosen = next((a for a in candidates if a.agent_id == spec.preferred_agent_id), None)
            if chosen is None:
                logger.info("Manual agent %s not eligible for task %s", spec.preferred_agent_id, spec.task_id)
            return chosen

        if not candidates:
            return None

        if spec.preferred_role:
            by_role = [a for a in candidates if a.role == spec.preferred_role]
            if by_role:
                candidates = by_role

        if strategy == DelegationStrategy.ROUND_ROBIN:
            index = self._round_robin.get(workspace_id, 0)
            self._round_robin[workspace_id] = index + 1
            return candidates[index % len(candidates)]

        if strategy == DelegationStrategy.LEAST_BUSY:
            return min(candidates, key=lambda a: self.load(a.agent_id))

        if strategy == DelegationStrategy.PRIORITY_BASED:
            return max(candidates, key=lambda a: a.priority)

        # capability_match: available agents first, then the tightest capability fit
        return min(
            candidates,
            key=lambda a: (
                not self.is_available(a.agent_id),
                len(a.capabilities - set(spec.required_capabilities)),
            ),
        )
