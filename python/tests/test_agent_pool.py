"""Tests for agent selection strategies (agentcore/orchestration/agent_pool.py)."""

import pytest

from agentcore.agents import AgentDirectory, AgentProfile
from agentcore.orchestration import MAX_AGENT_LOAD, AgentPool, DelegationStrategy, TaskSpec


@pytest.fixture
def directory():
    return AgentDirectory([
        AgentProfile("writer", name="Writer", role="writer", capabilities={"write"}, priority=1),
        AgentProfile("editor", name="Editor", role="editor", capabilities={"write", "edit"}, priority=5),
        AgentProfile("coder", name="Coder", role="dev", capabilities={"code", "write", "edit", "test"}),
        AgentProfile("ops", capabilities={"deploy"}, workspace_ids={"ws-ops"}),
    ])


@pytest.fixture
def pool(directory):
    return AgentPool(directory)


def spec(*caps, **kwargs):
    return TaskSpec(name="t", required_capabilities=set(caps), **kwargs)


class TestCandidates:
    def test_only_agents_with_all_capabilities(self, pool):
        ids = [a.agent_id for a in pool.candidates("ws1", {"write", "edit"})]
        assert ids == ["editor", "coder"]

    def test_workspace_scoping(self, pool):
        assert [a.agent_id for a in pool.candidates("ws1", {"deploy"})] == []
        assert [a.agent_id for a in pool.candidates("ws-ops", {"deploy"})] == ["ops"]

    def test_no_match_returns_none(self, pool):
        assert pool.select("ws1", spec("fly")) is None

    def test_match_score(self, pool, directory):
        match = pool.match(directory.get("editor"), {"write", "edit", "code"})
        assert match.match_score == pytest.approx(66.67)
        assert match.matched_capabilities == ["edit", "write"]
        assert match.is_available
        assert pool.match(directory.get("editor"), set()).match_score == 100.0


class TestStrategies:
    def test_capability_match_prefers_tightest_fit(self, pool):
        assert pool.select("ws1", spec("write")).agent_id == "writer"
        assert pool.select("ws1", spec("write", "edit")).agent_id == "editor"

    def test_capability_match_skips_saturated_agents(self, pool):
        for _ in range(MAX_AGENT_LOAD):
            pool.acquire("writer")
        assert not pool.is_available("writer")
        assert pool.select("ws1", spec("write")).agent_id == "editor"

    def test_preferred_role_narrows_candidates(self, pool):
        chosen = pool.select("ws1", spec("write", preferred_role="dev"))
        assert chosen.agent_id == "coder"

    def test_unknown_preferred_role_is_ignored(self, pool):
        assert pool.select("ws1", spec("write", preferred_role="poet")).agent_id == "writer"

    def test_round_robin_cycles_per_workspace(self, pool):
        strategy = DelegationStrategy.ROUND_ROBIN
        picks = [pool.select("ws1", spec("write"), strategy).agent_id for _ in range(4)]
        assert picks == ["writer", "editor", "coder", "writer"]
        assert pool.select("ws2", spec("write"), strategy).agent_id == "writer"

    def test_least_busy(self, pool):
        pool.acquire("writer")
        pool.acquire("editor")
        chosen = pool.select("ws1", spec("write"), DelegationStrategy.LEAST_BUSY)
        assert chosen.agent_id == "coder"

    def test_priority_based(self, pool):
        chosen = pool.select("ws1", spec("write"), DelegationStrategy.PRIORITY_BASED)
        assert chosen.agent_id == "editor"

    def test_manual_requires_eligible_agent(self, pool):
        strategy = DelegationStrategy.MANUAL
        assert pool.select("ws1", spec("write", preferred_agent_id="coder"), strategy).agent_id == "coder"
        assert pool.select("ws1", spec("code", preferred_agent_id="writer"), strategy) is None


class TestLoad:
    def test_acquire_release(self, pool):
        pool.acquire("writer")
        pool.acquire("writer")
        pool.release("writer")
        assert pool.load("writer") == 1
        pool.release("writer")
        pool.release("writer")
        assert pool.load("writer") == 0
        assert pool.loads() == {"writer": 0}
