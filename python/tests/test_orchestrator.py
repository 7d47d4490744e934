"""Tests for the task orchestrator (agentcore/orchestration/orchestrator.py).

Tasks run through scripted executors instead of model calls. TestDispatcherExecutor
mocks the execution dispatcher; the rate-limit cancellation test drives a real
one over a gated in-process adapter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentcore.accounting import BudgetTracker, CostCalculator, ModelPricing, RateLimitConfig, RateLimiter
from agentcore.agents import AgentDirectory, AgentProfile
from agentcore.exceptions import NotFoundError, ProviderError, RetryConfig, TaskTimeout, ValidationError
from agentcore.execution import (
    ExecutionCache,
    ExecutionDispatcher,
    ExecutionHistory,
    ExecutionResult,
    ExecutionStatus,
    HistoryQuery,
)
from agentcore.orchestration import (
    AgentMessageBus,
    DelegationStrategy,
    ExecutionContextStore,
    ExecutionMode,
    MessageType,
    RunStatus,
    TaskOrchestrator,
    TaskPriority,
    TaskSpec,
    TaskStatus,
    TextContent,
)
from agentcore.orchestration.orchestrator import build_task_prompt, output_key
from agentcore.providers import ProviderAdapter, ProviderRegistry, ProviderResponse, StreamChunk


# -- Fixtures --------------------------------------------------------------


def default_agents():
    return [
        AgentProfile("researcher", role="research", capabilities={"research", "write"}),
        AgentProfile("writer", role="writer", capabilities={"write"}),
        AgentProfile("backup", role="generalist", capabilities={"research", "write", "review"}),
    ]


def make_orchestrator(executor, agents=None, **kwargs):
    return TaskOrchestrator(
        directory=AgentDirectory(agents if agents is not None else default_agents()),
        context_store=ExecutionContextStore(),
        message_bus=AgentMessageBus(request_timeout=1.0),
        executor=executor,
        **kwargs,
    )


async def echo(agent, context):
    return {"value": f"{context.task.spec.name} by {agent.agent_id}", "input": context.input}


async def run_to_end(orchestrator, tasks, **kwargs):
    run = await orchestrator.submit("ws1", tasks, **kwargs)
    await orchestrator.wait(run.run_id, timeout=10)
    return run


def result_map(run):
    return {r.task_id: r for r in run.results()}


class SlowProvider(ProviderAdapter):
    """Adapter whose calls block until the gate opens."""

    MODEL_PREFIXES = ("slow-",)

    def __init__(self, gate: asyncio.Event):
        super().__init__(api_key="test")
        self.gate = gate
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "Slow"

    async def execute(self, messages, options):
        self.calls += 1
        await self.gate.wait()
        return ProviderResponse(
            content="late", model=options.model, provider=self.provider_name, input_tokens=1, output_tokens=1
        )

    async def execute_stream(self, messages, options):
        await self.gate.wait()
        yield StreamChunk(done=True, finish_reason="stop")


@pytest.fixture
def calculator():
    return CostCalculator({"slow-": ModelPricing(1.0, 2.0)})


def make_dispatcher(provider, calculator):
    return ExecutionDispatcher(
        registry=ProviderRegistry([provider]),
        calculator=calculator,
        rate_limiter=RateLimiter(),
        budget=BudgetTracker(calculator),
        cache=ExecutionCache(default_ttl=60),
        history=ExecutionHistory(calculator),
        retry_config=RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0),
        default_model="slow-1",
    )


# ========================================================================
# SUBMISSION
# ========================================================================


class TestSubmission:
    """Graphs are validated before anything is scheduled."""

    def test_needs_dispatcher_or_executor(self):
        with pytest.raises(ValidationError):
            TaskOrchestrator(AgentDirectory(), ExecutionContextStore(), AgentMessageBus())

    async def test_cycle_rejected_without_scheduling(self):
        orchestrator = make_orchestrator(echo)
        tasks = [
            TaskSpec(name="a", task_id="a", dependencies=["b"]),
            TaskSpec(name="b", task_id="b", dependencies=["a"]),
        ]
        with pytest.raises(ValidationError, match="cycle"):
            await orchestrator.submit("ws1", tasks)
        assert orchestrator.list_runs() == []

    async def test_unknown_dependency_rejected(self):
        orchestrator = make_orchestrator(echo)
        with pytest.raises(ValidationError, match="unknown"):
            await orchestrator.submit("ws1", [TaskSpec(name="a", dependencies=["ghost"])])

    async def test_empty_graph_and_bad_task(self):
        orchestrator = make_orchestrator(echo)
        with pytest.raises(ValidationError):
            await orchestrator.submit("ws1", [])
        with pytest.raises(ValidationError, match="timeout"):
            await orchestrator.submit("ws1", [TaskSpec(name="a", timeout_ms=10)])

    async def test_unknown_run(self):
        orchestrator = make_orchestrator(echo)
        with pytest.raises(NotFoundError):
            orchestrator.get_run("nope")

    async def test_inputs_written_to_context(self):
        seen = {}

        async def executor(agent, context):
            seen["input"] = context.context_store.get(context.workspace_id, "task:a:input")
            return "ok"

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [TaskSpec(name="a", task_id="a", input={"topic": "bees"})])
        assert seen["input"] == {"topic": "bees"}
        assert run.status == RunStatus.COMPLETED


# ========================================================================
# SCHEDULING
# ========================================================================


class TestScheduling:
    async def test_chain_passes_outputs_downstream(self):
        seen = {}

        async def executor(agent, context):
            seen[context.task.task_id] = dict(context.dependency_outputs)
            return {"value": context.task.task_id.upper()}

        orchestrator = make_orchestrator(executor)
        writes = {}
        orchestrator.context_store.subscribe("task:*", lambda context_id, key, value: writes.update({key: value}))
        run = await run_to_end(orchestrator, [
            TaskSpec(name="research", task_id="a"),
            TaskSpec(name="draft", task_id="b", dependencies=["a"]),
        ])

        assert run.status == RunStatus.COMPLETED
        assert seen["b"] == {"a": {"value": "A"}}
        assert writes[output_key("b")] == {"value": "B"}
        assert all(r.status == TaskStatus.COMPLETED for r in run.results())

    async def test_input_mapping_references_are_dependencies(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="summarize", task_id="b", input_mapping={"text": "$a.value", "style": "short"}),
            TaskSpec(name="research", task_id="a"),
        ])

        output = result_map(run)["b"].output
        assert output["input"] == {"text": "research by writer", "style": "short"}

    async def test_sequential_mode_follows_priority(self):
        order = []

        async def executor(agent, context):
            order.append(context.task.task_id)
            return None

        orchestrator = make_orchestrator(executor)
        await run_to_end(orchestrator, [
            TaskSpec(name="l", task_id="low", priority=TaskPriority.LOW),
            TaskSpec(name="m", task_id="medium"),
            TaskSpec(name="c", task_id="critical", priority=TaskPriority.CRITICAL),
            TaskSpec(name="h", task_id="high", priority=TaskPriority.HIGH),
        ], mode=ExecutionMode.SEQUENTIAL)

        assert order == ["critical", "high", "medium", "low"]

    @pytest.mark.parametrize("mode,limit,expected", [
        (ExecutionMode.PARALLEL, 2, 2),
        (ExecutionMode.PARALLEL, 10, 5),
        (ExecutionMode.SEQUENTIAL, 10, 1),
    ])
    async def test_concurrency_bound(self, mode, limit, expected):
        active = 0
        peak = 0

        async def executor(agent, context):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return None

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(
            orchestrator, [TaskSpec(name=f"t{i}") for i in range(5)], mode=mode, max_concurrency=limit
        )
        assert run.status == RunStatus.COMPLETED
        assert peak == expected

    async def test_slow_task_does_not_block_independent_work(self):
        release = asyncio.Event()
        finished = []

        async def executor(agent, context):
            if context.task.task_id == "slow":
                await release.wait()
            finished.append(context.task.task_id)
            return None

        orchestrator = make_orchestrator(executor)
        run = await orchestrator.submit("ws1", [
            TaskSpec(name="slow", task_id="slow"),
            TaskSpec(name="fast", task_id="fast"),
            TaskSpec(name="after-fast", task_id="after", dependencies=["fast"]),
        ])
        for _ in range(50):
            if "after" in finished:
                break
            await asyncio.sleep(0.01)
        assert finished == ["fast", "after"]
        release.set()
        await orchestrator.wait(run.run_id, timeout=5)
        assert run.status == RunStatus.COMPLETED

    async def test_capability_routing(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="review", task_id="r", required_capabilities={"review"}),
            TaskSpec(name="research", task_id="s", required_capabilities={"research"}),
        ])
        results = result_map(run)
        assert results["r"].agent_id == "backup"
        assert results["s"].agent_id == "researcher"
        assert [a.task_id for a in run.assignments] == ["r", "s"]


# ========================================================================
# FAILURE HANDLING
# ========================================================================


class TestFailures:
    async def test_no_eligible_agent_cascades_dependency_failed(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="fly", task_id="a", required_capabilities={"fly"}),
            TaskSpec(name="land", task_id="b", dependencies=["a"]),
            TaskSpec(name="taxi", task_id="c", dependencies=["b"]),
            TaskSpec(name="unrelated", task_id="x"),
        ])
        results = result_map(run)

        assert run.status == RunStatus.FAILED
        assert results["a"].status == TaskStatus.FAILED
        assert results["a"].error_kind == "NoEligibleAgent"
        for task_id in ("b", "c"):
            assert results[task_id].status == TaskStatus.CANCELLED
            assert results[task_id].error_kind == "DependencyFailed"
            assert results[task_id].metadata["failed_dependency"] == "a"
        assert results["x"].status == TaskStatus.COMPLETED

    async def test_executor_error_recorded(self):
        async def executor(agent, context):
            raise ProviderError("model refused", provider="Fake", status_code=503, retryable=True)

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [TaskSpec(name="a", task_id="a")])
        result = result_map(run)["a"]

        assert result.status == TaskStatus.FAILED
        assert result.error == "model refused"
        assert result.error_kind == "ProviderError"
        assert result.to_dict()["retryable"] is True

    async def test_timeout_retried_then_completes(self):
        attempts = 0

        async def executor(agent, context):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise TaskTimeout("no response from peer")
            return "ok"

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [TaskSpec(name="a", task_id="a", max_retries=2)])
        result = result_map(run)["a"]

        assert result.status == TaskStatus.COMPLETED
        assert result.retry_count == 1
        assert "task_retrying" in [e.event for e in run.events]

    async def test_timeout_retries_exhausted(self):
        attempts = 0

        async def executor(agent, context):
            nonlocal attempts
            attempts += 1
            raise TaskTimeout("still nothing")

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="a", task_id="a", max_retries=2),
            TaskSpec(name="b", task_id="b", dependencies=["a"]),
        ])
        results = result_map(run)

        assert attempts == 3
        assert results["a"].status == TaskStatus.FAILED
        assert results["a"].error_kind == "TaskTimeout"
        assert results["a"].retry_count == 2
        assert results["b"].error_kind == "DependencyFailed"

    async def test_task_timeout_enforced(self):
        async def executor(agent, context):
            await asyncio.sleep(30)

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [TaskSpec(name="a", task_id="a", timeout_ms=1000)])
        result = result_map(run)["a"]

        assert result.status == TaskStatus.FAILED
        assert result.error_kind == "TaskTimeout"
        assert "1000ms" in result.error

    async def test_fallback_agent_takes_over_once(self):
        calls = []

        async def executor(agent, context):
            calls.append(agent.agent_id)
            if agent.agent_id == "writer":
                raise RuntimeError("writer crashed")
            return "rescued"

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="a", task_id="a", preferred_role="writer", fallback_agent_id="backup"),
        ])
        result = result_map(run)["a"]

        assert calls == ["writer", "backup"]
        assert result.status == TaskStatus.COMPLETED
        assert result.agent_id == "backup"
        assert "task_fallback" in [e.event for e in run.events]

    async def test_fallback_failure_is_final(self):
        calls = []

        async def executor(agent, context):
            calls.append(agent.agent_id)
            raise RuntimeError(f"{agent.agent_id} crashed")

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="a", task_id="a", preferred_role="writer", fallback_agent_id="backup"),
        ])
        result = result_map(run)["a"]

        assert calls == ["writer", "backup"]
        assert result.status == TaskStatus.FAILED
        assert result.error == "backup crashed"
        assert result.error_kind == "RuntimeError"

    async def test_fallback_used_when_no_candidate(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="a", task_id="a", required_capabilities={"fly"}, fallback_agent_id="writer"),
        ])
        result = result_map(run)["a"]
        assert result.status == TaskStatus.COMPLETED
        assert result.agent_id == "writer"


# ========================================================================
# CANCELLATION, EVENTS, MESSAGING
# ========================================================================


class TestCancellation:
    async def test_cancel_run_stops_everything(self):
        started = asyncio.Event()

        async def executor(agent, context):
            started.set()
            await asyncio.sleep(30)

        orchestrator = make_orchestrator(executor)
        run = await orchestrator.submit("ws1", [
            TaskSpec(name="a", task_id="a"),
            TaskSpec(name="b", task_id="b", dependencies=["a"]),
        ])
        await started.wait()
        assert orchestrator.agent_pool.load(run.tasks["a"].agent_id) == 1

        await orchestrator.cancel_run(run.run_id)
        results = result_map(run)

        assert run.status == RunStatus.CANCELLED
        assert results["a"].status == TaskStatus.CANCELLED
        assert results["a"].error_kind == "TaskCancelled"
        assert results["b"].status == TaskStatus.CANCELLED
        assert orchestrator.agent_pool.load(results["a"].agent_id) == 0

    async def test_cancel_finished_run_is_noop(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [TaskSpec(name="a")])
        await orchestrator.cancel_run(run.run_id)
        assert run.status == RunStatus.COMPLETED

    async def test_aclose_cancels_unfinished_runs(self):
        async def executor(agent, context):
            await asyncio.sleep(30)

        orchestrator = make_orchestrator(executor)
        run = await orchestrator.submit("ws1", [TaskSpec(name="a")])
        await asyncio.sleep(0)
        await orchestrator.aclose()
        assert run.status == RunStatus.CANCELLED

    async def test_partial_context_writes_survive_failed_task(self):
        async def executor(agent, context):
            if context.task.task_id == "writer":
                await context.context_store.set(context.workspace_id, "draft", "half done")
                raise TaskTimeout("gave up")
            while run.tasks["writer"].status != TaskStatus.FAILED:
                await asyncio.sleep(0.01)
            return context.context_store.get(context.workspace_id, "draft")

        orchestrator = make_orchestrator(executor)
        run = await orchestrator.submit("ws1", [
            TaskSpec(name="write", task_id="writer"),
            TaskSpec(name="read", task_id="reader"),
        ])
        await orchestrator.wait(run.run_id, timeout=10)
        assert result_map(run)["reader"].output == "half done"

    async def test_cancel_releases_dispatcher_rate_limit_slots(self, calculator):
        gate = asyncio.Event()
        provider = SlowProvider(gate)
        dispatcher = make_dispatcher(provider, calculator)
        agent = AgentProfile(
            "writer", capabilities={"write"}, model="slow-1",
            rate_limit=RateLimitConfig(max_concurrent_requests=5),
        )
        orchestrator = TaskOrchestrator(
            directory=AgentDirectory([agent]),
            context_store=ExecutionContextStore(),
            message_bus=AgentMessageBus(),
            dispatcher=dispatcher,
        )

        run = await orchestrator.submit("ws1", [TaskSpec(name="a", task_id="a"), TaskSpec(name="b", task_id="b")])
        for _ in range(200):
            if provider.calls == 2:
                break
            await asyncio.sleep(0.01)
        assert dispatcher.rate_limiter.active_requests("writer") == 2

        await orchestrator.cancel_run(run.run_id)

        assert dispatcher.rate_limiter.active_requests("writer") == 0
        assert {r.status for r in run.results()} == {TaskStatus.CANCELLED}
        assert dispatcher.get_history(HistoryQuery(status=ExecutionStatus.CANCELLED)).total == 2


class TestEventsAndMessages:
    async def test_event_stream_ends_with_run_finished(self):
        orchestrator = make_orchestrator(echo)
        run = await orchestrator.submit("ws1", [
            TaskSpec(name="a", task_id="a"),
            TaskSpec(name="b", task_id="b", dependencies=["a"]),
        ])
        events = [e async for e in orchestrator.events(run.run_id)]

        names = [(e.event, e.task_id) for e in events]
        assert names[-1] == ("run_finished", None)
        assert events[-1].status == "completed"
        assert names.index(("task_completed", "a")) < names.index(("task_queued", "b"))
        assert [e.event for e in events if e.task_id == "a"] == [
            "task_queued", "task_assigned", "task_started", "task_completed"
        ]

    async def test_completion_announced_on_bus(self):
        seen = {}

        async def executor(agent, context):
            seen[context.task.task_id] = context.message_bus.get_messages(context.run_id)
            return "ok"

        orchestrator = make_orchestrator(executor)
        await run_to_end(orchestrator, [
            TaskSpec(name="a", task_id="a"),
            TaskSpec(name="b", task_id="b", dependencies=["a"]),
        ])

        assert seen["a"] == []
        messages = seen["b"]
        assert len(messages) == 1
        message = messages[0]
        assert message.message_type == MessageType.NOTIFICATION
        assert message.content.task_id == "a"
        assert message.content.status == "completed"
        # all workspace agents except the sender were active at send time
        assert message.recipients == {"researcher", "writer", "backup"} - {message.from_agent_id}

    async def test_agents_can_talk_during_a_run(self):
        async def executor(agent, context):
            if context.task.task_id == "asker":
                reply = await context.message_bus.request(
                    context.run_id, agent.agent_id, "writer", TextContent("need a title")
                )
                return reply.content.text
            # the writer answers whatever is waiting for it
            for _ in range(100):
                inbox = context.message_bus.receive(context.run_id, agent.agent_id, MessageType.REQUEST)
                if inbox:
                    context.message_bus.respond(inbox[0], agent.agent_id, TextContent("Bees!"))
                    return "answered"
                await asyncio.sleep(0.01)
            return "nobody asked"

        orchestrator = make_orchestrator(executor)
        run = await run_to_end(orchestrator, [
            TaskSpec(name="ask", task_id="asker", required_capabilities={"research"}, preferred_role="research"),
            TaskSpec(name="answer", task_id="answerer", preferred_role="writer"),
        ])
        results = result_map(run)
        assert results["asker"].output == "Bees!"
        assert results["answerer"].output == "answered"

    async def test_workspace_stats(self):
        orchestrator = make_orchestrator(echo)
        await run_to_end(orchestrator, [TaskSpec(name="a"), TaskSpec(name="b")])
        stats = orchestrator.get_workspace_stats("ws1")
        assert stats["total_runs"] == 1
        assert stats["tasks_by_status"]["completed"] == 2
        assert stats["runs_by_status"]["completed"] == 1


# ========================================================================
# CLEANUP
# ========================================================================


class TestRunCleanup:
    """Finished runs release their context and channel; run records are evictable."""

    async def test_finished_run_drops_context_and_channel(self):
        orchestrator = make_orchestrator(echo)
        run = await run_to_end(orchestrator, [TaskSpec(name="a", task_id="a", input={"topic": "bees"})])

        assert run.status == RunStatus.COMPLETED
        assert orchestrator.context_store.stats()["contexts"] == 0
        assert orchestrator.context_store.get("ws1", "task:a:input") is None
        assert orchestrator.message_bus.stats()["total_messages"] == 0
        assert orchestrator.message_bus.get_messages(run.run_id) == []
        # outputs stay readable on the run itself
        assert result_map(run)["a"].output["input"] == {"topic": "bees"}

    async def test_cancelled_run_is_cleaned_up(self):
        started = asyncio.Event()

        async def executor(agent, context):
            started.set()
            await asyncio.sleep(30)

        orchestrator = make_orchestrator(executor)
        run = await orchestrator.submit("ws1", [TaskSpec(name="a")], session_id="s1")
        await started.wait()
        await orchestrator.cancel_run(run.run_id)

        assert orchestrator.context_store.stats()["contexts"] == 0
        assert orchestrator.message_bus.stats()["total_messages"] == 0

    async def test_shared_context_kept_while_another_run_uses_it(self):
        release = asyncio.Event()

        async def executor(agent, context):
            if context.task.task_id == "slow":
                await release.wait()
            return "ok"

        orchestrator = make_orchestrator(executor)
        slow = await orchestrator.submit("ws1", [TaskSpec(name="slow", task_id="slow", input="draft")])
        quick = await run_to_end(orchestrator, [TaskSpec(name="quick", task_id="quick")])

        assert quick.status == RunStatus.COMPLETED
        assert orchestrator.context_store.get("ws1", "task:slow:input") == "draft"
        assert orchestrator.context_store.stats()["contexts"] == 1

        release.set()
        await orchestrator.wait(slow.run_id, timeout=10)
        assert orchestrator.context_store.stats()["contexts"] == 0

    async def test_evict_finished(self):
        orchestrator = make_orchestrator(echo)
        done = await run_to_end(orchestrator, [TaskSpec(name="a")])

        assert orchestrator.evict_finished(older_than_seconds=3600) == 0
        assert orchestrator.evict_finished() == 1
        with pytest.raises(NotFoundError):
            orchestrator.get_run(done.run_id)
        assert orchestrator.get_workspace_stats("ws1")["total_runs"] == 0

    async def test_oldest_finished_runs_trimmed(self):
        orchestrator = make_orchestrator(echo, max_finished_runs=2)
        runs = [await run_to_end(orchestrator, [TaskSpec(name=f"t{i}")]) for i in range(3)]

        assert [r.run_id for r in orchestrator.list_runs()] == [r.run_id for r in runs[1:]]


# ========================================================================
# DEFAULT EXECUTOR
# ========================================================================


class TestDispatcherExecutor:
    """Without a custom executor each task is one prompt through the dispatcher."""

    async def test_task_becomes_dispatcher_call(self):
        dispatcher = MagicMock()
        dispatcher.execute = AsyncMock(return_value=ExecutionResult(
            execution_id="e1", agent_id="writer", provider="OpenAI", model="gpt-4o",
            output="A poem about bees", cost=0.01,
        ))
        orchestrator = TaskOrchestrator(
            directory=AgentDirectory(default_agents()),
            context_store=ExecutionContextStore(),
            message_bus=AgentMessageBus(),
            dispatcher=dispatcher,
        )

        run = await run_to_end(orchestrator, [
            TaskSpec(name="Write a poem", task_id="poem", input={"topic": "bees"}, preferred_role="writer"),
        ], session_id="s1", strategy=DelegationStrategy.CAPABILITY_MATCH)
        result = result_map(run)["poem"]

        assert result.output == {
            "content": "A poem about bees", "execution_id": "e1", "model": "gpt-4o", "cost": 0.01, "cached": False,
        }
        agent, request = dispatcher.execute.await_args.args
        assert agent.agent_id == "writer"
        assert request.session_id == "s1"
        assert request.metadata == {"run_id": run.run_id, "task_id": "poem"}
        assert '"topic": "bees"' in request.prompt

    def test_prompt_includes_dependency_content(self):
        prompt = build_task_prompt(
            TaskSpec(name="Edit", description="Tighten the draft."),
            None,
            {"draft": {"content": "Bees are great", "cost": 0.1}},
        )
        assert prompt.startswith("Task: Edit\n\nTighten the draft.")
        assert '"draft": "Bees are great"' in prompt
        assert "cost" not in prompt
