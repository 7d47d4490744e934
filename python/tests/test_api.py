"""Tests for the engine HTTP API (agentcore/api/app.py).

Uses httpx AsyncClient over ASGITransport. The container gets a scripted
provider in place of the real vendor adapters.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from agentcore.api import create_app
from agentcore.config.settings import Settings
from agentcore.container import EngineContainer
from agentcore.providers import ProviderAdapter, ProviderRegistry, ProviderResponse, StreamChunk


class EchoProvider(ProviderAdapter):
    MODEL_PREFIXES = ("echo-",)

    def __init__(self):
        super().__init__(api_key="test")
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "Echo"

    async def execute(self, messages, options):
        self.calls += 1
        return ProviderResponse(
            content=f"answer to {messages[-1].content}",
            model=options.model,
            provider=self.provider_name,
            input_tokens=10,
            output_tokens=5,
            finish_reason="stop",
        )

    async def execute_stream(self, messages, options):
        yield StreamChunk(content="answer")
        yield StreamChunk(done=True, finish_reason="stop", input_tokens=10, output_tokens=1)


@pytest.fixture
def provider():
    return EchoProvider()


@pytest.fixture
def container(provider):
    container = EngineContainer(Settings(retry_base_delay=0.0, openai_api_key=None))
    container._registry = ProviderRegistry([provider])
    return container


@pytest.fixture
async def client(container):
    transport = ASGITransport(app=create_app(container=container))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await container.aclose()


async def register(client, agent_id="writer", **fields):
    body = {"agent_id": agent_id, "model": "echo-1", "capabilities": ["write"], **fields}
    resp = await client.post("/api/agents", json=body)
    assert resp.status_code == 201
    return resp.json()


# --- Health ---

async def test_health_reports_lazy_services(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["services"]["dispatcher"] is False
    assert data["cache"]["entries"] == 0


# --- Agents and executions ---

async def test_register_and_list_agents(client):
    assert await register(client, capabilities=["write", "edit"]) == {
        "agent_id": "writer", "capabilities": ["edit", "write"],
    }
    await register(client, "ops", workspace_ids=["ws-ops"])

    resp = await client.get("/api/agents", params={"workspace_id": "ws1"})
    assert [a["agent_id"] for a in resp.json()["agents"]] == ["writer"]


async def test_invalid_agent_body(client):
    resp = await client.post("/api/agents", json={"agent_id": "x", "temperature": 5})
    assert resp.status_code == 422


async def test_execute_and_cache(client, provider):
    await register(client)

    first = await client.post("/api/agents/writer/execute", json={"prompt": "hi"})
    assert first.status_code == 200
    data = first.json()
    assert data["output"] == "answer to hi"
    assert data["status"] == "completed"
    assert data["cached"] is False

    second = await client.post("/api/agents/writer/execute", json={"prompt": "hi"})
    assert second.json()["cached"] is True
    assert provider.calls == 1


async def test_unknown_agent_error_shape(client):
    resp = await client.post("/api/agents/ghost/execute", json={"prompt": "hi"})
    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["kind"] == "NotFoundError"
    assert error["details"] == {"agent_id": "ghost"}


async def test_unsupported_model(client):
    await register(client, model="mystery-1")
    resp = await client.post("/api/agents/writer/execute", json={"prompt": "hi"})
    assert resp.status_code == 400
    assert resp.json()["error"]["kind"] == "ValidationError"


async def test_rate_limit_rejection(client):
    await register(client, rate_limit={"requests_per_minute": 1})
    assert (await client.post("/api/agents/writer/execute", json={"prompt": "one"})).status_code == 200

    resp = await client.post("/api/agents/writer/execute", json={"prompt": "two"})
    assert resp.status_code == 429
    assert resp.json()["error"]["kind"] == "RateLimitExceeded"

    status = await client.get("/api/agents/writer/rate-limit")
    assert status.status_code == 200


async def test_history_and_statistics(client):
    await register(client)
    await client.post("/api/agents/writer/execute", json={"prompt": "a"})
    await client.post("/api/agents/writer/execute", json={"prompt": "b"})

    page = (await client.get("/api/executions", params={"agent_id": "writer", "limit": 1})).json()
    assert page["meta"]["total"] == 2
    assert page["meta"]["total_pages"] == 2
    assert len(page["data"]) == 1

    stats = (await client.get("/api/executions/statistics")).json()
    assert stats["total_executions"] == 2


# --- Runs and workflows ---

async def test_submit_run_and_poll(client, container):
    await register(client)
    resp = await client.post("/api/workspaces/ws1/runs", json={
        "tasks": [
            {"task_id": "outline", "name": "Outline", "required_capabilities": ["write"]},
            {"task_id": "draft", "name": "Draft", "dependencies": ["outline"], "priority": "high"},
        ],
        "mode": "sequential",
    })
    assert resp.status_code == 202
    run_id = resp.json()["run_id"]
    assert resp.json()["mode"] == "sequential"

    await container.orchestrator.wait(run_id, timeout=5)
    run = (await client.get(f"/api/runs/{run_id}")).json()
    assert run["status"] == "completed"
    tasks = {t["task_id"]: t for t in run["tasks"]}
    assert tasks["draft"]["output"]["content"].startswith("answer to Task: Draft")
    assert tasks["draft"]["agent_id"] == "writer"

    stats = (await client.get("/api/workspaces/ws1/stats")).json()
    assert stats["tasks_by_status"]["completed"] == 2


async def test_cyclic_run_rejected(client):
    resp = await client.post("/api/workspaces/ws1/runs", json={
        "tasks": [
            {"task_id": "a", "name": "A", "dependencies": ["b"]},
            {"task_id": "b", "name": "B", "dependencies": ["a"]},
        ],
    })
    assert resp.status_code == 400
    assert "cycle" in resp.json()["error"]["details"]


async def test_unknown_run(client):
    assert (await client.get("/api/runs/nope")).status_code == 404
    assert (await client.post("/api/runs/nope/cancel")).status_code == 404


async def test_run_workflow(client):
    await register(client)
    resp = await client.post("/api/workspaces/ws1/workflows/run", json={
        "name": "post",
        "steps": [
            {"step_id": "outline", "name": "Outline"},
            {"step_id": "draft", "name": "Draft", "depends_on": ["outline"]},
        ],
        "input": {"topic": "bees"},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert data["completed_steps"] == ["outline", "draft"]


# --- Retrieval ---

async def add_documents(client):
    resp = await client.post("/api/documents", json={"chunks": [
        {"chunk_id": "c1", "document_id": "d1", "content": "Bees make honey", "embedding": [1.0, 0.0]},
        {"chunk_id": "c2", "document_id": "d1", "content": "Beekeepers tend hives", "embedding": [0.0, 1.0]},
    ]})
    assert resp.status_code == 201
    assert resp.json() == {"added": 2, "total_chunks": 2}


async def test_keyword_search(client):
    await add_documents(client)
    resp = await client.post("/api/search", json={"query": "honey bees", "search_type": "keyword"})
    data = resp.json()
    assert [r["chunk_id"] for r in data["results"]] == ["c1"]
    assert data["keywords"] == ["honey", "bees"]


async def test_vector_search_with_query_embedding(client):
    await add_documents(client)
    resp = await client.post("/api/search", json={
        "query": "anything", "search_type": "vector", "query_embedding": [0.0, 1.0],
    })
    assert [r["chunk_id"] for r in resp.json()["results"]] == ["c2"]


async def test_search_validation(client):
    resp = await client.post("/api/search", json={"query": "bees", "search_type": "keyword", "top_k": 0})
    assert resp.status_code == 400
    assert resp.json()["error"]["kind"] == "ValidationError"


async def test_search_suggestions(client):
    await add_documents(client)
    resp = await client.get("/api/search/suggestions", params={"q": "bee"})
    assert resp.json() == {"suggestions": ["bees", "beekeepers"]}
