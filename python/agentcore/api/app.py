"""
Engine HTTP API.

- /health: service status
- /api/agents: register and list agents
- /api/agents/{id}/execute: run one prompt, optionally streamed as SSE
- /api/executions: execution history and statistics
- /api/workspaces/{ws}/runs, /api/runs/{id}: task graph runs, with SSE events
- /api/workspaces/{ws}/workflows/run: run a workflow definition
- /api/search, /api/documents: hybrid retrieval over stored chunks
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from agentcore.accounting import CustomPricing, RateLimitConfig
from agentcore.agents import AgentProfile
from agentcore.config.settings import Settings, get_settings
from agentcore.container import EngineContainer
from agentcore.enhanced_logging import configure_logging
from agentcore.exceptions import EngineError
from agentcore.execution import ExecutionRequest, ExecutionStatus, HistoryQuery
from agentcore.orchestration import (
    DelegationStrategy,
    ExecutionMode,
    TaskPriority,
    TaskSpec,
    WorkflowDefinition,
    WorkflowStep,
)
from agentcore.providers import ChatMessage
from agentcore.retrieval import DocumentChunk, SearchFilters, SearchOptions, SearchType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RateLimitBody(BaseModel):
    enabled: bool = True
    requests_per_minute: Optional[int] = Field(default=None, ge=1)
    requests_per_hour: Optional[int] = Field(default=None, ge=1)
    requests_per_day: Optional[int] = Field(default=None, ge=1)
    max_tokens_per_request: Optional[int] = Field(default=None, ge=1)
    max_concurrent_requests: Optional[int] = Field(default=None, ge=1)


class CustomPricingBody(BaseModel):
    cost_per_input_token: float = Field(ge=0.0)
    cost_per_output_token: float = Field(ge=0.0)
    currency: str = "USD"


class AgentBody(BaseModel):
    agent_id: str
    name: str = ""
    role: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    system_prompt: str = "You are a helpful assistant."
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    stop_sequences: List[str] = Field(default_factory=list)
    rate_limit: Optional[RateLimitBody] = None
    budget_limit: Optional[float] = Field(default=None, ge=0.0)
    custom_pricing: Optional[CustomPricingBody] = None
    workspace_ids: List[str] = Field(default_factory=list)
    priority: int = 0

    def to_profile(self) -> AgentProfile:
        return AgentProfile(
            agent_id=self.agent_id,
            name=self.name or self.agent_id,
            role=self.role,
            capabilities=set(self.capabilities),
            model=self.model,
            system_prompt=self.system_prompt,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            stop_sequences=list(self.stop_sequences),
            rate_limit=RateLimitConfig(**self.rate_limit.model_dump()) if self.rate_limit
            else RateLimitConfig(enabled=False),
            budget_limit=self.budget_limit,
            custom_pricing=CustomPricing(**self.custom_pricing.model_dump()) if self.custom_pricing else None,
            workspace_ids=set(self.workspace_ids),
            priority=self.priority,
        )


class MessageBody(BaseModel):
    role: str
    content: str


class ExecuteRequest(BaseModel):
    prompt: Optional[str] = None
    messages: Optional[List[MessageBody]] = None
    context: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    stop_sequences: Optional[List[str]] = None
    stream: bool = False
    enable_cache: bool = True
    bypass_cache: bool = False
    cache_ttl: Optional[int] = Field(default=None, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            prompt=self.prompt,
            messages=[ChatMessage(m.role, m.content) for m in self.messages] if self.messages else None,
            context=self.context,
            session_id=self.session_id,
            model=self.model,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            stop_sequences=self.stop_sequences,
            enable_cache=self.enable_cache,
            bypass_cache=self.bypass_cache,
            cache_ttl=self.cache_ttl,
            metadata=dict(self.metadata),
        )


class TaskBody(BaseModel):
    task_id: Optional[str] = None
    name: str
    description: str = ""
    task_type: Optional[str] = None
    required_capabilities: List[str] = Field(default_factory=list)
    preferred_role: Optional[str] = None
    preferred_agent_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    input: Any = None
    input_mapping: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    timeout_ms: Optional[int] = None
    max_retries: int = 0
    fallback_agent_id: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    def to_spec(self) -> TaskSpec:
        fields = self.model_dump(exclude={"task_id", "required_capabilities"})
        spec = TaskSpec(required_capabilities=set(self.required_capabilities), **fields)
        if self.task_id:
            spec.task_id = self.task_id
        return spec


class RunRequest(BaseModel):
    tasks: List[TaskBody]
    mode: ExecutionMode = ExecutionMode.PARALLEL
    max_concurrency: Optional[int] = Field(default=None, ge=1)
    session_id: Optional[str] = None
    strategy: DelegationStrategy = DelegationStrategy.CAPABILITY_MATCH


class WorkflowStepBody(BaseModel):
    step_id: str
    name: str
    description: str = ""
    task_type: Optional[str] = None
    required_capabilities: List[str] = Field(default_factory=list)
    preferred_role: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    input_mapping: Dict[str, Any] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = None
    retry_attempts: int = Field(default=0, ge=0)
    fallback_agent_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM


class WorkflowRequest(BaseModel):
    name: str
    steps: List[WorkflowStepBody]
    description: str = ""
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    input: Any = None
    session_id: Optional[str] = None
    strategy: DelegationStrategy = DelegationStrategy.CAPABILITY_MATCH
    wait: bool = True


class SearchFiltersBody(BaseModel):
    workspace_id: Optional[str] = None
    agent_id: Optional[str] = None
    document_ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class SearchRequest(BaseModel):
    query: str
    search_type: SearchType = SearchType.HYBRID
    top_k: Optional[int] = None
    similarity_threshold: Optional[float] = None
    vector_weight: Optional[float] = None
    keyword_weight: Optional[float] = None
    min_keyword_matches: int = 1
    filters: SearchFiltersBody = Field(default_factory=SearchFiltersBody)
    query_embedding: Optional[List[float]] = None


class ChunkBody(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    embedding: Optional[List[float]] = None
    chunk_index: int = 0
    workspace_id: Optional[str] = None
    agent_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DocumentsRequest(BaseModel):
    chunks: List[ChunkBody]


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None, container: Optional[EngineContainer] = None) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    container = container or EngineContainer(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        configure_logging(settings.log_level, settings.log_format)
        logger.info("%s %s starting up (%s)", settings.app_name, settings.app_version, settings.environment)
        yield
        await container.aclose()
        logger.info("%s shutting down", settings.app_name)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Agent execution and orchestration engine",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_api_response())

    _register_routes(app, container)
    return app


def _register_routes(app: FastAPI, container: EngineContainer) -> None:

    # --- Health ---

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": container.settings.app_version,
            "services": container.status(),
            "cache": container.cache.stats(),
        }

    # --- Agents ---

    @app.post("/api/agents", status_code=201)
    async def register_agent(body: AgentBody):
        profile = body.to_profile()
        container.directory.register(profile)
        return {"agent_id": profile.agent_id, "capabilities": sorted(profile.capabilities)}

    @app.get("/api/agents")
    async def list_agents(workspace_id: Optional[str] = None):
        return {
            "agents": [
                {
                    "agent_id": a.agent_id,
                    "name": a.name,
                    "role": a.role,
                    "capabilities": sorted(a.capabilities),
                    "model": a.model,
                    "current_load": container.agent_pool.load(a.agent_id),
                }
                for a in container.directory.list(workspace_id)
            ]
        }

    @app.post("/api/agents/{agent_id}/execute")
    async def execute(agent_id: str, body: ExecuteRequest):
        agent = container.directory.get(agent_id)
        request = body.to_request()
        if not body.stream:
            result = await container.dispatcher.execute(agent, request)
            return result.to_dict()

        async def event_generator():
            try:
                async for event in container.dispatcher.execute_stream(agent, request):
                    if event.done:
                        yield {"event": "done", "data": json.dumps(event.result.to_dict(), default=str)}
                    else:
                        yield {"event": "chunk", "data": json.dumps({"content": event.content})}
            except EngineError as e:
                logger.warning("Stream for agent %s failed: %s: %s", agent_id, e.kind, e.message)
                yield {"event": "error", "data": json.dumps(e.to_api_response(), default=str)}

        return EventSourceResponse(event_generator())

    @app.get("/api/agents/{agent_id}/rate-limit")
    async def rate_limit_status(agent_id: str):
        agent = container.directory.get(agent_id)
        return await container.rate_limiter.get_rate_limit_status(agent_id, agent.rate_limit)

    @app.get("/api/agents/{agent_id}/budget")
    async def budget_status(agent_id: str):
        agent = container.directory.get(agent_id)
        container.budget.set_limit(agent_id, agent.budget_limit)
        return container.budget.get_status(agent_id)

    # --- Executions ---

    @app.get("/api/executions")
    async def list_executions(
        agent_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        session_id: Optional[str] = None,
        cached: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ):
        query = HistoryQuery(
            agent_id=agent_id,
            status=status,
            provider=provider,
            model=model,
            session_id=session_id,
            cached=cached,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return container.dispatcher.get_history(query).to_dict()

    @app.get("/api/executions/statistics")
    async def execution_statistics(agent_id: Optional[str] = None, since: Optional[datetime] = None):
        return container.dispatcher.get_statistics(agent_id=agent_id, since=since)

    # --- Runs ---

    @app.post("/api/workspaces/{workspace_id}/runs", status_code=202)
    async def submit_run(workspace_id: str, body: RunRequest):
        run = await container.orchestrator.submit(
            workspace_id,
            [t.to_spec() for t in body.tasks],
            mode=body.mode,
            max_concurrency=body.max_concurrency,
            session_id=body.session_id,
            strategy=body.strategy,
        )
        return run.to_dict()

    @app.get("/api/workspaces/{workspace_id}/stats")
    async def workspace_stats(workspace_id: str):
        return container.orchestrator.get_workspace_stats(workspace_id)

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str):
        return container.orchestrator.get_run(run_id).to_dict()

    @app.post("/api/runs/{run_id}/cancel")
    async def cancel_run(run_id: str):
        run = await container.orchestrator.cancel_run(run_id)
        return run.to_dict()

    @app.get("/api/runs/{run_id}/events")
    async def stream_run_events(run_id: str):
        """Stream task events of a run as Server-Sent Events, ending with ``run_finished``."""
        container.orchestrator.get_run(run_id)

        async def event_generator():
            async for event in container.orchestrator.events(run_id):
                yield {"event": event.event, "data": json.dumps(event.to_dict())}

        return EventSourceResponse(event_generator())

    # --- Workflows ---

    @app.post("/api/workspaces/{workspace_id}/workflows/run")
    async def run_workflow(workspace_id: str, body: WorkflowRequest):
        workflow = WorkflowDefinition(
            name=body.name,
            description=body.description,
            steps=[WorkflowStep(**s.model_dump()) for s in body.steps],
            execution_mode=body.execution_mode,
        )
        execution = await container.workflow_runner.run(
            workspace_id,
            workflow,
            workflow_input=body.input,
            session_id=body.session_id,
            strategy=body.strategy,
            wait=body.wait,
        )
        return execution.to_dict()

    # --- Retrieval ---

    @app.post("/api/documents", status_code=201)
    async def add_documents(body: DocumentsRequest):
        chunks = [DocumentChunk(**c.model_dump()) for c in body.chunks]
        container.chunk_store.add_many(chunks)
        return {"added": len(chunks), "total_chunks": len(container.chunk_store)}

    @app.post("/api/search")
    async def search(body: SearchRequest):
        s = container.settings
        options = SearchOptions(
            search_type=body.search_type,
            top_k=body.top_k if body.top_k is not None else s.search_top_k,
            similarity_threshold=(
                body.similarity_threshold if body.similarity_threshold is not None
                else s.search_similarity_threshold
            ),
            vector_weight=body.vector_weight if body.vector_weight is not None else s.search_vector_weight,
            keyword_weight=body.keyword_weight if body.keyword_weight is not None else s.search_keyword_weight,
            min_keyword_matches=body.min_keyword_matches,
            filters=SearchFilters(**body.filters.model_dump()),
        )
        response = await container.search_engine.search(
            body.query, options, query_embedding=body.query_embedding
        )
        return response.to_dict()

    @app.get("/api/search/suggestions")
    async def search_suggestions(q: str, limit: int = 5):
        return {"suggestions": container.search_engine.get_search_suggestions(q, limit=limit)}
