"""Service container for the engine.

Wires the services from one ``Settings`` instance at application startup.
Services are created on first access.
"""

import logging
from typing import Any, Dict, Optional

from agentcore.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class EngineContainer:
    """Central service container: providers, accounting, execution, orchestration, retrieval."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._registry = None
        self._calculator = None
        self._rate_limiter = None
        self._budget = None
        self._cache = None
        self._history = None
        self._token_counter = None
        self._dispatcher = None
        self._directory = None
        self._context_store = None
        self._message_bus = None
        self._agent_pool = None
        self._orchestrator = None
        self._workflow_runner = None
        self._chunk_store = None
        self._embedder = None
        self._search_engine = None

    # ── Providers and accounting ─────────────────────────────────────

    @property
    def registry(self):
        if self._registry is None:
            from agentcore.providers import AnthropicProvider, OpenAIProvider, ProviderRegistry
            s = self.settings
            self._registry = ProviderRegistry([
                OpenAIProvider(api_key=s.openai_api_key, base_url=s.openai_base_url, timeout=s.provider_timeout),
                AnthropicProvider(
                    api_key=s.anthropic_api_key,
                    base_url=s.anthropic_base_url,
                    timeout=s.provider_timeout,
                    api_version=s.anthropic_version,
                ),
            ])
            logger.info("ProviderRegistry initialized")
        return self._registry

    @property
    def calculator(self):
        if self._calculator is None:
            from agentcore.accounting import CostCalculator, ModelPricing
            s = self.settings
            self._calculator = CostCalculator(
                default_pricing=ModelPricing(s.default_input_cost_per_1m, s.default_output_cost_per_1m)
            )
            for model, override in s.pricing_overrides.items():
                self._calculator.set_pricing(model, ModelPricing(
                    override.input_cost_per_1m_tokens,
                    override.output_cost_per_1m_tokens,
                    override.currency,
                ))
            logger.info("CostCalculator initialized (%d price overrides)", len(s.pricing_overrides))
        return self._calculator

    @property
    def rate_limiter(self):
        if self._rate_limiter is None:
            from agentcore.accounting import RateLimiter
            self._rate_limiter = RateLimiter()
        return self._rate_limiter

    @property
    def budget(self):
        if self._budget is None:
            from agentcore.accounting import BudgetTracker
            self._budget = BudgetTracker(self.calculator)
            logger.info("BudgetTracker initialized")
        return self._budget

    # ── Execution ────────────────────────────────────────────────────

    @property
    def cache(self):
        if self._cache is None:
            from agentcore.execution import ExecutionCache
            self._cache = ExecutionCache(default_ttl=self.settings.cache_ttl_seconds)
        return self._cache

    @property
    def history(self):
        if self._history is None:
            from agentcore.execution import ExecutionHistory
            self._history = ExecutionHistory(self.calculator, max_records=self.settings.history_max_records)
        return self._history

    @property
    def token_counter(self):
        if self._token_counter is None:
            from agentcore.execution import TokenCounter
            self._token_counter = TokenCounter()
        return self._token_counter

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from agentcore.exceptions import RetryConfig
            from agentcore.execution import ExecutionDispatcher
            s = self.settings
            self._dispatcher = ExecutionDispatcher(
                registry=self.registry,
                calculator=self.calculator,
                rate_limiter=self.rate_limiter,
                budget=self.budget,
                cache=self.cache,
                history=self.history,
                token_counter=self.token_counter,
                retry_config=RetryConfig(
                    max_retries=s.max_retries,
                    base_delay=s.retry_base_delay,
                    max_delay=s.retry_max_delay,
                ),
                default_model=s.default_model,
                cache_enabled=s.cache_enabled,
            )
            logger.info("ExecutionDispatcher initialized")
        return self._dispatcher

    # ── Orchestration ────────────────────────────────────────────────

    @property
    def directory(self):
        if self._directory is None:
            from agentcore.agents import AgentDirectory
            self._directory = AgentDirectory()
        return self._directory

    @property
    def context_store(self):
        if self._context_store is None:
            from agentcore.orchestration import ExecutionContextStore
            self._context_store = ExecutionContextStore()
        return self._context_store

    @property
    def message_bus(self):
        if self._message_bus is None:
            from agentcore.orchestration import AgentMessageBus
            self._message_bus = AgentMessageBus(request_timeout=self.settings.message_request_timeout)
        return self._message_bus

    @property
    def agent_pool(self):
        if self._agent_pool is None:
            from agentcore.orchestration import AgentPool
            self._agent_pool = AgentPool(self.directory)
        return self._agent_pool

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from agentcore.orchestration import TaskOrchestrator
            self._orchestrator = TaskOrchestrator(
                directory=self.directory,
                context_store=self.context_store,
                message_bus=self.message_bus,
                dispatcher=self.dispatcher,
                agent_pool=self.agent_pool,
                max_parallel_tasks=self.settings.max_parallel_tasks,
                default_timeout_ms=self.settings.default_task_timeout_ms,
                max_finished_runs=self.settings.max_finished_runs,
            )
            logger.info("TaskOrchestrator initialized")
        return self._orchestrator

    @property
    def workflow_runner(self):
        if self._workflow_runner is None:
            from agentcore.orchestration import WorkflowRunner
            self._workflow_runner = WorkflowRunner(self.orchestrator)
        return self._workflow_runner

    # ── Retrieval ────────────────────────────────────────────────────

    @property
    def chunk_store(self):
        if self._chunk_store is None:
            from agentcore.retrieval import ChunkStore
            self._chunk_store = ChunkStore()
        return self._chunk_store

    @property
    def embedder(self):
        if self._embedder is None:
            from agentcore.retrieval import OpenAIEmbeddingGenerator
            s = self.settings
            self._embedder = OpenAIEmbeddingGenerator(
                api_key=s.openai_api_key,
                base_url=s.openai_base_url,
                model=s.embedding_model,
            )
            logger.info("Embedding generator initialized (%s)", s.embedding_model)
        return self._embedder

    @property
    def search_engine(self):
        if self._search_engine is None:
            from agentcore.retrieval import HybridSearchEngine
            self._search_engine = HybridSearchEngine(self.chunk_store, embedder=self.embedder)
            logger.info("HybridSearchEngine initialized")
        return self._search_engine

    def status(self) -> Dict[str, Any]:
        """Report which services are initialized."""
        return {
            "registry": self._registry is not None,
            "calculator": self._calculator is not None,
            "rate_limiter": self._rate_limiter is not None,
            "budget": self._budget is not None,
            "cache": self._cache is not None,
            "history": self._history is not None,
            "dispatcher": self._dispatcher is not None,
            "directory": self._directory is not None,
            "context_store": self._context_store is not None,
            "message_bus": self._message_bus is not None,
            "agent_pool": self._agent_pool is not None,
            "orchestrator": self._orchestrator is not None,
            "workflow_runner": self._workflow_runner is not None,
            "chunk_store": self._chunk_store is not None,
            "embedder": self._embedder is not None,
            "search_engine": self._search_engine is not None,
        }

    async def aclose(self) -> None:
        """Cancel unfinished runs and close HTTP clients of initialized services."""
        if self._orchestrator is not None:
            await self._orchestrator.aclose()
        if self._registry is not None:
            await self._registry.aclose()
        if self._embedder is not None:
            await self._embedder.aclose()
        logger.info("EngineContainer shut down")


def build_container(settings: Optional[Settings] = None) -> EngineContainer:
    return EngineContainer(settings or get_settings())
