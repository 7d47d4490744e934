"""
Execution dispatcher: one priced, cached, retryable model call per request.

``execute`` flow:
1. Resolve model/adapter, build messages, fingerprint the request
2. Consult the cache (single-flight per fingerprint) unless disabled/bypassed
3. Budget check and rate-limit reservation (denials are not retried)
4. Provider call, retrying retryable ``ProviderError``s with backoff
5. Price the call, record spend and history, populate the cache
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from agentcore.accounting.budget_tracker import BudgetTracker
from agentcore.accounting.cost_calculator import CostCalculator
from agentcore.accounting.rate_limiter import RateLimiter
from agentcore.agents import AgentProfile
from agentcore.enhanced_logging import track_performance
from agentcore.exceptions import EngineError, ProviderError, RetryConfig, ValidationError, is_retryable
from agentcore.execution.cache import ExecutionCache, generate_cache_key
from agentcore.execution.history import ExecutionHistory, HistoryPage, HistoryQuery
from agentcore.execution.models import ExecutionRequest, ExecutionResult, ExecutionStatus, StreamEvent
from agentcore.execution.token_counter import TokenCounter
from agentcore.providers.base import ChatMessage, ExecutionOptions, ProviderAdapter
from agentcore.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass
class CachedCompletion:
    """What the cache stores for one fingerprint."""
    output: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    currency: str = "USD"
    finish_reason: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ExecutionDispatcher:
    """Composes provider adapters, cache and accountant into ``execute``/``execute_stream``."""

    def __init__(
        self,
        registry: ProviderRegistry,
        calculator: CostCalculator,
        rate_limiter: RateLimiter,
        budget: BudgetTracker,
        cache: ExecutionCache,
        history: ExecutionHistory,
        token_counter: Optional[TokenCounter] = None,
        retry_config: Optional[RetryConfig] = None,
        default_model: str = "gpt-4o",
        cache_enabled: bool = True,
    ) -> None:
        self.registry = registry
        self.calculator = calculator
        self.rate_limiter = rate_limiter
        self.budget = budget
        self.cache = cache
        self.history = history
        self.token_counter = token_counter or TokenCounter()
        self.retry_config = retry_config or RetryConfig()
        self.default_model = default_model
        self.cache_enabled = cache_enabled

    # ── Request shaping ──────────────────────────────────────────────

    def build_messages(self, agent: AgentProfile, request: ExecutionRequest) -> List[ChatMessage]:
        if request.messages:
            messages = list(request.messages)
            if agent.system_prompt and not any(m.role == "system" for m in messages):
                messages.insert(0, ChatMessage("system", agent.system_prompt))
            return messages
        if not request.prompt:
            raise ValidationError("Execution request needs a prompt or messages")
        messages = []
        if agent.system_prompt:
            messages.append(ChatMessage("system", agent.system_prompt))
        messages.append(ChatMessage("user", request.prompt))
        return messages

    def build_options(self, agent: AgentProfile, request: ExecutionRequest) -> ExecutionOptions:
        return ExecutionOptions(
            model=request.model or agent.model or self.default_model,
            temperature=request.temperature if request.temperature is not None else agent.temperature,
            top_p=request.top_p if request.top_p is not None else agent.top_p,
            max_tokens=request.max_tokens if request.max_tokens is not None else agent.max_tokens,
            stop_sequences=list(request.stop_sequences or agent.stop_sequences),
        )

    def fingerprint(self, agent: AgentProfile, messages: List[ChatMessage], options: ExecutionOptions,
                    context: Optional[Dict[str, Any]] = None) -> str:
        fields = options.fingerprint_fields()
        if context:
            fields["context"] = context
        return generate_cache_key(agent.agent_id, options.model, [m.to_dict() for m in messages], fields)

    # ── Non-streaming path ───────────────────────────────────────────

    @track_performance(operation="dispatcher.execute")
    async def execute(self, agent: AgentProfile, request: ExecutionRequest) -> ExecutionResult:
        execution_id = str(uuid.uuid4())
        started = time.perf_counter()
        messages = self.build_messages(agent, request)
        options = self.build_options(agent, request)
        adapter = self.registry.get(options.model)
        key = self.fingerprint(agent, messages, options, request.context)
        use_cache = self.cache_enabled and request.enable_cache

        async def compute() -> CachedCompletion:
            return await self._dispatch(agent, adapter, messages, options, execution_id)

        try:
            if use_cache:
                completion, from_cache = await self.cache.get_or_compute(
                    key, compute, ttl=request.cache_ttl, bypass=request.bypass_cache
                )
            else:
                completion, from_cache = await compute(), False
        except asyncio.CancelledError:
            self._record_failure(agent, request, options, adapter, execution_id, key, started,
                                 "Execution cancelled", ExecutionStatus.CANCELLED)
            raise
        except EngineError as e:
            e.bind(execution_id=execution_id)
            self._record_failure(agent, request, options, adapter, execution_id, key, started, str(e))
            raise

        result = self._to_result(agent, request, completion, execution_id, key, from_cache, started)
        self.history.record(result)
        if from_cache:
            logger.info("Execution %s served from cache (agent=%s)", execution_id, agent.agent_id)
        else:
            logger.info(
                "Execution %s completed: agent=%s model=%s tokens=%d cost=%s latency=%dms",
                execution_id, agent.agent_id, result.model, result.total_tokens,
                self.calculator.format_cost(result.cost), result.latency_ms,
            )
        return result

    async def _dispatch(
        self,
        agent: AgentProfile,
        adapter: ProviderAdapter,
        messages: List[ChatMessage],
        options: ExecutionOptions,
        execution_id: str,
    ) -> CachedCompletion:
        estimated_input = self.token_counter.count_message_tokens([m.to_dict() for m in messages], options.model)
        self._check_budget(agent, options, estimated_input, execution_id)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_config.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.retry_config.base_delay,
                exp_base=self.retry_config.exponential_base,
                max=self.retry_config.max_delay,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        attempts = 0
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                async with self.rate_limiter.reserve(agent.agent_id, agent.rate_limit, estimated_input):
                    response = await adapter.execute(messages, options)

        cost = self.calculator.calculate_cost(
            options.model, response.input_tokens, response.output_tokens, agent.custom_pricing
        )
        self.budget.record(agent.agent_id, options.model, cost.total_cost, execution_id)
        return CachedCompletion(
            output=response.content,
            provider=adapter.provider_name,
            model=options.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            cost=cost.total_cost,
            currency=cost.currency,
            finish_reason=response.finish_reason,
            retry_count=max(0, attempts - 1),
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Provider attempt %d failed, retrying in %.2fs: %s",
            retry_state.attempt_number, delay, error,
        )

    def _check_budget(self, agent: AgentProfile, options: ExecutionOptions,
                      estimated_input: int, execution_id: str) -> None:
        self.budget.set_limit(agent.agent_id, agent.budget_limit)
        if agent.budget_limit is None:
            return
        estimate = self.calculator.calculate_cost(
            options.model, estimated_input, 0, agent.custom_pricing
        ).total_cost
        self.budget.check(agent.agent_id, estimate, execution_id=execution_id)

    # ── Streaming path ───────────────────────────────────────────────

    async def execute_stream(self, agent: AgentProfile, request: ExecutionRequest) -> AsyncIterator[StreamEvent]:
        """Yield ``chunk`` events then a ``done`` event with the final result.

        A stream that ends without its terminal chunk raises a retryable
        ``ProviderError`` and is neither billed nor cached. Closing the
        iterator early stops the provider stream and frees the rate-limit slot.
        """
        execution_id = str(uuid.uuid4())
        started = time.perf_counter()
        messages = self.build_messages(agent, request)
        options = self.build_options(agent, request)
        adapter = self.registry.get(options.model)
        key = self.fingerprint(agent, messages, options, request.context)
        use_cache = self.cache_enabled and request.enable_cache

        if use_cache and not request.bypass_cache:
            hit = self.cache.get(key)
            if hit is not None:
                result = self._to_result(agent, request, hit, execution_id, key, True, started)
                self.history.record(result)
                yield StreamEvent(event="chunk", content=hit.output)
                yield StreamEvent(event="done", result=result)
                return

        message_dicts = [m.to_dict() for m in messages]
        estimated_input = self.token_counter.count_message_tokens(message_dicts, options.model)
        parts: List[str] = []
        finish_reason: Optional[str] = None
        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None
        completed = False

        try:
            self._check_budget(agent, options, estimated_input, execution_id)
            async with self.rate_limiter.reserve(agent.agent_id, agent.rate_limit, estimated_input):
                stream = adapter.execute_stream(messages, options)
                try:
                    async for chunk in stream:
                        if chunk.content:
                            parts.append(chunk.content)
                            yield StreamEvent(event="chunk", content=chunk.content)
                        if chunk.done:
                            finish_reason = chunk.finish_reason
                            input_tokens = chunk.input_tokens
                            output_tokens = chunk.output_tokens
                            completed = True
                            break
                finally:
                    await stream.aclose()
            if not completed:
                raise ProviderError(
                    "Stream ended before completion", provider=adapter.provider_name, retryable=True
                )
        except (asyncio.CancelledError, GeneratorExit):
            self._record_failure(agent, request, options, adapter, execution_id, key, started,
                                 "Stream cancelled", ExecutionStatus.CANCELLED)
            raise
        except EngineError as e:
            e.bind(execution_id=execution_id)
            self._record_failure(agent, request, options, adapter, execution_id, key, started, str(e))
            raise

        output = "".join(parts)
        if input_tokens is None:
            input_tokens = estimated_input
        if output_tokens is None:
            output_tokens = self.token_counter.count_tokens(output, options.model)
        cost = self.calculator.calculate_cost(options.model, input_tokens, output_tokens, agent.custom_pricing)
        self.budget.record(agent.agent_id, options.model, cost.total_cost, execution_id)

        completion = CachedCompletion(
            output=output,
            provider=adapter.provider_name,
            model=options.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost.total_cost,
            currency=cost.currency,
            finish_reason=finish_reason,
        )
        if use_cache:
            self.cache.set(key, completion, request.cache_ttl)

        result = self._to_result(agent, request, completion, execution_id, key, False, started)
        result.metadata["streamed"] = True
        self.history.record(result)
        yield StreamEvent(event="done", result=result)

    # ── History / statistics ─────────────────────────────────────────

    def get_history(self, query: HistoryQuery) -> HistoryPage:
        return self.history.query(query)

    def get_statistics(self, agent_id: Optional[str] = None, since=None) -> Dict[str, Any]:
        return self.history.statistics(agent_id=agent_id, since=since)

    # ── Helpers ──────────────────────────────────────────────────────

    def _to_result(
        self,
        agent: AgentProfile,
        request: ExecutionRequest,
        completion: CachedCompletion,
        execution_id: str,
        key: str,
        from_cache: bool,
        started: float,
    ) -> ExecutionResult:
        return ExecutionResult(
            execution_id=execution_id,
            agent_id=agent.agent_id,
            provider=completion.provider,
            model=completion.model,
            output=completion.output,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            total_tokens=completion.input_tokens + completion.output_tokens,
            cost=completion.cost,
            currency=completion.currency,
            latency_ms=int((time.perf_counter() - started) * 1000),
            cached=from_cache,
            cache_key=key,
            retry_count=0 if from_cache else completion.retry_count,
            status=ExecutionStatus.COMPLETED,
            finish_reason=completion.finish_reason,
            session_id=request.session_id,
            metadata=dict(request.metadata),
        )

    def _record_failure(
        self,
        agent: AgentProfile,
        request: ExecutionRequest,
        options: ExecutionOptions,
        adapter: ProviderAdapter,
        execution_id: str,
        key: str,
        started: float,
        message: str,
        status: ExecutionStatus = ExecutionStatus.FAILED,
    ) -> None:
        if status == ExecutionStatus.FAILED:
            logger.error("Execution %s failed (agent=%s): %s", execution_id, agent.agent_id, message)
        else:
            logger.info("Execution %s cancelled (agent=%s)", execution_id, agent.agent_id)
        self.history.record(
            ExecutionResult(
                execution_id=execution_id,
                agent_id=agent.agent_id,
                provider=adapter.provider_name,
                model=options.model,
                output="",
                latency_ms=int((time.perf_counter() - started) * 1000),
                cache_key=key,
                status=status,
                error_message=message,
                session_id=request.session_id,
                metadata=dict(request.metadata),
            )
        )

