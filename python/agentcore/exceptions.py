"""
Unified error system for the agent execution engine.

Every failure the engine surfaces derives from ``EngineError`` and carries:
- an error category and severity for routing and logging
- the task or execution id it belongs to
- whether retrying is advisable (``is_recoverable``)
- the HTTP status the API layer should answer with

Also provides the retry primitives (``RetryConfig``, ``retry_with_backoff``)
used by the dispatcher and orchestrator.
"""

import asyncio
import logging
import random
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Enums & Constants
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorCategory(Enum):
    """Error categories for classification and routing."""
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    PROVIDER = "provider"             # Model provider failure
    RATE_LIMIT = "rate_limit"         # Caller throttled by the engine
    BUDGET = "budget"                 # Spend limit reached
    CACHE = "cache"
    TIMEOUT = "timeout"
    SCHEDULING = "scheduling"         # Task could not be placed on an agent
    DEPENDENCY = "dependency"         # Upstream task failed
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ErrorContext:
    """Rich error context with metadata."""
    error_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    kind: str = "EngineError"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    message: str = ""
    task_id: Optional[str] = None
    execution_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    is_recoverable: bool = False
    http_status: int = 500
    recovery_suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes stack trace for API responses)."""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind,
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "task_id": self.task_id,
            "execution_id": self.execution_id,
            "details": self.details,
            "is_recoverable": self.is_recoverable,
            "http_status": self.http_status,
            "recovery_suggestions": self.recovery_suggestions,
        }


@dataclass
class RetryConfig:
    """Retry strategy configuration.

    ``get_delay(attempt)`` is ``base_delay * exponential_base ** attempt``
    capped at ``max_delay``, in seconds.
    """
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = False

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-based)."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += delay * random.uniform(0, 0.25)
        return delay


# ============================================================================
# Exception Hierarchy
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine errors with rich context."""

    default_category = ErrorCategory.INTERNAL
    default_severity = ErrorSeverity.ERROR
    default_http_status = 500
    default_recoverable = False

    def __init__(
        self,
        message: str,
        *,
        task_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        is_recoverable: Optional[bool] = None,
        http_status: Optional[int] = None,
        recovery_suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.task_id = task_id
        self.execution_id = execution_id
        self.category = category or self.default_category
        self.severity = severity or self.default_severity
        self.details = details or {}
        self.is_recoverable = self.default_recoverable if is_recoverable is None else is_recoverable
        self.http_status = http_status or self.default_http_status
        self.recovery_suggestions = recovery_suggestions or []
        self.context = ErrorContext(
            kind=self.kind,
            severity=self.severity,
            category=self.category,
            message=message,
            task_id=task_id,
            execution_id=execution_id,
            details=self.details,
            stack_trace=traceback.format_exc(),
            is_recoverable=self.is_recoverable,
            http_status=self.http_status,
            recovery_suggestions=self.recovery_suggestions,
        )
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Stable error kind name surfaced to callers."""
        return type(self).__name__

    def bind(self, task_id: Optional[str] = None, execution_id: Optional[str] = None) -> "EngineError":
        """Attach the owning task/execution id after the fact."""
        if task_id is not None:
            self.task_id = task_id
            self.context.task_id = task_id
        if execution_id is not None:
            self.execution_id = execution_id
            self.context.execution_id = execution_id
        return self

    def __str__(self) -> str:
        owner = self.task_id or self.execution_id
        if owner:
            return f"{self.kind}({owner}): {self.message}"
        return f"{self.kind}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return self.context.to_dict()

    def to_api_response(self) -> Dict[str, Any]:
        """Convert to API response format (safe for HTTP)."""
        return {"error": self.context.to_dict()}


# ============================================================================
# Validation & Configuration Errors
# ============================================================================

class ValidationError(EngineError):
    """Malformed input: bad task graph, unsupported model, invalid options."""
    default_category = ErrorCategory.VALIDATION
    default_severity = ErrorSeverity.WARNING
    default_http_status = 400


class ConfigurationError(EngineError):
    """Missing or invalid engine configuration (e.g. no API key)."""
    default_category = ErrorCategory.CONFIGURATION
    default_http_status = 500


class NotFoundError(EngineError):
    """Referenced agent, run or context does not exist."""
    default_category = ErrorCategory.NOT_FOUND
    default_severity = ErrorSeverity.WARNING
    default_http_status = 404


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(EngineError):
    """Failure reported by (or while reaching) a model provider.

    ``retryable`` is True for network errors, timeouts, 5xx and 429
    responses, False for authentication and validation failures.
    """
    default_category = ErrorCategory.PROVIDER
    default_http_status = 502

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
        **kwargs: Any,
    ):
        self.provider = provider
        self.status_code = status_code
        kwargs.setdefault("is_recoverable", retryable)
        details = kwargs.pop("details", None) or {}
        details.update({"provider": provider, "status_code": status_code})
        super().__init__(message, details=details, **kwargs)

    @property
    def retryable(self) -> bool:
        return self.is_recoverable


# ============================================================================
# Admission Errors (throttling, never merged with provider failures)
# ============================================================================

class RateLimitExceeded(EngineError):
    """The agent's request rate, concurrency or token limit denied the call."""
    default_category = ErrorCategory.RATE_LIMIT
    default_severity = ErrorSeverity.WARNING
    default_http_status = 429

    def __init__(self, message: str, *, reset_at: Optional[datetime] = None, **kwargs: Any):
        self.reset_at = reset_at
        details = kwargs.pop("details", None) or {}
        if reset_at is not None:
            details["reset_at"] = reset_at.isoformat()
        kwargs.setdefault("recovery_suggestions", ["Retry after the rate limit window resets"])
        super().__init__(message, details=details, **kwargs)


class BudgetExceeded(EngineError):
    """Executing the call would push spend past the configured limit."""
    default_category = ErrorCategory.BUDGET
    default_severity = ErrorSeverity.WARNING
    default_http_status = 402


# ============================================================================
# Orchestration Errors
# ============================================================================

class NoEligibleAgent(EngineError):
    """No agent offers the task's required capabilities and no fallback is set."""
    default_category = ErrorCategory.SCHEDULING
    default_http_status = 409


class DependencyFailed(EngineError):
    """An upstream task failed or was cancelled, so this task never ran."""
    default_category = ErrorCategory.DEPENDENCY
    default_severity = ErrorSeverity.WARNING
    default_http_status = 424

    def __init__(self, message: str, *, failed_dependency: Optional[str] = None, **kwargs: Any):
        self.failed_dependency = failed_dependency
        details = kwargs.pop("details", None) or {}
        details["failed_dependency"] = failed_dependency
        super().__init__(message, details=details, **kwargs)


class TaskTimeout(EngineError):
    """A task (or a blocking request/response exchange) exceeded its timeout."""
    default_category = ErrorCategory.TIMEOUT
    default_http_status = 504
    default_recoverable = True


class TaskCancelled(EngineError):
    """The run owning the task was cancelled."""
    default_category = ErrorCategory.CANCELLED
    default_severity = ErrorSeverity.INFO
    default_http_status = 409


class CacheMiss(EngineError):
    """Internal signal: no cached value for a fingerprint. Never surfaced."""
    default_category = ErrorCategory.CACHE
    default_severity = ErrorSeverity.INFO
    default_http_status = 404


# ============================================================================
# Retry Helpers
# ============================================================================

def is_retryable(error: BaseException) -> bool:
    """True when *error* is a provider failure worth retrying locally."""
    return isinstance(error, ProviderError) and error.retryable


async def retry_with_backoff(
    fn: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> Any:
    """
    Execute an async callable with retry and exponential backoff.

    Args:
        fn: Zero-argument async callable to execute
        config: Retry configuration
        should_retry: Decides whether an error is retryable (default: all)
        on_retry: Called with (attempt, error) before each backoff sleep

    Returns:
        The callable's result

    Raises:
        The last error once retries are exhausted, or immediately for
        errors ``should_retry`` rejects.
    """
    config = config or RetryConfig()

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if should_retry and not should_retry(e):
                raise
            if attempt >= config.max_retries:
                raise

            delay = config.get_delay(attempt)
            logger.warning("Attempt %d failed, retrying in %.2fs: %s", attempt + 1, delay, e)
            if on_retry:
                on_retry(attempt + 1, e)
            await asyncio.sleep(delay)
            attempt += 1
