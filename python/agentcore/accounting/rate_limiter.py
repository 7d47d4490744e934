"""
Per-agent rate limiting.

Sliding-window request counters (minute / hour / day), a per-request token
cap and a concurrent-request cap. The concurrency slot is held through an
async context manager so cancellation always releases it.
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Deque, Dict, Optional, Tuple

from agentcore.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


@dataclass
class RateLimitConfig:
    """Limits for one agent. ``None`` disables an individual limit."""
    enabled: bool = True
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None
    max_tokens_per_request: Optional[int] = None
    max_concurrent_requests: Optional[int] = None

    def windows(self) -> Tuple[Tuple[str, float, Optional[int]], ...]:
        return (
            ("minute", MINUTE, self.requests_per_minute),
            ("hour", HOUR, self.requests_per_hour),
            ("day", DAY, self.requests_per_day),
        )


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass
class _AgentWindow:
    """Request timestamps (monotonic) and active slots for one agent."""
    requests: Deque[float] = field(default_factory=deque)
    active: int = 0
    total_allowed: int = 0
    total_rejected: int = 0


class RateLimiter:
    """
    In-memory rate limiter keyed by agent id.

    A single ``asyncio.Lock`` makes check-and-record atomic per process.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._agents: Dict[str, _AgentWindow] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(agent_id: str) -> str:
        return f"ratelimit:agent:{agent_id}"

    def _window(self, agent_id: str) -> _AgentWindow:
        return self._agents.setdefault(self._key(agent_id), _AgentWindow())

    def _prune(self, window: _AgentWindow, now: float) -> None:
        while window.requests and now - window.requests[0] >= DAY:
            window.requests.popleft()

    def _reset_at(self, window: _AgentWindow, now: float, span: float) -> datetime:
        in_span = [t for t in window.requests if now - t < span]
        oldest = in_span[0] if in_span else now
        wait = max(0.0, oldest + span - now)
        return datetime.fromtimestamp(time.time() + wait, tz=timezone.utc)

    def _evaluate(
        self,
        window: _AgentWindow,
        config: RateLimitConfig,
        estimated_tokens: Optional[int],
        now: float,
    ) -> RateLimitResult:
        if not config.enabled:
            return RateLimitResult(allowed=True)

        if (
            config.max_tokens_per_request is not None
            and estimated_tokens is not None
            and estimated_tokens > config.max_tokens_per_request
        ):
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reason=(
                    f"Request exceeds max tokens per request "
                    f"({estimated_tokens} > {config.max_tokens_per_request})"
                ),
            )

        if config.max_concurrent_requests is not None and window.active >= config.max_concurrent_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reason=f"Max concurrent requests reached ({config.max_concurrent_requests})",
            )

        self._prune(window, now)
        remaining: Optional[int] = None
        for name, span, limit in config.windows():
            if limit is None:
                continue
            count = sum(1 for t in window.requests if now - t < span)
            if count >= limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=self._reset_at(window, now, span),
                    reason=f"Rate limit exceeded: {limit} requests per {name}",
                )
            left = limit - count
            remaining = left if remaining is None else min(remaining, left)

        return RateLimitResult(allowed=True, remaining=remaining)

    async def check_rate_limit(
        self,
        agent_id: str,
        config: RateLimitConfig,
        estimated_tokens: Optional[int] = None,
    ) -> RateLimitResult:
        """Evaluate the limits without recording a request."""
        async with self._lock:
            return self._evaluate(self._window(agent_id), config, estimated_tokens, self._clock())

    async def acquire(
        self,
        agent_id: str,
        config: RateLimitConfig,
        estimated_tokens: Optional[int] = None,
    ) -> RateLimitResult:
        """Check, then record the request and take a concurrency slot.

        Raises:
            RateLimitExceeded: any limit denies the request.
        """
        async with self._lock:
            window = self._window(agent_id)
            now = self._clock()
            result = self._evaluate(window, config, estimated_tokens, now)
            if not result.allowed:
                window.total_rejected += 1
                logger.warning("Rate limit denied agent %s: %s", agent_id, result.reason)
                raise RateLimitExceeded(
                    result.reason or "Rate limit exceeded",
                    reset_at=result.reset_at,
                    details={"agent_id": agent_id},
                )
            window.requests.append(now)
            window.active += 1
            window.total_allowed += 1
            return result

    async def release(self, agent_id: str) -> None:
        async with self._lock:
            window = self._window(agent_id)
            window.active = max(0, window.active - 1)

    @asynccontextmanager
    async def reserve(
        self,
        agent_id: str,
        config: RateLimitConfig,
        estimated_tokens: Optional[int] = None,
    ) -> AsyncIterator[RateLimitResult]:
        """Hold a slot for the duration of one provider call."""
        result = await self.acquire(agent_id, config, estimated_tokens)
        try:
            yield result
        finally:
            # shield so a cancelled caller still gives the slot back
            await asyncio.shield(self.release(agent_id))

    def active_requests(self, agent_id: str) -> int:
        return self._window(agent_id).active

    async def get_rate_limit_status(self, agent_id: str, config: RateLimitConfig) -> Dict[str, Any]:
        async with self._lock:
            window = self._window(agent_id)
            now = self._clock()
            self._prune(window, now)
            usage = {}
            for name, span, limit in config.windows():
                used = sum(1 for t in window.requests if now - t < span)
                usage[name] = {
                    "limit": limit,
                    "used": used,
                    "remaining": None if limit is None else max(0, limit - used),
                    "reset_at": self._reset_at(window, now, span).isoformat() if used else None,
                }
            return {
                "agent_id": agent_id,
                "enabled": config.enabled,
                "windows": usage,
                "concurrent": {"limit": config.max_concurrent_requests, "active": window.active},
                "max_tokens_per_request": config.max_tokens_per_request,
                "total_allowed": window.total_allowed,
                "total_rejected": window.total_rejected,
            }

    async def reset(self, agent_id: str) -> None:
        async with self._lock:
            self._agents.pop(self._key(agent_id), None)
        logger.info("Rate limit counters reset for agent %s", agent_id)
