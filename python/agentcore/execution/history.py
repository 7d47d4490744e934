"""In-memory execution history with filtered, paginated queries and statistics."""

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from agentcore.accounting.cost_calculator import CostCalculator, round_cost
from agentcore.exceptions import ValidationError
from agentcore.execution.models import ExecutionResult, ExecutionStatus

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("created_at", "latency_ms", "cost", "total_tokens")
MAX_PAGE_SIZE = 100


@dataclass
class HistoryQuery:
    agent_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    session_id: Optional[str] = None
    cached: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"

    def validate(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"sort_by must be one of {list(SORTABLE_FIELDS)}")
        if self.sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")

    def matches(self, result: ExecutionResult) -> bool:
        if self.agent_id is not None and result.agent_id != self.agent_id:
            return False
        if self.status is not None and result.status != self.status:
            return False
        if self.provider is not None and result.provider != self.provider:
            return False
        if self.model is not None and result.model != self.model:
            return False
        if self.session_id is not None and result.session_id != self.session_id:
            return False
        if self.cached is not None and result.cached != self.cached:
            return False
        if self.start_date is not None and result.created_at < self.start_date:
            return False
        if self.end_date is not None and result.created_at > self.end_date:
            return False
        return True


@dataclass
class HistoryPage:
    items: List[ExecutionResult]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [r.to_dict() for r in self.items],
            "meta": {
                "total": self.total,
                "page": self.page,
                "limit": self.limit,
                "total_pages": self.total_pages,
            },
        }


class ExecutionHistory:
    """Bounded ring of execution results (oldest evicted first)."""

    def __init__(self, calculator: CostCalculator, max_records: int = 10_000) -> None:
        self._calculator = calculator
        self._records: Deque[ExecutionResult] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(self, result: ExecutionResult) -> None:
        with self._lock:
            self._records.append(result)

    def get(self, execution_id: str) -> Optional[ExecutionResult]:
        with self._lock:
            for result in self._records:
                if result.execution_id == execution_id:
                    return result
        return None

    def query(self, query: HistoryQuery) -> HistoryPage:
        query.validate()
        with self._lock:
            matched = [r for r in self._records if query.matches(r)]
        matched.sort(key=lambda r: getattr(r, query.sort_by), reverse=query.sort_order == "desc")
        start = (query.page - 1) * query.limit
        return HistoryPage(
            items=matched[start:start + query.limit],
            total=len(matched),
            page=query.page,
            limit=query.limit,
        )

    def statistics(self, agent_id: Optional[str] = None, since: Optional[datetime] = None) -> Dict[str, Any]:
        with self._lock:
            records = [
                r for r in self._records
                if (agent_id is None or r.agent_id == agent_id)
                and (since is None or r.created_at >= since)
            ]

        total = len(records)
        successful = [r for r in records if r.status == ExecutionStatus.COMPLETED]
        failed = sum(1 for r in records if r.status == ExecutionStatus.FAILED)
        cached = [r for r in successful if r.cached]
        billed = [r for r in successful if not r.cached]

        total_cost = sum(r.cost for r in billed)
        savings = sum(
            self._calculator.calculate_cache_savings(r.model, r.input_tokens, r.output_tokens)
            for r in cached
        )
        latencies = [r.latency_ms for r in successful]

        return {
            "total_executions": total,
            "successful_executions": len(successful),
            "failed_executions": failed,
            "success_rate": round(len(successful) / total * 100, 2) if total else 0.0,
            "total_tokens": sum(r.total_tokens for r in billed),
            "total_cost": round_cost(total_cost),
            "average_latency_ms": round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
            "cached_executions": len(cached),
            "cache_hit_rate": round(len(cached) / len(successful) * 100, 2) if successful else 0.0,
            "cache_savings": round_cost(savings),
            "provider_costs": self._calculator.get_provider_costs(
                {"model": r.model, "cost": r.cost} for r in billed
            ),
        }
