"""Per-agent spend tracking against optional budget limits."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from agentcore.accounting.cost_calculator import CostCalculator
from agentcore.exceptions import BudgetExceeded

logger = logging.getLogger(__name__)


@dataclass
class SpendRecord:
    agent_id: str
    model: str
    cost: float
    execution_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


class BudgetTracker:
    """Accumulates billed cost per agent; cache hits are never recorded here."""

    def __init__(self, calculator: CostCalculator) -> None:
        self._lock = threading.Lock()
        self._calculator = calculator
        self._limits: Dict[str, float] = {}
        self._spend: Dict[str, float] = {}
        self._records: List[SpendRecord] = []

    def set_limit(self, agent_id: str, limit: Optional[float]) -> None:
        with self._lock:
            if limit is None:
                self._limits.pop(agent_id, None)
            else:
                self._limits[agent_id] = limit

    def get_spend(self, agent_id: str) -> float:
        with self._lock:
            return self._spend.get(agent_id, 0.0)

    def check(self, agent_id: str, estimated_cost: float, execution_id: Optional[str] = None) -> None:
        """Raise ``BudgetExceeded`` if *estimated_cost* would cross the agent's limit."""
        with self._lock:
            limit = self._limits.get(agent_id)
            if limit is None:
                return
            spend = self._spend.get(agent_id, 0.0)
        if self._calculator.would_exceed_budget(estimated_cost, spend, limit):
            logger.warning(
                "Budget denied agent %s: spend=%.6f + est=%.6f > limit=%.6f",
                agent_id, spend, estimated_cost, limit,
            )
            raise BudgetExceeded(
                f"Budget limit reached for agent {agent_id}",
                execution_id=execution_id,
                details={
                    "agent_id": agent_id,
                    "current_spend": spend,
                    "estimated_cost": estimated_cost,
                    "limit": limit,
                },
            )

    def record(self, agent_id: str, model: str, cost: float, execution_id: Optional[str] = None) -> SpendRecord:
        record = SpendRecord(agent_id=agent_id, model=model, cost=cost, execution_id=execution_id)
        with self._lock:
            self._spend[agent_id] = self._spend.get(agent_id, 0.0) + cost
            self._records.append(record)
        logger.debug("Recorded spend: agent=%s model=%s cost=%.6f", agent_id, model, cost)
        return record

    def get_status(self, agent_id: str) -> Dict[str, Any]:
        with self._lock:
            spend = self._spend.get(agent_id, 0.0)
            limit = self._limits.get(agent_id)
            records = [r for r in self._records if r.agent_id == agent_id]
        status: Dict[str, Any] = {
            "agent_id": agent_id,
            "current_spend": round(spend, 6),
            "formatted_spend": self._calculator.format_cost(spend),
            "limit": limit,
            "usage_percent": None,
            "remaining": None,
            "provider_costs": self._calculator.get_provider_costs(
                {"model": r.model, "cost": r.cost} for r in records
            ),
        }
        if limit is not None:
            status["usage_percent"] = round(self._calculator.calculate_budget_usage(spend, limit), 2)
            status["remaining"] = round(self._calculator.get_remaining_budget(spend, limit), 6)
        return status
