"""
Decision Records

Typed corrective actions produced by one policy tick. The payload of each
decision is a tagged union over the four executable actions, discriminated by
``action``, so execution can match it exhaustively.
"""

import time
from collections import deque
from collections.abc import Iterator
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class DecisionType(str, Enum):
    """What a decision corrects."""

    OPTIMIZE_PROVIDERS = "OPTIMIZE_PROVIDERS"
    OPTIMIZE_RESPONSE_TIME = "OPTIMIZE_RESPONSE_TIME"
    BUDGET_MANAGEMENT = "BUDGET_MANAGEMENT"
    PROVIDER_DIVERSITY = "PROVIDER_DIVERSITY"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DecisionAction(str, Enum):
    """Executable operations."""

    RESELECT_PROVIDERS = "reselect_providers"
    SWITCH_FASTER_PROVIDERS = "switch_faster_providers"
    REDUCE_COSTS = "reduce_costs"
    DISCOVER_PROVIDERS = "discover_providers"


class ReselectProviders(BaseModel):
    """Reselect providers toward a target cost efficiency."""

    action: Literal[DecisionAction.RESELECT_PROVIDERS] = DecisionAction.RESELECT_PROVIDERS
    target_efficiency: float = 0.9

    model_config = ConfigDict(frozen=True)


class SwitchFasterProviders(BaseModel):
    """Prefer faster providers (reliability is the speed proxy)."""

    action: Literal[DecisionAction.SWITCH_FASTER_PROVIDERS] = DecisionAction.SWITCH_FASTER_PROVIDERS
    max_response_time: float = 3000.0

    model_config = ConfigDict(frozen=True)


class ReduceCosts(BaseModel):
    """Cut the per-transaction cap and rebalance less often."""

    action: Literal[DecisionAction.REDUCE_COSTS] = DecisionAction.REDUCE_COSTS
    utilization_rate: float

    model_config = ConfigDict(frozen=True)


class DiscoverProviders(BaseModel):
    """Find more providers until target_count are active."""

    action: Literal[DecisionAction.DISCOVER_PROVIDERS] = DecisionAction.DISCOVER_PROVIDERS
    target_count: int = 3

    model_config = ConfigDict(frozen=True)


DecisionData = Annotated[
    ReselectProviders | SwitchFasterProviders | ReduceCosts | DiscoverProviders,
    Field(discriminator="action"),
]


class Decision(BaseModel):
    """
    A single corrective action.

    Only ``executed``, ``executed_at`` and ``error`` change after creation.
    """

    type: DecisionType
    priority: Priority
    reason: str
    data: DecisionData
    created_at: float = Field(default_factory=time.time)
    executed: bool = False
    executed_at: float | None = None
    error: str | None = None

    @property
    def action(self) -> DecisionAction:
        return self.data.action

    def summary(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "priority": self.priority.value,
            "action": self.action.value,
            "reason": self.reason,
            "executed": self.executed,
            "error": self.error,
        }


class TickRecord(BaseModel):
    """Decisions produced by one optimization tick."""

    timestamp: float
    source: str
    decisions: list[Decision] = Field(default_factory=list)


class DecisionHistory:
    """Bounded record of optimization ticks, newest last."""

    def __init__(self, max_ticks: int = 1000):
        self._ticks: deque[TickRecord] = deque(maxlen=max_ticks)

    def __len__(self) -> int:
        return len(self._ticks)

    def __iter__(self) -> Iterator[TickRecord]:
        return iter(self._ticks)

    def record(self, record: TickRecord) -> None:
        self._ticks.append(record)

    def since(self, timestamp: float) -> list[TickRecord]:
        return [t for t in self._ticks if t.timestamp > timestamp]

    def recent_decisions(self, limit: int = 10) -> list[Decision]:
        """Most recent decisions across ticks, oldest first."""
        decisions = [d for tick in self._ticks for d in tick.decisions]
        return decisions[-limit:]
