"""
Metrics Store

Rolling per-provider performance windows and per-service-type usage history.
Feeds the provider scorer (provider metrics) and the decision policy (usage
snapshots, used as the local fallback when the optimization oracle is down).

All state is in memory and bounded: provider windows keep the last 50 samples,
usage history keeps the last 1000 samples per service type.
"""

import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PROVIDER_WINDOW = 50
USAGE_HISTORY_SIZE = 1000

# Priors used until a provider has reported feedback
DEFAULT_QUALITY = 85.0
DEFAULT_RESPONSE_TIME_MS = 2000.0
DEFAULT_UPTIME = 95.0


def _window() -> deque[float]:
    return deque(maxlen=PROVIDER_WINDOW)


@dataclass
class ProviderMetrics:
    """Rolling performance statistics for one provider."""

    total_calls: int = 0
    successful_calls: int = 0
    average_quality: float = DEFAULT_QUALITY
    average_response_time: float = DEFAULT_RESPONSE_TIME_MS
    average_cost: float = 0.0
    uptime: float = DEFAULT_UPTIME
    quality_history: deque[float] = field(default_factory=_window)
    response_time_history: deque[float] = field(default_factory=_window)
    cost_history: deque[float] = field(default_factory=_window)

    def add_sample(self, quality: float, response_time: float, cost: float) -> None:
        """Append one feedback sample and recompute the rolling averages."""
        self.total_calls += 1
        self.quality_history.append(quality)
        self.response_time_history.append(response_time)
        self.cost_history.append(cost)

        self.average_quality = sum(self.quality_history) / len(self.quality_history)
        self.average_response_time = sum(self.response_time_history) / len(self.response_time_history)
        self.average_cost = sum(self.cost_history) / len(self.cost_history)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "average_quality": self.average_quality,
            "average_response_time": self.average_response_time,
            "average_cost": self.average_cost,
            "uptime": self.uptime,
            "quality_history": list(self.quality_history),
            "response_time_history": list(self.response_time_history),
            "cost_history": list(self.cost_history),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderMetrics":
        metrics = cls(
            total_calls=int(data.get("total_calls", 0)),
            successful_calls=int(data.get("successful_calls", 0)),
            average_quality=float(data.get("average_quality", DEFAULT_QUALITY)),
            average_response_time=float(data.get("average_response_time", DEFAULT_RESPONSE_TIME_MS)),
            average_cost=float(data.get("average_cost", 0.0)),
            uptime=float(data.get("uptime", DEFAULT_UPTIME)),
        )
        metrics.quality_history.extend(data.get("quality_history", []))
        metrics.response_time_history.extend(data.get("response_time_history", []))
        metrics.cost_history.extend(data.get("cost_history", []))
        return metrics


@dataclass
class UsageSample:
    """One completed (or failed) service call."""

    timestamp: float
    service_type: str
    provider_id: str
    cost: float
    response_time: float
    success: bool


class UsageMetrics(BaseModel):
    """Aggregate usage over a time window, as reported locally or by the oracle."""

    total_requests: int = Field(default=0, ge=0)
    successful_requests: int = Field(default=0, ge=0)
    failed_requests: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)
    average_response_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")
    cost_efficiency: float = Field(default=1.0, ge=0.0, le=1.0)


class MetricsStore:
    """
    Owner of all provider metrics and usage history.

    Provider metrics are created lazily on first observation and never removed.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.time
        self._providers: dict[str, ProviderMetrics] = {}
        self._usage: dict[str, deque[UsageSample]] = defaultdict(lambda: deque(maxlen=USAGE_HISTORY_SIZE))

    def get(self, provider_id: str) -> ProviderMetrics:
        """
        Metrics for a provider; unobserved providers get the default priors.

        Does not create an entry for an unobserved provider.
        """
        return self._providers.get(provider_id) or ProviderMetrics()

    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def record_feedback(self, provider_id: str, quality: float, response_time: float, cost: float) -> ProviderMetrics:
        """
        Fold a quality/latency/cost observation into the provider's rolling windows.

        Args:
            provider_id: Provider identifier
            quality: Quality score on a 0-100 scale
            response_time: Response time in milliseconds
            cost: Amount paid

        Returns:
            Updated provider metrics
        """
        metrics = self._observe(provider_id)
        metrics.add_sample(quality, response_time, cost)
        logger.debug(
            f"Updated metrics for provider: {provider_id}",
            extra={
                "provider_id": provider_id,
                "average_quality": round(metrics.average_quality, 2),
                "average_response_time": round(metrics.average_response_time, 1),
            },
        )
        return metrics

    def record_usage(
        self,
        service_type: str,
        provider_id: str,
        cost: float,
        response_time: float,
        success: bool,
    ) -> None:
        """
        Record a completed service call.

        Successful calls nudge provider uptime up by 0.1, failures drop it by 1,
        clamped to [0, 100].
        """
        metrics = self._observe(provider_id)
        if success:
            metrics.successful_calls += 1
            metrics.uptime = min(100.0, metrics.uptime + 0.1)
        else:
            metrics.uptime = max(0.0, metrics.uptime - 1.0)

        self._usage[service_type].append(
            UsageSample(
                timestamp=self._clock(),
                service_type=service_type,
                provider_id=provider_id,
                cost=cost,
                response_time=response_time,
                success=success,
            )
        )

    def usage_history(self, service_type: str) -> list[UsageSample]:
        """Retained usage samples for one service type, oldest first."""
        return list(self._usage.get(service_type, ()))

    def all_usage(self) -> list[UsageSample]:
        """Retained usage samples across service types, oldest first."""
        return sorted((s for history in self._usage.values() for s in history), key=lambda s: s.timestamp)

    def restore_usage(self, samples: list[UsageSample]) -> None:
        """Replace the usage history with previously exported samples."""
        self._usage.clear()
        for sample in sorted(samples, key=lambda s: s.timestamp):
            self._usage[sample.service_type].append(sample)

    def usage_snapshot(self, window_seconds: float = 3600) -> UsageMetrics:
        """
        Aggregate usage across all service types over the trailing window.

        cost_efficiency is the share of successful requests (1.0 with no traffic).
        """
        cutoff = self._clock() - window_seconds
        samples = [s for history in self._usage.values() for s in history if s.timestamp >= cutoff]

        if not samples:
            return UsageMetrics()

        successful = sum(1 for s in samples if s.success)
        return UsageMetrics(
            total_requests=len(samples),
            successful_requests=successful,
            failed_requests=len(samples) - successful,
            total_cost=sum(s.cost for s in samples if s.success),
            average_response_time=sum(s.response_time for s in samples) / len(samples),
            cost_efficiency=successful / len(samples),
        )

    def export(self) -> dict[str, dict[str, Any]]:
        """Serializable copy of all provider metrics."""
        return {provider_id: metrics.to_dict() for provider_id, metrics in self._providers.items()}

    def load(self, data: dict[str, dict[str, Any]]) -> None:
        """Replace provider metrics with previously exported data."""
        self._providers = {provider_id: ProviderMetrics.from_dict(values) for provider_id, values in data.items()}

    def _observe(self, provider_id: str) -> ProviderMetrics:
        metrics = self._providers.get(provider_id)
        if metrics is None:
            metrics = ProviderMetrics()
            self._providers[provider_id] = metrics
        return metrics
