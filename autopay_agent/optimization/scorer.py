"""
Provider Scorer

Multi-objective ranking of candidate providers for a request:

    score = w_cost * cost + w_quality * quality + w_speed * speed + w_reliability * reliability

Each component is normalized to [0, 1]. Weights adapt online from feedback
and always sum to 1.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from ..errors import ErrorCode, NoProviderAvailableError, ValidationError
from ..metrics import MetricsStore, ProviderMetrics
from ..providers import ServiceProvider, ServiceRequest

logger = logging.getLogger(__name__)

MAX_ACCEPTABLE_RESPONSE_MS = 10000.0
DEFAULT_LEARNING_RATE = 0.01

# Feedback thresholds that reinforce quality and speed weights
HIGH_QUALITY = 90.0
FAST_RESPONSE_MS = 1000.0

# Market adjustment applied when gas prices are high
HIGH_GAS_PRICE = 20.0


@dataclass
class ScoringWeights:
    """Weight vector of the scoring function. Mutated only through the scorer's feedback path."""

    cost: float = 0.4
    quality: float = 0.3
    speed: float = 0.2
    reliability: float = 0.1

    @property
    def total(self) -> float:
        return self.cost + self.quality + self.speed + self.reliability

    def normalize(self) -> None:
        """Clamp negatives to zero and rescale so the weights sum to 1."""
        self.cost = max(0.0, self.cost)
        self.quality = max(0.0, self.quality)
        self.speed = max(0.0, self.speed)
        self.reliability = max(0.0, self.reliability)

        total = self.total
        if total <= 0:
            defaults = ScoringWeights()
            self.cost, self.quality, self.speed, self.reliability = (
                defaults.cost,
                defaults.quality,
                defaults.speed,
                defaults.reliability,
            )
            return

        self.cost /= total
        self.quality /= total
        self.speed /= total
        self.reliability /= total

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class ScoredProvider:
    """A provider with its score and a human-readable reason."""

    provider: ServiceProvider
    score: float
    reasoning: str


class ProviderScorer:
    """
    Scores and ranks providers using rolling metrics from the MetricsStore.

    Example:
        >>> scorer = ProviderScorer(MetricsStore())
        >>> best = scorer.select_optimal(providers, ServiceRequest(service_type="weather"))
        >>> best.provider.id
    """

    def __init__(
        self,
        metrics: MetricsStore,
        weights: ScoringWeights | None = None,
        learning_rate: float = DEFAULT_LEARNING_RATE,
    ):
        self.metrics = metrics
        self.weights = weights or ScoringWeights()
        self.learning_rate = learning_rate

    @staticmethod
    def cost_score(provider: ServiceProvider, request: ServiceRequest) -> float:
        """Cheaper relative to the request's max_cost scores higher; at or above max_cost scores 0."""
        actual = provider.calculate_cost(request)
        return max(0.0, (request.max_cost - actual) / request.max_cost)

    @staticmethod
    def speed_score(average_response_time: float) -> float:
        """Linear in response time; 10s or slower scores 0."""
        if average_response_time >= MAX_ACCEPTABLE_RESPONSE_MS:
            return 0.0
        return max(0.0, (MAX_ACCEPTABLE_RESPONSE_MS - average_response_time) / MAX_ACCEPTABLE_RESPONSE_MS)

    def score(
        self,
        provider: ServiceProvider,
        request: ServiceRequest,
        metrics: ProviderMetrics | None = None,
    ) -> float:
        """
        Weighted score of a provider for a request.

        Args:
            provider: Candidate provider
            request: Request being routed
            metrics: Provider metrics (default: looked up in the store)

        Returns:
            Score in [0, 1]
        """
        metrics = metrics or self.metrics.get(provider.id)
        w = self.weights

        return (
            w.cost * self.cost_score(provider, request)
            + w.quality * (metrics.average_quality / 100)
            + w.speed * self.speed_score(metrics.average_response_time)
            + w.reliability * (metrics.uptime / 100)
        )

    def reasoning(self, provider: ServiceProvider, request: ServiceRequest) -> str:
        """Explain why a provider is attractive."""
        metrics = self.metrics.get(provider.id)
        reasons = []

        if provider.calculate_cost(request) < request.max_cost * 0.7:
            reasons.append("low cost")
        if metrics.average_quality > HIGH_QUALITY:
            reasons.append("high quality")
        if metrics.average_response_time < 2000:
            reasons.append("fast response")
        if metrics.uptime > 98:
            reasons.append("high reliability")

        if not reasons:
            return "Best available option"
        return f"Selected for {', '.join(reasons)}"

    def rank(self, providers: list[ServiceProvider], request: ServiceRequest) -> list[ScoredProvider]:
        """
        Score every provider and sort best first.

        The sort is stable, so equal scores keep the input (registration) order.
        """
        scored = [ScoredProvider(p, self.score(p, request), self.reasoning(p, request)) for p in providers]
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored

    def select_optimal(self, providers: list[ServiceProvider], request: ServiceRequest) -> ScoredProvider:
        """
        Pick the best provider for a request.

        Raises:
            NoProviderAvailableError: NO_PROVIDERS_AVAILABLE if ``providers`` is empty
        """
        if not providers:
            raise NoProviderAvailableError(ErrorCode.NO_PROVIDERS_AVAILABLE, request.service_type)

        best = self.rank(providers, request)[0]
        logger.info(
            f"Selected {best.provider.name} with score {best.score:.3f}",
            extra={
                "provider_id": best.provider.id,
                "score": round(best.score, 4),
                "candidates": len(providers),
                "service_type": request.service_type,
            },
        )
        return best

    def add_feedback(self, provider_id: str, quality: float, response_time: float, cost: float) -> None:
        """
        Record feedback for a provider and adapt the weights.

        Quality above 90 reinforces the quality weight and a response under
        1000ms reinforces the speed weight, each by 0.1 * learning_rate,
        followed by renormalization.
        """
        if not 0 <= quality <= 100:
            raise ValidationError("Quality must be on a 0-100 scale", {"provider_id": provider_id, "quality": quality})
        if response_time < 0 or cost < 0:
            raise ValidationError(
                "Response time and cost must be non-negative",
                {"provider_id": provider_id, "response_time": response_time, "cost": cost},
            )

        self.metrics.record_feedback(provider_id, quality, response_time, cost)

        if quality > HIGH_QUALITY:
            self.weights.quality += self.learning_rate * 0.1
        if response_time < FAST_RESPONSE_MS:
            self.weights.speed += self.learning_rate * 0.1
        self.weights.normalize()

    def adjust_for_market(self, gas_price: float) -> bool:
        """
        Shift weight toward cost when gas prices are high.

        Returns:
            True if the weights changed
        """
        if gas_price <= HIGH_GAS_PRICE:
            return False

        self.weights.cost += 0.05
        self.weights.speed -= 0.02
        self.weights.quality -= 0.02
        self.weights.reliability -= 0.01
        self.weights.normalize()

        logger.info(
            f"Adjusted weights for gas price {gas_price}",
            extra={"gas_price": gas_price, "weights": self.weights.as_dict()},
        )
        return True

    def statistics(self) -> dict[str, Any]:
        """Weights and averages across observed providers."""
        observed = [self.metrics.get(pid) for pid in self.metrics.provider_ids()]
        count = len(observed)

        return {
            "total_providers": count,
            "weights": self.weights.as_dict(),
            "learning_rate": self.learning_rate,
            "average_quality": sum(m.average_quality for m in observed) / count if count else 0.0,
            "average_response_time": sum(m.average_response_time for m in observed) / count if count else 0.0,
        }

    def export_model(self) -> dict[str, Any]:
        """Serializable weights, learning rate and provider metrics."""
        return {
            "weights": self.weights.as_dict(),
            "learning_rate": self.learning_rate,
            "provider_metrics": self.metrics.export(),
        }

    def import_model(self, data: dict[str, Any]) -> None:
        """
        Restore a previously exported model.

        Weights are updated in place so holders of the weight vector see the change.
        """
        if "weights" in data:
            weights = data["weights"]
            self.weights.cost = float(weights.get("cost", self.weights.cost))
            self.weights.quality = float(weights.get("quality", self.weights.quality))
            self.weights.speed = float(weights.get("speed", self.weights.speed))
            self.weights.reliability = float(weights.get("reliability", self.weights.reliability))
            self.weights.normalize()

        if data.get("learning_rate"):
            self.learning_rate = float(data["learning_rate"])

        if "provider_metrics" in data:
            self.metrics.load(data["provider_metrics"])

        logger.info("Model data imported", extra={"weights": self.weights.as_dict()})
