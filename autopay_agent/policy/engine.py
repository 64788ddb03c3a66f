"""
Decision Policy

Turns a snapshot of usage metrics and budget state into corrective decisions
and knows how to execute each decision type. Also implements the work done by
the rebalance, health and payment-sweep jobs, and the single-request routing
path used outside the periodic loops.

Rules (evaluated independently, several may fire in one tick):

    cost_efficiency < 0.8              HIGH    reselect providers (target 0.9)
    average_response_time > 5000ms     MEDIUM  prefer providers with reliability > 0.97
    daily_spent / daily_limit > 0.8    HIGH    cut max cost per transaction by 20%
    active providers < 2               MEDIUM  discover providers (target 3)

A failing decision records its error and never blocks the rest of the tick.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, assert_never

from pydantic import BaseModel, Field

from ..budget_management import BudgetGuard, BudgetStatus
from ..config import PolicyConfig
from ..errors import (
    ConnectivityError,
    DecisionExecutionError,
    ErrorCode,
    NoProviderAvailableError,
    extract_error_code,
)
from ..metrics import MetricsStore, UsageMetrics
from ..observability import ObservabilityAdapter
from ..optimization import ProviderScorer, ScoringWeights
from ..payments import ExecutionGateway, SweepResult
from ..providers import ProviderRegistry, ServiceProvider, ServiceRequest
from ..routing import ExternalRouter, RouterHealth
from .decisions import (
    Decision,
    DecisionHistory,
    DecisionType,
    DiscoverProviders,
    Priority,
    ReduceCosts,
    ReselectProviders,
    SwitchFasterProviders,
    TickRecord,
)
from .settings import (
    COST_REDUCTION_FACTOR,
    DEFAULT_REBALANCE_FREQUENCY,
    EMERGENCY_RELIABILITY_THRESHOLD,
    REDUCED_REBALANCE_FREQUENCY,
    OptimizationSettings,
)

logger = logging.getLogger(__name__)

USAGE_WINDOW_SECONDS = 3600
LOW_COST_EFFICIENCY = 0.8
SLOW_RESPONSE_MS = 5000.0
HIGH_BUDGET_UTILIZATION = 0.8
MIN_ACTIVE_PROVIDERS = 2
FAST_PROVIDER_RELIABILITY = 0.97

ORACLE_CONFIDENCE = 0.95
LOCAL_CONFIDENCE = 0.8
DEFAULT_ESTIMATED_COST = 0.0001


class DecisionSource(str, Enum):
    ORACLE = "oracle"
    LOCAL = "local"


class PolicySnapshot(BaseModel):
    """Inputs to one rule evaluation."""

    usage: UsageMetrics
    budget: BudgetStatus | None = None
    active_provider_count: int = 0
    source: DecisionSource = DecisionSource.LOCAL


class RoutingDecision(BaseModel):
    """Provider chosen for one request."""

    provider_id: str
    provider: ServiceProvider
    reason: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: DecisionSource
    score: float | None = None


class HealthReport(BaseModel):
    """Outcome of one health tick."""

    router_state: RouterHealth
    emergency_stop: bool
    emergency_mode: bool
    daily_remaining: float | None = None


class PerformanceMetrics(BaseModel):
    decisions_per_hour: int = 0
    successful_optimizations: int = 0
    cost_savings: float = 0.0
    last_optimization: float | None = None


class DecisionPolicy:
    """
    Decision engine driven by the scheduler's jobs.

    Owns the DecisionHistory, the OptimizationSettings, the current strategies
    and (through the scorer) the scoring weight vector.
    """

    def __init__(
        self,
        config: PolicyConfig,
        guard: BudgetGuard,
        scorer: ProviderScorer,
        registry: ProviderRegistry,
        metrics: MetricsStore,
        router: ExternalRouter,
        gateway: ExecutionGateway,
        principal: str,
        observability: ObservabilityAdapter | None = None,
        clock: Callable[[], float] | None = None,
        on_rebalance_frequency: Callable[[float | None], None] | None = None,
    ):
        """
        Initialize decision policy.

        Args:
            config: Policy thresholds
            guard: Budget guard consulted for utilization
            scorer: Provider scorer (holds the weight vector)
            registry: Local provider registry
            metrics: Metrics store (local fallback for usage metrics)
            router: External router
            gateway: Execution gateway (payment sweep, emergency stop)
            principal: Principal whose budget the policy watches
            observability: Metrics adapter
            clock: Time source
            on_rebalance_frequency: Called with a new rebalance cadence in seconds (None restores the configured one)
        """
        self.config = config
        self.guard = guard
        self.scorer = scorer
        self.registry = registry
        self.metrics = metrics
        self.router = router
        self.gateway = gateway
        self.principal = principal
        self._obs = observability or ObservabilityAdapter()
        self._clock = clock or time.time
        self._on_rebalance_frequency = on_rebalance_frequency
        self._costs_reduced = False

        self.settings = OptimizationSettings.from_config(config)
        self.history = DecisionHistory(max_ticks=config.history_size)
        self.strategies: dict[str, str] = {}
        self.performance = PerformanceMetrics()

    @property
    def weights(self) -> ScoringWeights:
        return self.scorer.weights

    # ------------------------------------------------------------------
    # Optimization tick
    # ------------------------------------------------------------------

    async def snapshot(self) -> PolicySnapshot:
        """Collect usage, budget and provider counts, preferring oracle data."""
        source = DecisionSource.ORACLE
        try:
            usage = await self.router.get_usage_metrics(USAGE_WINDOW_SECONDS)
        except ConnectivityError:
            usage = self.metrics.usage_snapshot(USAGE_WINDOW_SECONDS)
            source = DecisionSource.LOCAL

        providers = await self._known_providers()
        budget = self.guard.status(self.principal) if self.guard.has_budget(self.principal) else None

        return PolicySnapshot(
            usage=usage,
            budget=budget,
            active_provider_count=sum(1 for p in providers if p.is_active),
            source=source,
        )

    def analyze(self, snapshot: PolicySnapshot) -> list[Decision]:
        """Evaluate every rule against a snapshot."""
        now = self._clock()
        usage = snapshot.usage
        decisions: list[Decision] = []

        if usage.cost_efficiency < LOW_COST_EFFICIENCY:
            decisions.append(
                Decision(
                    type=DecisionType.OPTIMIZE_PROVIDERS,
                    priority=Priority.HIGH,
                    reason=f"Low cost efficiency: {usage.cost_efficiency:.3f}",
                    data=ReselectProviders(target_efficiency=0.9),
                    created_at=now,
                )
            )

        if usage.average_response_time > SLOW_RESPONSE_MS:
            decisions.append(
                Decision(
                    type=DecisionType.OPTIMIZE_RESPONSE_TIME,
                    priority=Priority.MEDIUM,
                    reason=f"High response time: {usage.average_response_time:.0f}ms",
                    data=SwitchFasterProviders(max_response_time=3000.0),
                    created_at=now,
                )
            )

        if snapshot.budget is not None:
            utilization = snapshot.budget.daily_utilization
            if utilization > HIGH_BUDGET_UTILIZATION:
                decisions.append(
                    Decision(
                        type=DecisionType.BUDGET_MANAGEMENT,
                        priority=Priority.HIGH,
                        reason=f"High budget utilization: {utilization * 100:.1f}%",
                        data=ReduceCosts(utilization_rate=utilization),
                        created_at=now,
                    )
                )

        if snapshot.active_provider_count < MIN_ACTIVE_PROVIDERS:
            decisions.append(
                Decision(
                    type=DecisionType.PROVIDER_DIVERSITY,
                    priority=Priority.MEDIUM,
                    reason=f"Low provider diversity: {snapshot.active_provider_count} active",
                    data=DiscoverProviders(target_count=3),
                    created_at=now,
                )
            )

        return decisions

    async def execute(self, decision: Decision) -> Decision:
        """
        Execute one decision, recording success or the error on the decision itself.

        Never raises for execution failures.
        """
        logger.info(
            f"Executing decision: {decision.type.value} ({decision.priority.value})",
            extra={"decision_type": decision.type.value, "reason": decision.reason},
        )

        try:
            await self._apply(decision)
        except Exception as e:
            decision.error = str(e)
            self._obs.increment(
                "policy.decision.failed",
                tags={"type": decision.type.value, "error_code": extract_error_code(e).value},
            )
            logger.error(
                f"Failed to execute decision {decision.type.value}: {e}",
                extra={"decision_type": decision.type.value},
                exc_info=True,
            )
            return decision

        decision.executed = True
        decision.executed_at = self._clock()
        self._obs.increment("policy.decision.executed", tags={"type": decision.type.value})
        return decision

    async def run_optimization_tick(self) -> list[Decision]:
        """One full tick: snapshot, rules, execution, bookkeeping."""
        snapshot = await self.snapshot()
        decisions = self.analyze(snapshot)

        self.history.record(TickRecord(timestamp=self._clock(), source=snapshot.source.value, decisions=decisions))

        for decision in decisions:
            await self.execute(decision)

        self._update_performance()
        logger.info(
            f"Optimization complete: {len(decisions)} decisions made",
            extra={"decisions": len(decisions), "source": snapshot.source.value},
        )
        return decisions

    async def _apply(self, decision: Decision) -> None:
        data = decision.data
        match data:
            case ReselectProviders():
                await self._reselect_providers(data)
            case SwitchFasterProviders():
                await self._switch_faster_providers(data)
            case ReduceCosts():
                await self._reduce_costs(data)
            case DiscoverProviders():
                await self._discover_providers(data)
            case _:
                assert_never(data)

    async def _reselect_providers(self, data: ReselectProviders) -> None:
        threshold = self.settings.reliability_threshold
        eligible = [p for p in await self._known_providers() if p.is_active and p.reliability_score >= threshold]

        if not eligible:
            logger.warning(
                "No provider meets the reliability threshold",
                extra={"reliability_threshold": threshold, "target_efficiency": data.target_efficiency},
            )
            return

        eligible.sort(key=_reliability_per_cost, reverse=True)
        best = eligible[0]
        self.strategies["preferred_provider"] = best.id
        if best.supported_chains:
            self.settings.preferred_chains = [best.supported_chains[0]]

        logger.info(f"Selected optimal provider: {best.name}", extra={"provider_id": best.id})
        await self._push_settings()

    async def _switch_faster_providers(self, data: SwitchFasterProviders) -> None:
        fast = [
            p
            for p in await self._known_providers()
            if p.is_active and p.reliability_score > FAST_PROVIDER_RELIABILITY
        ]
        if not fast:
            logger.info("No faster provider available", extra={"max_response_time": data.max_response_time})
            return

        fast.sort(key=lambda p: p.reliability_score, reverse=True)
        self.strategies["fast_provider"] = fast[0].id
        logger.info(f"Switching to faster provider: {fast[0].name}", extra={"provider_id": fast[0].id})

    async def _reduce_costs(self, data: ReduceCosts) -> None:
        reduced = self.config.max_cost_per_transaction * COST_REDUCTION_FACTOR
        self.settings.max_cost_per_transaction = min(self.settings.max_cost_per_transaction, reduced)
        self.settings.auto_optimization_enabled = True
        self._set_rebalance_frequency(max(self.settings.rebalance_frequency, REDUCED_REBALANCE_FREQUENCY))
        self._costs_reduced = True

        logger.info(
            f"Reduced max cost per transaction to {self.settings.max_cost_per_transaction}",
            extra={"utilization_rate": round(data.utilization_rate, 4)},
        )
        await self._push_settings()

    async def _discover_providers(self, data: DiscoverProviders) -> None:
        remote_ids: set[str] = set()
        try:
            listing = await self.router.list_service_providers()
        except ConnectivityError as e:
            logger.info(f"Provider discovery using local registry: {e.message}")
        else:
            remote_ids = {p.id for p in listing}
            self.registry.merge_remote(listing)

        active = self.registry.active_providers()
        if not active:
            raise DecisionExecutionError(
                DecisionType.PROVIDER_DIVERSITY.value,
                "Provider discovery found no active providers",
                {"target_count": data.target_count},
            )

        # Announce providers the oracle does not list yet
        if remote_ids:
            for provider in active:
                if provider.id in remote_ids:
                    continue
                try:
                    await self.router.register_service_provider(provider)
                except ConnectivityError as e:
                    logger.info(f"Could not announce provider {provider.id}: {e.message}")
                    break

        if len(active) < data.target_count:
            logger.warning(
                f"Provider discovery below target: {len(active)}/{data.target_count} active",
                extra={"active": len(active), "target_count": data.target_count},
            )

    # ------------------------------------------------------------------
    # Other jobs
    # ------------------------------------------------------------------

    async def run_rebalancing_tick(self) -> list[str]:
        """
        Apply rebalancing suggestions whose potential savings exceed the threshold.

        Returns:
            "from->to" labels of applied suggestions
        """
        try:
            suggestions = await self.router.get_rebalancing_suggestions()
        except ConnectivityError as e:
            logger.info(f"Rebalancing skipped, oracle unavailable: {e.message}")
            return []

        applied: list[str] = []
        for suggestion in suggestions:
            if suggestion.potential_savings <= self.config.rebalance_savings_threshold:
                continue

            self.settings.preferred_chains = [suggestion.to_chain, suggestion.from_chain]
            self.settings.auto_optimization_enabled = True
            self.performance.cost_savings += suggestion.potential_savings
            applied.append(f"{suggestion.from_chain}->{suggestion.to_chain}")
            logger.info(
                f"Rebalancing executed: switching to {suggestion.to_chain}",
                extra={
                    "from_chain": suggestion.from_chain,
                    "to_chain": suggestion.to_chain,
                    "potential_savings": suggestion.potential_savings,
                    "reason": suggestion.reason,
                },
            )

        if applied:
            await self._push_settings()
        return applied

    async def run_health_tick(self) -> HealthReport:
        """Check router health once, mirror the ledger's emergency stop, watch the budget."""
        router_state = await self.router.check_health()
        if router_state != RouterHealth.HEALTHY:
            logger.warning("Optimization oracle unavailable", extra={"router_state": router_state.value})

        stopped = await self.gateway.refresh_emergency_stop()
        if stopped:
            logger.warning("Emergency stop active - payments paused")

        daily_remaining = None
        if self.guard.has_budget(self.principal):
            status = self.guard.status(self.principal)
            remaining = status.daily_remaining
            daily_remaining = float(remaining)
            if daily_remaining < self.config.emergency_threshold:
                logger.warning(
                    f"Low budget warning: {remaining} remaining",
                    extra={"principal": self.principal, "daily_remaining": str(remaining)},
                )
                await self.enter_emergency_mode()
            elif self.settings.emergency_mode:
                await self.exit_emergency_mode()
            elif self._costs_reduced and status.daily_utilization <= HIGH_BUDGET_UTILIZATION:
                self._restore_configured_settings()
                logger.info(
                    "Budget utilization recovered, configured cost limits restored",
                    extra={"principal": self.principal, "daily_utilization": round(status.daily_utilization, 4)},
                )
                await self._push_settings()

        return HealthReport(
            router_state=router_state,
            emergency_stop=stopped,
            emergency_mode=self.settings.emergency_mode,
            daily_remaining=daily_remaining,
        )

    async def run_payment_sweep_tick(self) -> SweepResult:
        return await self.gateway.sweep()

    async def enter_emergency_mode(self) -> None:
        """Conserve budget: cap per-transaction cost at the emergency threshold."""
        if self.settings.emergency_mode:
            return

        self.settings.max_cost_per_transaction = self.config.emergency_threshold
        self.settings.reliability_threshold = EMERGENCY_RELIABILITY_THRESHOLD
        self.settings.auto_optimization_enabled = True
        self.settings.emergency_mode = True
        self._set_rebalance_frequency(DEFAULT_REBALANCE_FREQUENCY)

        logger.warning("Emergency budget mode activated", extra={"principal": self.principal})
        self._obs.event("policy.emergency_mode", {"active": True, "principal": self.principal})
        await self._push_settings()

    async def exit_emergency_mode(self) -> None:
        """Restore configured limits once the budget window has recovered."""
        self._restore_configured_settings()

        logger.info("Emergency budget mode deactivated", extra={"principal": self.principal})
        self._obs.event("policy.emergency_mode", {"active": False, "principal": self.principal})
        await self._push_settings()

    def _restore_configured_settings(self) -> None:
        """Undo cost reduction and emergency limits, including the rebalance cadence."""
        self.settings.max_cost_per_transaction = self.config.max_cost_per_transaction
        self.settings.reliability_threshold = self.config.reliability_threshold
        self.settings.emergency_mode = False
        self._costs_reduced = False
        self._set_rebalance_frequency(None)

    def _set_rebalance_frequency(self, seconds: int | None) -> None:
        """Keep the settings and the scheduler's rebalance job on the same cadence. None restores the default."""
        self.settings.rebalance_frequency = seconds or DEFAULT_REBALANCE_FREQUENCY
        if self._on_rebalance_frequency is not None:
            self._on_rebalance_frequency(float(seconds) if seconds else None)

    # ------------------------------------------------------------------
    # Single-request path
    # ------------------------------------------------------------------

    async def make_immediate_decision(self, request: ServiceRequest) -> RoutingDecision:
        """
        Choose a provider for one request.

        Asks the oracle first (bounded by the router timeout); any failure,
        timeout, degraded router, empty suggestion or ineligible suggestion
        falls back to local scoring.

        Raises:
            NoProviderAvailableError: NO_SUITABLE_PROVIDER if no eligible provider serves the request
        """
        chain = request.chain or self.settings.preferred_chains[0]
        estimated_cost = request.estimated_cost or DEFAULT_ESTIMATED_COST

        try:
            provider_id = await self.router.suggest_route(chain, estimated_cost)
        except ConnectivityError as e:
            logger.info(
                f"Oracle route optimization unavailable, using local scoring: {e.message}",
                extra={"service_type": request.service_type, "router_state": self.router.health.value},
            )
        else:
            if provider_id:
                provider = self.registry.get(provider_id)
                if provider is not None and self.is_eligible(provider, request):
                    logger.info(f"Oracle recommends: {provider_id}", extra={"provider_id": provider_id})
                    return RoutingDecision(
                        provider_id=provider_id,
                        provider=provider,
                        reason="Oracle route optimization",
                        confidence=ORACLE_CONFIDENCE,
                        source=DecisionSource.ORACLE,
                    )
                logger.warning(
                    f"Oracle suggested {provider_id}, not eligible for {request.service_type}; scoring locally",
                    extra={"provider_id": provider_id, "service_type": request.service_type},
                )

        return self.select_local(request)

    def is_eligible(self, provider: ServiceProvider, request: ServiceRequest) -> bool:
        """
        Whether a provider may serve a request under the current settings.

        The provider must be active, serve the service type, meet the
        reliability threshold, and price the request within both the
        per-transaction cap and the request's own max_cost.
        """
        if not provider.is_active or provider.service_type != request.service_type:
            return False
        if provider.reliability_score < self.settings.reliability_threshold:
            return False
        cost = provider.calculate_cost(request)
        return 0 < cost <= min(self.settings.max_cost_per_transaction, request.max_cost)

    def select_local(self, request: ServiceRequest) -> RoutingDecision:
        """
        Score the locally known eligible providers for a request.

        Raises:
            NoProviderAvailableError: NO_SUITABLE_PROVIDER if no eligible provider serves the request
        """
        candidates = self.registry.find_by_service_type(request.service_type)
        providers = [p for p in candidates if self.is_eligible(p, request)]
        if not providers:
            logger.warning(
                f"No eligible provider for {request.service_type}",
                extra={
                    "service_type": request.service_type,
                    "candidates": len(candidates),
                    "max_cost_per_transaction": self.settings.max_cost_per_transaction,
                    "reliability_threshold": self.settings.reliability_threshold,
                },
            )
            raise NoProviderAvailableError(ErrorCode.NO_SUITABLE_PROVIDER, request.service_type)

        best = self.scorer.select_optimal(providers, request)
        return RoutingDecision(
            provider_id=best.provider.id,
            provider=best.provider,
            reason=f"Local cost optimization: {best.reasoning}",
            confidence=LOCAL_CONFIDENCE,
            source=DecisionSource.LOCAL,
            score=best.score,
        )

    def record_feedback(self, provider_id: str, quality: float, response_time: float, cost: float) -> None:
        """Feedback path; the only writer of the scoring weights."""
        self.scorer.add_feedback(provider_id, quality, response_time, cost)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _known_providers(self) -> list[ServiceProvider]:
        """Oracle provider listing merged into the registry, or the registry alone."""
        try:
            listing = await self.router.list_service_providers()
        except ConnectivityError:
            return self.registry.all()

        self.registry.merge_remote(listing)
        return self.registry.all()

    async def _push_settings(self) -> None:
        """Mirror settings to the oracle. Local settings stay authoritative on failure."""
        try:
            await self.router.update_optimization_settings(self.settings.to_oracle_payload())
        except ConnectivityError as e:
            logger.info(f"Optimization settings not synced to oracle: {e.message}")

    def _update_performance(self) -> None:
        now = self._clock()
        recent = self.history.since(now - 3600)
        self.performance.decisions_per_hour = sum(len(t.decisions) for t in recent)
        self.performance.successful_optimizations = sum(1 for t in recent if t.decisions)
        self.performance.last_optimization = now

    def status(self) -> dict[str, Any]:
        return {
            "performance": self.performance.model_dump(),
            "strategies": dict(self.strategies),
            "settings": self.settings.model_dump(),
            "weights": self.weights.as_dict(),
            "router": self.router.status().model_dump(mode="json"),
            "recent_decisions": [d.summary() for d in self.history.recent_decisions(10)],
        }


def _reliability_per_cost(provider: ServiceProvider) -> float:
    if provider.cost_per_call <= 0:
        return float("inf")
    return provider.reliability_score / provider.cost_per_call
