"""
Autonomous Agent

Builds every component from an AgentConfig, registers the periodic jobs
and serves individual service requests through the budget-guarded payment
path.

    optimize       DecisionPolicy.run_optimization_tick
    rebalance      DecisionPolicy.run_rebalancing_tick
    health         DecisionPolicy.run_health_tick
    payment-sweep  DecisionPolicy.run_payment_sweep_tick
    usage-analysis AutonomousAgent.run_usage_analysis

All components share one ObservabilityAdapter and one clock. Nothing here is
process-global; tests build as many agents as they like.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from .budget_management import BudgetGuard
from .config import AgentConfig
from .errors import ValidationError
from .metrics import MetricsStore, UsageAnalysis, UsageAnalytics
from .observability import ObservabilityAdapter
from .optimization import ProviderScorer
from .payments import ExecutionGateway, InMemoryLedger, Ledger
from .policy import DecisionPolicy, RoutingDecision
from .providers import ProviderRegistry, ServiceProvider, ServiceRequest, default_providers
from .routing import ExternalRouter, HttpOptimizationOracle, OptimizationOracle
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

OPTIMIZE_JOB = "optimize"
REBALANCE_JOB = "rebalance"
HEALTH_JOB = "health"
PAYMENT_SWEEP_JOB = "payment-sweep"
USAGE_ANALYSIS_JOB = "usage-analysis"

SLOW_SERVICE_MS = 5000.0

# Performs the paid service call after payment; returns the service's data
ServiceInvoker = Callable[[ServiceProvider, ServiceRequest], Awaitable[Any]]


class ServiceResult(BaseModel):
    """Outcome of one handled service request."""

    success: bool
    service_type: str
    provider_id: str
    provider_name: str
    cost: float
    tx_id: str
    response_time: float
    quality: float
    decision: RoutingDecision
    data: Any = None
    error: str | None = None


def assess_quality(response_time: float, data: Any, error: str | None) -> float:
    """Quality score 0-100 of a delivered service call."""
    score = 100.0
    if response_time > SLOW_SERVICE_MS:
        score -= 20
    if error:
        score -= 50
    if data is None:
        score -= 30
    return max(0.0, score)


class AutonomousAgent:
    """
    Autonomous payment-routing agent.

    Example:
        >>> agent = AutonomousAgent(load_config())
        >>> await agent.start()
        >>> result = await agent.handle_service_request(ServiceRequest(service_type="weather"))
        >>> await agent.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        ledger: Ledger | None = None,
        oracle: OptimizationOracle | None = None,
        invoker: ServiceInvoker | None = None,
        clock: Callable[[], float] | None = None,
        register_defaults: bool = True,
    ):
        """
        Initialize agent.

        Args:
            config: Validated agent configuration
            ledger: Ledger collaborator (default: in-process InMemoryLedger)
            oracle: Optimization oracle (default: HTTP client when router.base_url is set)
            invoker: Service call performed after payment (default: payment only)
            clock: Time source shared by every component
            register_defaults: Seed the registry with the built-in providers
        """
        self.config = config
        self.principal = config.budget.principal
        self._clock = clock or time.time
        self._invoker = invoker

        self.observability = ObservabilityAdapter(
            enable_metrics=config.observability.enable_metrics,
            enable_tracing=config.observability.enable_tracing,
            metrics_db_path=config.observability.metrics_db_path,
        )

        self.guard = BudgetGuard(clock=self._clock, observability=self.observability)
        self.registry = ProviderRegistry(default_providers() if register_defaults else None)
        self.metrics = MetricsStore(clock=self._clock)
        self.analytics = UsageAnalytics(self.metrics, clock=self._clock)
        self.scorer = ProviderScorer(self.metrics, learning_rate=config.policy.learning_rate)

        if oracle is None and config.router.base_url:
            oracle = HttpOptimizationOracle(config.router.base_url, timeout=config.router.timeout)
        self.router = ExternalRouter(
            oracle,
            timeout=config.router.timeout,
            suggestion_ttl=config.suggestion_ttl,
            observability=self.observability,
            clock=self._clock,
        )

        self._local_ledger: InMemoryLedger | None = None
        if ledger is None:
            self._local_ledger = InMemoryLedger(clock=self._clock)
            ledger = self._local_ledger
        self.ledger = ledger
        self.gateway = ExecutionGateway(self.guard, self.ledger, observability=self.observability, clock=self._clock)

        self.scheduler = Scheduler(self.observability)
        self.policy = DecisionPolicy(
            config.policy,
            guard=self.guard,
            scorer=self.scorer,
            registry=self.registry,
            metrics=self.metrics,
            router=self.router,
            gateway=self.gateway,
            principal=self.principal,
            observability=self.observability,
            clock=self._clock,
            on_rebalance_frequency=self._on_rebalance_frequency,
        )

        if config.budget.enabled:
            self._configure_budget()
        if self._local_ledger is not None:
            for provider in self.registry.all():
                self._local_ledger.register_provider(provider.address, provider.floor_price)

        self._register_jobs()
        self.scheduler.add_shutdown_hook(self.router.close)
        self.scheduler.add_shutdown_hook(self.ledger.close)
        self.scheduler.add_shutdown_hook(self.observability.close)

        self._started = False

    def _configure_budget(self) -> None:
        budget = self.config.budget
        self.guard.set_limits(self.principal, budget.daily_limit, budget.monthly_limit, budget.emergency_threshold)
        if self._local_ledger is not None:
            self._local_ledger.set_budget(
                self.principal, budget.daily_limit, budget.monthly_limit, budget.emergency_threshold
            )

    def _register_jobs(self) -> None:
        intervals = self.config.scheduler
        self.scheduler.register_job(OPTIMIZE_JOB, intervals.optimization_interval, self.policy.run_optimization_tick)
        self.scheduler.register_job(REBALANCE_JOB, intervals.rebalance_interval, self.policy.run_rebalancing_tick)
        self.scheduler.register_job(HEALTH_JOB, intervals.health_check_interval, self.policy.run_health_tick)
        self.scheduler.register_job(
            PAYMENT_SWEEP_JOB, intervals.payment_sweep_interval, self.policy.run_payment_sweep_tick
        )
        self.scheduler.register_job(USAGE_ANALYSIS_JOB, intervals.usage_analysis_interval, self.run_usage_analysis)

    def _on_rebalance_frequency(self, seconds: float | None) -> None:
        """Stretch the rebalance job, or restore its configured interval when seconds is None."""
        configured = self.config.scheduler.rebalance_interval
        interval = configured if seconds is None else max(seconds, configured)
        self.scheduler.set_interval(REBALANCE_JOB, interval)

    async def run_usage_analysis(self) -> UsageAnalysis:
        """Usage-analysis job: refresh patterns, flag anomalies, prune persisted samples."""
        analysis = self.analytics.analyze()

        self.observability.gauge("usage.predicted_24h", analysis.predicted_24h_usage)
        for anomaly in analysis.new_anomalies:
            self.observability.increment(
                "usage.anomalies", tags={"kind": anomaly.kind.value, "severity": anomaly.severity}
            )

        await self.observability.prune_metrics(self.config.observability.metrics_retention)
        return analysis

    @property
    def running(self) -> bool:
        return self._started and self.scheduler.running

    async def start(self) -> None:
        """Check oracle health once, then start the periodic jobs."""
        if self._started:
            logger.warning("Agent already running")
            return

        logger.info("Starting autonomous agent...", extra={"principal": self.principal})
        router_state = await self.router.check_health()
        await self.gateway.refresh_emergency_stop()
        await self.scheduler.start()
        self._started = True

        self.observability.event(
            "agent.started",
            {
                "principal": self.principal,
                "router_state": router_state.value,
                "providers": len(self.registry),
            },
        )
        logger.info(
            "Autonomous agent started",
            extra={"principal": self.principal, "router_state": router_state.value},
        )

    async def stop(self) -> None:
        """Stop the jobs, letting in-flight ticks finish, and release connections."""
        logger.info("Stopping autonomous agent...")
        await self.scheduler.stop()
        self._started = False
        logger.info("Autonomous agent stopped")

    async def handle_service_request(self, request: ServiceRequest) -> ServiceResult:
        """
        Route, pay for and (optionally) perform one service request.

        Args:
            request: Service request

        Returns:
            ServiceResult with the receipt's tx id and the measured outcome

        Raises:
            NoProviderAvailableError: No eligible provider serves the request within the cost cap
            ValidationError: The routed price exceeds max_cost_per_transaction (last guard before paying)
            BudgetViolationError: The payment would breach the budget
            LedgerRejectedError: The ledger refused the payment
        """
        principal = request.principal or self.principal
        logger.info(
            f"Processing service request: {request.service_type}",
            extra={"service_type": request.service_type, "principal": principal},
        )

        decision = await self.policy.make_immediate_decision(request)
        provider = decision.provider

        logger.info(
            f"Decision: {provider.id} ({decision.reason}, confidence: {decision.confidence})",
            extra={"provider_id": provider.id, "source": decision.source.value},
        )

        if self._local_ledger is not None:
            self._local_ledger.register_provider(provider.address, provider.floor_price)

        cost = provider.calculate_cost(request)
        cap = self.policy.settings.max_cost_per_transaction
        if cost > cap:
            raise ValidationError(
                f"Cost {cost} of {provider.id} exceeds max cost per transaction {cap}",
                {"provider_id": provider.id, "cost": cost, "max_cost_per_transaction": cap},
            )

        start = time.perf_counter()
        receipt = await self.gateway.pay(principal, provider.address, cost, request.service_type)

        data: Any = None
        error: str | None = None
        if self._invoker is not None:
            try:
                data = await self._invoker(provider, request)
            except Exception as e:
                error = str(e)
                logger.error(
                    f"Service call to {provider.id} failed: {e}",
                    extra={"provider_id": provider.id, "tx_id": receipt.tx_id},
                    exc_info=True,
                )
        else:
            data = receipt.model_dump(mode="json")

        response_time = (time.perf_counter() - start) * 1000
        success = error is None
        quality = assess_quality(response_time, data, error)

        self.metrics.record_usage(request.service_type, provider.id, cost, response_time, success)
        self.policy.record_feedback(provider.id, quality, response_time, cost)
        self.registry.record_outcome(provider.id, success)

        return ServiceResult(
            success=success,
            service_type=request.service_type,
            provider_id=provider.id,
            provider_name=provider.name,
            cost=cost,
            tx_id=receipt.tx_id,
            response_time=response_time,
            quality=quality,
            decision=decision,
            data=data,
            error=error,
        )

    def status(self) -> dict[str, Any]:
        """Snapshot of the agent for diagnostics."""
        budget = None
        if self.guard.has_budget(self.principal):
            budget = self.guard.status(self.principal).model_dump(mode="json")

        return {
            "running": self.running,
            "principal": self.principal,
            "emergency_stop": self.gateway.emergency_stop,
            "budget": budget,
            "jobs": [job.to_dict() for job in self.scheduler.jobs()],
            "providers": self.registry.statistics(),
            "scorer": self.scorer.statistics(),
            "policy": self.policy.status(),
            "pending_payments": len(self.gateway.pending()),
            "usage": self.analytics.statistics(),
            "metrics": self.observability.snapshot(),
        }
