"""
External Router

Degraded-mode client around the optimization oracle.

    Healthy      -> Degraded      failed call, call timeout or failed health check
    Degraded     -> Reconnecting  health job schedules a reconnect health check
    Reconnecting -> Healthy       health check succeeds
    Reconnecting -> Degraded      health check fails

While not Healthy every call short-circuits with RouterUnavailableError so
callers fall back to local data immediately. Every oracle call is bounded by
``timeout``; expiry counts as a failed call.

Provider listings and usage metrics are cached for ``suggestion_ttl`` seconds
and served from cache when the oracle is unavailable; anything older is
discarded. Route and rebalancing suggestions are never cached.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel

from ..errors import AgentError, ConnectivityError, OracleTimeoutError, RouterUnavailableError
from ..metrics import UsageMetrics
from ..observability import ObservabilityAdapter
from ..providers import ServiceProvider
from ..resilience import RouterCircuit, RouterHealth
from .models import OracleHealth, RebalancingSuggestion
from .oracle import OptimizationOracle

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RouterStatus(BaseModel):
    """Health of the router at a point in time."""

    state: RouterHealth
    last_checked: float | None = None
    last_error: str | None = None
    oracle_configured: bool = True


class ExternalRouter:
    """
    Oracle client with health tracking, timeouts and a bounded-staleness cache.

    Example:
        >>> router = ExternalRouter(HttpOptimizationOracle("http://oracle:8080"), timeout=5.0)
        >>> await router.check_health()
        <RouterHealth.HEALTHY: 'healthy'>
        >>> provider_id = await router.suggest_route("REI", 0.0001)
    """

    def __init__(
        self,
        oracle: OptimizationOracle | None,
        timeout: float = 5.0,
        suggestion_ttl: float = 60.0,
        observability: ObservabilityAdapter | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize router.

        Args:
            oracle: Oracle client (None = no oracle; permanently degraded)
            timeout: Seconds allowed for each oracle call
            suggestion_ttl: Max age in seconds of cached oracle data
            observability: Metrics adapter
            clock: Time source for cache ages
        """
        self._oracle = oracle
        self.timeout = timeout
        self.suggestion_ttl = suggestion_ttl
        self._obs = observability or ObservabilityAdapter()
        self._clock = clock or time.time
        self._circuit = RouterCircuit("optimization-oracle", self._obs, clock=self._clock)
        self._cache: dict[str, tuple[float, Any]] = {}
        self._closed = False

        if oracle is None:
            self._circuit.trip("no oracle configured")

    @property
    def health(self) -> RouterHealth:
        return self._circuit.health

    @property
    def is_healthy(self) -> bool:
        return self._circuit.is_healthy

    def status(self) -> RouterStatus:
        return RouterStatus(
            state=self._circuit.health,
            last_checked=self._circuit.last_checked,
            last_error=self._circuit.last_error,
            oracle_configured=self._oracle is not None,
        )

    async def _invoke(self, operation: str, call: Callable[[OptimizationOracle], Awaitable[T]]) -> T:
        """
        Run one oracle call under the health gate and timeout.

        Raises:
            RouterUnavailableError: Router not Healthy; the oracle is not contacted
            OracleTimeoutError: Call exceeded the timeout (router is now Degraded)
            ConnectivityError: Call failed (router is now Degraded)
        """
        if self._oracle is None or not self._circuit.is_healthy:
            self._obs.increment("router.fallback", tags={"operation": operation})
            raise RouterUnavailableError(self._circuit.health.value)

        try:
            return await asyncio.wait_for(call(self._oracle), timeout=self.timeout)
        except TimeoutError as e:
            self._circuit.trip(f"{operation} timed out")
            raise OracleTimeoutError(operation, self.timeout) from e
        except ConnectivityError as e:
            self._circuit.trip(f"{operation} failed: {e.message}")
            raise
        except Exception as e:
            self._circuit.trip(f"{operation} failed: {e}")
            if isinstance(e, AgentError):
                raise
            raise ConnectivityError(
                f"Oracle call {operation} failed: {e}",
                {"operation": operation, "error_type": type(e).__name__},
            ) from e

    def _cached(self, key: str) -> Any | None:
        """Cached value for key if still within the staleness bound."""
        entry = self._cache.get(key)
        if entry is None:
            return None

        stored_at, value = entry
        if self._clock() - stored_at > self.suggestion_ttl:
            del self._cache[key]
            return None
        return value

    async def _invoke_cached(
        self,
        key: str,
        operation: str,
        call: Callable[[OptimizationOracle], Awaitable[T]],
    ) -> T:
        """Fetch fresh data when possible; on failure serve cached data within the staleness bound."""
        try:
            value = await self._invoke(operation, call)
        except ConnectivityError:
            cached = self._cached(key)
            if cached is None:
                raise
            logger.info(
                f"Serving cached {operation} while oracle unavailable",
                extra={"operation": operation, "router_state": self.health.value},
            )
            return cached  # type: ignore[no-any-return]

        self._cache[key] = (self._clock(), value)
        return value

    async def suggest_route(self, chain: str, estimated_cost: float) -> str | None:
        """Suggested provider id for a chain and cost, or None when the oracle has no suggestion."""
        return await self._invoke("optimize_route", lambda o: o.optimize_route(chain, estimated_cost))

    async def get_usage_metrics(self, window_seconds: int = 3600) -> UsageMetrics:
        return await self._invoke_cached(
            f"usage_metrics:{window_seconds}",
            "get_usage_metrics",
            lambda o: o.get_usage_metrics(window_seconds),
        )

    async def list_service_providers(self) -> list[ServiceProvider]:
        return await self._invoke_cached("providers", "list_service_providers", lambda o: o.list_service_providers())

    async def get_rebalancing_suggestions(self) -> list[RebalancingSuggestion]:
        return await self._invoke("get_rebalancing_suggestions", lambda o: o.get_rebalancing_suggestions())

    async def update_optimization_settings(self, settings: dict[str, Any]) -> None:
        await self._invoke("update_optimization_settings", lambda o: o.update_optimization_settings(settings))

    async def register_service_provider(self, provider: ServiceProvider) -> None:
        await self._invoke("register_service_provider", lambda o: o.register_service_provider(provider))

    async def check_health(self) -> RouterHealth:
        """
        Check oracle health once and drive the state machine.

        Called by the health job only; never retries within a call.
        """
        if self._oracle is None:
            self._circuit.mark_checked()
            return self._circuit.health

        self._circuit.begin_reconnect()

        try:
            reported = await asyncio.wait_for(self._oracle.health_check(), timeout=self.timeout)
        except TimeoutError:
            self._circuit.trip("health check timed out")
            return self._circuit.health
        except Exception as e:
            logger.warning(f"Oracle health check failed: {e}", extra={"error_type": type(e).__name__})
            self._circuit.trip(f"health check failed: {e}")
            return self._circuit.health

        if reported == OracleHealth.HEALTHY:
            self._circuit.recover()
        else:
            self._circuit.trip("oracle reported unhealthy")

        return self._circuit.health

    async def close(self) -> None:
        """Release the oracle's connections. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._cache.clear()
        if self._oracle is not None:
            await self._oracle.close()
        logger.info("External router closed")
