"""
Optimization Oracle Client

Interface to the external optimization "brain" consulted for route
suggestions, usage metrics, provider listings and rebalancing suggestions,
plus an HTTP implementation speaking JSON over httpx.

The client does not apply timeouts of its own beyond httpx's transport
timeout; the ExternalRouter bounds every call and owns the health state.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import ConnectivityError
from ..metrics import UsageMetrics
from ..providers import ServiceProvider
from ..resilience import RetryConfig, retry_with_backoff
from .models import OracleHealth, RebalancingSuggestion, RemoteProvider

logger = logging.getLogger(__name__)


class OptimizationOracle(ABC):
    """
    Abstract optimization oracle.

    Implementations raise on any failure; "no suggestion" is expressed as a
    None return from optimize_route(), never as an exception.
    """

    @abstractmethod
    async def optimize_route(self, chain: str, estimated_cost: float) -> str | None:
        """Suggest a provider id for a chain and estimated cost, or None."""
        pass

    @abstractmethod
    async def get_usage_metrics(self, window_seconds: int) -> UsageMetrics:
        """Aggregate usage over the trailing window."""
        pass

    @abstractmethod
    async def list_service_providers(self) -> list[ServiceProvider]:
        """Providers known to the oracle."""
        pass

    @abstractmethod
    async def get_rebalancing_suggestions(self) -> list[RebalancingSuggestion]:
        """Current chain rebalancing suggestions."""
        pass

    @abstractmethod
    async def health_check(self) -> OracleHealth:
        """Oracle self-reported health."""
        pass

    @abstractmethod
    async def update_optimization_settings(self, settings: dict[str, Any]) -> None:
        """Push the agent's optimization settings to the oracle."""
        pass

    @abstractmethod
    async def register_service_provider(self, provider: ServiceProvider) -> None:
        """Announce a provider to the oracle."""
        pass

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        return None


class HttpOptimizationOracle(OptimizationOracle):
    """
    JSON-over-HTTP oracle client.

    Endpoints (relative to base_url):
        POST /routes/optimize           {"chain", "estimated_cost"} -> {"provider_id"}
        GET  /metrics/usage?window=N    -> UsageMetrics
        GET  /providers                 -> {"providers": [...]}
        POST /providers                 RemoteProvider
        GET  /rebalancing/suggestions   -> {"suggestions": [...]}
        GET  /health                    -> {"status": "healthy" | "unhealthy"}
        PUT  /settings                  OptimizationSettings
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize HTTP oracle client.

        Args:
            base_url: Oracle base URL
            timeout: httpx transport timeout in seconds
            retry_config: Retry policy for idempotent reads
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._retry = retry_config or RetryConfig()
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _call(self, method: str, path: str, retry: bool = False, **kwargs: Any) -> Any:
        """
        Send one request, optionally retrying transient failures.

        Raises:
            ConnectivityError: On transport errors, bad statuses or malformed bodies
        """
        try:
            if retry:
                return await retry_with_backoff(self._send, method, path, config=self._retry, **kwargs)
            return await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ConnectivityError(
                f"Oracle request {method} {path} failed: {e}",
                {"method": method, "path": path, "error_type": type(e).__name__},
            ) from e
        except ValueError as e:
            raise ConnectivityError(
                f"Oracle returned malformed JSON for {method} {path}",
                {"method": method, "path": path},
            ) from e

    async def optimize_route(self, chain: str, estimated_cost: float) -> str | None:
        data = await self._call("POST", "/routes/optimize", json={"chain": chain, "estimated_cost": estimated_cost})
        provider_id = (data or {}).get("provider_id")
        return str(provider_id) if provider_id else None

    async def get_usage_metrics(self, window_seconds: int) -> UsageMetrics:
        data = await self._call("GET", "/metrics/usage", retry=True, params={"window": window_seconds})
        return UsageMetrics.model_validate(data or {})

    async def list_service_providers(self) -> list[ServiceProvider]:
        data = await self._call("GET", "/providers", retry=True)
        listed = (data or {}).get("providers", [])
        return [RemoteProvider.model_validate(item).to_service_provider() for item in listed]

    async def get_rebalancing_suggestions(self) -> list[RebalancingSuggestion]:
        data = await self._call("GET", "/rebalancing/suggestions", retry=True)
        return [RebalancingSuggestion.model_validate(item) for item in (data or {}).get("suggestions", [])]

    async def health_check(self) -> OracleHealth:
        data = await self._call("GET", "/health")
        status = str((data or {}).get("status", "")).lower()
        return OracleHealth.HEALTHY if status == OracleHealth.HEALTHY.value else OracleHealth.UNHEALTHY

    async def update_optimization_settings(self, settings: dict[str, Any]) -> None:
        await self._call("PUT", "/settings", json=settings)

    async def register_service_provider(self, provider: ServiceProvider) -> None:
        payload = RemoteProvider.from_service_provider(provider).model_dump()
        await self._call("POST", "/providers", json=payload)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
        logger.debug("Oracle HTTP client closed", extra={"base_url": self.base_url})
