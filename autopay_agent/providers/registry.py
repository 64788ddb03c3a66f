"""
Provider Registry

Local registry of known service providers, kept in registration order.
Registration order is the tie-breaker when providers score equally.
"""

import logging
from collections.abc import Iterable
from typing import Any

from ..errors import ErrorCode, NoProviderAvailableError
from .models import ServiceProvider

logger = logging.getLogger(__name__)

# Weight of the newest outcome in the reliability EWMA
RELIABILITY_ALPHA = 0.2

# Fields a remote listing may overwrite on a provider already known locally
REMOTE_DESCRIPTIVE_FIELDS = (
    "name",
    "api_endpoint",
    "cost_per_call",
    "supported_chains",
)


def default_providers() -> list[ServiceProvider]:
    """Built-in provider catalogue registered when the agent starts with defaults."""
    return [
        ServiceProvider(
            id="openweathermap",
            name="OpenWeatherMap",
            service_type="weather",
            address="0x1111111111111111111111111111111111111111",
            api_endpoint="https://api.openweathermap.org/data/2.5",
            cost_per_call=0.0001,
            capabilities=["current", "forecast", "historical"],
        ),
        ServiceProvider(
            id="weatherapi",
            name="WeatherAPI",
            service_type="weather",
            address="0x2222222222222222222222222222222222222222",
            api_endpoint="https://api.weatherapi.com/v1",
            cost_per_call=0.00008,
            capabilities=["current", "forecast"],
        ),
        ServiceProvider(
            id="ipfs-pinata",
            name="IPFS-Pinata",
            service_type="storage",
            address="0x3333333333333333333333333333333333333333",
            api_endpoint="https://api.pinata.cloud",
            cost_per_call=0.0002,
            capabilities=["pin", "unpin", "list"],
        ),
        ServiceProvider(
            id="coingecko",
            name="CoinGecko",
            service_type="price-data",
            address="0x4444444444444444444444444444444444444444",
            api_endpoint="https://api.coingecko.com/api/v3",
            cost_per_call=0.00005,
            capabilities=["price", "market-data", "historical"],
        ),
    ]


class ProviderRegistry:
    """
    In-memory provider registry.

    Providers are never removed, only deactivated, so registration order
    stays stable for the lifetime of the agent.
    """

    def __init__(self, providers: Iterable[ServiceProvider] | None = None):
        self._providers: dict[str, ServiceProvider] = {}
        for provider in providers or ():
            self.register(provider)

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def register(self, provider: ServiceProvider) -> ServiceProvider:
        """
        Register a provider, or update a known one in place.

        Re-registering keeps the provider's original position.
        """
        existing = self._providers.get(provider.id)
        if existing is not None:
            self._providers[provider.id] = provider
            logger.debug(f"Updated provider {provider.id}", extra={"provider_id": provider.id})
            return provider

        self._providers[provider.id] = provider
        logger.info(
            f"Registered provider: {provider.name} ({provider.service_type})",
            extra={"provider_id": provider.id, "service_type": provider.service_type},
        )
        return provider

    def get(self, provider_id: str) -> ServiceProvider | None:
        """Look up a provider by id."""
        return self._providers.get(provider_id)

    def require(self, provider_id: str) -> ServiceProvider:
        """
        Look up a provider by id.

        Raises:
            NoProviderAvailableError: If the id is unknown
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            raise NoProviderAvailableError(ErrorCode.NO_SUITABLE_PROVIDER)
        return provider

    def all(self) -> list[ServiceProvider]:
        """Every provider, in registration order."""
        return list(self._providers.values())

    def active_providers(self) -> list[ServiceProvider]:
        """Active providers, in registration order."""
        return [p for p in self._providers.values() if p.is_active]

    def find_by_service_type(self, service_type: str, max_cost: float | None = None) -> list[ServiceProvider]:
        """
        Active providers serving a service type.

        Args:
            service_type: Service type to match
            max_cost: Optional ceiling on the provider's base cost_per_call

        Returns:
            Matching providers in registration order
        """
        matches = [
            p
            for p in self._providers.values()
            if p.is_active and p.service_type == service_type and (max_cost is None or p.cost_per_call <= max_cost)
        ]
        logger.debug(f"Found {len(matches)} providers for {service_type}", extra={"service_type": service_type})
        return matches

    def deactivate(self, provider_id: str) -> None:
        """Exclude a provider from selection."""
        provider = self.require(provider_id)
        provider.is_active = False
        logger.warning(f"Provider deactivated: {provider_id}", extra={"provider_id": provider_id})

    def activate(self, provider_id: str) -> None:
        """Make a deactivated provider selectable again."""
        self.require(provider_id).is_active = True

    def record_outcome(self, provider_id: str, success: bool) -> float:
        """
        Fold one call outcome into the provider's reliability score.

        reliability = alpha * outcome + (1 - alpha) * reliability

        Returns:
            Updated reliability score
        """
        provider = self.require(provider_id)
        outcome = 1.0 if success else 0.0
        updated = RELIABILITY_ALPHA * outcome + (1 - RELIABILITY_ALPHA) * provider.reliability_score
        provider.reliability_score = min(1.0, max(0.0, updated))
        return provider.reliability_score

    def merge_remote(self, providers: Iterable[ServiceProvider]) -> int:
        """
        Fold a remote provider listing into the registry.

        Unknown ids are appended. Known ids only take the remote descriptive
        fields; the locally learned reliability_score and is_active are kept.
        Listings without a positive price are skipped, they cannot be paid.

        Returns:
            Number of newly added providers
        """
        added = 0
        for provider in providers:
            if provider.cost_per_call <= 0:
                logger.warning(
                    f"Skipping remote provider {provider.id} without a price",
                    extra={"provider_id": provider.id},
                )
                continue

            existing = self._providers.get(provider.id)
            if existing is None:
                added += 1
                self.register(provider)
                continue

            for field in REMOTE_DESCRIPTIVE_FIELDS:
                setattr(existing, field, getattr(provider, field))

        if added:
            logger.info(f"Merged {added} new providers from remote listing", extra={"added": added})
        return added

    def statistics(self) -> dict[str, Any]:
        """Registry counts by service type."""
        counts: dict[str, int] = {}
        for provider in self._providers.values():
            counts[provider.service_type] = counts.get(provider.service_type, 0) + 1

        return {
            "total_providers": len(self._providers),
            "active_providers": len(self.active_providers()),
            "service_types": sorted(counts),
            "service_type_counts": counts,
        }
