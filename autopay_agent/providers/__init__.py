"""
Service provider models and the local provider registry.
"""

from .models import RequestPriority, ServiceProvider, ServiceRequest
from .registry import RELIABILITY_ALPHA, ProviderRegistry, default_providers

__all__ = [
    "ProviderRegistry",
    "RELIABILITY_ALPHA",
    "RequestPriority",
    "ServiceProvider",
    "ServiceRequest",
    "default_providers",
]
