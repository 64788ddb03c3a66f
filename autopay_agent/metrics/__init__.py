"""
Rolling provider metrics, usage history and usage analytics.
"""

from .analytics import (
    Anomaly,
    AnomalyKind,
    ServiceProfile,
    UsageAnalysis,
    UsageAnalytics,
    UsageForecast,
    UsagePatterns,
    UsageTrends,
)
from .store import (
    DEFAULT_QUALITY,
    DEFAULT_RESPONSE_TIME_MS,
    DEFAULT_UPTIME,
    PROVIDER_WINDOW,
    USAGE_HISTORY_SIZE,
    MetricsStore,
    ProviderMetrics,
    UsageMetrics,
    UsageSample,
)

__all__ = [
    "Anomaly",
    "AnomalyKind",
    "DEFAULT_QUALITY",
    "DEFAULT_RESPONSE_TIME_MS",
    "DEFAULT_UPTIME",
    "MetricsStore",
    "PROVIDER_WINDOW",
    "ProviderMetrics",
    "ServiceProfile",
    "USAGE_HISTORY_SIZE",
    "UsageAnalysis",
    "UsageAnalytics",
    "UsageForecast",
    "UsageMetrics",
    "UsagePatterns",
    "UsageSample",
    "UsageTrends",
]
