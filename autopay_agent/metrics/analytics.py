"""
Usage Analytics and Forecasting

Learns hour-of-day, day-of-week and month-of-year cost patterns from the
MetricsStore usage history and uses them for short-horizon forecasts, budget
allocation, anomaly detection and trend reports.

Simple statistics only:
- Patterns are per-bucket average cost per call
- Forecasts blend the three buckets, scale by the service type's price level
  and apply a fixed business-hours/weekend seasonality
- Anomalies are recent samples more than ``threshold`` standard deviations
  from the older history, plus a failure-rate alert
"""

import logging
import math
import statistics
import time
from collections import Counter, defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import asdict
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .store import MetricsStore, UsageSample

logger = logging.getLogger(__name__)

HOUR = 3600.0
DAY = 24 * HOUR
WEEK = 7 * DAY

# Service multipliers express a service type's average cost relative to this
BASELINE_COST = 0.001

ANOMALY_MIN_SAMPLES = 50
ANOMALY_RECENT_SAMPLES = 24
ANOMALY_HISTORY_SIZE = 100
FAILURE_RATE_ALERT = 0.2

TREND_MIN_SAMPLES = 20
TREND_WINDOW = 10
TREND_STABLE_BAND = 10.0

EXPORT_HISTORY_SIZE = 1000


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return statistics.fmean(values) if values else 0.0


def _argmax(values: list[float]) -> int:
    return max(range(len(values)), key=lambda i: (values[i], -i))


def _percent_change(old: float, new: float) -> float:
    return (new - old) / old * 100 if old > 0 else 0.0


def seasonal_multiplier(when: datetime) -> float:
    """Fixed seasonality: busier business hours and evenings, quieter nights and weekends."""
    if 9 <= when.hour <= 17:
        multiplier = 1.3
    elif 18 <= when.hour <= 22:
        multiplier = 1.1
    elif when.hour <= 6:
        multiplier = 0.7
    else:
        multiplier = 1.0

    if when.weekday() >= 5:
        multiplier *= 0.8
    return multiplier


class UsagePatterns(BaseModel):
    """Average cost per call by time bucket."""

    hourly: list[float] = Field(default_factory=lambda: [0.0] * 24, min_length=24, max_length=24)
    daily: list[float] = Field(
        default_factory=lambda: [0.0] * 7, min_length=7, max_length=7, description="Monday first"
    )
    monthly: list[float] = Field(default_factory=lambda: [0.0] * 12, min_length=12, max_length=12)

    def peaks(self) -> dict[str, int]:
        return {
            "peak_hour": _argmax(self.hourly),
            "peak_day": _argmax(self.daily),
            "peak_month": _argmax(self.monthly) + 1,
        }


class ServiceProfile(BaseModel):
    """Usage profile of one service type."""

    total_usage: int
    average_cost: float
    average_response_time: float
    success_rate: float
    peak_hour: int
    multiplier: float = 1.0


class UsageForecast(BaseModel):
    """Predicted spend for one hour."""

    timestamp: float
    hour: int
    predicted_usage: float = Field(..., ge=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    service_type: str | None = None
    allocated_budget: float | None = None


class AnomalyKind(str, Enum):
    COST = "cost"
    RESPONSE_TIME = "response_time"
    FAILURE_RATE = "failure_rate"


class Anomaly(BaseModel):
    """A recent sample (or the recent failure rate) out of line with the history."""

    kind: AnomalyKind
    severity: str
    description: str
    timestamp: float
    service_type: str
    provider_id: str
    value: float


class UsageTrends(BaseModel):
    """Percent change of the newest window against the one before it."""

    cost_trend: float
    response_time_trend: float
    success_rate_trend: float

    @property
    def cost_direction(self) -> str:
        if self.cost_trend > TREND_STABLE_BAND:
            return "increasing"
        if self.cost_trend < -TREND_STABLE_BAND:
            return "decreasing"
        return "stable"


class UsageAnalysis(BaseModel):
    """Outcome of one usage-analysis run."""

    samples: int
    new_anomalies: list[Anomaly] = Field(default_factory=list)
    predicted_24h_usage: float = 0.0
    trends: UsageTrends | None = None


def _summary(samples: list[UsageSample]) -> dict[str, Any]:
    if not samples:
        return {
            "requests": 0,
            "success_rate": 0.0,
            "total_cost": 0.0,
            "average_cost": 0.0,
            "average_response_time": 0.0,
        }
    total_cost = sum(s.cost for s in samples)
    return {
        "requests": len(samples),
        "success_rate": sum(1 for s in samples if s.success) / len(samples) * 100,
        "total_cost": total_cost,
        "average_cost": total_cost / len(samples),
        "average_response_time": _mean(s.response_time for s in samples),
    }


class UsageAnalytics:
    """
    Usage pattern model fed from a MetricsStore.

    Patterns and service profiles are rebuilt by refresh(); forecasts use the
    last refreshed state. Detected anomalies are kept in a bounded history.
    """

    def __init__(
        self,
        metrics: MetricsStore,
        clock: Callable[[], float] | None = None,
        tz: tzinfo = UTC,
    ):
        """
        Initialize usage analytics.

        Args:
            metrics: Metrics store holding the usage history
            clock: Time source
            tz: Time zone the hour/day/month buckets are taken in
        """
        self.metrics = metrics
        self._clock = clock or time.time
        self._tz = tz

        self.patterns = UsagePatterns()
        self.profiles: dict[str, ServiceProfile] = {}
        self.anomalies: deque[Anomaly] = deque(maxlen=ANOMALY_HISTORY_SIZE)
        self.last_refresh: float | None = None

    def _local(self, timestamp: float) -> datetime:
        return datetime.fromtimestamp(timestamp, self._tz)

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def refresh(self) -> UsagePatterns:
        """Rebuild time-bucket patterns and service profiles from the usage history."""
        samples = self.metrics.all_usage()

        by_hour: dict[int, list[float]] = defaultdict(list)
        by_day: dict[int, list[float]] = defaultdict(list)
        by_month: dict[int, list[float]] = defaultdict(list)
        by_service: dict[str, list[UsageSample]] = defaultdict(list)
        for sample in samples:
            when = self._local(sample.timestamp)
            by_hour[when.hour].append(sample.cost)
            by_day[when.weekday()].append(sample.cost)
            by_month[when.month - 1].append(sample.cost)
            by_service[sample.service_type].append(sample)

        self.patterns = UsagePatterns(
            hourly=[_mean(by_hour[h]) for h in range(24)],
            daily=[_mean(by_day[d]) for d in range(7)],
            monthly=[_mean(by_month[m]) for m in range(12)],
        )
        self.profiles = {service_type: self._profile(group) for service_type, group in by_service.items()}
        self.last_refresh = self._clock()
        return self.patterns

    def _profile(self, samples: list[UsageSample]) -> ServiceProfile:
        hours = Counter(self._local(s.timestamp).hour for s in samples)
        average_cost = _mean(s.cost for s in samples)
        return ServiceProfile(
            total_usage=len(samples),
            average_cost=average_cost,
            average_response_time=_mean(s.response_time for s in samples),
            success_rate=sum(1 for s in samples if s.success) / len(samples),
            peak_hour=min(hours, key=lambda h: (-hours[h], h)),
            multiplier=average_cost / BASELINE_COST if average_cost > 0 else 1.0,
        )

    # ------------------------------------------------------------------
    # Forecasts
    # ------------------------------------------------------------------

    def confidence(self, service_type: str | None = None) -> float:
        """Forecast confidence 0.5-1.0, growing with the amount and recency of history."""
        samples = self.metrics.all_usage()
        confidence = 0.5

        if len(samples) > 1000:
            confidence += 0.3
        elif len(samples) > 100:
            confidence += 0.2
        elif len(samples) > 10:
            confidence += 0.1

        profile = self.profiles.get(service_type) if service_type else None
        if profile is not None and profile.total_usage > 50:
            confidence += 0.1

        now = self._clock()
        if sum(1 for s in samples if now - s.timestamp < WEEK) > 100:
            confidence += 0.1

        return min(1.0, confidence)

    def predict_at(self, timestamp: float, service_type: str | None = None) -> UsageForecast:
        """Predicted average spend per call at a point in time."""
        when = self._local(timestamp)
        patterns = self.patterns
        predicted = (patterns.hourly[when.hour] + patterns.daily[when.weekday()] + patterns.monthly[when.month - 1]) / 3

        profile = self.profiles.get(service_type) if service_type else None
        if profile is not None:
            predicted *= profile.multiplier
        predicted *= seasonal_multiplier(when)

        return UsageForecast(
            timestamp=timestamp,
            hour=when.hour,
            predicted_usage=max(0.0, predicted),
            confidence=self.confidence(service_type),
            service_type=service_type,
        )

    def predict_next_24_hours(self, service_type: str | None = None) -> list[UsageForecast]:
        """One forecast per hour, starting now."""
        now = self._clock()
        forecasts = [self.predict_at(now + hour * HOUR, service_type) for hour in range(24)]
        logger.debug(
            f"Generated 24-hour usage forecast{f' for {service_type}' if service_type else ''}",
            extra={"service_type": service_type},
        )
        return forecasts

    def predict_budget_allocation(self, total_budget: float, service_type: str | None = None) -> list[UsageForecast]:
        """
        Split a budget over the next 24 hours in proportion to predicted usage.

        With no predicted usage the budget is split evenly.
        """
        forecasts = self.predict_next_24_hours(service_type)
        total = sum(f.predicted_usage for f in forecasts)

        if total == 0:
            return [f.model_copy(update={"allocated_budget": total_budget / len(forecasts)}) for f in forecasts]
        return [
            f.model_copy(update={"allocated_budget": f.predicted_usage / total * total_budget}) for f in forecasts
        ]

    # ------------------------------------------------------------------
    # Anomalies and trends
    # ------------------------------------------------------------------

    def detect_anomalies(self, threshold: float = 2.0) -> list[Anomaly]:
        """
        Anomalies among the latest samples.

        Compares the newest 24 samples against everything older; needs at
        least 50 samples in total.

        Args:
            threshold: Standard deviations from the historical mean that count as anomalous

        Returns:
            Anomalies in the recent window, oldest first
        """
        samples = self.metrics.all_usage()
        if len(samples) < ANOMALY_MIN_SAMPLES:
            return []

        recent = samples[-ANOMALY_RECENT_SAMPLES:]
        baseline = samples[:-ANOMALY_RECENT_SAMPLES]

        found = self._outliers(AnomalyKind.COST, recent, baseline, lambda s: s.cost, threshold)
        found += self._outliers(AnomalyKind.RESPONSE_TIME, recent, baseline, lambda s: s.response_time, threshold)

        failures = [s for s in recent if not s.success]
        if len(failures) > len(recent) * FAILURE_RATE_ALERT:
            last = failures[-1]
            found.append(
                Anomaly(
                    kind=AnomalyKind.FAILURE_RATE,
                    severity="high",
                    description=f"High failure rate: {len(failures)}/{len(recent)} recent requests failed",
                    timestamp=last.timestamp,
                    service_type=last.service_type,
                    provider_id=last.provider_id,
                    value=len(failures) / len(recent),
                )
            )

        found.sort(key=lambda a: a.timestamp)
        return found

    @staticmethod
    def _outliers(
        kind: AnomalyKind,
        recent: list[UsageSample],
        baseline: list[UsageSample],
        value_of: Callable[[UsageSample], float],
        threshold: float,
    ) -> list[Anomaly]:
        values = [value_of(s) for s in baseline]
        mean = statistics.fmean(values)
        stdev = statistics.pstdev(values, mu=mean)

        anomalies = []
        for sample in recent:
            value = value_of(sample)
            deviation = abs(value - mean)
            if deviation == 0:
                continue
            score = deviation / stdev if stdev > 0 else math.inf
            if score <= threshold:
                continue
            anomalies.append(
                Anomaly(
                    kind=kind,
                    severity="high" if score > 2 * threshold else "medium",
                    description=f"{kind.value} {value:g} is {score:.1f} standard deviations from mean {mean:g}",
                    timestamp=sample.timestamp,
                    service_type=sample.service_type,
                    provider_id=sample.provider_id,
                    value=value,
                )
            )
        return anomalies

    def calculate_trends(self) -> UsageTrends | None:
        """Compare the newest 10 samples with the 10 before them; None below 20 samples."""
        samples = self.metrics.all_usage()
        if len(samples) < TREND_MIN_SAMPLES:
            return None

        recent = samples[-TREND_WINDOW:]
        older = samples[-2 * TREND_WINDOW : -TREND_WINDOW]

        def success_rate(window: list[UsageSample]) -> float:
            return sum(1 for s in window if s.success) / len(window)

        return UsageTrends(
            cost_trend=_percent_change(_mean(s.cost for s in older), _mean(s.cost for s in recent)),
            response_time_trend=_percent_change(
                _mean(s.response_time for s in older), _mean(s.response_time for s in recent)
            ),
            success_rate_trend=_percent_change(success_rate(older), success_rate(recent)),
        )

    # ------------------------------------------------------------------
    # Job body and reporting
    # ------------------------------------------------------------------

    def analyze(self, threshold: float = 2.0) -> UsageAnalysis:
        """
        Refresh the patterns, record newly seen anomalies and forecast the next day.

        Anomalies already recorded by an earlier run are not reported again.
        """
        self.refresh()

        seen = {(a.kind, a.timestamp, a.provider_id) for a in self.anomalies}
        new = [a for a in self.detect_anomalies(threshold) if (a.kind, a.timestamp, a.provider_id) not in seen]
        self.anomalies.extend(new)

        analysis = UsageAnalysis(
            samples=len(self.metrics.all_usage()),
            new_anomalies=new,
            predicted_24h_usage=sum(f.predicted_usage for f in self.predict_next_24_hours()),
            trends=self.calculate_trends(),
        )

        for anomaly in new:
            logger.warning(
                f"Usage anomaly detected: {anomaly.kind.value} - {anomaly.description}",
                extra={"kind": anomaly.kind.value, "severity": anomaly.severity, "provider_id": anomaly.provider_id},
            )
        logger.info(
            f"Usage analysis completed: {analysis.samples} samples, {len(new)} new anomalies",
            extra={"samples": analysis.samples, "anomalies": len(new), **self.patterns.peaks()},
        )
        return analysis

    def generate_report(self) -> dict[str, Any]:
        """Usage report: totals, last 24 hours, per-provider figures, anomalies and trends."""
        now = self._clock()
        samples = self.metrics.all_usage()

        by_provider: dict[str, list[UsageSample]] = defaultdict(list)
        for sample in samples:
            by_provider[sample.provider_id].append(sample)

        trends = self.calculate_trends()
        return {
            "timestamp": now,
            "summary": _summary(samples),
            "last_24h": _summary([s for s in samples if now - s.timestamp < DAY]),
            "providers": [{"provider_id": pid, **_summary(group)} for pid, group in by_provider.items()],
            "service_types": {service_type: p.model_dump() for service_type, p in self.profiles.items()},
            "patterns": self.patterns.peaks(),
            "anomalies": [a.model_dump(mode="json") for a in self.anomalies if now - a.timestamp < DAY],
            "trends": {**trends.model_dump(), "cost_direction": trends.cost_direction} if trends else None,
            "predicted_24h_usage": sum(f.predicted_usage for f in self.predict_next_24_hours()),
        }

    def statistics(self) -> dict[str, Any]:
        return {
            "total_samples": len(self.metrics.all_usage()),
            "service_types": sorted(self.profiles),
            "anomalies": len(self.anomalies),
            "last_refresh": self.last_refresh,
            **self.patterns.peaks(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        """Serializable model state, including the newest usage samples."""
        return {
            "patterns": self.patterns.model_dump(),
            "profiles": {service_type: p.model_dump() for service_type, p in self.profiles.items()},
            "anomalies": [a.model_dump(mode="json") for a in self.anomalies],
            "history": [asdict(s) for s in self.metrics.all_usage()[-EXPORT_HISTORY_SIZE:]],
        }

    def load(self, data: dict[str, Any]) -> None:
        """Restore state written by export(); missing sections are left untouched."""
        if "patterns" in data:
            self.patterns = UsagePatterns.model_validate(data["patterns"])
        if "profiles" in data:
            self.profiles = {
                service_type: ServiceProfile.model_validate(p) for service_type, p in data["profiles"].items()
            }
        if "anomalies" in data:
            self.anomalies = deque(
                (Anomaly.model_validate(a) for a in data["anomalies"]), maxlen=ANOMALY_HISTORY_SIZE
            )
        if "history" in data:
            self.metrics.restore_usage([UsageSample(**s) for s in data["history"]])

        logger.info("Usage analytics state imported", extra={"sections": sorted(data)})
