"""
Tests for the Metrics Store
"""

import pytest

from autopay_agent.metrics import (
    DEFAULT_QUALITY,
    DEFAULT_RESPONSE_TIME_MS,
    DEFAULT_UPTIME,
    PROVIDER_WINDOW,
    MetricsStore,
    UsageMetrics,
)


class TestProviderMetrics:
    """Test rolling provider windows."""

    def test_unobserved_provider_gets_priors_without_insert(self, metrics_store: MetricsStore):
        metrics = metrics_store.get("unknown")

        assert metrics.average_quality == DEFAULT_QUALITY
        assert metrics.average_response_time == DEFAULT_RESPONSE_TIME_MS
        assert metrics.uptime == DEFAULT_UPTIME
        assert metrics_store.provider_ids() == []

    def test_feedback_averages(self, metrics_store: MetricsStore):
        metrics_store.record_feedback("p", 80, 1000, 0.001)
        metrics = metrics_store.record_feedback("p", 100, 3000, 0.003)

        assert metrics.total_calls == 2
        assert metrics.average_quality == 90
        assert metrics.average_response_time == 2000
        assert metrics.average_cost == pytest.approx(0.002)

    def test_window_is_bounded(self, metrics_store: MetricsStore):
        for i in range(PROVIDER_WINDOW + 10):
            metrics_store.record_feedback("p", 0 if i < 10 else 100, 100, 0.001)

        metrics = metrics_store.get("p")
        assert len(metrics.quality_history) == PROVIDER_WINDOW
        assert metrics.average_quality == 100

    def test_uptime_nudges(self, metrics_store: MetricsStore):
        metrics_store.record_usage("weather", "p", 0.001, 500, success=True)
        assert metrics_store.get("p").uptime == pytest.approx(95.1)

        metrics_store.record_usage("weather", "p", 0.001, 500, success=False)
        assert metrics_store.get("p").uptime == pytest.approx(94.1)
        assert metrics_store.get("p").successful_calls == 1

    def test_uptime_clamped(self, metrics_store: MetricsStore):
        for _ in range(200):
            metrics_store.record_usage("weather", "p", 0.001, 500, success=False)

        assert metrics_store.get("p").uptime == 0.0

    def test_export_load(self, metrics_store: MetricsStore):
        metrics_store.record_feedback("p", 70, 900, 0.002)

        other = MetricsStore()
        other.load(metrics_store.export())

        assert other.get("p").average_quality == 70
        assert list(other.get("p").response_time_history) == [900]


class TestUsageSnapshot:
    """Test usage_snapshot() aggregation."""

    def test_no_traffic(self, metrics_store: MetricsStore):
        assert metrics_store.usage_snapshot() == UsageMetrics()

    def test_cost_efficiency_is_success_share(self, metrics_store: MetricsStore):
        for success in (True, True, True, False):
            metrics_store.record_usage("weather", "p", 0.001, 400, success=success)

        snapshot = metrics_store.usage_snapshot()

        assert snapshot.total_requests == 4
        assert snapshot.failed_requests == 1
        assert snapshot.cost_efficiency == 0.75
        assert snapshot.total_cost == pytest.approx(0.003)
        assert snapshot.average_response_time == 400

    def test_old_samples_fall_out_of_window(self, metrics_store: MetricsStore, clock):
        metrics_store.record_usage("weather", "p", 0.001, 400, success=False)
        clock.advance(7200)
        metrics_store.record_usage("storage", "q", 0.002, 200, success=True)

        snapshot = metrics_store.usage_snapshot(window_seconds=3600)

        assert snapshot.total_requests == 1
        assert snapshot.cost_efficiency == 1.0

    def test_history_per_service_type(self, metrics_store: MetricsStore):
        metrics_store.record_usage("weather", "p", 0.001, 400, success=True)
        metrics_store.record_usage("storage", "q", 0.002, 200, success=True)

        assert [s.provider_id for s in metrics_store.usage_history("weather")] == ["p"]
        assert metrics_store.usage_history("unknown") == []


class TestUsageHistory:
    """Test the cross-service usage history."""

    def test_all_usage_is_time_ordered(self, metrics_store: MetricsStore, clock):
        metrics_store.record_usage("weather", "a", 0.001, 100, True)
        clock.advance(10)
        metrics_store.record_usage("storage", "b", 0.002, 100, True)
        clock.advance(10)
        metrics_store.record_usage("weather", "a", 0.003, 100, False)

        assert [s.cost for s in metrics_store.all_usage()] == [0.001, 0.002, 0.003]

    def test_restore_replaces_history(self, metrics_store: MetricsStore, clock):
        metrics_store.record_usage("weather", "a", 0.001, 100, True)
        samples = metrics_store.all_usage()

        other = MetricsStore(clock=clock)
        other.record_usage("storage", "b", 0.005, 100, True)
        other.restore_usage(samples)

        assert other.all_usage() == samples
        assert other.usage_history("storage") == []
