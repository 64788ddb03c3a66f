"""
Tests for the Observability adapter and JSON logging
"""

import json
import logging
from pathlib import Path

import pytest

from autopay_agent.observability import JSONFormatter, ObservabilityAdapter, configure_logging


class TestInMemoryMetrics:
    """Test counters, gauges, histograms and spans."""

    def test_counters_accumulate(self, observability: ObservabilityAdapter):
        observability.increment("gateway.payment.success")
        observability.increment("gateway.payment.success", value=2, tags={"service_type": "weather"})

        assert observability.counter("gateway.payment.success") == 3
        assert observability.counter("never.incremented") == 0.0

    def test_disabled_metrics_record_nothing(self):
        obs = ObservabilityAdapter(enable_metrics=False)

        obs.increment("a")
        obs.gauge("b", 1.0)

        assert obs.snapshot() == {"counters": {}, "gauges": {}, "histograms": {}}

    def test_snapshot_summarizes_histograms(self, observability: ObservabilityAdapter):
        observability.gauge("budget.daily_remaining", 0.004)
        for value in (1.0, 2.0, 3.0):
            observability.histogram("gateway.payment.amount", value)

        snapshot = observability.snapshot()

        assert snapshot["gauges"]["budget.daily_remaining"] == 0.004
        assert snapshot["histograms"]["gateway.payment.amount"] == {"count": 3, "avg": 2.0, "max": 3.0}

    def test_trace_records_duration_and_reraises(self, observability: ObservabilityAdapter):
        with observability.trace("policy.tick"):
            pass

        with pytest.raises(ValueError):
            with observability.trace("policy.tick"):
                raise ValueError("boom")

        assert observability.snapshot()["histograms"]["policy.tick.duration"]["count"] == 2

    def test_trace_ids(self, observability: ObservabilityAdapter):
        trace_id = observability.generate_trace_id()

        assert observability.get_trace_id() == trace_id

    @pytest.mark.asyncio
    async def test_non_persistent_adapter(self, observability: ObservabilityAdapter):
        observability.increment("a")

        assert not observability.persistent
        assert await observability.get_metrics() == []

        await observability.clear_metrics()
        assert observability.counter("a") == 0.0
        await observability.close()


class TestPersistence:
    """Test SQLite persistence of samples."""

    @pytest.mark.asyncio
    async def test_samples_persisted(self, tmp_path: Path):
        obs = ObservabilityAdapter(metrics_db_path=str(tmp_path / "metrics.db"))
        try:
            obs.increment("scheduler.tick.success", tags={"job": "health"})
            obs.histogram("gateway.payment.amount", 0.001)

            records = await obs.get_metrics("scheduler.tick.success")

            assert obs.persistent
            assert len(records) == 1
            assert records[0]["kind"] == "counter"
            assert records[0]["tags"] == {"job": "health"}
            assert len(await obs.get_metrics()) == 2
        finally:
            await obs.close()

    @pytest.mark.asyncio
    async def test_clear_metrics(self, tmp_path: Path):
        obs = ObservabilityAdapter(metrics_db_path=str(tmp_path / "metrics.db"))
        try:
            obs.increment("a")
            await obs.flush()

            await obs.clear_metrics()

            assert await obs.get_metrics() == []
        finally:
            await obs.close()

    @pytest.mark.asyncio
    async def test_kind_filter_summary_and_pruning(self, tmp_path: Path):
        obs = ObservabilityAdapter(metrics_db_path=str(tmp_path / "metrics.db"))
        try:
            obs.histogram("gateway.payment.amount", 0.001)
            obs.histogram("gateway.payment.amount", 0.002)
            obs.gauge("budget.daily_remaining", 0.007)

            gauges = await obs.get_metrics(kind="gauge")
            summary = await obs.metric_summary("gateway.payment.amount")

            assert [r["name"] for r in gauges] == ["budget.daily_remaining"]
            assert summary["count"] == 2
            assert summary["mean"] == pytest.approx(0.0015)
            assert await obs.prune_metrics(max_age=3600) == 0
            assert await obs.prune_metrics(max_age=-60) == 3
            assert await obs.get_metrics() == []
        finally:
            await obs.close()

    @pytest.mark.asyncio
    async def test_summary_without_persistence_uses_memory(self, observability: ObservabilityAdapter):
        observability.histogram("latency", 10.0)
        observability.histogram("latency", 30.0)

        summary = await observability.metric_summary("latency")

        assert summary["count"] == 2
        assert summary["mean"] == 20.0
        assert await observability.prune_metrics(max_age=0) == 0

    def test_persistence_without_loop_keeps_memory_value(self, tmp_path: Path):
        obs = ObservabilityAdapter(metrics_db_path=str(tmp_path / "metrics.db"))

        obs.increment("sync.call")

        assert obs.counter("sync.call") == 1


class TestJSONLogging:
    """Test the JSON formatter."""

    def test_extra_fields_and_trace_id(self, observability: ObservabilityAdapter):
        trace_id = observability.generate_trace_id()
        record = logging.LogRecord("autopay_agent.test", logging.INFO, __file__, 1, "Payment executed", None, None)
        record.tx_id = "0xabc"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Payment executed"
        assert data["level"] == "INFO"
        assert data["tx_id"] == "0xabc"
        assert data["trace_id"] == trace_id

    def test_configure_logging(self):
        package_logger = configure_logging("WARNING")
        try:
            assert package_logger.name == "autopay_agent"
            assert package_logger.level == logging.WARNING
            assert isinstance(package_logger.handlers[0].formatter, JSONFormatter)
        finally:
            package_logger.handlers.clear()
            package_logger.setLevel(logging.NOTSET)
