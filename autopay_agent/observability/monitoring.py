"""
Autopay Agent - Observability Monitoring

In-process metrics (counters, gauges, histograms) with optional SQLite
persistence, span timing, and structured JSON logging.
"""

import asyncio
import contextvars
import json
import logging
import time
from collections import defaultdict, deque
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from .database import MetricSampleStore

logger = logging.getLogger(__name__)

# Trace ID context variable; each scheduler tick runs with its own trace id
_trace_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

HISTOGRAM_WINDOW = 1000


class ObservabilityAdapter:
    """
    Observability adapter owned by the agent and passed to each component.

    Provides:
    - Metrics (counters, gauges, histograms) kept in memory
    - Optional persistence of every sample to SQLite
    - Span timing via trace()
    - Trace IDs for log correlation
    """

    def __init__(
        self,
        enable_metrics: bool = True,
        enable_tracing: bool = False,
        metrics_db_path: str | None = None,
    ):
        """
        Initialize observability adapter.

        Args:
            enable_metrics: Enable metrics collection
            enable_tracing: Enable span timing logs
            metrics_db_path: Path to SQLite database (None = in-memory only)
        """
        self.enable_metrics = enable_metrics
        self.enable_tracing = enable_tracing

        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=HISTOGRAM_WINDOW))

        self._db = MetricSampleStore(metrics_db_path) if metrics_db_path else None
        self._pending_writes: set[asyncio.Task[None]] = set()

    @property
    def persistent(self) -> bool:
        """Whether samples are persisted to SQLite."""
        return self._db is not None

    def increment(
        self,
        metric: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric: Metric name (e.g., "scheduler.tick.success")
            value: Value to increment by
            tags: Optional metric tags/labels
        """
        if not self.enable_metrics:
            return

        self._counters[metric] += value
        self._persist(metric, "counter", value, tags or {})

    def gauge(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Set a gauge metric.

        Args:
            metric: Metric name
            value: Current value
            tags: Optional metric tags
        """
        if not self.enable_metrics:
            return

        self._gauges[metric] = value
        self._persist(metric, "gauge", value, tags or {})

    def histogram(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Record a histogram sample (latencies, amounts).

        Args:
            metric: Metric name
            value: Value to record
            tags: Optional metric tags
        """
        if not self.enable_metrics:
            return

        self._histograms[metric].append(value)
        self._persist(metric, "histogram", value, tags or {})

    def event(self, name: str, payload: dict[str, Any]) -> None:
        """
        Record an event as a structured log line.

        Args:
            name: Event name
            payload: Event data
        """
        logger.info(
            f"Event: {name}",
            extra={
                "event_name": name,
                "event_payload": payload,
                "trace_id": self.get_trace_id(),
            },
        )

    @contextmanager
    def trace(self, span_name: str, tags: dict[str, str] | None = None) -> Generator[None, None, None]:
        """
        Context manager timing a span.

        Args:
            span_name: Name of the span
            tags: Optional span tags

        Example:
            with observability.trace("policy.tick"):
                await policy.run_optimization_tick()
        """
        start_time = time.perf_counter()
        tags = tags or {}

        try:
            yield
        except Exception as e:
            if self.enable_tracing:
                logger.debug(
                    f"Span error: {span_name}",
                    extra={"span_name": span_name, "trace_id": self.get_trace_id(), "error": str(e)},
                )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.histogram(f"{span_name}.duration", duration_ms, tags=tags)

            if self.enable_tracing:
                logger.debug(
                    f"Span completed: {span_name}",
                    extra={
                        "span_name": span_name,
                        "trace_id": self.get_trace_id(),
                        "duration_ms": round(duration_ms, 2),
                        "tags": tags,
                    },
                )

    def get_trace_id(self) -> str | None:
        """Get current trace ID from context."""
        return _trace_id_ctx.get()

    def set_trace_id(self, trace_id: str) -> None:
        """Set trace ID in context."""
        _trace_id_ctx.set(trace_id)

    def generate_trace_id(self) -> str:
        """Generate a new trace ID and set it in context."""
        trace_id = str(uuid4())
        self.set_trace_id(trace_id)
        return trace_id

    def counter(self, metric: str) -> float:
        """Current value of a counter (0.0 if never incremented)."""
        return self._counters.get(metric, 0.0)

    def snapshot(self) -> dict[str, Any]:
        """
        Get in-memory metric values.

        Returns:
            Dictionary with counters, gauges and histogram summaries
        """
        histograms = {}
        for name, samples in self._histograms.items():
            if not samples:
                continue
            histograms[name] = {
                "count": len(samples),
                "avg": sum(samples) / len(samples),
                "max": max(samples),
            }

        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    async def get_metrics(
        self,
        metric_name: str | None = None,
        kind: str | None = None,
        since: float | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Get persisted metric samples.

        Args:
            metric_name: Optional filter by metric name
            kind: Optional filter by sample kind (counter, gauge, histogram)
            since: Optional epoch-seconds lower bound
            limit: Maximum number of records to return

        Returns:
            List of metric records as dictionaries (newest first); empty when not persistent
        """
        if self._db is None:
            return []

        await self.flush()
        return await self._db.query(name=metric_name, kind=kind, since=since, limit=limit)

    async def metric_summary(self, metric_name: str, since: float | None = None) -> dict[str, Any]:
        """
        Aggregate of one metric's persisted samples.

        Falls back to the in-memory histogram window when not persistent.
        """
        if self._db is None:
            values = list(self._histograms.get(metric_name, ()))
            return {
                "name": metric_name,
                "count": len(values),
                "sum": sum(values),
                "min": min(values) if values else None,
                "max": max(values) if values else None,
                "mean": sum(values) / len(values) if values else None,
            }

        await self.flush()
        return await self._db.aggregate(metric_name, since=since)

    async def prune_metrics(self, max_age: float) -> int:
        """Delete persisted samples older than ``max_age`` seconds. Returns the number removed."""
        if self._db is None:
            return 0

        await self.flush()
        removed = await self._db.purge(before=time.time() - max_age)
        if removed:
            logger.info(f"Pruned {removed} metric samples", extra={"removed": removed})
        return removed

    async def clear_metrics(self) -> None:
        """Clear all metrics (testing/reset)."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()

        if self._db is None:
            return

        await self.flush()
        await self._db.purge()

    async def flush(self) -> None:
        """Wait for in-flight metric writes."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def close(self) -> None:
        """Flush pending writes and close database connections gracefully."""
        await self.flush()
        if self._db is not None:
            await self._db.close()

    def _persist(self, name: str, kind: str, value: float, tags: dict[str, str]) -> None:
        """Schedule a sample write when persistence is on and a loop is running."""
        if self._db is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called from synchronous code with no loop; keep the in-memory value only
            return

        task = loop.create_task(self._store_metric(name, kind, value, tags, time.time()))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _store_metric(self, name: str, kind: str, value: float, tags: dict[str, str], timestamp: float) -> None:
        if self._db is None:
            return

        try:
            await self._db.add(name, kind, value, tags, timestamp)
        except Exception as e:
            # Metric persistence never fails the main flow
            logger.error(f"Failed to store metric {name}: {e}")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    _RESERVED = frozenset(
        (
            "args",
            "msg",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "name",
            "message",
        )
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        trace_id = _trace_id_ctx.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Install the JSON formatter on the package logger.

    Args:
        level: Log level name

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger("autopay_agent")
    package_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

    return package_logger
