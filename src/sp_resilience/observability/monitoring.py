"""
SP Resilience — Observability Monitoring

In-process metrics collection and structured JSON logging.
Counters are kept in memory per adapter instance; components receive the
adapter through their constructors rather than a process-wide singleton.
"""

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

DEFAULT_HISTOGRAM_SAMPLES = 1000

# Trace id for the current task, added to every JSON log line
_trace_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

PACKAGE_LOGGER = "sp_resilience"

logger = logging.getLogger(__name__)


def _metric_key(metric: str, tags: dict[str, str] | None) -> str:
    if not tags:
        return metric
    rendered = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{metric}{{{rendered}}}"


class ObservabilityAdapter:
    """
    Lightweight observability adapter.

    Provides:
    - Metrics (counters, gauges, histograms) held in memory
    - Distributed tracing (trace IDs via contextvars)
    - Structured events through the package logger

    Histograms keep the most recent max_histogram_samples values plus a
    running count/sum/min/max.
    """

    def __init__(
        self,
        enable_metrics: bool = True,
        enable_tracing: bool = False,
        max_histogram_samples: int = DEFAULT_HISTOGRAM_SAMPLES,
    ):
        """
        Initialize observability adapter.

        Args:
            enable_metrics: Enable metrics collection
            enable_tracing: Enable span tracing
            max_histogram_samples: Recent samples kept per histogram
        """
        if max_histogram_samples < 1:
            raise ValueError("max_histogram_samples must be >= 1")

        self.enable_metrics = enable_metrics
        self.enable_tracing = enable_tracing

        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self.max_histogram_samples = max_histogram_samples
        self._histograms: dict[str, deque[float]] = {}
        self._summaries: dict[str, dict[str, float]] = {}

    def increment(
        self,
        metric: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric: Metric name (e.g., "cache.hits")
            value: Value to increment by
            tags: Optional metric tags/labels
        """
        if not self.enable_metrics:
            return
        self._counters[_metric_key(metric, tags)] += value

    def gauge(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric."""
        if not self.enable_metrics:
            return
        self._gauges[_metric_key(metric, tags)] = value

    def histogram(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a histogram sample (latencies, delays, sizes)."""
        if not self.enable_metrics:
            return
        key = _metric_key(metric, tags)
        samples = self._histograms.get(key)
        if samples is None:
            samples = self._histograms[key] = deque(maxlen=self.max_histogram_samples)
            self._summaries[key] = {"count": 0, "sum": 0.0, "min": value, "max": value}
        samples.append(value)

        summary = self._summaries[key]
        summary["count"] += 1
        summary["sum"] += value
        summary["min"] = min(summary["min"], value)
        summary["max"] = max(summary["max"], value)

    def get_histogram_summary(self, metric: str, tags: dict[str, str] | None = None) -> dict[str, float]:
        """Return count/sum/min/max over every sample ever recorded (empty if unset)."""
        return dict(self._summaries.get(_metric_key(metric, tags), {}))

    def get_metric(self, metric: str, tags: dict[str, str] | None = None) -> float:
        """Return the current value of a counter or gauge (0.0 if unset)."""
        key = _metric_key(metric, tags)
        if key in self._gauges:
            return self._gauges[key]
        return self._counters.get(key, 0.0)

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of all collected metrics."""
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": {key: list(values) for key, values in self._histograms.items()},
            "histogram_summaries": {key: dict(summary) for key, summary in self._summaries.items()},
        }

    def reset(self) -> None:
        """Clear all collected metrics (testing/reset)."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()
        self._summaries.clear()

    def event(self, name: str, payload: dict[str, Any]) -> None:
        """Record a structured event in the package log."""
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
        Time a block and record it under the span.duration histogram.

        A no-op unless tracing is enabled. Exceptions are logged with the
        current trace id and re-raised.

        Example:
            with observability.trace("resilience.call", tags={"operation": "list_orders"}):
                orders = await manager.execute_with_recovery(list_orders)
        """
        if not self.enable_tracing:
            yield
            return

        start_time = time.perf_counter()
        trace_id = self.get_trace_id()
        tags = tags or {}

        try:
            yield
        except Exception as e:
            logger.error(
                f"Span error: {span_name}",
                extra={
                    "span_name": span_name,
                    "trace_id": trace_id,
                    "error": str(e),
                    "tags": tags,
                },
                exc_info=True,
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.histogram("span.duration", duration_ms, tags={"span_name": span_name, **tags})
            logger.debug(
                f"Span completed: {span_name}",
                extra={
                    "span_name": span_name,
                    "trace_id": trace_id,
                    "duration_ms": round(duration_ms, 2),
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

        # Structured fields passed via extra=
        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str | int = logging.INFO, json_format: bool = True) -> logging.Logger:
    """
    Configure the package logger.

    Replaces existing handlers on the "sp_resilience" logger with a single
    stream handler, formatted as JSON unless json_format is False.

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return package_logger
