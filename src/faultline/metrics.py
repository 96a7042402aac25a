"""Operational metrics collection for faultline.

Accumulates counters, gauges and custom samples in process memory and
renders them either as a structured snapshot or as Prometheus text
exposition. Both renderings are derived from the same ``MetricsSnapshot``,
so they can never disagree about a value.

Every series is windowed. A counter in a snapshot reports the sum of its
increments inside the requested lookback range; ``increment`` still returns
the running process total. A gauge (including samples posted by clients)
reports its latest sample inside the range. Series with nothing inside the
range are left out.
"""

import math
import re
import resource
import threading
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.metrics_core import Metric
from pydantic import BaseModel, Field

from faultline.errors import InvalidSample
from faultline.logging import get_logger

logger = get_logger(__name__, component="metrics")

LabelKey = Tuple[Tuple[str, str], ...]

_NAME_INVALID = re.compile(r"[^a-zA-Z0-9_:]")
_LABEL_INVALID = re.compile(r"[^a-zA-Z0-9_]")


class MetricKind(str, Enum):
    """Kinds of series the collector keeps."""

    COUNTER = "counter"
    GAUGE = "gauge"


class ExportFormat(str, Enum):
    """Supported export representations."""

    JSON = "json"
    PROMETHEUS = "prometheus"


class TimeRange(str, Enum):
    """Snapshot lookback windows."""

    FIVE_MINUTES = "5m"
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"

    @property
    def seconds(self) -> int:
        return _RANGE_SECONDS[self]

    @classmethod
    def parse(cls, value: Union["TimeRange", str, None]) -> "TimeRange":
        """Parse a range string; unrecognised values fall back to one hour."""
        if isinstance(value, TimeRange):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.ONE_HOUR


_RANGE_SECONDS = {
    TimeRange.FIVE_MINUTES: 5 * 60,
    TimeRange.ONE_HOUR: 60 * 60,
    TimeRange.ONE_DAY: 24 * 60 * 60,
    TimeRange.SEVEN_DAYS: 7 * 24 * 60 * 60,
}


class MetricSample(BaseModel):
    """A single point-in-time measurement."""

    name: str = Field(description="Metric name")
    value: float = Field(description="Finite numeric value")
    labels: Dict[str, str] = Field(default_factory=dict, description="Label mapping")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the value was observed",
    )


class SeriesSnapshot(BaseModel):
    """Aggregated state of one name+labels series."""

    name: str
    kind: MetricKind
    labels: Dict[str, str] = Field(default_factory=dict)
    value: float
    samples: int = Field(default=0, ge=0, description="Observations inside the window")

    @property
    def key(self) -> str:
        return series_key(self.name, self.labels)


class MetricsSnapshot(BaseModel):
    """Structured aggregate of all series at one instant."""

    timestamp: datetime
    time_range: TimeRange
    window_seconds: int
    series: List[SeriesSnapshot] = Field(default_factory=list)
    help: Dict[str, str] = Field(default_factory=dict)

    def values(self) -> Dict[str, float]:
        """Map of ``name{label="value"}`` keys to values."""
        return {s.key: s.value for s in self.series}

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation grouped by kind and name."""
        grouped: Dict[str, Dict[str, List[Dict[str, Any]]]] = {
            MetricKind.COUNTER.value: {},
            MetricKind.GAUGE.value: {},
        }
        for s in self.series:
            grouped[s.kind.value].setdefault(s.name, []).append(
                {"labels": dict(s.labels), "value": s.value, "samples": s.samples}
            )

        return {
            "timestamp": self.timestamp.isoformat(),
            "timeRange": self.time_range.value,
            "windowSeconds": self.window_seconds,
            "counters": grouped[MetricKind.COUNTER.value],
            "gauges": grouped[MetricKind.GAUGE.value],
        }


def _escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def series_key(name: str, labels: Mapping[str, str]) -> str:
    """Render a series identity in exposition syntax."""
    if not labels:
        return name
    rendered = ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


def normalize_name(name: str) -> str:
    """Coerce a metric name into the exposition charset."""
    normalized = _NAME_INVALID.sub("_", name.strip())
    if normalized and normalized[0].isdigit():
        normalized = "_" + normalized
    return normalized


def _normalize_labels(labels: Optional[Mapping[str, Any]]) -> LabelKey:
    if not labels:
        return ()
    normalized = {}
    for key, value in labels.items():
        label = _LABEL_INVALID.sub("_", str(key))
        if label and label[0].isdigit():
            label = "_" + label
        normalized[label] = str(value)
    return tuple(sorted(normalized.items()))


def _validate_value(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidSample(f"Metric value must be a number, got {type(value).__name__}", name, value)
    if not math.isfinite(value):
        raise InvalidSample("Metric value must be finite", name, value)
    return float(value)


class _SnapshotCollector:
    """prometheus_client collector that replays a frozen snapshot."""

    def __init__(self, snapshot: MetricsSnapshot):
        self._snapshot = snapshot

    def collect(self) -> Iterable[Metric]:
        families: Dict[str, Metric] = {}
        for s in self._snapshot.series:
            family = s.name
            if s.kind == MetricKind.COUNTER and family.endswith("_total"):
                family = family[: -len("_total")]

            metric = families.get(family)
            if metric is None:
                documentation = self._snapshot.help.get(s.name, f"faultline metric {s.name}")
                metric = Metric(family, documentation, s.kind.value)
                families[family] = metric
            metric.add_sample(s.name, dict(s.labels), s.value)
        return list(families.values())


class MetricsCollector:
    """In-memory metrics collector with JSON and Prometheus exporters.

    One instance is created at application start and passed to every
    component that records metrics. All mutation happens under a single
    lock so concurrent increments from several call sites are never lost.

    Example:
        >>> metrics = MetricsCollector()
        >>> metrics.increment("alerts_received", labels={"severity": "high"})
        >>> metrics.record("page_load_ms", 412.0, labels={"page": "/dashboard"})
        >>> text = metrics.export("prometheus", "5m")
    """

    RETENTION_SECONDS = _RANGE_SECONDS[TimeRange.SEVEN_DAYS]

    def __init__(
        self,
        max_samples: int = 100_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize metrics collector.

        Args:
            max_samples: Maximum gauge/increment observations retained.
            clock: Wall-clock source in epoch seconds (injectable for tests).
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._started_at = clock()

        # (epoch seconds, kind, name, labels, value)
        self._events: Deque[Tuple[float, MetricKind, str, LabelKey, float]] = deque(maxlen=max_samples)
        self._counters: Dict[Tuple[str, LabelKey], float] = {}
        self._help: Dict[str, str] = {}

        logger.info("metrics_collector_initialized", max_samples=max_samples)

    # Recording

    def describe(self, name: str, documentation: str) -> None:
        """Attach help text to a metric name."""
        with self._lock:
            self._help[normalize_name(name)] = documentation

    def record(
        self,
        sample: Union[MetricSample, str],
        value: Any = None,
        labels: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> MetricSample:
        """Record a gauge-style sample.

        Accepts either a ``MetricSample`` or ``name, value[, labels, timestamp]``.

        Raises:
            InvalidSample: If the name is empty or the value is not a finite number.
        """
        if isinstance(sample, MetricSample):
            name, value, labels, timestamp = sample.name, sample.value, sample.labels, sample.timestamp
        else:
            name = sample

        if not isinstance(name, str) or not name.strip():
            raise InvalidSample("Metric name must be a non-empty string", name, value)

        numeric = _validate_value(name, value)
        normalized = normalize_name(name)
        label_key = _normalize_labels(labels)
        observed_at = timestamp or datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if observed_at.tzinfo is None:
            observed_at = observed_at.replace(tzinfo=timezone.utc)

        with self._lock:
            self._events.append((observed_at.timestamp(), MetricKind.GAUGE, normalized, label_key, numeric))
            self._prune_locked()

        return MetricSample(name=normalized, value=numeric, labels=dict(label_key), timestamp=observed_at)

    def set_gauge(self, name: str, value: Any, labels: Optional[Mapping[str, Any]] = None) -> None:
        """Set a gauge to ``value`` now."""
        self.record(name, value, labels)

    def increment(
        self,
        name: str,
        amount: Any = 1.0,
        labels: Optional[Mapping[str, Any]] = None,
    ) -> float:
        """Atomically add ``amount`` to a counter and return its new total.

        Counter names always end in ``_total``.
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidSample("Metric name must be a non-empty string", name, amount)

        numeric = _validate_value(name, amount)
        if numeric < 0:
            raise InvalidSample("Counters can only increase", name, amount)

        normalized = normalize_name(name)
        if not normalized.endswith("_total"):
            normalized += "_total"
        label_key = _normalize_labels(labels)

        with self._lock:
            key = (normalized, label_key)
            total = self._counters.get(key, 0.0) + numeric
            self._counters[key] = total
            self._events.append((self._clock(), MetricKind.COUNTER, normalized, label_key, numeric))
            self._prune_locked()
        return total

    def sample_runtime(self) -> None:
        """Record gauges describing the hosting process."""
        uptime = self._clock() - self._started_at
        max_rss_kb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        self.record("process_uptime_seconds", uptime)
        self.record("process_max_resident_memory_bytes", float(max_rss_kb * 1024))

    def _prune_locked(self) -> None:
        cutoff = self._clock() - self.RETENTION_SECONDS
        while self._events and self._events[0][0] < cutoff:
            self._events.popleft()

    # Snapshot and export

    def snapshot(self, time_range: Union[TimeRange, str, None] = TimeRange.ONE_HOUR) -> MetricsSnapshot:
        """Aggregate every series over the lookback window.

        Args:
            time_range: One of 5m, 1h, 24h, 7d. Anything else means 1h.
        """
        window = TimeRange.parse(time_range)

        with self._lock:
            now = self._clock()
            cutoff = now - window.seconds

            gauges: Dict[Tuple[str, LabelKey], Tuple[float, float, int]] = {}
            counters: Dict[Tuple[str, LabelKey], Tuple[float, int]] = {}

            for ts, kind, name, label_key, value in self._events:
                if ts < cutoff:
                    continue
                key = (name, label_key)
                if kind == MetricKind.COUNTER:
                    total, hits = counters.get(key, (0.0, 0))
                    counters[key] = (total + value, hits + 1)
                    continue
                latest_ts, latest_value, count = gauges.get(key, (float("-inf"), 0.0, 0))
                if ts >= latest_ts:
                    latest_ts, latest_value = ts, value
                gauges[key] = (latest_ts, latest_value, count + 1)

            series = [
                SeriesSnapshot(
                    name=name,
                    kind=MetricKind.COUNTER,
                    labels=dict(label_key),
                    value=total,
                    samples=hits,
                )
                for (name, label_key), (total, hits) in sorted(counters.items())
            ]
            series.extend(
                SeriesSnapshot(
                    name=name,
                    kind=MetricKind.GAUGE,
                    labels=dict(label_key),
                    value=value,
                    samples=count,
                )
                for (name, label_key), (_, value, count) in sorted(gauges.items())
            )
            help_texts = dict(self._help)

        return MetricsSnapshot(
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            time_range=window,
            window_seconds=window.seconds,
            series=series,
            help=help_texts,
        )

    @staticmethod
    def render_prometheus(snapshot: MetricsSnapshot) -> str:
        """Render a snapshot as Prometheus text exposition."""
        registry = CollectorRegistry()
        registry.register(_SnapshotCollector(snapshot))
        return generate_latest(registry).decode("utf-8")

    def export(
        self,
        fmt: Union[ExportFormat, str, None] = ExportFormat.JSON,
        time_range: Union[TimeRange, str, None] = TimeRange.ONE_HOUR,
    ) -> Union[Dict[str, Any], str]:
        """Export metrics as a JSON-ready dict (default) or exposition text."""
        snapshot = self.snapshot(time_range)
        if fmt in (ExportFormat.PROMETHEUS, ExportFormat.PROMETHEUS.value):
            return self.render_prometheus(snapshot)
        return snapshot.to_dict()

    def reset(self) -> None:
        """Drop every series (tests and shutdown only)."""
        with self._lock:
            self._events.clear()
            self._counters.clear()
        logger.warning("metrics_reset")
