"""
Prometheus-compatible metrics for the cart service.

Tracks:
- Cart mutations by operation and outcome
- Rejections by error code
- Active sessions and connected channels
- Mutation latency
"""
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator


@dataclass
class MetricValue:
    """Single metric value with metadata."""

    value: float
    labels: dict[str, str] = field(default_factory=dict)


class _LabeledMetric:
    kind = "untyped"

    def __init__(self, name: str, description: str, labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []

    def _labels_to_key(self, labels: dict) -> tuple:
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def _key_to_labels(self, key: tuple) -> dict[str, str]:
        return dict(zip(self.label_names, key))


class Counter(_LabeledMetric):
    """Monotonic counter."""

    kind = "counter"

    def __init__(self, name: str, description: str, labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = defaultdict(float)

    def inc(self, amount: float = 1, **labels) -> None:
        if amount < 0:
            raise ValueError("Counter can only increase")
        self._values[self._labels_to_key(labels)] += amount

    def get(self, **labels) -> float:
        return self._values.get(self._labels_to_key(labels), 0)

    def total(self) -> float:
        return sum(self._values.values())

    def collect(self) -> list[MetricValue]:
        return [MetricValue(v, self._key_to_labels(k)) for k, v in self._values.items()]


class Gauge(_LabeledMetric):
    """Value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, description: str, labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = {}

    def set(self, value: float, **labels) -> None:
        self._values[self._labels_to_key(labels)] = value

    def inc(self, amount: float = 1, **labels) -> None:
        key = self._labels_to_key(labels)
        self._values[key] = self._values.get(key, 0) + amount

    def dec(self, amount: float = 1, **labels) -> None:
        self.inc(-amount, **labels)

    def get(self, **labels) -> float:
        return self._values.get(self._labels_to_key(labels), 0)

    def collect(self) -> list[MetricValue]:
        return [MetricValue(v, self._key_to_labels(k)) for k, v in self._values.items()]


class Histogram(_LabeledMetric):
    """Bucketed observations with sum and count."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, float("inf"))

    def __init__(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
        buckets: tuple | None = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._counts: dict[tuple, dict[float, int]] = defaultdict(
            lambda: dict.fromkeys(self.buckets, 0)
        )
        self._sums: dict[tuple, float] = defaultdict(float)
        self._totals: dict[tuple, int] = defaultdict(int)

    def observe(self, value: float, **labels) -> None:
        key = self._labels_to_key(labels)
        self._sums[key] += value
        self._totals[key] += 1
        for bucket in self.buckets:
            if value <= bucket:
                self._counts[key][bucket] += 1

    def count(self, **labels) -> int:
        return self._totals.get(self._labels_to_key(labels), 0)

    def get_avg(self, **labels) -> float:
        key = self._labels_to_key(labels)
        total = self._totals.get(key, 0)
        if total == 0:
            return 0
        return self._sums[key] / total

    def collect(self) -> list[MetricValue]:
        result = []
        for key, total in self._totals.items():
            labels = self._key_to_labels(key)
            for bucket, count in self._counts[key].items():
                le = "+Inf" if bucket == float("inf") else str(bucket)
                result.append(MetricValue(count, {**labels, "le": le}))
            result.append(MetricValue(self._sums[key], {**labels, "le": "sum"}))
            result.append(MetricValue(total, {**labels, "le": "count"}))
        return result


class MetricsRegistry:
    """Central registry for all cart service metrics."""

    def __init__(self):
        self._metrics: dict[str, Any] = {}
        self._start_time = datetime.now(timezone.utc)

        self.mutations_total = self.counter(
            "tablecart_mutations_total", "Cart mutations handled", ["operation", "status"]
        )
        self.errors_total = self.counter(
            "tablecart_errors_total", "Errors reported to senders", ["operation", "code"]
        )
        self.mutation_duration = self.histogram(
            "tablecart_mutation_duration_seconds", "Time spent applying a mutation", ["operation"]
        )
        self.broadcasts_total = self.counter(
            "tablecart_broadcast_messages_total", "Snapshots delivered to channels", ["status"]
        )
        self.sessions_active = self.gauge("tablecart_sessions_active", "Sessions held in memory")
        self.channels_connected = self.gauge(
            "tablecart_channels_connected", "Connected cart channels"
        )
        self.sessions_evicted = self.counter(
            "tablecart_sessions_evicted_total", "Sessions removed", ["reason"]
        )

    def counter(self, name: str, description: str, labels: list[str] | None = None) -> Counter:
        if name not in self._metrics:
            self._metrics[name] = Counter(name, description, labels)
        return self._metrics[name]

    def gauge(self, name: str, description: str, labels: list[str] | None = None) -> Gauge:
        if name not in self._metrics:
            self._metrics[name] = Gauge(name, description, labels)
        return self._metrics[name]

    def histogram(
        self, name: str, description: str, labels: list[str] | None = None, buckets: tuple = None
    ) -> Histogram:
        if name not in self._metrics:
            self._metrics[name] = Histogram(name, description, labels, buckets)
        return self._metrics[name]

    @contextmanager
    def time_mutation(self, operation: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.mutation_duration.observe(time.perf_counter() - started, operation=operation)

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = [
            "# HELP tablecart_uptime_seconds Service uptime in seconds",
            "# TYPE tablecart_uptime_seconds gauge",
            f"tablecart_uptime_seconds {self.uptime_seconds():.2f}",
            "",
        ]

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")
            for mv in metric.collect():
                if mv.labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in mv.labels.items())
                    lines.append(f"{name}{{{label_str}}} {mv.value}")
                else:
                    lines.append(f"{name} {mv.value}")
            lines.append("")

        return "\n".join(lines)

    def get_summary(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(self.uptime_seconds(), 2),
            "mutations": self.mutations_total.total(),
            "errors": self.errors_total.total(),
            "sessions_active": self.sessions_active.get(),
            "channels_connected": self.channels_connected.get(),
        }


# Global metrics instance
metrics = MetricsRegistry()
