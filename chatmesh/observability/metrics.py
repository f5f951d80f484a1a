"""
In-process metrics with Prometheus text export.

`ChatMeshMetrics` is the fixed set the engine records; one instance is
shared by every component built by `ChatMesh.build`. Updates happen on the
event loop, the per-metric lock only matters when an exporter thread
reads concurrently.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Iterator, Optional, Sequence

LabelKey = tuple[str, ...]


class _Metric:
    __slots__ = ("name", "help_text", "label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, Any]) -> LabelKey:
        # Label values are positional in label_names order; missing ones are "".
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def _labels(self, key: LabelKey) -> dict[str, str]:
        return dict(zip(self.label_names, key))


class _ValueMetric(_Metric):
    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = {}

    def get(self, **labels: Any) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield self._labels(key), value


class Counter(_ValueMetric):
    """
    Usage:
        relayed = Counter("messages_relayed_total", ["kind", "route"])
        relayed.inc(kind="text", route="pair")
    """

    __slots__ = ()

    def inc(self, value: float = 1.0, **labels: Any) -> None:
        if value < 0:
            raise ValueError(f"counter {self.name} cannot decrease")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())


class Gauge(_ValueMetric):
    """Last value set per label combination."""

    __slots__ = ()

    def set(self, value: float, **labels: Any) -> None:
        with self._lock:
            self._values[self._key(labels)] = float(value)


class Histogram(_Metric):
    """
    Cumulative-bucket histogram.

    Usage:
        latency = Histogram("command_latency_seconds", ["command"])
        with latency.time(command="find"):
            await dispatcher.handle(...)
    """

    __slots__ = ("bounds", "_series")

    DEFAULT_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        bounds = sorted(set(buckets or self.DEFAULT_BUCKETS) | {float("inf")})
        self.bounds: tuple[float, ...] = tuple(bounds)
        # key -> [bucket counts..., sum, count]
        self._series: dict[LabelKey, list[float]] = {}

    def observe(self, value: float, **labels: Any) -> None:
        key = self._key(labels)
        with self._lock:
            series = self._series.setdefault(key, [0] * len(self.bounds) + [0.0, 0])
            for i, bound in enumerate(self.bounds):
                if value <= bound:
                    series[i] += 1
            series[-2] += value
            series[-1] += 1

    def time(self, **labels: Any) -> _Timer:
        return _Timer(self, labels)

    def count(self, **labels: Any) -> int:
        with self._lock:
            series = self._series.get(self._key(labels))
        return int(series[-1]) if series else 0

    def collect(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            items = [(key, list(series)) for key, series in self._series.items()]
        for key, series in items:
            yield {
                "labels": self._labels(key),
                "buckets": [(bound, int(n)) for bound, n in zip(self.bounds, series)],
                "sum": series[-2],
                "count": int(series[-1]),
            }


class _Timer:
    __slots__ = ("_histogram", "_labels", "_started")

    def __init__(self, histogram: Histogram, labels: dict[str, Any]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._started = 0.0

    def __enter__(self) -> _Timer:
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._started, **self._labels)


def _format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"


class MetricsCollector:
    """
    Get-or-create registry.

    Usage:
        collector = MetricsCollector()
        pairs = collector.counter("pairs_established_total")
        text = collector.export_prometheus()
    """

    __slots__ = ("_metrics", "_lock")

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _register(self, kind: type, name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = kind(name, *args)
            elif not isinstance(metric, kind):
                raise ValueError(f"metric {name} already registered as {type(metric).__name__}")
            return metric

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        return self._register(Counter, name, label_names, help_text)

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, help_text)

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        return self._register(Histogram, name, label_names, help_text, buckets)

    def export_prometheus(self) -> str:
        """Text exposition format, metrics in registration order."""
        with self._lock:
            metrics = list(self._metrics.values())

        lines: list[str] = []
        for metric in metrics:
            kind = type(metric).__name__.lower()
            if metric.help_text:
                lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} {kind}")

            if isinstance(metric, Histogram):
                for series in metric.collect():
                    labels = series["labels"]
                    for bound, n in series["buckets"]:
                        le = "+Inf" if bound == float("inf") else str(bound)
                        lines.append(f"{metric.name}_bucket{_format_labels({**labels, 'le': le})} {n}")
                    lines.append(f"{metric.name}_sum{_format_labels(labels)} {series['sum']}")
                    lines.append(f"{metric.name}_count{_format_labels(labels)} {series['count']}")
            else:
                for labels, value in metric.collect():
                    lines.append(f"{metric.name}{_format_labels(labels)} {value}")

        return "\n".join(lines)


class ChatMeshMetrics:
    """The metrics recorded by the matchmaking, room, reaper and relay paths."""

    __slots__ = (
        "registry",
        "pairs_established",
        "store_conflicts",
        "rooms_created",
        "rooms_deleted",
        "messages_relayed",
        "messages_blocked",
        "sessions_reaped",
        "deliveries_failed",
        "sessions",
        "command_latency",
    )

    def __init__(self, registry: Optional[MetricsCollector] = None) -> None:
        self.registry = registry or MetricsCollector()
        r = self.registry
        self.pairs_established = r.counter(
            "pairs_established_total", help_text="One-to-one pairs committed",
        )
        self.store_conflicts = r.counter(
            "store_conflicts_total", ["operation"], "Lost compare-and-set races",
        )
        self.rooms_created = r.counter("rooms_created_total", help_text="Rooms created")
        self.rooms_deleted = r.counter(
            "rooms_deleted_total", help_text="Rooms removed after the last member left",
        )
        self.messages_relayed = r.counter(
            "messages_relayed_total", ["kind", "route"], "Inbound messages delivered",
        )
        self.messages_blocked = r.counter(
            "messages_blocked_total", help_text="Messages rejected by moderation",
        )
        self.sessions_reaped = r.counter(
            "sessions_reaped_total", ["trigger"], "Sessions reset for inactivity",
        )
        self.deliveries_failed = r.counter(
            "deliveries_failed_total", help_text="Transport sends that returned False",
        )
        self.sessions = r.gauge(
            "sessions", ["context"], "Sessions per context at the last sweep",
        )
        self.command_latency = r.histogram(
            "command_latency_seconds", ["command"], "Time to handle one command",
        )
