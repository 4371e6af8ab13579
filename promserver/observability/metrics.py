from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from threading import Lock
from types import MappingProxyType
from typing import Any, Union


HTTP_REQUESTS_TOTAL = "http_requests_total"
RESPONSE_STATUS = "response_status"
HTTP_RESPONSE_TIME_SECONDS = "http_response_time_seconds"

# Same defaults as the Prometheus client libraries.
DEFAULT_BUCKETS: tuple[float, ...] = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.075,
    0.1,
    0.25,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
    7.5,
    10.0,
)

LabelValues = Union[Mapping[str, str], Sequence[str]]


class MetricsError(Exception):
    """Base class for registry errors."""


class AlreadyRegisteredError(MetricsError):
    pass


class UnknownMetricError(MetricsError):
    pass


class LabelError(MetricsError):
    pass


class CardinalityError(MetricsError):
    pass


@dataclass(frozen=True)
class Sample:
    labels: tuple[tuple[str, str], ...]
    value: float = 0.0
    count: int = 0
    sum: float = 0.0
    # Cumulative (upper bound, count) pairs, ending with +Inf.
    buckets: tuple[tuple[float, int], ...] = ()

    @property
    def label_dict(self) -> dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class MetricSnapshot:
    name: str
    kind: str
    documentation: str
    labelnames: tuple[str, ...]
    samples: tuple[Sample, ...]

    def sample(self, **labels: str) -> Sample | None:
        wanted = {key: str(value) for key, value in labels.items()}
        for sample in self.samples:
            if sample.label_dict == wanted:
                return sample
        return None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["samples"] = []
        for sample in self.samples:
            item: dict[str, Any] = {"labels": sample.label_dict}
            if self.kind == "histogram":
                item["count"] = sample.count
                item["sum"] = sample.sum
                item["buckets"] = {_format_bound(le): n for le, n in sample.buckets}
            else:
                item["value"] = sample.value
            payload["samples"].append(item)
        return payload


def _format_bound(bound: float) -> str:
    return "+Inf" if math.isinf(bound) else repr(float(bound))


class _CounterValue:
    def __init__(self) -> None:
        self._lock = Lock()
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        if not amount >= 0:
            raise ValueError("Counters can only be incremented by non-negative amounts.")
        with self._lock:
            self._value += amount

    increment = inc

    def get(self) -> float:
        with self._lock:
            return self._value

    def _sample(self, labels: tuple[tuple[str, str], ...]) -> Sample:
        return Sample(labels=labels, value=self.get())


class _HistogramValue:
    def __init__(self, upper_bounds: tuple[float, ...]) -> None:
        self._lock = Lock()
        self._upper_bounds = upper_bounds
        self._bucket_counts = [0] * len(upper_bounds)
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        value = float(value)
        if math.isnan(value):
            raise ValueError("Histograms cannot observe NaN.")
        with self._lock:
            self._count += 1
            self._sum += value
            for i, bound in enumerate(self._upper_bounds):
                if value <= bound:
                    self._bucket_counts[i] += 1
                    break

    def _sample(self, labels: tuple[tuple[str, str], ...]) -> Sample:
        with self._lock:
            counts = list(self._bucket_counts)
            total = self._count
            summed = self._sum

        cumulative = 0
        buckets = []
        for bound, n in zip(self._upper_bounds, counts):
            cumulative += n
            buckets.append((bound, cumulative))
        return Sample(labels=labels, count=total, sum=summed, buckets=tuple(buckets))


class Metric:
    """A named metric with a fixed label schema and lazily created children."""

    kind = "untyped"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        max_series: int | None = None,
    ) -> None:
        if not name:
            raise ValueError("Metric name must not be empty.")
        if isinstance(labelnames, str):
            raise TypeError("labelnames must be a sequence of strings, not a string.")
        self.name = name
        self.documentation = documentation
        self.labelnames: tuple[str, ...] = tuple(labelnames)
        if len(set(self.labelnames)) != len(self.labelnames):
            raise ValueError(f"Duplicate label names in {self.labelnames!r}.")
        self.max_series = max_series
        self._lock = Lock()
        self._children: dict[tuple[str, ...], Any] = {}

    @property
    def schema(self) -> tuple[Any, ...]:
        return (self.kind, self.labelnames)

    def labels(self, values: LabelValues = ()) -> Any:
        key = self._label_key(values)
        child = self._children.get(key)
        if child is not None:
            return child

        with self._lock:
            # Another request may have created it while we waited for the lock.
            child = self._children.get(key)
            if child is None:
                if self.max_series is not None and len(self._children) >= self.max_series:
                    raise CardinalityError(
                        f"{self.name}: refusing to create more than {self.max_series} label sets"
                    )
                child = self._new_child()
                self._children[key] = child
            return child

    def collect(self) -> MetricSnapshot:
        with self._lock:
            children = list(self._children.items())
        samples = tuple(child._sample(tuple(zip(self.labelnames, key))) for key, child in children)
        return MetricSnapshot(
            name=self.name,
            kind=self.kind,
            documentation=self.documentation,
            labelnames=self.labelnames,
            samples=samples,
        )

    def _label_key(self, values: LabelValues) -> tuple[str, ...]:
        if isinstance(values, Mapping):
            if set(values) != set(self.labelnames):
                raise LabelError(
                    f"{self.name}: expected labels {sorted(self.labelnames)}, got {sorted(values)}"
                )
            return tuple(str(values[name]) for name in self.labelnames)

        if isinstance(values, str):
            values = (values,)
        if len(values) != len(self.labelnames):
            raise LabelError(f"{self.name}: expected {len(self.labelnames)} label values, got {len(values)}")
        return tuple(str(v) for v in values)

    def _new_child(self) -> Any:
        raise NotImplementedError


class Counter(Metric):
    kind = "counter"

    def _new_child(self) -> _CounterValue:
        return _CounterValue()


class Histogram(Metric):
    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        buckets: Sequence[float] = DEFAULT_BUCKETS,
        max_series: int | None = None,
    ) -> None:
        if "le" in labelnames:
            raise ValueError("'le' is reserved for histogram buckets.")
        super().__init__(name, documentation, labelnames, max_series=max_series)
        bounds = sorted({float(b) for b in buckets})
        if not bounds or not math.isinf(bounds[-1]):
            bounds.append(math.inf)
        self.upper_bounds: tuple[float, ...] = tuple(bounds)

    @property
    def schema(self) -> tuple[Any, ...]:
        return (self.kind, self.labelnames, self.upper_bounds)

    def _new_child(self) -> _HistogramValue:
        return _HistogramValue(self.upper_bounds)


class Registry:
    """Thread-safe, process-local collection of named metrics.

    Metrics are registered once at startup and then mutated by concurrent
    requests for the life of the process. Nothing is ever unregistered.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._metrics: dict[str, Metric] = {}

    def register(self, metric: Metric) -> Metric:
        with self._lock:
            existing = self._metrics.get(metric.name)
            if existing is None:
                self._metrics[metric.name] = metric
                return metric
        if existing.schema != metric.schema:
            raise AlreadyRegisteredError(
                f"Metric {metric.name!r} is already registered with schema {existing.schema!r}"
            )
        return existing

    def get(self, name: str) -> Metric:
        try:
            return self._metrics[name]
        except KeyError:
            raise UnknownMetricError(f"No metric named {name!r}") from None

    def counter(self, name: str, labels: LabelValues = ()) -> _CounterValue:
        return self._typed(name, Counter).labels(labels)

    def histogram(self, name: str, labels: LabelValues = ()) -> _HistogramValue:
        return self._typed(name, Histogram).labels(labels)

    def snapshot(self) -> Mapping[str, MetricSnapshot]:
        with self._lock:
            metrics = list(self._metrics.values())
        return MappingProxyType({metric.name: metric.collect() for metric in metrics})

    def get_sample_value(self, name: str, labels: Mapping[str, str] | None = None) -> float | None:
        """Return a counter's value or a histogram's observation count, if present."""

        metric = self._metrics.get(name)
        if metric is None:
            return None
        sample = metric.collect().sample(**(labels or {}))
        if sample is None:
            return None
        if metric.kind == "histogram":
            return float(sample.count)
        return sample.value

    def _typed(self, name: str, cls: type[Metric]) -> Any:
        metric = self.get(name)
        if not isinstance(metric, cls):
            raise UnknownMetricError(f"Metric {name!r} is a {metric.kind}, not a {cls.kind}")
        return metric


def register_http_metrics(
    registry: Registry,
    buckets: Sequence[float] = DEFAULT_BUCKETS,
    max_series: int | None = None,
) -> None:
    """Register the request counter, status counter and latency histogram."""

    registry.register(
        Counter(HTTP_REQUESTS_TOTAL, "Number of get requests.", ["path"], max_series=max_series)
    )
    registry.register(
        Counter(RESPONSE_STATUS, "Status of HTTP response", ["status"], max_series=max_series)
    )
    registry.register(
        Histogram(
            HTTP_RESPONSE_TIME_SECONDS,
            "Duration of HTTP requests.",
            ["path"],
            buckets=buckets,
            max_series=max_series,
        )
    )
