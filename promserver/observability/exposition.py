"""Prometheus text exposition of a Registry.

prometheus_client names every counter series with a ``_total`` suffix, so the
``response_status`` counter is scraped as ``response_status_total``.
``http_requests_total`` already carries the suffix and keeps its name. The JSON
snapshot at ``/api/metrics`` uses the registry names unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, HistogramMetricFamily, Metric
from prometheus_client.utils import floatToGoString

from promserver.observability.metrics import Registry


class RegistryCollector:
    """Exposes a :class:`Registry` snapshot to ``prometheus_client``.

    Read-only: it only ever calls ``registry.snapshot()``.
    """

    def __init__(self, registry: Registry) -> None:
        self.registry = registry

    def collect(self) -> Iterator[Metric]:
        for snap in self.registry.snapshot().values():
            if snap.kind == "counter":
                family = CounterMetricFamily(snap.name, snap.documentation, labels=snap.labelnames)
                for sample in snap.samples:
                    family.add_metric([value for _, value in sample.labels], sample.value)
                yield family
            elif snap.kind == "histogram":
                family = HistogramMetricFamily(snap.name, snap.documentation, labels=snap.labelnames)
                for sample in snap.samples:
                    family.add_metric(
                        [value for _, value in sample.labels],
                        buckets=[(floatToGoString(le), count) for le, count in sample.buckets],
                        sum_value=sample.sum,
                    )
                yield family


def build_collector_registry(registry: Registry) -> CollectorRegistry:
    collectors = CollectorRegistry(auto_describe=False)
    collectors.register(RegistryCollector(registry))
    return collectors


def render_latest(registry: Registry) -> bytes:
    """Render the registry in the Prometheus text exposition format."""

    return generate_latest(build_collector_registry(registry))
