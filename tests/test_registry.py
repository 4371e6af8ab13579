import math
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from promserver.observability.metrics import (
    AlreadyRegisteredError,
    CardinalityError,
    Counter,
    Histogram,
    LabelError,
    Registry,
    UnknownMetricError,
    register_http_metrics,
)


def test_register_is_idempotent_for_identical_schema() -> None:
    registry = Registry()
    first = registry.register(Counter("jobs_total", "Jobs.", ["queue"]))
    second = registry.register(Counter("jobs_total", "Jobs again.", ["queue"]))
    assert second is first


@pytest.mark.parametrize(
    "conflicting",
    [
        Counter("jobs_total", "Jobs.", ["queue", "host"]),
        Histogram("jobs_total", "Jobs.", ["queue"]),
    ],
)
def test_register_rejects_conflicting_schema(conflicting) -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs.", ["queue"]))
    with pytest.raises(AlreadyRegisteredError):
        registry.register(conflicting)


def test_histogram_buckets_are_part_of_the_schema() -> None:
    registry = Registry()
    registry.register(Histogram("latency", "Latency.", ["path"], buckets=[0.1, 1.0]))
    with pytest.raises(AlreadyRegisteredError):
        registry.register(Histogram("latency", "Latency.", ["path"], buckets=[0.5]))


def test_counter_children_are_created_lazily() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs.", ["queue"]))
    assert registry.snapshot()["jobs_total"].samples == ()

    registry.counter("jobs_total", {"queue": "fast"}).inc()
    registry.counter("jobs_total", ["fast"]).increment()
    registry.counter("jobs_total", "slow").inc(2.5)

    assert registry.get_sample_value("jobs_total", {"queue": "fast"}) == 2.0
    assert registry.get_sample_value("jobs_total", {"queue": "slow"}) == 2.5
    assert registry.get_sample_value("jobs_total", {"queue": "never"}) is None


def test_counter_rejects_negative_increments() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs."))
    with pytest.raises(ValueError):
        registry.counter("jobs_total").inc(-1)


def test_label_schema_is_enforced() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs.", ["queue"]))
    with pytest.raises(LabelError):
        registry.counter("jobs_total", {"queue": "a", "host": "b"})
    with pytest.raises(LabelError):
        registry.counter("jobs_total", ["a", "b"])


def test_unknown_metric_and_wrong_kind() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs."))
    with pytest.raises(UnknownMetricError):
        registry.counter("missing_total")
    with pytest.raises(UnknownMetricError):
        registry.histogram("jobs_total")


def test_histogram_buckets_are_cumulative() -> None:
    registry = Registry()
    registry.register(Histogram("latency", "Latency.", ["path"], buckets=[1.0, 0.1]))
    child = registry.histogram("latency", {"path": "/a"})
    for value in (0.05, 0.1, 0.5, 20.0):
        child.observe(value)

    sample = registry.snapshot()["latency"].sample(path="/a")
    assert sample.count == 4
    assert sample.sum == pytest.approx(20.65)
    assert sample.buckets == ((0.1, 2), (1.0, 3), (math.inf, 4))


def test_histogram_rejects_le_label() -> None:
    with pytest.raises(ValueError):
        Histogram("latency", "Latency.", ["le"])


def test_snapshot_is_read_only_and_detached() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs.", ["queue"]))
    registry.counter("jobs_total", {"queue": "a"}).inc()

    snapshot = registry.snapshot()
    with pytest.raises(TypeError):
        snapshot["jobs_total"] = None  # type: ignore[index]

    registry.counter("jobs_total", {"queue": "a"}).inc()
    assert snapshot["jobs_total"].sample(queue="a").value == 1.0
    assert registry.snapshot()["jobs_total"].sample(queue="a").value == 2.0


def test_max_series_bounds_label_sets() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs.", ["queue"], max_series=2))
    registry.counter("jobs_total", {"queue": "a"}).inc()
    registry.counter("jobs_total", {"queue": "b"}).inc()
    with pytest.raises(CardinalityError):
        registry.counter("jobs_total", {"queue": "c"})
    # Existing label sets keep working.
    registry.counter("jobs_total", {"queue": "a"}).inc()
    assert registry.get_sample_value("jobs_total", {"queue": "a"}) == 2.0


def test_concurrent_increments_are_not_lost() -> None:
    registry = Registry()
    register_http_metrics(registry)
    workers, per_worker = 16, 500

    def hammer() -> None:
        for _ in range(per_worker):
            registry.counter("http_requests_total", {"path": "/a"}).inc()
            registry.histogram("http_response_time_seconds", {"path": "/a"}).observe(0.01)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        for future in [pool.submit(hammer) for _ in range(workers)]:
            future.result()

    assert registry.get_sample_value("http_requests_total", {"path": "/a"}) == workers * per_worker
    assert registry.get_sample_value("http_response_time_seconds", {"path": "/a"}) == workers * per_worker


def test_racing_first_use_creates_one_label_set() -> None:
    registry = Registry()
    register_http_metrics(registry)
    racers = 32
    barrier = threading.Barrier(racers)
    children = []

    def first_use() -> None:
        barrier.wait()
        child = registry.counter("http_requests_total", {"path": "/never-seen"})
        children.append(child)
        child.inc()

    threads = [threading.Thread(target=first_use) for _ in range(racers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(child) for child in children}) == 1
    samples = registry.snapshot()["http_requests_total"].samples
    assert len(samples) == 1
    assert samples[0].value == racers


def test_counter_rejects_nan() -> None:
    registry = Registry()
    registry.register(Counter("jobs_total", "Jobs."))
    registry.counter("jobs_total").inc()
    with pytest.raises(ValueError):
        registry.counter("jobs_total").inc(float("nan"))
    assert registry.get_sample_value("jobs_total") == 1.0


def test_histogram_rejects_nan() -> None:
    registry = Registry()
    registry.register(Histogram("latency", "Latency.", buckets=[1.0]))
    child = registry.histogram("latency")
    child.observe(0.5)
    with pytest.raises(ValueError):
        child.observe(float("nan"))

    sample = registry.snapshot()["latency"].sample()
    assert sample.count == 1
    assert sample.buckets[-1] == (math.inf, 1)
