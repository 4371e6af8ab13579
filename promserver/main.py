from __future__ import annotations

from collections.abc import Iterable

from fastapi import APIRouter, FastAPI
from fastapi.staticfiles import StaticFiles

from promserver.api.metrics import SNAPSHOT_PATH, prometheus_metrics
from promserver.api.metrics import router as metrics_router
from promserver.config import Settings, get_settings
from promserver.observability.metrics import Registry, register_http_metrics
from promserver.observability.middleware import PrometheusMiddleware


def create_app(
    settings: Settings | None = None,
    registry: Registry | None = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """Build the instrumented application.

    Metric registration happens here, so a conflicting registry fails before
    any traffic is served. Extra ``routers`` are mounted ahead of the static
    file catch-all.
    """

    settings = settings or get_settings()
    if registry is None:
        registry = Registry()
    register_http_metrics(
        registry,
        buckets=settings.histogram_buckets,
        max_series=settings.max_series_per_metric,
    )

    app = FastAPI(title="promserver", version="0.1.0")
    app.state.settings = settings
    app.state.metrics_registry = registry

    excluded: set[str] = set()
    if not settings.instrument_metrics_endpoints:
        excluded = {settings.metrics_path, SNAPSHOT_PATH}
    app.add_middleware(
        PrometheusMiddleware,
        registry=registry,
        unmatched_label=settings.unmatched_route_label,
        excluded_routes=excluded,
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.add_api_route(settings.metrics_path, prometheus_metrics, methods=["GET"], include_in_schema=False)
    app.include_router(metrics_router)
    for router in routers:
        app.include_router(router)

    # Catch-all, so it has to stay last.
    settings.static_path.mkdir(parents=True, exist_ok=True)
    app.mount("/", StaticFiles(directory=settings.static_path, html=True), name="static")

    return app
