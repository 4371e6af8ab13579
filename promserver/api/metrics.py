from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from promserver.observability.exposition import render_latest
from promserver.observability.metrics import Registry


SNAPSHOT_PATH = "/api/metrics"

router = APIRouter(tags=["metrics"])


def _registry(request: Request) -> Registry:
    return request.app.state.metrics_registry


async def prometheus_metrics(request: Request) -> Response:
    """Text exposition; counters are suffixed with ``_total`` (``response_status_total``)."""
    return Response(content=render_latest(_registry(request)), media_type=CONTENT_TYPE_LATEST)


@router.get(SNAPSHOT_PATH)
async def metrics_snapshot(request: Request) -> dict:
    settings = request.app.state.settings
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")
    return {name: snap.as_dict() for name, snap in _registry(request).snapshot().items()}
