from __future__ import annotations

from collections.abc import Iterable
from http import HTTPStatus
from time import perf_counter
from typing import Any, Callable, Optional

import structlog

from promserver.observability.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_RESPONSE_TIME_SECONDS,
    RESPONSE_STATUS,
    Registry,
)
from promserver.observability.routing import resolve_route_template, routed_template


DEFAULT_STATUS_CODE = 200
UNMATCHED_ROUTE = "unmatched"

RouteResolver = Callable[[dict[str, Any]], Optional[str]]


class ResponseObserver:
    """Wraps an ASGI ``send`` and remembers the status of the response.

    Messages are forwarded untouched and in order. Only the first
    ``http.response.start`` counts; a handler that never starts a response
    reports ``DEFAULT_STATUS_CODE``.
    """

    def __init__(self, send: Callable[..., Any]) -> None:
        self._send = send
        self._status_code: int | None = None

    @property
    def started(self) -> bool:
        return self._status_code is not None

    @property
    def status_code(self) -> int:
        if self._status_code is None:
            return DEFAULT_STATUS_CODE
        return self._status_code

    async def __call__(self, message: dict[str, Any]) -> None:
        if message.get("type") == "http.response.start" and self._status_code is None:
            self._status_code = int(message.get("status", DEFAULT_STATUS_CODE))
        await self._send(message)


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ""


class PrometheusMiddleware:
    """Counts requests and statuses and times every HTTP request, per route."""

    def __init__(
        self,
        app: Callable[..., Any],
        registry: Registry,
        resolver: RouteResolver = resolve_route_template,
        unmatched_label: str = UNMATCHED_ROUTE,
        excluded_routes: Iterable[str] = (),
    ) -> None:
        self.app = app
        self.registry = registry
        self.resolver = resolver
        self.unmatched_label = unmatched_label
        self._excluded_routes = frozenset(excluded_routes)
        self._log = structlog.get_logger("metrics")

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        resolved = self._resolve(scope)
        start = perf_counter()
        observer = ResponseObserver(send)

        try:
            await self.app(scope, receive, observer)
        finally:
            elapsed = perf_counter() - start
            status_code = observer.status_code
            route = routed_template(scope) or resolved or self.unmatched_label

            if route not in self._excluded_routes:
                self._record(
                    "call_count",
                    lambda: self.registry.counter(HTTP_REQUESTS_TOTAL, {"path": route}).inc(),
                    route=route,
                )
                self._record(
                    "status_count",
                    lambda: self.registry.counter(RESPONSE_STATUS, {"status": str(status_code)}).inc(),
                    route=route,
                )
                self._record(
                    "duration",
                    lambda: self.registry.histogram(HTTP_RESPONSE_TIME_SECONDS, {"path": route}).observe(elapsed),
                    route=route,
                )

            structlog.get_logger("access").info(
                "http_request",
                method=scope.get("method"),
                route=route,
                status_code=status_code,
                status=_status_phrase(status_code),
                elapsed_ms=round(elapsed * 1000.0, 2),
            )

    def _resolve(self, scope: dict[str, Any]) -> str | None:
        try:
            return self.resolver(scope)
        except Exception:
            self._log.exception("route_resolution_failed", path=scope.get("path"))
            return None

    def _record(self, measurement: str, fn: Callable[[], None], **context: Any) -> None:
        # Instrumentation must never change what the client gets.
        try:
            fn()
        except Exception:
            self._log.exception("metrics_record_failed", measurement=measurement, **context)
