from __future__ import annotations

from typing import Any

from starlette.routing import Match


def routed_template(scope: dict[str, Any]) -> str | None:
    """Template of the route the router dispatched ``scope`` to, if any.

    Starlette and FastAPI write the matched route into the shared scope while
    routing, so this is only meaningful once the app has handled the request.
    """

    return getattr(scope.get("route"), "path_format", None) or None


def resolve_route_template(scope: dict[str, Any]) -> str | None:
    """Return the path template of the route that will handle ``scope``.

    Uses the same matching the Starlette router performs, so the label is the
    declared template (``/users/{user_id}``) rather than the raw URL. Returns
    ``None`` when no route matches.
    """

    return _match_routes(getattr(scope.get("app"), "routes", None) or (), scope)


def _match_routes(routes: Any, scope: dict[str, Any]) -> str | None:
    partial = None
    for route in routes:
        match, _ = route.matches(scope)
        if match == Match.NONE:
            continue

        template = getattr(route, "path_format", None)
        if template is None:
            # Included routers match on behalf of their own routes.
            nested = getattr(route, "routes", None) or getattr(getattr(route, "router", None), "routes", None)
            template = _match_routes(nested or (), scope)
            if template is None:
                continue

        if match == Match.FULL:
            return template
        if partial is None:
            # Path matched but the method did not; the router answers 405 from here.
            partial = template

    return partial
