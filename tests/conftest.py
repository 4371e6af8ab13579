from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from httpx import ASGITransport, AsyncClient

from promserver.config import get_settings
from promserver.main import create_app
from promserver.observability.metrics import Registry


def _build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/x")
    async def not_found() -> PlainTextResponse:
        return PlainTextResponse("not found", status_code=404)

    @router.get("/a")
    async def plain() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @router.get("/users/{user_id}")
    async def get_user(user_id: str) -> dict[str, str]:
        return {"id": user_id}

    @router.get("/slow")
    async def slow() -> dict[str, str]:
        await asyncio.sleep(0.05)
        return {"status": "slept"}

    @router.get("/teapot")
    async def teapot() -> None:
        raise HTTPException(status_code=418, detail="short and stout")

    @router.get("/boom")
    async def boom() -> None:
        raise RuntimeError("boom")

    return router


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("STATIC_DIR", str(tmp_path / "static"))
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def app(registry: Registry):
    return create_app(get_settings(), registry=registry, routers=[_build_router()])


@pytest.fixture
async def api_client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
