# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request, Response
from httpx import AsyncClient, ASGITransport

from edgeproxy.config import Settings
from edgeproxy.forwarding import METHODS
from edgeproxy.main import application as proxy_app

ORIGIN = "http://upstream"


@pytest.fixture
def settings() -> Settings:
    return Settings(origin=ORIGIN)


@pytest.fixture
def upstream_calls() -> list[dict]:
    """Every request the fake origin received, in order."""
    return []


@pytest.fixture
def upstream_app(upstream_calls: list[dict]) -> FastAPI:
    app = FastAPI()     # mock origin for tests

    @app.api_route("/status/{code}", methods=METHODS)
    async def status(code: int):  # tests status passthrough and response header filtering
        return Response(
            content=b"status body",
            status_code=code,
            media_type="text/plain",
            headers={
                "set-cookie": "session=abc",
                "server": "origin/1.0",
                "cache-control": "max-age=3600",
                "x-backend": "secret",
            },
        )

    @app.api_route("/{path:path}", methods=METHODS)
    async def echo(request: Request):   # records everything that reached the origin
        body = await request.body()
        upstream_calls.append({
            "method": request.method,
            "path": request.url.path,
            "raw_path": request.scope["raw_path"].split(b"?", 1)[0].decode(),
            "query": request.scope["query_string"].decode(),
            "headers": dict(request.headers),
            "body": body,
        })
        return {
            "message": "hello from upstream",
            "path": request.url.path,
        }

    return app


@pytest.fixture
async def upstream_client(upstream_app: FastAPI):
    """Client the proxy uses to reach the fake origin"""
    async with AsyncClient(
            transport=ASGITransport(app=upstream_app),
            base_url=ORIGIN) as client:
        yield client


@pytest.fixture
async def proxy_client(upstream_client: AsyncClient, settings: Settings):
    """Proxy test client with the origin mocked via ASGITransport"""
    # State set before startup is kept by the lifespan
    proxy_app.state.settings = settings
    proxy_app.state.http_client = upstream_client

    async with LifespanManager(proxy_app):
        # client with transport to proxy app
        async with AsyncClient(
                transport=ASGITransport(app=proxy_app),
                base_url="http://proxy") as client:
            yield client

    del proxy_app.state.settings
    del proxy_app.state.http_client
