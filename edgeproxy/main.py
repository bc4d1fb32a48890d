import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Callable
from os import getenv
from fastapi import FastAPI, Request, Response, HTTPException
import httpx
from .config import PROXY_MOUNT, load_settings
from .errors import ProxyFailure, proxy_failure_handler
from .forwarding import METHODS, InboundRequest, forward_until_disconnect
from .routing import MOUNT_RULE, NoMatch, RouteMatch, build_url, find_route, match_rule

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    #---- Startup ----
    if not hasattr(app.state, 'settings'):
        app.state.settings = load_settings()
    logger.info("Forwarding to origin %s", app.state.settings.origin)

    if not hasattr(app.state, 'http_client'):
        app.state.http_client = httpx.AsyncClient(timeout=app.state.settings.timeout)

    try:
        yield
    finally:
        #---- Shutdown ----
        if hasattr(app.state, 'http_client'):
            await app.state.http_client.aclose()

application = FastAPI(lifespan=lifespan)
application.add_exception_handler(ProxyFailure, proxy_failure_handler)


def raw_path(request: Request) -> str:
    """Request path with its percent-encoding intact."""
    raw = request.scope.get("raw_path")
    if raw is None:
        return request.url.path
    return raw.split(b"?", 1)[0].decode("latin-1")


def resolve(request: Request, lookup: Callable[[str], RouteMatch | NoMatch]) -> RouteMatch | NoMatch:
    """Match the raw path, then the decoded path Starlette routed on."""
    match = lookup(raw_path(request))
    if isinstance(match, NoMatch):
        match = lookup(request.url.path)
    return match


def no_route(match: NoMatch) -> HTTPException:
    logger.info("No upstream route for %s", match.path)
    return HTTPException(status_code=404, detail="No upstream route found")


async def relay(request: Request, match: RouteMatch) -> Response:
    settings = request.app.state.settings
    inbound = await InboundRequest.from_request(request, match.remainder)
    url = build_url(settings.origin, match.path, inbound.query)

    envelope = await forward_until_disconnect(
        request, request.app.state.http_client, inbound, url
    )
    if envelope is None:
        return Response(status_code=499)    # caller is gone, nobody reads this
    return envelope.to_response()


@application.get("/health")
async def health(request: Request):
    return {
        "service": "edgeproxy",
        "status": "healthy",
        "origin": request.app.state.settings.origin,
    }


@application.api_route(path=PROXY_MOUNT, methods=METHODS)
@application.api_route(path=PROXY_MOUNT + "/{path:path}", methods=METHODS)
async def proxy_mount(request: Request):
    """Generic handler: forwards the captured remainder to the origin root."""
    match = resolve(request, partial(match_rule, MOUNT_RULE))
    if not isinstance(match, RouteMatch):
        raise no_route(match)
    return await relay(request, match)


@application.api_route(path="/api/{path:path}", methods=METHODS)
async def proxy(request: Request):
    settings = request.app.state.settings
    match = resolve(request, partial(find_route, settings=settings))
    if not isinstance(match, RouteMatch):
        raise no_route(match)
    return await relay(request, match)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(application, host="0.0.0.0", port=int(getenv("PORT", "8000")))
