import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
import httpx
from fastapi import Request, Response
from .errors import ProxyFailure

logger = logging.getLogger(__name__)

REQUEST_HEADERS = frozenset({b"authorization", b"content-type", b"accept"})
RESPONSE_HEADERS = ("content-type", "content-length")
TRANSPORT_HEADERS = frozenset({"host", "content-length", "transfer-encoding"})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})
METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


@dataclass
class InboundRequest:
    """Per-request view of what the proxy is allowed to forward."""
    method: str
    remainder: str
    query: str
    headers: list[tuple[bytes, bytes]] = field(default_factory=list)   # raw, opaque values
    body: bytes | None = None

    @classmethod
    async def from_request(cls, request: Request, remainder: str) -> "InboundRequest":
        method = request.method.upper()
        headers = [
            (k.lower(), v) for k, v in request.headers.raw
            if k.lower() in REQUEST_HEADERS and v
        ]

        body = None
        if method not in BODYLESS_METHODS:
            body = await request.body() or None   # empty body is never attached

        query = request.scope.get("query_string", b"").decode("latin-1")
        return cls(method, remainder, query, headers, body)


@dataclass
class ResponseEnvelope:
    status_code: int
    status_text: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @classmethod
    def from_upstream(cls, resp: httpx.Response, body: bytes) -> "ResponseEnvelope":
        headers = {
            name: resp.headers[name]
            for name in RESPONSE_HEADERS
            if name in resp.headers
        }
        return cls(resp.status_code, resp.reason_phrase, headers, body)

    def to_response(self) -> Response:
        return Response(
            content=self.body,
            status_code=self.status_code,
            headers=self.headers,
        )


def build_outbound(client: httpx.AsyncClient,
                   inbound: InboundRequest,
                   url: str) -> httpx.Request:
    """
    Build the outbound request, keeping only allow-listed headers.

    The client's own defaults (user-agent, accept-encoding, ...) are removed
    too; only the framing headers httpx computes itself survive.
    """
    outbound = client.build_request(
        inbound.method,
        url,
        headers=inbound.headers,
        content=inbound.body,
    )
    keep = {name.decode("latin-1") for name, _ in inbound.headers} | TRANSPORT_HEADERS
    for name in set(outbound.headers.keys()):
        if name not in keep:
            del outbound.headers[name]
    return outbound


async def forward(client: httpx.AsyncClient,
                  inbound: InboundRequest,
                  url: str) -> ResponseEnvelope:
    """
    Single-shot relay of ``inbound`` to ``url``.

    Any origin status is a successful relay. Network-level failures raise
    ProxyFailure.
    """
    try:
        outbound = build_outbound(client, inbound, url)
        resp = await client.send(outbound, stream=True)
        try:
            body = b"".join([chunk async for chunk in resp.aiter_raw()])
        finally:
            await resp.aclose()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise ProxyFailure(url, exc) from exc

    envelope = ResponseEnvelope.from_upstream(resp, body)
    logger.debug("%s %s -> %d %s",
                 inbound.method, url, envelope.status_code, envelope.status_text)
    return envelope


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def forward_until_disconnect(request: Request,
                                   client: httpx.AsyncClient,
                                   inbound: InboundRequest,
                                   url: str) -> ResponseEnvelope | None:
    """
    Run ``forward`` but abort it if the caller goes away.

    Returns None when the inbound connection dropped first.
    """
    relay = asyncio.create_task(forward(client, inbound, url))
    watcher = asyncio.create_task(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait(
            {relay, watcher},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (relay, watcher):
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    if relay in done:
        return relay.result()

    watcher.result()
    logger.info("client disconnected, aborted %s %s", inbound.method, url)
    return None
