import logging
from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PROXY_FAILED = "Proxy failed"


class ProxyFailure(Exception):
    """
    The outbound call could not be completed.

    Raised for connection errors, DNS failures, timeouts and malformed
    upstream responses. Origin 4xx/5xx replies are never a ProxyFailure.
    """
    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.kind = type(cause).__name__
        message = str(cause)
        self.details = f"{self.kind}: {message}" if message else self.kind
        super().__init__(self.details)


async def proxy_failure_handler(request: Request, exc: ProxyFailure) -> JSONResponse:
    logger.warning("%s %s -> %s failed: %s",
                   request.method, request.url.path, exc.url, exc.details)
    return JSONResponse(
        status_code=502,
        content={"error": PROXY_FAILED, "details": exc.details},
    )
