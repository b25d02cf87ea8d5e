"""
Access logging for the HTTP API.

Each request is tagged with a request id (the client's ``x-request-id`` when
sent) and, for wallet-authenticated calls, a shortened wallet address. Both
are bound into structlog contextvars so tool and pipeline logs emitted while
serving the request carry them. For event streams the logged duration is
time to first byte; the stream itself outlives ``dispatch``.
"""

import time
import uuid
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("sion.http")

REQUEST_ID_HEADER = "x-request-id"
QUIET_PATHS = frozenset({"/healthz"})


def short_wallet(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    address = address.strip()
    return address if len(address) <= 10 else f"{address[:4]}..{address[-4:]}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        context = {"request_id": request_id}
        wallet = short_wallet(request.headers.get("x-wallet-address"))
        if wallet:
            context["wallet"] = wallet
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        started = time.perf_counter()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            status = response.status_code if response is not None else 500
            fields = {
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            }
            if response is not None and response.headers.get("content-type", "").startswith("text/event-stream"):
                fields["stream"] = True

            if status >= 500:
                logger.error("http_request", **fields)
            elif status >= 400:
                logger.warning("http_request", **fields)
            elif request.url.path in QUIET_PATHS:
                logger.debug("http_request", **fields)
            else:
                logger.info("http_request", **fields)
