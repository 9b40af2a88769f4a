"""
Request context middleware.

WHAT: Captures the request id, client IP and user agent of every request
and makes them available for logging and signature metadata.

WHY: Signatures record where they were made from. The signing endpoint
fills ``ip_address`` and ``user_agent`` from this context when the
client does not send them, and every log line of a request can be
correlated through its request id.

HOW: Stores an immutable RequestContext in a ContextVar for the duration
of the request; the id is echoed back in the X-Request-ID header.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """Request-scoped metadata."""

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str


# Each request (async task) sees only its own context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address, honouring proxy headers.

    HOW: X-Real-IP, then the first address of X-Forwarded-For, then the
    TCP peer.

    Security Note:
        These headers can be spoofed unless a trusted proxy overwrites them.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    Example:
        ctx = get_request_context()
        logger.info("Signing", extra={"request_id": ctx.request_id})
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Upstream proxies may already have assigned an id
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={
                    "request_id": request_id,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return response
        finally:
            _request_context.reset(token)
