"""
Middleware package.

WHY: Middleware provides cross-cutting concerns that apply to every
request, such as request correlation.
"""

from proposal_engine.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    get_client_ip,
    get_request_context,
)

__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "get_client_ip",
    "get_request_context",
]
