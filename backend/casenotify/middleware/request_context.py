"""
Request context middleware.

WHAT: Captures a request id and the client address for every request and
makes them available to services without passing the request around.

WHY: Audit entries and log lines about mailbox connections and rule
changes need to be correlated with the console request that caused them.

HOW: Stores a RequestContext in a ContextVar for the lifetime of the
request and echoes the id back in the X-Request-ID header.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class RequestContext:
    """Request-scoped data used for logging and audit entries."""

    request_id: str
    ip_address: str
    path: str
    method: str


# WHY: ContextVar gives each concurrent request its own isolated context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """Return the current request context, or None outside a request (e.g. scheduler jobs)."""
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address, honouring proxy headers.

    Checks X-Real-IP, then the first X-Forwarded-For hop, then the
    direct connection address.
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

    An inbound X-Request-ID is reused so ids stay stable across the
    case-booking application and this service.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _request_context.reset(token)
