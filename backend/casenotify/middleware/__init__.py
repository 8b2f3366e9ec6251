"""
Middleware package.

WHY: Middleware provides cross-cutting concerns (request ids for log
correlation and audit context) that apply to all requests.
"""

from casenotify.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    RequestContext,
)

__all__ = [
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "RequestContext",
]
