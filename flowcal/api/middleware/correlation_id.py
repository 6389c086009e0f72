"""Request correlation ID middleware.

The id is taken from the caller's headers when present, otherwise generated,
and is attached to log records and to outbound feed requests.
"""

import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

from aiohttp import web

NO_REQUEST_ID = "no-request-id"
RESPONSE_HEADER = "X-Request-ID"
INBOUND_HEADERS = ("X-Request-ID", "X-Correlation-ID")
MAX_ID_LENGTH = 128

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _inbound_id(request: web.Request) -> str:
    for header in INBOUND_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value[:MAX_ID_LENGTH]
    return str(uuid.uuid4())


@web.middleware
async def correlation_id_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Bind a correlation id to the request for its whole lifetime.

    The id is stored on the request, in ``request_id_var`` while the handler
    runs, and echoed back in the ``X-Request-ID`` response header.
    """
    correlation_id = _inbound_id(request)
    request["correlation_id"] = correlation_id

    token = request_id_var.set(correlation_id)
    try:
        response = await handler(request)
    finally:
        request_id_var.reset(token)

    response.headers[RESPONSE_HEADER] = correlation_id
    return response


def get_request_id() -> str:
    """Current request's correlation id, or ``"no-request-id"`` outside a request."""
    return request_id_var.get() or NO_REQUEST_ID
