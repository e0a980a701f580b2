"""Request ID middleware — correlate gateway logs with the application.

Learn: Every HTTP request gets an id, either from the incoming
X-Request-ID header (the application forwards its own) or generated
here. When the application publishes on behalf of a user it also sends
X-Socket-ID; both are bound to structlog's contextvars so every
broadcast.* log line for that request can be traced back to the
originating user action.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a request ID; bind the actor's socket id."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        socket_id = request.headers.get("X-Socket-ID")
        if socket_id:
            structlog.contextvars.bind_contextvars(socket_id=socket_id)

        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
