"""
Middleware for request-scoped sandbox concerns.
"""

import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from app.core.tracing import set_trace_id
from app.sandbox.constants import SANDBOX_HEADER

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attaches request_id and the raw sandbox token to request.state and echoes
    the request id on responses. The token is not validated here.
    """

    def __init__(self, app, header_name: str = SANDBOX_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        request_id = (
            getattr(request.state, "request_id", None)
            or request.headers.get("X-Request-ID")
            or str(uuid4())
        )
        request.state.request_id = request_id
        set_trace_id(request_id)

        sandbox_id = request.headers.get(self.header_name)
        request.state.sandbox_id = sandbox_id.strip() if sandbox_id else None

        logger.debug(
            "request.start",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "sandbox_id": request.state.sandbox_id,
            },
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
