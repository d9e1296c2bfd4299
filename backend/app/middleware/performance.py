# backend/app/middleware/performance.py
"""
Request tracking middleware.

- Request ID propagation (X-Request-ID in, X-Request-ID out)
- Request duration header
- Slow request logging
"""

import logging
import time
from typing import Callable
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.request_context import REQUEST_ID_HEADER, reset_request_id, set_request_id

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Middleware binding a request id to the logging context.

    The id is taken from the X-Request-ID header when the caller sends one,
    otherwise a fresh uuid4 is generated.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers["X-Response-Time-MS"] = str(int(duration_ms))
            if duration_ms > SLOW_REQUEST_MS:
                logger.warning(
                    "slow_request",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": int(duration_ms),
                    },
                )
            return response
        finally:
            reset_request_id(token)
