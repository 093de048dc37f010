"""
Request Context Middleware

Assigns every request an ID (taken from X-Request-ID when the client sends
one), binds it to the logging context so cache, session and rate-limit log
lines can be correlated, echoes it back in the response, and logs one line
per completed request with its duration.

Registered last, so it wraps everything else and its request ID is already
set when the rate limiter and the response cache log.
"""

import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cachegate.core.config.constants import HEADER_REQUEST_ID
from cachegate.core.logging import clear_request_id, get_logger, set_request_id

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id

            logger.info(
                f"Request completed: {request.method} {request.url.path}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_seconds=round(time.perf_counter() - start_time, 4),
            )
            return response

        finally:
            clear_request_id()
