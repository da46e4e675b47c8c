"""Request timing middleware.

Encodes and reloads can take a while; this logs every request's duration
and warns about the slow ones.
"""

import time
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware


class TimingMiddleware(BaseHTTPMiddleware):
    """Logs request durations and adds an X-Process-Time header.

    Attributes:
        slow_request_threshold: Time in seconds above which a request is
            logged as a warning.
    """

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        duration_ms = round(duration * 1000, 2)

        if duration > self.slow_request_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} "
                f"took {duration_ms}ms (threshold: {self.slow_request_threshold * 1000}ms)"
            )
        else:
            logger.debug(
                f"{request.method} {request.url.path} - {duration_ms}ms - {response.status_code}"
            )

        response.headers["X-Process-Time"] = str(duration)
        return response
